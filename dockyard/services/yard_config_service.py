"""
Per-warehouse yard policy.

Operating hours, dock count, on-time grace and the detention allowance are
configuration, not constants: a warehouse_yard_configs row overrides the
application settings column by column. Reads go through the tenant-scoped
cache.
"""
import logging
import uuid
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.config import settings
from dockyard.core.exceptions import YardError
from dockyard.models.yard import WarehouseYardConfig, AppointmentType
from dockyard.schemas.yard import YardConfigUpdate, YardPolicy
from dockyard.services.cache_service import CacheService, get_cache

logger = logging.getLogger(__name__)


DEFAULT_DURATIONS = {
    AppointmentType.INBOUND.value: settings.DEFAULT_DURATION_INBOUND,
    AppointmentType.OUTBOUND.value: settings.DEFAULT_DURATION_OUTBOUND,
    AppointmentType.CROSS_DOCK.value: settings.DEFAULT_DURATION_CROSS_DOCK,
    AppointmentType.RETURN.value: settings.DEFAULT_DURATION_RETURN,
}


def default_duration(appointment_type: str) -> int:
    """Expected duration (minutes) when the request does not give one."""
    return DEFAULT_DURATIONS.get(appointment_type, settings.DEFAULT_DURATION_INBOUND)


def default_policy(warehouse_id: uuid.UUID) -> YardPolicy:
    return YardPolicy(
        warehouse_id=warehouse_id,
        dock_count=settings.DEFAULT_DOCK_COUNT,
        operating_start_hour=settings.OPERATING_START_HOUR,
        operating_end_hour=settings.OPERATING_END_HOUR,
        timezone=settings.FACILITY_TIMEZONE,
        granule_minutes=settings.SLOT_GRANULE_MINUTES,
        detention_free_hours=settings.DETENTION_FREE_HOURS,
        detention_rate_per_hour=settings.DETENTION_RATE_PER_HOUR,
        on_time_grace_minutes=settings.ON_TIME_GRACE_MINUTES,
        late_alert_threshold_minutes=settings.LATE_ALERT_THRESHOLD_MINUTES,
        yard_spot_cost_per_day=settings.YARD_SPOT_COST_PER_DAY,
        is_default=True,
    )


def merge_policy(warehouse_id: uuid.UUID, config: Optional[WarehouseYardConfig]) -> YardPolicy:
    """Overlay non-null config columns on the settings defaults."""
    policy = default_policy(warehouse_id)
    if config is None:
        return policy

    overrides = {}
    for field in YardConfigUpdate.model_fields:
        value = getattr(config, field, None)
        if value is not None:
            overrides[field] = value
    return policy.model_copy(update={**overrides, "is_default": False})


class YardConfigService:
    """Read-through access to the effective yard policy of a warehouse."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        cache: Optional[CacheService] = None
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.cache = cache or get_cache()

    async def _get_config_row(self, warehouse_id: uuid.UUID) -> Optional[WarehouseYardConfig]:
        result = await self.db.execute(
            select(WarehouseYardConfig)
            .where(
                WarehouseYardConfig.tenant_id == self.tenant_id,
                WarehouseYardConfig.warehouse_id == warehouse_id
            )
        )
        return result.scalar_one_or_none()

    async def get_policy(self, warehouse_id: uuid.UUID) -> YardPolicy:
        """Effective policy for a warehouse (cached)."""
        cached = await self.cache.get_yard_config(self.tenant_id, warehouse_id)
        if cached is not None:
            return YardPolicy.model_validate(cached)

        policy = merge_policy(warehouse_id, await self._get_config_row(warehouse_id))
        await self.cache.set_yard_config(
            self.tenant_id, warehouse_id, policy.model_dump(mode="json")
        )
        return policy

    async def upsert_config(self, warehouse_id: uuid.UUID, data: YardConfigUpdate) -> YardPolicy:
        """Create or update the overrides for a warehouse and drop the cached policy."""
        config = await self._get_config_row(warehouse_id)
        if config is None:
            config = WarehouseYardConfig(
                id=uuid.uuid4(),
                tenant_id=self.tenant_id,
                warehouse_id=warehouse_id,
            )
            self.db.add(config)

        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(config, key, value)

        try:
            self._validate(config)
        except YardError:
            await self.db.rollback()
            raise

        await self.db.commit()
        await self.cache.invalidate_yard_config(self.tenant_id, warehouse_id)
        logger.info(f"Yard config updated for warehouse {warehouse_id}")
        return merge_policy(warehouse_id, config)

    @staticmethod
    def _validate(config: WarehouseYardConfig) -> None:
        start = config.operating_start_hour
        end = config.operating_end_hour
        if start is None:
            start = settings.OPERATING_START_HOUR
        if end is None:
            end = settings.OPERATING_END_HOUR
        if end <= start:
            raise YardError(
                "Operating end hour must be after operating start hour",
                details={"operating_start_hour": start, "operating_end_hour": end}
            )
        if config.timezone:
            try:
                ZoneInfo(config.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise YardError(
                    f"Unknown timezone '{config.timezone}'",
                    details={"timezone": config.timezone}
                )
