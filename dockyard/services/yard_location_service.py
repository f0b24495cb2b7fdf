"""
Yard location and dock door setup, plus atomic occupancy counters.

Occupancy changes are conditional UPDATEs, so 0 <= current_occupancy <=
capacity holds even when several processes touch the same spot. They do not
commit; the calling service commits them together with its own changes.
"""
import logging
import uuid
from typing import Optional, List, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.exceptions import NotFoundError, ConflictError
from dockyard.models.yard import YardLocation, DockDoor, YardLocationType
from dockyard.schemas.yard import YardLocationCreate, DockDoorCreate
from dockyard.services.cache_service import CacheService, get_cache

logger = logging.getLogger(__name__)


class YardLocationService:
    """Service for yard locations and dock doors."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        cache: Optional[CacheService] = None
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.cache = cache or get_cache()

    # ========================================================================
    # YARD LOCATION MANAGEMENT
    # ========================================================================

    async def create_location(self, data: YardLocationCreate) -> YardLocation:
        """Create a new yard location."""
        if await self.get_location_by_code(data.warehouse_id, data.location_code):
            raise ConflictError(
                f"Yard location {data.location_code} already exists",
                details={"location_code": data.location_code}
            )

        location = YardLocation(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            warehouse_id=data.warehouse_id,
            location_code=data.location_code,
            location_name=data.location_name,
            location_type=data.location_type.value,
            zone=data.zone,
            capacity=data.capacity,
            current_occupancy=0,
            pos_x=data.pos_x,
            pos_y=data.pos_y,
            has_refrigeration=data.has_refrigeration,
            is_hazmat_approved=data.is_hazmat_approved,
            notes=data.notes,
            is_active=True
        )
        self.db.add(location)
        await self.db.commit()
        await self.db.refresh(location)
        logger.info(f"Yard location {location.location_code} created (capacity {location.capacity})")
        return location

    async def get_location(self, location_id: uuid.UUID) -> Optional[YardLocation]:
        """Get yard location by ID."""
        result = await self.db.execute(
            select(YardLocation)
            .where(
                YardLocation.id == location_id,
                YardLocation.tenant_id == self.tenant_id
            )
        )
        return result.scalar_one_or_none()

    async def require_location(self, location_id: uuid.UUID) -> YardLocation:
        location = await self.get_location(location_id)
        if location is None:
            raise NotFoundError(
                "Yard location not found",
                details={"location_id": str(location_id)}
            )
        return location

    async def get_location_by_code(
        self,
        warehouse_id: uuid.UUID,
        location_code: str
    ) -> Optional[YardLocation]:
        result = await self.db.execute(
            select(YardLocation)
            .where(
                YardLocation.tenant_id == self.tenant_id,
                YardLocation.warehouse_id == warehouse_id,
                YardLocation.location_code == location_code
            )
        )
        return result.scalar_one_or_none()

    async def list_locations(
        self,
        warehouse_id: uuid.UUID,
        location_type: Optional[YardLocationType] = None,
        zone: Optional[str] = None,
        active_only: bool = True,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[YardLocation], int]:
        """List yard locations with filters."""
        query = select(YardLocation).where(
            YardLocation.tenant_id == self.tenant_id,
            YardLocation.warehouse_id == warehouse_id
        )

        if location_type:
            query = query.where(YardLocation.location_type == location_type.value)
        if zone:
            query = query.where(YardLocation.zone == zone)
        if active_only:
            query = query.where(YardLocation.is_active == True)  # noqa: E712

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(YardLocation.location_code).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def deactivate_location(self, location_id: uuid.UUID) -> YardLocation:
        """Take a location out of service. Locations are never deleted."""
        location = await self.require_location(location_id)
        if location.current_occupancy > 0:
            raise ConflictError(
                f"Yard location {location.location_code} still holds "
                f"{location.current_occupancy} trailer(s)",
                details={"location_code": location.location_code}
            )
        location.is_active = False
        await self.db.commit()
        await self.db.refresh(location)
        logger.info(f"Yard location {location.location_code} deactivated")
        return location

    # ========================================================================
    # OCCUPANCY
    # ========================================================================

    async def occupy(self, warehouse_id: uuid.UUID, location_code: str) -> YardLocation:
        """
        Take one spot at a location.

        Raises:
            NotFoundError: Unknown location code
            ConflictError: Location inactive or at capacity
        """
        location = await self.get_location_by_code(warehouse_id, location_code)
        if location is None:
            raise NotFoundError(
                "Target location not found",
                details={"location_code": location_code}
            )
        if not location.is_active:
            raise ConflictError(
                f"Yard location {location_code} is inactive",
                details={"location_code": location_code}
            )

        result = await self.db.execute(
            update(YardLocation)
            .where(
                YardLocation.id == location.id,
                YardLocation.current_occupancy < YardLocation.capacity
            )
            .values(current_occupancy=YardLocation.current_occupancy + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(
                "Target location is at capacity",
                details={
                    "location_code": location_code,
                    "capacity": location.capacity,
                }
            )
        await self.db.refresh(location)
        return location

    async def release(self, warehouse_id: uuid.UUID, location_code: str) -> Optional[YardLocation]:
        """
        Free one spot at a location.

        Returns None when the code is not a yard location (e.g. a dock door).
        """
        location = await self.get_location_by_code(warehouse_id, location_code)
        if location is None:
            return None

        result = await self.db.execute(
            update(YardLocation)
            .where(
                YardLocation.id == location.id,
                YardLocation.current_occupancy > 0
            )
            .values(current_occupancy=YardLocation.current_occupancy - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(f"Release of {location_code} ignored: occupancy already 0")
        await self.db.refresh(location)
        return location

    # ========================================================================
    # DOCK DOOR MANAGEMENT
    # ========================================================================

    async def create_dock_door(self, data: DockDoorCreate) -> DockDoor:
        """Register a dock door."""
        existing = await self.db.execute(
            select(DockDoor.id)
            .where(
                DockDoor.tenant_id == self.tenant_id,
                DockDoor.warehouse_id == data.warehouse_id,
                DockDoor.door_number == data.door_number
            )
        )
        if existing.scalar_one_or_none():
            raise ConflictError(
                f"Dock door {data.door_number} already exists",
                details={"door_number": data.door_number}
            )

        door = DockDoor(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            warehouse_id=data.warehouse_id,
            door_number=data.door_number,
            door_name=data.door_name,
            door_type=data.door_type.value,
            has_refrigeration=data.has_refrigeration,
            is_hazmat_approved=data.is_hazmat_approved,
            supports_oversized=data.supports_oversized,
            has_leveler=data.has_leveler,
            is_active=True
        )
        self.db.add(door)
        await self.db.commit()
        await self.db.refresh(door)
        await self.cache.invalidate_dock_schedule(self.tenant_id, data.warehouse_id)
        logger.info(f"Dock door {door.door_number} ({door.door_type}) registered")
        return door

    async def list_dock_doors(
        self,
        warehouse_id: uuid.UUID,
        active_only: bool = True
    ) -> List[DockDoor]:
        """List dock doors in allocation order."""
        query = select(DockDoor).where(
            DockDoor.tenant_id == self.tenant_id,
            DockDoor.warehouse_id == warehouse_id
        )
        if active_only:
            query = query.where(DockDoor.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(DockDoor.door_number))
        return list(result.scalars().all())
