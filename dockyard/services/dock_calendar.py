"""
Dock Calendar and Slot Allocator.

The operating day of a warehouse is cut into fixed granules (30 minutes by
default) per dock door. A granule is unavailable when a non-cancelled
appointment on that dock overlaps it. The allocator looks for
ceil(duration / granule) contiguous free granules on a single dock:

- docks are tried in ascending door number order, the first dock with a
  qualifying block wins, and on that dock the earliest block is returned
- a time-of-day preference keeps only granules starting in that window
  (morning < 12:00, afternoon 12:00-17:00, evening >= 17:00), so a block
  never straddles the window edge
- granules only exist inside operating hours, so a block that would run past
  closing is simply not found

find_slot returns None when nothing fits; callers turn that into a Conflict.
Schedule views are cached per (tenant, warehouse, date); the allocator always
reads appointments from the database.
"""
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.clock import local_datetime
from dockyard.core.exceptions import NotFoundError
from dockyard.models.yard import (
    DockAppointment, DockDoor, AppointmentStatus, DockDoorType, OperationType
)
from dockyard.schemas.yard import (
    DockScheduleResponse, DockScheduleSlot, SpecialRequirements, TimeWindow, YardPolicy
)
from dockyard.services.cache_service import CacheService, get_cache
from dockyard.services.yard_config_service import YardConfigService

logger = logging.getLogger(__name__)


# Door types able to serve each operation
COMPATIBLE_DOOR_TYPES = {
    OperationType.RECEIVING.value: {DockDoorType.INBOUND.value, DockDoorType.DUAL.value},
    OperationType.SHIPPING.value: {DockDoorType.OUTBOUND.value, DockDoorType.DUAL.value},
    OperationType.BOTH.value: {DockDoorType.DUAL.value, DockDoorType.CROSS_DOCK.value},
}

# Hour-of-day predicate per preferred window
TIME_WINDOWS = {
    TimeWindow.MORNING.value: lambda hour: hour < 12,
    TimeWindow.AFTERNOON.value: lambda hour: 12 <= hour < 17,
    TimeWindow.EVENING.value: lambda hour: hour >= 17,
}


@dataclass(frozen=True)
class Dock:
    """Schedulable dock door (registered or synthesized)."""
    door_number: str
    door_type: str = DockDoorType.DUAL.value
    has_refrigeration: bool = True
    is_hazmat_approved: bool = True
    supports_oversized: bool = True

    def supports(self, operation_type: str, requirements: SpecialRequirements) -> bool:
        if self.door_type not in COMPATIBLE_DOOR_TYPES.get(operation_type, set()):
            return False
        if requirements.refrigerated and not self.has_refrigeration:
            return False
        if requirements.hazmat and not self.is_hazmat_approved:
            return False
        if requirements.oversized and not self.supports_oversized:
            return False
        return True


@dataclass(frozen=True)
class Granule:
    dock_number: str
    start: datetime
    end: datetime
    appointment_id: Optional[uuid.UUID] = None
    appointment_number: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.appointment_id is None


@dataclass(frozen=True)
class SlotAssignment:
    dock_number: str
    start_time: datetime
    end_time: datetime


# ============================================================================
# PURE CALENDAR FUNCTIONS
# ============================================================================

def synthetic_docks(count: int) -> List[Dock]:
    """DOCK-01..DOCK-NN for warehouses that registered no doors."""
    return [Dock(door_number=f"DOCK-{i:02d}") for i in range(1, count + 1)]


def granules_required(duration_minutes: int, granule_minutes: int) -> int:
    """Granules covering duration_minutes, rounded up to the next boundary."""
    return max(1, math.ceil(duration_minutes / granule_minutes))


def operating_window(day: date, policy: YardPolicy) -> Tuple[datetime, datetime]:
    tz = policy.zone
    return (
        local_datetime(day, policy.operating_start_hour, tz),
        local_datetime(day, policy.operating_end_hour, tz),
    )


def build_granules(
    docks: Sequence[Dock],
    day: date,
    policy: YardPolicy,
    appointments: Iterable[DockAppointment],
) -> List[Granule]:
    """
    Enumerate every granule of the operating day, dock by dock.

    Cancelled appointments never occupy a granule.
    """
    by_dock = {}
    for appt in appointments:
        if appt.status == AppointmentStatus.CANCELLED.value:
            continue
        by_dock.setdefault(appt.dock_number, []).append(appt)

    open_at, close_at = operating_window(day, policy)
    step = timedelta(minutes=policy.granule_minutes)

    granules: List[Granule] = []
    for dock in docks:
        booked = by_dock.get(dock.door_number, [])
        current = open_at
        while current + step <= close_at:
            slot_end = current + step
            occupant = next(
                (a for a in booked
                 if a.scheduled_start_time < slot_end and a.scheduled_end_time > current),
                None
            )
            granules.append(Granule(
                dock_number=dock.door_number,
                start=current,
                end=slot_end,
                appointment_id=occupant.id if occupant else None,
                appointment_number=occupant.appointment_number if occupant else None,
            ))
            current = slot_end
    return granules


def in_time_window(start: datetime, window: Optional[str], tz: ZoneInfo) -> bool:
    if not window:
        return True
    return TIME_WINDOWS[window](start.astimezone(tz).hour)


def find_contiguous_block(
    granules: Sequence[Granule],
    dock_order: Sequence[str],
    required: int,
    window: Optional[str],
    tz: ZoneInfo,
) -> Optional[SlotAssignment]:
    """
    First dock in dock_order holding `required` contiguous free granules
    inside the preferred window; earliest such block on that dock.
    """
    for dock_number in dock_order:
        run: List[Granule] = []
        dock_granules = sorted(
            (g for g in granules if g.dock_number == dock_number),
            key=lambda g: g.start
        )
        for granule in dock_granules:
            if not granule.available or not in_time_window(granule.start, window, tz):
                run = []
                continue
            if run and run[-1].end != granule.start:
                run = []
            run.append(granule)
            if len(run) == required:
                return SlotAssignment(
                    dock_number=dock_number,
                    start_time=run[0].start,
                    end_time=run[-1].end,
                )
    return None


# ============================================================================
# SERVICE
# ============================================================================

class DockCalendarService:
    """Dock schedule views and slot allocation for one tenant."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        cache: Optional[CacheService] = None
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.cache = cache or get_cache()
        self.config = YardConfigService(db, tenant_id, self.cache)

    async def get_docks(self, warehouse_id: uuid.UUID, policy: YardPolicy) -> List[Dock]:
        """Active docks in allocation order. Synthesized when none are registered."""
        registered = (await self.db.execute(
            select(func.count(DockDoor.id))
            .where(
                DockDoor.tenant_id == self.tenant_id,
                DockDoor.warehouse_id == warehouse_id
            )
        )).scalar() or 0
        if registered == 0:
            return synthetic_docks(policy.dock_count)

        result = await self.db.execute(
            select(DockDoor)
            .where(
                DockDoor.tenant_id == self.tenant_id,
                DockDoor.warehouse_id == warehouse_id,
                DockDoor.is_active == True  # noqa: E712
            )
            .order_by(DockDoor.door_number)
        )
        return [
            Dock(
                door_number=door.door_number,
                door_type=door.door_type,
                has_refrigeration=door.has_refrigeration,
                is_hazmat_approved=door.is_hazmat_approved,
                supports_oversized=door.supports_oversized,
            )
            for door in result.scalars().all()
        ]

    async def load_appointments(
        self,
        warehouse_id: uuid.UUID,
        day: date,
        exclude_appointment_id: Optional[uuid.UUID] = None,
    ) -> List[DockAppointment]:
        """Non-cancelled appointments booked on day."""
        query = select(DockAppointment).where(
            DockAppointment.tenant_id == self.tenant_id,
            DockAppointment.warehouse_id == warehouse_id,
            DockAppointment.scheduled_date == day,
            DockAppointment.status != AppointmentStatus.CANCELLED.value
        )
        if exclude_appointment_id is not None:
            query = query.where(DockAppointment.id != exclude_appointment_id)
        result = await self.db.execute(query.order_by(DockAppointment.scheduled_start_time))
        return list(result.scalars().all())

    async def find_slot(
        self,
        warehouse_id: uuid.UUID,
        day: date,
        operation_type: str,
        duration_minutes: int,
        special_requirements: Optional[SpecialRequirements] = None,
        preferred_window: Optional[str] = None,
        exclude_appointment_id: Optional[uuid.UUID] = None,
    ) -> Optional[SlotAssignment]:
        """
        Earliest contiguous block on the first suitable dock, or None.

        exclude_appointment_id lets a reschedule ignore its own booking.
        """
        requirements = special_requirements or SpecialRequirements()
        policy = await self.config.get_policy(warehouse_id)

        docks = [
            d for d in await self.get_docks(warehouse_id, policy)
            if d.supports(operation_type, requirements)
        ]
        if not docks:
            logger.info(
                f"No dock in warehouse {warehouse_id} supports {operation_type} "
                f"with {requirements.model_dump(exclude_defaults=True)}"
            )
            return None

        appointments = await self.load_appointments(warehouse_id, day, exclude_appointment_id)
        granules = build_granules(docks, day, policy, appointments)
        required = granules_required(duration_minutes, policy.granule_minutes)

        slot = find_contiguous_block(
            granules,
            [d.door_number for d in docks],
            required,
            preferred_window,
            policy.zone,
        )
        if slot is None:
            logger.info(
                f"No {required}-granule block on {day} for warehouse {warehouse_id} "
                f"(window={preferred_window or 'any'})"
            )
        return slot

    async def has_overlap(
        self,
        warehouse_id: uuid.UUID,
        dock_number: str,
        start: datetime,
        end: datetime,
        exclude_appointment_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """True when another non-cancelled appointment overlaps [start, end) on the dock."""
        query = select(func.count(DockAppointment.id)).where(
            DockAppointment.tenant_id == self.tenant_id,
            DockAppointment.warehouse_id == warehouse_id,
            DockAppointment.dock_number == dock_number,
            DockAppointment.status != AppointmentStatus.CANCELLED.value,
            DockAppointment.scheduled_start_time < end,
            DockAppointment.scheduled_end_time > start
        )
        if exclude_appointment_id is not None:
            query = query.where(DockAppointment.id != exclude_appointment_id)
        return ((await self.db.execute(query)).scalar() or 0) > 0

    async def get_dock_schedule(
        self,
        warehouse_id: uuid.UUID,
        day: date,
        dock_number: Optional[str] = None,
    ) -> DockScheduleResponse:
        """Granule-level schedule for a day, optionally for one dock (cached)."""
        cached = await self.cache.get_dock_schedule(self.tenant_id, warehouse_id, day, dock_number)
        if cached is not None:
            return DockScheduleResponse.model_validate(cached)

        policy = await self.config.get_policy(warehouse_id)
        docks = await self.get_docks(warehouse_id, policy)
        if dock_number is not None:
            docks = [d for d in docks if d.door_number == dock_number]
            if not docks:
                raise NotFoundError(
                    f"Dock {dock_number} not found",
                    details={"warehouse_id": str(warehouse_id), "dock_number": dock_number}
                )

        granules = build_granules(
            docks, day, policy, await self.load_appointments(warehouse_id, day)
        )
        slots = [
            DockScheduleSlot(
                dock_number=g.dock_number,
                slot_date=day,
                start_time=g.start,
                end_time=g.end,
                available=g.available,
                appointment_id=g.appointment_id,
                appointment_number=g.appointment_number,
            )
            for g in granules
        ]
        schedule = DockScheduleResponse(
            warehouse_id=warehouse_id,
            schedule_date=day,
            dock_number=dock_number,
            total_slots=len(slots),
            available_slots=sum(1 for s in slots if s.available),
            slots=slots,
        )
        await self.cache.set_dock_schedule(
            self.tenant_id, warehouse_id, day, dock_number, schedule.model_dump(mode="json")
        )
        return schedule

    async def invalidate(self, warehouse_id: uuid.UUID, *days: date) -> None:
        """Drop cached schedule views for the given days."""
        for day in set(days):
            await self.cache.invalidate_dock_schedule(self.tenant_id, warehouse_id, day)
