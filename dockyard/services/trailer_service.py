"""
Trailer Tracker.

Owns Trailer visits:
- register_arrival: trailer reported at the gate (status arrived)
- check_in: binds the trailer to a dock door or a yard spot, checks the
  appointment in and detects late arrival
- check_out: closes the visit, completes the appointment and reports the
  dwell time and detention charge

The detention charge is informational output, nothing is billed here.
"""
import logging
import uuid
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.clock import Clock, utc_now
from dockyard.core.exceptions import NotFoundError, ConflictError, PreconditionFailedError
from dockyard.core.locks import yard_lock
from dockyard.models.yard import Trailer, TrailerStatus, DockAppointment, AppointmentStatus
from dockyard.schemas.yard import (
    TrailerArrival, TrailerCheckIn, CheckInResult, CheckOutResult,
    TrailerResponse, AppointmentResponse
)
from dockyard.services.appointment_state_machine import (
    transition_appointment, validate_transition
)
from dockyard.services.cache_service import CacheService, get_cache
from dockyard.services.event_publisher import EventPublisher, YardEventType, get_event_publisher
from dockyard.services.yard_config_service import YardConfigService
from dockyard.services.yard_location_service import YardLocationService

logger = logging.getLogger(__name__)


def calculate_detention_charge(dwell_time_hours: float, free_hours: float, rate_per_hour: float) -> float:
    """max(0, dwell - free allowance) x hourly rate, rounded to cents."""
    chargeable = max(0.0, dwell_time_hours - free_hours)
    return round(chargeable * rate_per_hour, 2)


def dwell_hours(check_in_time, check_out_time) -> float:
    return (check_out_time - check_in_time).total_seconds() / 3600


class TrailerService:
    """Service for trailer arrival, check-in and check-out."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        cache: Optional[CacheService] = None,
        events: Optional[EventPublisher] = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.cache = cache or get_cache()
        self.events = events or get_event_publisher()
        self.clock = clock
        self.config = YardConfigService(db, tenant_id, self.cache)
        self.locations = YardLocationService(db, tenant_id, self.cache)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_trailer(self, trailer_id: uuid.UUID) -> Optional[Trailer]:
        """Get trailer by ID."""
        result = await self.db.execute(
            select(Trailer)
            .where(
                Trailer.id == trailer_id,
                Trailer.tenant_id == self.tenant_id
            )
        )
        return result.scalar_one_or_none()

    async def require_trailer(self, trailer_id: uuid.UUID) -> Trailer:
        trailer = await self.get_trailer(trailer_id)
        if trailer is None:
            raise NotFoundError("Trailer not found", details={"trailer_id": str(trailer_id)})
        return trailer

    async def list_trailers(
        self,
        warehouse_id: uuid.UUID,
        status: Optional[TrailerStatus] = None,
        on_site_only: bool = False,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[Trailer], int]:
        """List trailer visits with filters."""
        query = select(Trailer).where(
            Trailer.tenant_id == self.tenant_id,
            Trailer.warehouse_id == warehouse_id
        )
        if status:
            query = query.where(Trailer.status == status.value)
        if on_site_only:
            query = query.where(Trailer.status != TrailerStatus.DEPARTED.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Trailer.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def _get_appointment(self, appointment_id: uuid.UUID) -> Optional[DockAppointment]:
        result = await self.db.execute(
            select(DockAppointment)
            .where(
                DockAppointment.id == appointment_id,
                DockAppointment.tenant_id == self.tenant_id
            )
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # ARRIVAL
    # ========================================================================

    async def register_arrival(self, data: TrailerArrival, actor: Optional[str] = None) -> Trailer:
        """Record a trailer at the gate; it has no location or check-in time yet."""
        if data.appointment_id and await self._get_appointment(data.appointment_id) is None:
            raise NotFoundError(
                "Appointment not found",
                details={"appointment_id": str(data.appointment_id)}
            )

        trailer = Trailer(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            warehouse_id=data.warehouse_id,
            trailer_number=data.trailer_number,
            license_plate=data.license_plate,
            trailer_type=data.trailer_type.value,
            carrier=data.carrier,
            driver_name=data.driver_name,
            driver_phone=data.driver_phone,
            load_type=data.load_type.value if data.load_type else None,
            seal_number=data.seal_number,
            temperature=data.temperature,
            contents=[c.model_dump() for c in data.contents] if data.contents else None,
            status=TrailerStatus.ARRIVED.value,
            appointment_id=data.appointment_id,
            arrival_time=self.clock(),
            notes=data.notes,
        )
        self.db.add(trailer)
        await self.db.commit()
        logger.info(f"Trailer {trailer.trailer_number} arrived at gate (by {actor or 'system'})")
        return trailer

    # ========================================================================
    # CHECK-IN
    # ========================================================================

    async def check_in(self, data: TrailerCheckIn, actor: Optional[str] = None) -> CheckInResult:
        """
        Check a trailer in at a dock or a yard spot.

        Without an explicit dock or yard spot, a trailer with an appointment
        goes to the appointment's dock.

        Raises:
            NotFoundError: Appointment, trailer or yard location missing
            ConflictError: Appointment not checkable, trailer already checked in,
                yard location full or inactive
        """
        now = self.clock()
        policy = await self.config.get_policy(data.warehouse_id)

        appointment = None
        if data.appointment_id:
            appointment = await self._get_appointment(data.appointment_id)
            if appointment is None:
                raise NotFoundError(
                    "Appointment not found",
                    details={"appointment_id": str(data.appointment_id)}
                )
            if appointment.warehouse_id != data.warehouse_id:
                raise ConflictError(
                    "Appointment belongs to another warehouse",
                    details={"appointment_id": str(appointment.id)}
                )
            validate_transition(appointment.status, AppointmentStatus.CHECKED_IN.value)

        trailer = None
        if data.trailer_id:
            trailer = await self.require_trailer(data.trailer_id)
            self._ensure_awaiting_check_in(trailer)

        dock_number = data.dock_number
        if not dock_number and not data.yard_location and appointment is not None:
            dock_number = appointment.dock_number
        assigned_location = dock_number or data.yard_location

        async with yard_lock(self.tenant_id, data.warehouse_id):
            # another check-in may have won the lock first
            if appointment is not None:
                await self.db.refresh(appointment)
                validate_transition(appointment.status, AppointmentStatus.CHECKED_IN.value)
            if trailer is not None:
                await self.db.refresh(trailer)
                self._ensure_awaiting_check_in(trailer)

            if data.yard_location:
                try:
                    await self.locations.occupy(data.warehouse_id, data.yard_location)
                except (NotFoundError, ConflictError):
                    await self.db.rollback()
                    raise

            if trailer is None:
                trailer = Trailer(
                    id=uuid.uuid4(),
                    tenant_id=self.tenant_id,
                    warehouse_id=data.warehouse_id,
                    trailer_number=data.trailer_number,
                    arrival_time=now,
                )
                self.db.add(trailer)

            self._apply_check_in_details(trailer, data)
            trailer.status = (
                TrailerStatus.AT_DOCK.value if dock_number else TrailerStatus.IN_YARD.value
            )
            trailer.current_location = assigned_location
            trailer.check_in_time = now
            trailer.checked_in_by = actor

            is_late = False
            delay = 0.0
            if appointment is not None:
                is_late = now > appointment.scheduled_start_time
                delay = (now - appointment.scheduled_start_time).total_seconds() / 60 if is_late else 0.0
                transition_appointment(appointment, AppointmentStatus.CHECKED_IN.value, actor, now)
                appointment.is_late = is_late
                appointment.delay_minutes = round(delay)
                if not appointment.trailer_number:
                    appointment.trailer_number = trailer.trailer_number
                trailer.appointment_id = appointment.id

            await self.db.commit()

        logger.info(f"Trailer {trailer.trailer_number} checked in at {assigned_location or 'yard'}")

        await self.events.publish(
            YardEventType.TRAILER_CHECKED_IN,
            tenant_id=self.tenant_id,
            warehouse_id=trailer.warehouse_id,
            entity_id=trailer.id,
            trailer_number=trailer.trailer_number,
            appointment_id=str(appointment.id) if appointment else None,
            location=assigned_location,
            check_in_time=now.isoformat(),
        )
        if appointment is not None and delay > policy.late_alert_threshold_minutes:
            logger.warning(
                f"Late arrival: {trailer.trailer_number} delayed by {delay:.2f} minutes "
                f"for {appointment.appointment_number}"
            )
            await self.events.publish(
                YardEventType.APPOINTMENT_LATE_ARRIVAL,
                tenant_id=self.tenant_id,
                warehouse_id=appointment.warehouse_id,
                entity_id=appointment.id,
                appointment_number=appointment.appointment_number,
                trailer_id=str(trailer.id),
                delay_minutes=round(delay, 2),
            )

        return CheckInResult(
            trailer=TrailerResponse.model_validate(trailer),
            appointment=AppointmentResponse.model_validate(appointment) if appointment else None,
            assigned_location=assigned_location,
            check_in_time=now,
            is_late=is_late,
            delay_minutes=round(delay),
        )

    @staticmethod
    def _ensure_awaiting_check_in(trailer: Trailer) -> None:
        if trailer.status != TrailerStatus.ARRIVED.value:
            raise ConflictError(
                f"Trailer {trailer.trailer_number} is already {trailer.status}",
                details={"trailer_id": str(trailer.id), "status": trailer.status}
            )

    @staticmethod
    def _ensure_not_departed(trailer: Trailer) -> None:
        if trailer.status == TrailerStatus.DEPARTED.value:
            raise ConflictError(
                f"Trailer {trailer.trailer_number} has already departed",
                details={"trailer_id": str(trailer.id)}
            )

    @staticmethod
    def _apply_check_in_details(trailer: Trailer, data: TrailerCheckIn) -> None:
        """Copy the optional visit details supplied at check-in."""
        if data.trailer_number:
            trailer.trailer_number = data.trailer_number
        if "trailer_type" in data.model_fields_set or not trailer.trailer_type:
            trailer.trailer_type = data.trailer_type.value
        for field in ("license_plate", "carrier", "driver_name", "driver_phone",
                      "seal_number", "temperature", "inspection_notes", "notes"):
            value = getattr(data, field)
            if value is not None:
                setattr(trailer, field, value)
        if data.load_type:
            trailer.load_type = data.load_type.value
        if data.contents:
            trailer.contents = [c.model_dump() for c in data.contents]

    # ========================================================================
    # CHECK-OUT
    # ========================================================================

    async def check_out(
        self,
        trailer_id: uuid.UUID,
        actor: Optional[str] = None,
        notes: Optional[str] = None
    ) -> CheckOutResult:
        """
        Close a trailer visit.

        Raises:
            NotFoundError: Trailer missing
            ConflictError: Trailer already departed
            PreconditionFailedError: Trailer never checked in
        """
        trailer = await self.require_trailer(trailer_id)
        self._ensure_not_departed(trailer)
        if trailer.check_in_time is None:
            raise PreconditionFailedError(
                f"Trailer {trailer.trailer_number} has no recorded check-in",
                details={"trailer_id": str(trailer.id), "status": trailer.status}
            )

        now = self.clock()
        policy = await self.config.get_policy(trailer.warehouse_id)
        dwell = dwell_hours(trailer.check_in_time, now)

        async with yard_lock(self.tenant_id, trailer.warehouse_id):
            await self.db.refresh(trailer)
            self._ensure_not_departed(trailer)

            if trailer.status == TrailerStatus.IN_YARD.value and trailer.current_location:
                await self.locations.release(trailer.warehouse_id, trailer.current_location)

            trailer.status = TrailerStatus.DEPARTED.value
            trailer.check_out_time = now
            trailer.dwell_time_hours = round(dwell, 2)
            trailer.checked_out_by = actor
            if notes:
                trailer.notes = f"{trailer.notes}\n{notes}" if trailer.notes else notes

            if trailer.appointment_id:
                appointment = await self._get_appointment(trailer.appointment_id)
                if appointment is not None and appointment.status in (
                    AppointmentStatus.CHECKED_IN.value,
                    AppointmentStatus.IN_PROGRESS.value,
                ):
                    transition_appointment(appointment, AppointmentStatus.COMPLETED.value, actor, now)

            await self.db.commit()

        charge = calculate_detention_charge(
            dwell, policy.detention_free_hours, policy.detention_rate_per_hour
        )
        logger.info(
            f"Trailer {trailer.trailer_number} checked out. Dwell time: {dwell:.2f} hours, "
            f"detention {charge:.2f}"
        )
        await self.events.publish(
            YardEventType.TRAILER_CHECKED_OUT,
            tenant_id=self.tenant_id,
            warehouse_id=trailer.warehouse_id,
            entity_id=trailer.id,
            trailer_number=trailer.trailer_number,
            dwell_time_hours=round(dwell, 2),
            detention_charge=charge,
        )
        return CheckOutResult(
            trailer=TrailerResponse.model_validate(trailer),
            check_out_time=now,
            dwell_time_hours=round(dwell, 2),
            detention_charge=charge,
        )
