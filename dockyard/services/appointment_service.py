"""
Appointment Lifecycle Service.

Owns DockAppointment: schedule, reschedule, confirm, start, cancel.

Every calendar mutation runs under the (tenant, warehouse, date) calendar
lock, re-checks the chosen slot against the database right before commit,
and drops the cached schedule views for the affected dates before the lock
is released. Events are published after commit.
"""
import logging
import uuid
from contextlib import AsyncExitStack
from datetime import date
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from dockyard.core.clock import Clock, utc_now
from dockyard.core.exceptions import NotFoundError, ConflictError
from dockyard.core.locks import calendar_lock
from dockyard.models.yard import DockAppointment, AppointmentStatus
from dockyard.schemas.yard import AppointmentCreate, AppointmentReschedule, SpecialRequirements
from dockyard.services.appointment_state_machine import (
    can_reschedule, transition_appointment
)
from dockyard.services.cache_service import CacheService, get_cache
from dockyard.services.dock_calendar import DockCalendarService, SlotAssignment
from dockyard.services.event_publisher import EventPublisher, YardEventType, get_event_publisher
from dockyard.services.sequence_service import YardSequenceService
from dockyard.services.yard_config_service import default_duration

logger = logging.getLogger(__name__)


class AppointmentService:
    """Service for dock appointment lifecycle operations."""

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
        self.calendar = DockCalendarService(db, tenant_id, self.cache)
        self.sequences = YardSequenceService(db, tenant_id)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_appointment(self, appointment_id: uuid.UUID) -> Optional[DockAppointment]:
        """Get appointment by ID."""
        result = await self.db.execute(
            select(DockAppointment)
            .where(
                DockAppointment.id == appointment_id,
                DockAppointment.tenant_id == self.tenant_id
            )
        )
        return result.scalar_one_or_none()

    async def require_appointment(self, appointment_id: uuid.UUID) -> DockAppointment:
        appointment = await self.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError(
                "Appointment not found",
                details={"appointment_id": str(appointment_id)}
            )
        return appointment

    async def list_appointments(
        self,
        warehouse_id: uuid.UUID,
        scheduled_date: Optional[date] = None,
        status: Optional[AppointmentStatus] = None,
        dock_number: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[DockAppointment], int]:
        """List appointments with filters."""
        query = select(DockAppointment).where(
            DockAppointment.tenant_id == self.tenant_id,
            DockAppointment.warehouse_id == warehouse_id
        )

        if scheduled_date:
            query = query.where(DockAppointment.scheduled_date == scheduled_date)
        if status:
            query = query.where(DockAppointment.status == status.value)
        if dock_number:
            query = query.where(DockAppointment.dock_number == dock_number)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(
            DockAppointment.scheduled_start_time, DockAppointment.dock_number
        ).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # ========================================================================
    # SCHEDULING
    # ========================================================================

    async def _commit_slot(
        self,
        appointment: DockAppointment,
        slot: SlotAssignment,
    ) -> None:
        """Flush, re-validate non-overlap, commit. Rolls back on conflict."""
        await self.db.flush()
        if await self.calendar.has_overlap(
            appointment.warehouse_id,
            slot.dock_number,
            slot.start_time,
            slot.end_time,
            exclude_appointment_id=appointment.id,
        ):
            await self.db.rollback()
            raise ConflictError(
                f"Dock {slot.dock_number} was booked concurrently; retry the request",
                details={
                    "dock_number": slot.dock_number,
                    "start_time": slot.start_time.isoformat(),
                    "end_time": slot.end_time.isoformat(),
                }
            )
        await self.db.commit()

    async def schedule(
        self,
        data: AppointmentCreate,
        created_by: Optional[str] = None
    ) -> DockAppointment:
        """
        Book the earliest suitable dock slot.

        Raises:
            ConflictError: No dock has a free contiguous block for the request
        """
        duration = data.expected_duration or default_duration(data.appointment_type.value)
        window = data.preferred_time_window.value if data.preferred_time_window else None
        logger.info(
            f"Scheduling {data.appointment_type.value} appointment for carrier "
            f"{data.carrier or '-'} on {data.preferred_date} ({duration} min)"
        )

        async with calendar_lock(self.tenant_id, data.warehouse_id, data.preferred_date):
            slot = await self.calendar.find_slot(
                data.warehouse_id,
                data.preferred_date,
                data.operation_type.value,
                duration,
                data.special_requirements,
                preferred_window=window,
            )
            if slot is None:
                raise ConflictError(
                    "No available dock slots for the requested time",
                    details={
                        "warehouse_id": str(data.warehouse_id),
                        "date": data.preferred_date.isoformat(),
                        "preferred_time_window": window,
                        "duration_minutes": duration,
                    }
                )

            appointment_number = await self.sequences.next_appointment_number(
                self.clock().date()
            )
            appointment = DockAppointment(
                id=uuid.uuid4(),
                tenant_id=self.tenant_id,
                warehouse_id=data.warehouse_id,
                appointment_number=appointment_number,
                appointment_type=data.appointment_type.value,
                operation_type=data.operation_type.value,
                status=AppointmentStatus.SCHEDULED.value,
                priority=data.priority.value,
                dock_number=slot.dock_number,
                scheduled_date=data.preferred_date,
                scheduled_start_time=slot.start_time,
                scheduled_end_time=slot.end_time,
                expected_duration=duration,
                special_requirements=data.special_requirements.model_dump(),
                carrier=data.carrier,
                trailer_number=data.trailer_number,
                driver_name=data.driver_name,
                driver_phone=data.driver_phone,
                purchase_order_number=data.purchase_order_number,
                order_numbers=data.order_numbers,
                reschedule_history=[],
                is_late=False,
                delay_minutes=0,
                notes=data.notes,
                created_by=created_by,
            )
            self.db.add(appointment)
            await self._commit_slot(appointment, slot)
            await self.calendar.invalidate(data.warehouse_id, data.preferred_date)

        logger.info(
            f"Appointment scheduled: {appointment_number} at dock {slot.dock_number} "
            f"on {slot.start_time.isoformat()}"
        )
        await self.events.publish(
            YardEventType.APPOINTMENT_SCHEDULED,
            tenant_id=self.tenant_id,
            warehouse_id=appointment.warehouse_id,
            entity_id=appointment.id,
            appointment_number=appointment_number,
            dock_number=slot.dock_number,
            scheduled_start_time=slot.start_time.isoformat(),
        )
        return appointment

    async def reschedule(
        self,
        appointment_id: uuid.UUID,
        data: AppointmentReschedule,
        actor: Optional[str] = None
    ) -> DockAppointment:
        """
        Move an appointment to a new date / window.

        The new slot is allocated ignoring the appointment's own booking and
        swapped in atomically. If nothing fits, the appointment is unchanged.
        """
        appointment = await self.require_appointment(appointment_id)
        if not can_reschedule(appointment.status):
            raise ConflictError(
                f"Cannot reschedule appointment with status: {appointment.status}",
                details={"appointment_id": str(appointment_id), "status": appointment.status}
            )

        window = data.preferred_time_window.value if data.preferred_time_window else None
        original_date = appointment.scheduled_date
        lock_days = sorted({original_date, data.new_date})

        async with AsyncExitStack() as stack:
            for day in lock_days:
                await stack.enter_async_context(
                    calendar_lock(self.tenant_id, appointment.warehouse_id, day)
                )

            # Status may have moved while waiting for the lock
            await self.db.refresh(appointment)
            if not can_reschedule(appointment.status):
                raise ConflictError(
                    f"Cannot reschedule appointment with status: {appointment.status}",
                    details={"appointment_id": str(appointment_id), "status": appointment.status}
                )

            slot = await self.calendar.find_slot(
                appointment.warehouse_id,
                data.new_date,
                appointment.operation_type,
                appointment.expected_duration,
                SpecialRequirements.model_validate(appointment.special_requirements or {}),
                preferred_window=window,
                exclude_appointment_id=appointment.id,
            )
            if slot is None:
                raise ConflictError(
                    "No available slots for rescheduling",
                    details={
                        "appointment_id": str(appointment_id),
                        "date": data.new_date.isoformat(),
                        "preferred_time_window": window,
                    }
                )

            previous = {
                "scheduled_date": original_date.isoformat(),
                "dock_number": appointment.dock_number,
                "scheduled_start_time": appointment.scheduled_start_time.isoformat(),
                "scheduled_end_time": appointment.scheduled_end_time.isoformat(),
                "reason": data.reason,
                "rescheduled_by": actor,
                "rescheduled_at": self.clock().isoformat(),
            }
            original_start = appointment.scheduled_start_time

            appointment.scheduled_date = data.new_date
            appointment.dock_number = slot.dock_number
            appointment.scheduled_start_time = slot.start_time
            appointment.scheduled_end_time = slot.end_time
            # New list so the JSON column is flagged dirty
            appointment.reschedule_history = [*(appointment.reschedule_history or []), previous]

            await self._commit_slot(appointment, slot)
            await self.calendar.invalidate(appointment.warehouse_id, original_date, data.new_date)

        logger.info(
            f"Appointment {appointment.appointment_number} rescheduled to "
            f"{slot.start_time.isoformat()} at dock {slot.dock_number}"
        )
        await self.events.publish(
            YardEventType.APPOINTMENT_RESCHEDULED,
            tenant_id=self.tenant_id,
            warehouse_id=appointment.warehouse_id,
            entity_id=appointment.id,
            appointment_number=appointment.appointment_number,
            original_time=original_start.isoformat(),
            new_time=slot.start_time.isoformat(),
            dock_number=slot.dock_number,
            reason=data.reason,
        )
        return appointment

    # ========================================================================
    # STATUS TRANSITIONS
    # ========================================================================

    async def cancel(
        self,
        appointment_id: uuid.UUID,
        reason: str,
        actor: Optional[str] = None
    ) -> DockAppointment:
        """Cancel an appointment; the row is kept for audit and analytics."""
        appointment = await self.require_appointment(appointment_id)

        async with calendar_lock(self.tenant_id, appointment.warehouse_id, appointment.scheduled_date):
            await self.db.refresh(appointment)
            transition_appointment(
                appointment, AppointmentStatus.CANCELLED.value, actor=actor, now=self.clock()
            )
            appointment.cancellation_reason = reason
            await self.db.commit()
            await self.calendar.invalidate(appointment.warehouse_id, appointment.scheduled_date)

        logger.warning(f"Appointment {appointment.appointment_number} cancelled. Reason: {reason}")
        await self.events.publish(
            YardEventType.APPOINTMENT_CANCELLED,
            tenant_id=self.tenant_id,
            warehouse_id=appointment.warehouse_id,
            entity_id=appointment.id,
            appointment_number=appointment.appointment_number,
            reason=reason,
            cancelled_by=actor,
        )
        return appointment

    async def confirm(self, appointment_id: uuid.UUID) -> DockAppointment:
        """Carrier confirmed the booking."""
        appointment = await self.require_appointment(appointment_id)
        transition_appointment(appointment, AppointmentStatus.CONFIRMED.value, now=self.clock())
        await self.db.commit()
        logger.info(f"Appointment {appointment.appointment_number} confirmed")
        return appointment

    async def start(self, appointment_id: uuid.UUID) -> DockAppointment:
        """Dock work started on a checked-in appointment."""
        appointment = await self.require_appointment(appointment_id)
        transition_appointment(appointment, AppointmentStatus.IN_PROGRESS.value, now=self.clock())
        await self.db.commit()
        logger.info(f"Appointment {appointment.appointment_number} in progress at dock {appointment.dock_number}")
        return appointment
