import uuid
from datetime import timedelta
from itertools import combinations

import pytest

from dockyard.core.exceptions import ConflictError, NotFoundError
from dockyard.models.yard import AppointmentStatus, OperationType
from dockyard.schemas.yard import (
    AppointmentCreate, AppointmentReschedule, TimeWindow, YardConfigUpdate
)
from dockyard.services.appointment_state_machine import (
    can_transition, can_reschedule, validate_transition, transition_appointment
)
from dockyard.services.dock_calendar import DockCalendarService
from dockyard.services.yard_config_service import YardConfigService

from tests.conftest import OPERATING_DAY, at

NEXT_DAY = OPERATING_DAY + timedelta(days=1)


def request(warehouse_id, **overrides):
    data = dict(
        warehouse_id=warehouse_id,
        preferred_date=OPERATING_DAY,
        operation_type=OperationType.RECEIVING,
        expected_duration=120,
        carrier="Northline Freight",
        trailer_number="TRL-1001",
    )
    data.update(overrides)
    return AppointmentCreate(**data)


async def limit_docks(db, tenant_id, cache, warehouse_id, count):
    await YardConfigService(db, tenant_id, cache).upsert_config(
        warehouse_id, YardConfigUpdate(dock_count=count)
    )


class TestStateMachine:

    def test_cancel_only_before_dock_work(self):
        assert can_transition("scheduled", "cancelled")
        assert can_transition("checked_in", "cancelled")
        assert not can_transition("in_progress", "cancelled")
        assert not can_transition("completed", "cancelled")

    def test_reschedule_allowed_from_scheduled_and_confirmed(self):
        assert can_reschedule("scheduled")
        assert can_reschedule("confirmed")
        assert not can_reschedule("checked_in")

    def test_same_status_is_rejected(self):
        with pytest.raises(ConflictError):
            validate_transition("scheduled", "scheduled")

    def test_completion_stamps_actuals(self):
        class Stub:
            status = "checked_in"
            actual_start_time = at(9, 0)
            actual_end_time = None
            actual_duration = None

        appointment = Stub()
        transition_appointment(appointment, "completed", now=at(10, 30))
        assert appointment.status == "completed"
        assert appointment.actual_end_time == at(10, 30)
        assert appointment.actual_duration == 90


class TestSchedule:

    async def test_schedule_books_earliest_slot(self, appointment_service, warehouse_id, notifications):
        appointment = await appointment_service.schedule(request(warehouse_id), created_by="planner")

        assert appointment.status == AppointmentStatus.SCHEDULED.value
        assert appointment.dock_number == "DOCK-01"
        assert appointment.scheduled_start_time == at(6, 0)
        assert appointment.scheduled_end_time == at(8, 0)
        assert appointment.appointment_number == "APPT-20250310-0001"
        assert appointment.created_by == "planner"

        [event] = notifications.of("appointment.scheduled")
        assert event.entity_id == appointment.id
        assert event.payload["dock_number"] == "DOCK-01"

    async def test_numbers_are_sequential(self, appointment_service, warehouse_id):
        first = await appointment_service.schedule(request(warehouse_id))
        second = await appointment_service.schedule(request(warehouse_id))
        assert first.appointment_number == "APPT-20250310-0001"
        assert second.appointment_number == "APPT-20250310-0002"

    async def test_default_duration_by_type(self, appointment_service, warehouse_id):
        appointment = await appointment_service.schedule(
            request(warehouse_id, expected_duration=None, operation_type=OperationType.SHIPPING,
                    appointment_type="outbound")
        )
        assert appointment.expected_duration == 90
        assert appointment.scheduled_end_time - appointment.scheduled_start_time == timedelta(minutes=90)

    async def test_full_calendar_conflicts_without_double_booking(
        self, appointment_service, db, tenant_id, cache, warehouse_id
    ):
        await limit_docks(db, tenant_id, cache, warehouse_id, 2)

        booked = [await appointment_service.schedule(request(warehouse_id)) for _ in range(16)]

        with pytest.raises(ConflictError) as exc:
            await appointment_service.schedule(request(warehouse_id))
        assert "No available dock slots" in exc.value.message

        for a, b in combinations(booked, 2):
            if a.dock_number == b.dock_number:
                assert a.scheduled_end_time <= b.scheduled_start_time or \
                    b.scheduled_end_time <= a.scheduled_start_time

    async def test_schedule_invalidates_cached_view(
        self, appointment_service, db, tenant_id, cache, warehouse_id
    ):
        calendar = DockCalendarService(db, tenant_id, cache)
        before = await calendar.get_dock_schedule(warehouse_id, OPERATING_DAY)

        await appointment_service.schedule(request(warehouse_id, expected_duration=60))

        after = await calendar.get_dock_schedule(warehouse_id, OPERATING_DAY)
        assert after.available_slots == before.available_slots - 2


class TestReschedule:

    async def test_reschedule_moves_slot_and_records_history(
        self, appointment_service, warehouse_id, notifications
    ):
        appointment = await appointment_service.schedule(request(warehouse_id))

        moved = await appointment_service.reschedule(
            appointment.id,
            AppointmentReschedule(new_date=NEXT_DAY, preferred_time_window=TimeWindow.AFTERNOON,
                                  reason="Carrier delay"),
            actor="planner",
        )

        assert moved.scheduled_date == NEXT_DAY
        assert moved.scheduled_start_time == at(12, 0, day=NEXT_DAY)
        [entry] = moved.reschedule_history
        assert entry["scheduled_date"] == OPERATING_DAY.isoformat()
        assert entry["reason"] == "Carrier delay"
        assert entry["rescheduled_by"] == "planner"
        assert notifications.names()[-1] == "appointment.rescheduled"

    async def test_reschedule_ignores_own_booking(
        self, appointment_service, make_appointment, db, tenant_id, cache, warehouse_id
    ):
        await limit_docks(db, tenant_id, cache, warehouse_id, 1)
        appointment = await appointment_service.schedule(request(warehouse_id))
        for hour in range(8, 22, 2):
            await make_appointment(at(hour), duration=120)

        moved = await appointment_service.reschedule(
            appointment.id, AppointmentReschedule(new_date=OPERATING_DAY)
        )
        assert moved.scheduled_start_time == at(6, 0)

    async def test_failed_reschedule_leaves_appointment_untouched(
        self, appointment_service, make_appointment, db, tenant_id, cache, warehouse_id
    ):
        await limit_docks(db, tenant_id, cache, warehouse_id, 1)
        appointment = await appointment_service.schedule(request(warehouse_id))
        for hour in range(6, 22, 2):
            await make_appointment(at(hour, day=NEXT_DAY), duration=120)

        with pytest.raises(ConflictError):
            await appointment_service.reschedule(
                appointment.id, AppointmentReschedule(new_date=NEXT_DAY)
            )

        await db.refresh(appointment)
        assert appointment.scheduled_date == OPERATING_DAY
        assert appointment.scheduled_start_time == at(6, 0)
        assert appointment.reschedule_history == []

    async def test_checked_in_appointment_cannot_be_rescheduled(
        self, appointment_service, make_appointment
    ):
        appointment = await make_appointment(at(9), status=AppointmentStatus.CHECKED_IN)
        with pytest.raises(ConflictError):
            await appointment_service.reschedule(
                appointment.id, AppointmentReschedule(new_date=NEXT_DAY)
            )


class TestCancelAndTransitions:

    async def test_cancel_keeps_row_and_frees_slot(
        self, appointment_service, warehouse_id, notifications
    ):
        appointment = await appointment_service.schedule(request(warehouse_id))
        cancelled = await appointment_service.cancel(appointment.id, "Order withdrawn", actor="planner")

        assert cancelled.status == AppointmentStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Order withdrawn"
        assert cancelled.cancelled_by == "planner"
        assert cancelled.cancelled_at is not None
        assert notifications.names()[-1] == "appointment.cancelled"

        again = await appointment_service.schedule(request(warehouse_id))
        assert again.scheduled_start_time == at(6, 0)
        assert again.dock_number == "DOCK-01"

    @pytest.mark.parametrize("status", [AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED])
    async def test_cancel_rejected_after_dock_work(self, appointment_service, make_appointment, status):
        appointment = await make_appointment(at(9), status=status)
        with pytest.raises(ConflictError):
            await appointment_service.cancel(appointment.id, "too late")

    async def test_confirm_then_start_requires_check_in(
        self, appointment_service, warehouse_id
    ):
        appointment = await appointment_service.schedule(request(warehouse_id))
        confirmed = await appointment_service.confirm(appointment.id)
        assert confirmed.status == AppointmentStatus.CONFIRMED.value

        with pytest.raises(ConflictError):
            await appointment_service.start(appointment.id)

    async def test_unknown_appointment(self, appointment_service):
        with pytest.raises(NotFoundError):
            await appointment_service.cancel(uuid.uuid4(), "x")

    async def test_list_filters_by_date_and_status(self, appointment_service, warehouse_id):
        await appointment_service.schedule(request(warehouse_id))
        second = await appointment_service.schedule(request(warehouse_id))
        await appointment_service.cancel(second.id, "dup")

        items, total = await appointment_service.list_appointments(
            warehouse_id, scheduled_date=OPERATING_DAY, status=AppointmentStatus.SCHEDULED
        )
        assert total == 1
        assert items[0].status == AppointmentStatus.SCHEDULED.value
