import asyncio
from itertools import combinations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine

from dockyard.core.exceptions import ConflictError
from dockyard.database import Base, custom_json_dumps
from dockyard.models.yard import AppointmentStatus, OperationType, YardLocation
from dockyard.schemas.yard import (
    AppointmentCreate, TrailerArrival, TrailerCheckIn, YardConfigUpdate, YardMoveCreate
)
from dockyard.services.appointment_service import AppointmentService
from dockyard.services.trailer_service import TrailerService
from dockyard.services.yard_config_service import YardConfigService
from dockyard.services.yard_move_service import YardMoveService

from tests.conftest import OPERATING_DAY, at


@pytest.fixture
async def engine(tmp_path):
    """File-backed database: every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'yard.db'}",
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def run_in_session(session_factory, tenant_id, cache, events, clock):
    """Run one service call in a session of its own, like a separate request."""

    async def _run(service_class, method, *args, **kwargs):
        async with session_factory() as session:
            service = service_class(session, tenant_id, cache=cache, events=events, clock=clock)
            return await getattr(service, method)(*args, **kwargs)

    return _run


async def occupancy(session_factory, warehouse_id, *codes):
    async with session_factory() as session:
        result = await session.execute(
            select(YardLocation.location_code, YardLocation.current_occupancy)
            .where(
                YardLocation.warehouse_id == warehouse_id,
                YardLocation.location_code.in_(codes)
            )
        )
        return dict(result.all())


def outcome(results):
    return sorted(type(r).__name__ for r in results)


class TestParallelBooking:

    async def test_parallel_requests_get_distinct_slots(
        self, run_in_session, db, tenant_id, cache, warehouse_id
    ):
        await YardConfigService(db, tenant_id, cache).upsert_config(
            warehouse_id, YardConfigUpdate(dock_count=2)
        )
        requests = [
            AppointmentCreate(
                warehouse_id=warehouse_id,
                preferred_date=OPERATING_DAY,
                operation_type=OperationType.RECEIVING,
                expected_duration=60,
                trailer_number=f"TRL-70{i:02d}",
            )
            for i in range(6)
        ]

        booked = await asyncio.gather(
            *(run_in_session(AppointmentService, "schedule", r) for r in requests)
        )

        assert len({(a.dock_number, a.scheduled_start_time) for a in booked}) == 6
        assert len({a.appointment_number for a in booked}) == 6
        assert all(a.status == AppointmentStatus.SCHEDULED.value for a in booked)
        for a, b in combinations(booked, 2):
            if a.dock_number == b.dock_number:
                assert (
                    a.scheduled_end_time <= b.scheduled_start_time
                    or b.scheduled_end_time <= a.scheduled_start_time
                )


class TestParallelCheckIn:

    async def test_same_trailer_is_checked_in_once(
        self, run_in_session, trailer_service, make_location, warehouse_id, session_factory
    ):
        await make_location("A-01")
        await make_location("A-02")
        arrived = await trailer_service.register_arrival(
            TrailerArrival(warehouse_id=warehouse_id, trailer_number="TRL-7101")
        )

        results = await asyncio.gather(
            run_in_session(TrailerService, "check_in", TrailerCheckIn(
                warehouse_id=warehouse_id, trailer_id=arrived.id, yard_location="A-01"
            )),
            run_in_session(TrailerService, "check_in", TrailerCheckIn(
                warehouse_id=warehouse_id, trailer_id=arrived.id, yard_location="A-02"
            )),
            return_exceptions=True,
        )

        assert outcome(results) == ["CheckInResult", "ConflictError"]
        counts = await occupancy(session_factory, warehouse_id, "A-01", "A-02")
        assert sum(counts.values()) == 1

    async def test_same_appointment_is_checked_in_once(
        self, run_in_session, make_appointment, make_location, warehouse_id, session_factory
    ):
        await make_location("A-01")
        await make_location("A-02")
        appointment = await make_appointment(at(8, 0))

        results = await asyncio.gather(
            run_in_session(TrailerService, "check_in", TrailerCheckIn(
                warehouse_id=warehouse_id, trailer_number="TRL-7102",
                appointment_id=appointment.id, yard_location="A-01"
            )),
            run_in_session(TrailerService, "check_in", TrailerCheckIn(
                warehouse_id=warehouse_id, trailer_number="TRL-7103",
                appointment_id=appointment.id, yard_location="A-02"
            )),
            return_exceptions=True,
        )

        assert outcome(results) == ["CheckInResult", "ConflictError"]
        counts = await occupancy(session_factory, warehouse_id, "A-01", "A-02")
        assert sum(counts.values()) == 1

    async def test_check_in_and_move_race_for_last_spot(
        self, run_in_session, trailer_service, move_service, make_location, warehouse_id,
        session_factory
    ):
        await make_location("A-01")
        await make_location("C-01", capacity=1)
        parked = await trailer_service.check_in(
            TrailerCheckIn(warehouse_id=warehouse_id, trailer_number="TRL-7201", yard_location="A-01")
        )
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked.trailer.id, to_location="C-01")
        )

        move_result, check_in_result = await asyncio.gather(
            run_in_session(YardMoveService, "execute", move.id, "op-7"),
            run_in_session(TrailerService, "check_in", TrailerCheckIn(
                warehouse_id=warehouse_id, trailer_number="TRL-7202", yard_location="C-01"
            )),
            return_exceptions=True,
        )

        failures = [r for r in (move_result, check_in_result) if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], ConflictError)

        counts = await occupancy(session_factory, warehouse_id, "A-01", "C-01")
        assert counts["C-01"] == 1
        moved = not isinstance(move_result, Exception)
        assert counts["A-01"] == (0 if moved else 1)
