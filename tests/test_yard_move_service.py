import uuid
from datetime import timedelta

import pytest

from dockyard.core.exceptions import ConflictError, NotFoundError, PreconditionFailedError
from dockyard.models.yard import TrailerStatus, YardMove, YardMoveReason, YardMoveStatus
from dockyard.schemas.yard import TrailerArrival, TrailerCheckIn, YardMoveCreate
from dockyard.services.yard_move_service import move_distance, move_duration


@pytest.fixture
async def parked_trailer(trailer_service, make_location, warehouse_id):
    """Trailer parked at A-01 (0, 0); B-01 (30, 40) is free."""
    await make_location("A-01", capacity=1, pos_x=0.0, pos_y=0.0)
    await make_location("B-01", capacity=1, pos_x=30.0, pos_y=40.0)
    result = await trailer_service.check_in(
        TrailerCheckIn(warehouse_id=warehouse_id, trailer_number="TRL-5001", yard_location="A-01")
    )
    return result.trailer


class TestTransit:

    def test_distance_from_coordinates(self):
        class Spot:
            def __init__(self, x, y):
                self.pos_x, self.pos_y = x, y

        assert move_distance(Spot(0, 0), Spot(30, 40)) == 50.0
        assert move_distance(Spot(0, 0), Spot(None, 40), default=75) == 75.0
        assert move_distance(None, Spot(1, 1), default=100) == 100.0

    def test_duration_rounds_up(self):
        assert move_duration(50, speed=20) == 3
        assert move_duration(100, speed=20) == 5
        assert move_duration(0, speed=20) == 1


class TestRequestMove:

    async def test_pending_without_operator(self, move_service, parked_trailer, notifications):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        assert move.status == YardMoveStatus.PENDING.value
        assert move.from_location == "A-01"
        assert move.started_time is None
        assert move.move_number == "YM-20250310-0001"
        assert notifications.names()[-1] == "yard.move.requested"

    async def test_operator_starts_move(self, move_service, parked_trailer, clock):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01", assigned_operator="op-7")
        )
        assert move.status == YardMoveStatus.IN_PROGRESS.value
        assert move.started_time == clock()

    async def test_full_target_is_rejected(self, move_service, parked_trailer, make_location):
        await make_location("C-01", capacity=1, occupancy=1)
        with pytest.raises(ConflictError) as exc:
            await move_service.request_move(
                YardMoveCreate(trailer_id=parked_trailer.id, to_location="C-01")
            )
        assert exc.value.message == "Target location is at capacity"

    async def test_unknown_target(self, move_service, parked_trailer):
        with pytest.raises(NotFoundError):
            await move_service.request_move(
                YardMoveCreate(trailer_id=parked_trailer.id, to_location="Z-99")
            )

    async def test_inactive_target(self, move_service, parked_trailer, make_location):
        await make_location("C-02", is_active=False)
        with pytest.raises(ConflictError):
            await move_service.request_move(
                YardMoveCreate(trailer_id=parked_trailer.id, to_location="C-02")
            )

    async def test_unknown_trailer(self, move_service):
        with pytest.raises(NotFoundError):
            await move_service.request_move(YardMoveCreate(trailer_id=uuid.uuid4(), to_location="B-01"))

    async def test_gate_arrival_cannot_be_moved(
        self, move_service, trailer_service, make_location, warehouse_id, db
    ):
        spot = await make_location("A-01", capacity=1)
        arrived = await trailer_service.register_arrival(
            TrailerArrival(warehouse_id=warehouse_id, trailer_number="TRL-5003")
        )

        with pytest.raises(PreconditionFailedError):
            await move_service.request_move(YardMoveCreate(trailer_id=arrived.id, to_location="A-01"))

        await db.refresh(spot)
        assert spot.current_occupancy == 0
        _, total = await move_service.list_moves(warehouse_id)
        assert total == 0

    async def test_one_open_move_per_trailer(
        self, move_service, location_service, parked_trailer, make_location, warehouse_id, db
    ):
        await make_location("C-01", capacity=2)
        first = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="C-01")
        )
        with pytest.raises(ConflictError) as exc:
            await move_service.request_move(
                YardMoveCreate(trailer_id=parked_trailer.id, to_location="C-01")
            )
        assert exc.value.details["move_id"] == str(first.id)

        await move_service.execute(first.id, "op-7")
        target = await location_service.get_location_by_code(warehouse_id, "C-01")
        await db.refresh(target)
        assert target.current_occupancy == 1

        # completed moves no longer block new requests
        again = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        assert again.status == YardMoveStatus.PENDING.value


class TestExecuteMove:

    async def test_execute_moves_occupancy(
        self, move_service, trailer_service, location_service, parked_trailer, warehouse_id, clock,
        notifications, db
    ):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        clock.advance(minutes=5)

        done = await move_service.execute(move.id, "op-7")

        assert done.status == YardMoveStatus.COMPLETED.value
        assert done.assigned_operator == "op-7"
        assert done.distance == 50.0
        assert done.duration == 3
        assert done.started_time == clock()
        assert done.completed_time == clock() + timedelta(minutes=3)
        assert notifications.names()[-1] == "yard.move.completed"

        origin = await location_service.get_location_by_code(warehouse_id, "A-01")
        target = await location_service.get_location_by_code(warehouse_id, "B-01")
        await db.refresh(origin)
        await db.refresh(target)
        assert origin.current_occupancy == 0
        assert target.current_occupancy == 1

        trailer = await trailer_service.get_trailer(parked_trailer.id)
        await db.refresh(trailer)
        assert trailer.current_location == "B-01"
        assert trailer.status == TrailerStatus.IN_YARD.value

    async def test_first_placement_from_dock(
        self, move_service, trailer_service, make_location, warehouse_id, db
    ):
        spot = await make_location("A-05", capacity=2)
        checked_in = await trailer_service.check_in(
            TrailerCheckIn(warehouse_id=warehouse_id, trailer_number="TRL-5002", dock_number="DOCK-01")
        )
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=checked_in.trailer.id, to_location="A-05")
        )
        done = await move_service.execute(move.id, "op-1")

        assert done.from_location == "DOCK-01"
        assert done.distance == 100.0
        assert done.duration == 5
        await db.refresh(spot)
        assert spot.current_occupancy == 1

    async def test_completed_move_cannot_run_twice(self, move_service, parked_trailer):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        await move_service.execute(move.id, "op-7")
        with pytest.raises(ConflictError):
            await move_service.execute(move.id, "op-7")

    async def test_destination_filled_meanwhile_changes_nothing(
        self, move_service, trailer_service, location_service, parked_trailer, warehouse_id, db
    ):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        target = await location_service.get_location_by_code(warehouse_id, "B-01")
        target.current_occupancy = 1
        await db.commit()

        with pytest.raises(ConflictError):
            await move_service.execute(move.id, "op-7")

        await db.refresh(move)
        trailer = await trailer_service.get_trailer(parked_trailer.id)
        origin = await location_service.get_location_by_code(warehouse_id, "A-01")
        await db.refresh(origin)
        assert move.status == YardMoveStatus.PENDING.value
        assert trailer.current_location == "A-01"
        assert origin.current_occupancy == 1

    async def test_list_moves_by_status(self, move_service, parked_trailer, warehouse_id):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        await move_service.execute(move.id, "op-7")

        items, total = await move_service.list_moves(warehouse_id, status=YardMoveStatus.COMPLETED)
        assert total == 1
        assert items[0].id == move.id
        _, pending = await move_service.list_moves(warehouse_id, status=YardMoveStatus.PENDING)
        assert pending == 0

    async def test_stale_move_to_current_spot_is_rejected(
        self, move_service, location_service, parked_trailer, make_location, warehouse_id,
        tenant_id, clock, db
    ):
        await make_location("C-01", capacity=2)
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="C-01")
        )
        await move_service.execute(move.id, "op-7")

        stale = YardMove(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            move_number="YM-20250310-0099",
            trailer_id=parked_trailer.id,
            from_location="A-01",
            to_location="C-01",
            move_reason=YardMoveReason.YARD_REORGANIZATION.value,
            status=YardMoveStatus.PENDING.value,
            requested_time=clock(),
        )
        db.add(stale)
        await db.commit()

        with pytest.raises(ConflictError):
            await move_service.execute(stale.id, "op-8")

        target = await location_service.get_location_by_code(warehouse_id, "C-01")
        await db.refresh(target)
        await db.refresh(stale)
        assert target.current_occupancy == 1
        assert stale.status == YardMoveStatus.PENDING.value

    async def test_trailer_departed_after_request(
        self, move_service, trailer_service, location_service, parked_trailer, warehouse_id, clock, db
    ):
        move = await move_service.request_move(
            YardMoveCreate(trailer_id=parked_trailer.id, to_location="B-01")
        )
        clock.advance(minutes=30)
        await trailer_service.check_out(parked_trailer.id)

        with pytest.raises(ConflictError):
            await move_service.execute(move.id, "op-7")

        target = await location_service.get_location_by_code(warehouse_id, "B-01")
        await db.refresh(target)
        assert target.current_occupancy == 0
