import pytest

from dockyard.core.exceptions import ConflictError, YardError
from dockyard.models.yard import DockDoorType, YardLocationType
from dockyard.schemas.yard import DockDoorCreate, YardConfigUpdate, YardLocationCreate
from dockyard.services.yard_config_service import YardConfigService


@pytest.fixture
def config_service(db, tenant_id, cache):
    return YardConfigService(db, tenant_id, cache)


class TestYardLocations:

    async def test_create_and_list(self, location_service, warehouse_id):
        created = await location_service.create_location(YardLocationCreate(
            warehouse_id=warehouse_id, location_code="A-01", location_name="Parking A1",
            location_type=YardLocationType.PARKING, zone="A", capacity=3,
        ))
        await location_service.create_location(YardLocationCreate(
            warehouse_id=warehouse_id, location_code="S-01", location_name="Staging 1",
            location_type=YardLocationType.STAGING, zone="B",
        ))

        assert created.current_occupancy == 0
        assert created.available_spots == 3

        items, total = await location_service.list_locations(warehouse_id, zone="A")
        assert total == 1
        assert items[0].location_code == "A-01"

    async def test_duplicate_code_conflicts(self, location_service, make_location, warehouse_id):
        await make_location("A-01")
        with pytest.raises(ConflictError):
            await location_service.create_location(YardLocationCreate(
                warehouse_id=warehouse_id, location_code="A-01", location_name="Again",
            ))

    async def test_occupied_location_cannot_be_deactivated(self, location_service, make_location):
        occupied = await make_location("A-01", capacity=2, occupancy=1)
        with pytest.raises(ConflictError):
            await location_service.deactivate_location(occupied.id)

        empty = await make_location("A-02")
        deactivated = await location_service.deactivate_location(empty.id)
        assert deactivated.is_active is False

    async def test_release_never_goes_below_zero(self, location_service, make_location, warehouse_id, db):
        spot = await make_location("A-01", capacity=1)
        await location_service.release(warehouse_id, "A-01")
        await db.refresh(spot)
        assert spot.current_occupancy == 0

    async def test_occupy_respects_capacity(self, location_service, make_location, warehouse_id, db):
        spot = await make_location("A-01", capacity=2)
        await location_service.occupy(warehouse_id, "A-01")
        await location_service.occupy(warehouse_id, "A-01")
        with pytest.raises(ConflictError):
            await location_service.occupy(warehouse_id, "A-01")
        await db.refresh(spot)
        assert spot.current_occupancy == 2

    async def test_dock_door_numbers_are_unique(self, location_service, warehouse_id):
        door = DockDoorCreate(warehouse_id=warehouse_id, door_number="DOCK-01", door_type=DockDoorType.INBOUND)
        await location_service.create_dock_door(door)
        with pytest.raises(ConflictError):
            await location_service.create_dock_door(door)


class TestYardConfig:

    async def test_defaults_without_overrides(self, config_service, warehouse_id):
        policy = await config_service.get_policy(warehouse_id)
        assert policy.is_default is True
        assert policy.dock_count == 12
        assert (policy.operating_start_hour, policy.operating_end_hour) == (6, 22)
        assert policy.detention_free_hours == 2.0

    async def test_overrides_replace_only_given_fields(self, config_service, warehouse_id):
        await config_service.upsert_config(warehouse_id, YardConfigUpdate(detention_free_hours=3))
        policy = await config_service.upsert_config(warehouse_id, YardConfigUpdate(dock_count=6))

        assert policy.is_default is False
        assert policy.dock_count == 6
        assert policy.detention_free_hours == 3.0
        assert policy.detention_rate_per_hour == 100.0

        assert (await config_service.get_policy(warehouse_id)).dock_count == 6

    async def test_inverted_hours_are_rejected(self, config_service, warehouse_id):
        with pytest.raises(YardError):
            await config_service.upsert_config(
                warehouse_id, YardConfigUpdate(operating_start_hour=20, operating_end_hour=8)
            )
        assert (await config_service.get_policy(warehouse_id)).is_default is True

    async def test_unknown_timezone_is_rejected(self, config_service, warehouse_id):
        with pytest.raises(YardError):
            await config_service.upsert_config(warehouse_id, YardConfigUpdate(timezone="Mars/Olympus"))
