"""
Seed a demo warehouse yard.

Creates, for one tenant / warehouse:
1. Dock doors DOCK-01..DOCK-NN (first two inbound, last two outbound,
   the rest dual; DOCK-03 refrigerated and hazmat approved)
2. Yard locations in two zones (A: inbound parking, B: outbound staging)
   plus a drop yard and a waiting lane
3. A warehouse yard configuration row

Existing doors and locations are skipped, so the script can be re-run.
"""
import asyncio
import sys
import os
import uuid

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dockyard.core.exceptions import ConflictError
from dockyard.database import async_session_factory, init_db
from dockyard.models.yard import DockDoorType, YardLocationType
from dockyard.schemas.yard import DockDoorCreate, YardLocationCreate, YardConfigUpdate
from dockyard.services.cache_service import CacheService, InMemoryCache
from dockyard.services.yard_config_service import YardConfigService
from dockyard.services.yard_location_service import YardLocationService


def dock_doors(warehouse_id: uuid.UUID, count: int):
    for i in range(1, count + 1):
        if i <= 2:
            door_type = DockDoorType.INBOUND
        elif i > count - 2:
            door_type = DockDoorType.OUTBOUND
        else:
            door_type = DockDoorType.DUAL
        yield DockDoorCreate(
            warehouse_id=warehouse_id,
            door_number=f"DOCK-{i:02d}",
            door_name=f"Dock {i}",
            door_type=door_type,
            has_refrigeration=(i == 3),
            is_hazmat_approved=(i == 3),
            supports_oversized=(i == count),
        )


def yard_locations(warehouse_id: uuid.UUID):
    for i in range(1, 11):
        yield YardLocationCreate(
            warehouse_id=warehouse_id,
            location_code=f"A-{i:02d}",
            location_name=f"Inbound Parking A{i}",
            location_type=YardLocationType.PARKING,
            zone="A",
            capacity=1,
            pos_x=float(i * 15),
            pos_y=0.0,
            has_refrigeration=(i <= 2),
        )
    for i in range(1, 7):
        yield YardLocationCreate(
            warehouse_id=warehouse_id,
            location_code=f"B-{i:02d}",
            location_name=f"Outbound Staging B{i}",
            location_type=YardLocationType.STAGING,
            zone="B",
            capacity=1,
            pos_x=float(i * 15),
            pos_y=60.0,
        )
    yield YardLocationCreate(
        warehouse_id=warehouse_id,
        location_code="DROP-01",
        location_name="Drop Yard",
        location_type=YardLocationType.DROP_YARD,
        zone="C",
        capacity=20,
        pos_x=200.0,
        pos_y=30.0,
    )
    yield YardLocationCreate(
        warehouse_id=warehouse_id,
        location_code="WAIT-01",
        location_name="Gate Waiting Lane",
        location_type=YardLocationType.WAITING,
        capacity=5,
        pos_x=0.0,
        pos_y=120.0,
    )


async def seed_yard(tenant_id: uuid.UUID, warehouse_id: uuid.UUID, docks: int):
    """Seed docks, yard locations and config for one warehouse."""
    await init_db()
    cache = CacheService(InMemoryCache())

    async with async_session_factory() as db:
        print("=" * 70)
        print(f"SEED YARD - tenant {tenant_id} / warehouse {warehouse_id}")
        print("=" * 70)

        locations = YardLocationService(db, tenant_id, cache)

        # ==================== Step 1: Dock Doors ====================
        print(f"\n[1/3] Creating {docks} dock doors...")
        for door in dock_doors(warehouse_id, docks):
            try:
                await locations.create_dock_door(door)
                print(f"  + {door.door_number} ({door.door_type.value})")
            except ConflictError:
                await db.rollback()
                print(f"  = {door.door_number} exists")

        # ==================== Step 2: Yard Locations ====================
        print("\n[2/3] Creating yard locations...")
        for location in yard_locations(warehouse_id):
            try:
                await locations.create_location(location)
                print(f"  + {location.location_code} capacity={location.capacity}")
            except ConflictError:
                await db.rollback()
                print(f"  = {location.location_code} exists")

        # ==================== Step 3: Configuration ====================
        print("\n[3/3] Writing yard configuration...")
        policy = await YardConfigService(db, tenant_id, cache).upsert_config(
            warehouse_id,
            YardConfigUpdate(dock_count=docks)
        )
        print(f"  Operating hours {policy.operating_start_hour}:00-{policy.operating_end_hour}:00 "
              f"({policy.timezone}), detention {policy.detention_rate_per_hour}/h "
              f"after {policy.detention_free_hours}h")

        print("\nDone.")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Seed a demo warehouse yard")
    parser.add_argument("--tenant-id", type=uuid.UUID, default=uuid.uuid4())
    parser.add_argument("--warehouse-id", type=uuid.UUID, default=uuid.uuid4())
    parser.add_argument("--docks", type=int, default=12)
    args = parser.parse_args()

    asyncio.run(seed_yard(args.tenant_id, args.warehouse_id, args.docks))
