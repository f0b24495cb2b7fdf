import gc
import uuid
from datetime import date

from dockyard.core.locks import KeyedLockRegistry, calendar_lock, yard_lock


def test_same_key_shares_one_lock():
    tenant_id, warehouse_id = uuid.uuid4(), uuid.uuid4()

    assert yard_lock(tenant_id, warehouse_id) is yard_lock(tenant_id, warehouse_id)
    assert yard_lock(tenant_id, warehouse_id) is not yard_lock(tenant_id, uuid.uuid4())
    assert (
        calendar_lock(tenant_id, warehouse_id, date(2025, 3, 10))
        is not calendar_lock(tenant_id, warehouse_id, date(2025, 3, 11))
    )


async def test_released_locks_leave_the_registry():
    registry = KeyedLockRegistry()

    async with registry.get(("calendar", date(2025, 3, 10))):
        assert registry.get(("calendar", date(2025, 3, 10))).locked()
        assert len(registry._locks) == 1

    gc.collect()
    assert len(registry._locks) == 0
