"""
Keyed asyncio locks for shared yard resources.

Two independent resources are serialised in-process:
- the dock calendar, per (tenant, warehouse, date)
- yard occupancy counters, per (tenant, warehouse)

Cross-process safety comes from the database: conditional occupancy updates
and the overlap re-check performed before commit.
"""
import asyncio
import uuid
import weakref
from datetime import date
from typing import Hashable


class KeyedLockRegistry:
    """
    Hands out one asyncio.Lock per key.

    Locks are held weakly: an entry disappears once no coroutine holds or
    waits on its lock, so per-day calendar keys do not pile up.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def clear(self) -> None:
        self._locks.clear()


_registry = KeyedLockRegistry()


def calendar_lock(tenant_id: uuid.UUID, warehouse_id: uuid.UUID, day: date) -> asyncio.Lock:
    """Lock guarding dock allocation for one warehouse operating day."""
    return _registry.get(("calendar", tenant_id, warehouse_id, day))


def yard_lock(tenant_id: uuid.UUID, warehouse_id: uuid.UUID) -> asyncio.Lock:
    """Lock guarding yard occupancy changes for one warehouse."""
    return _registry.get(("yard", tenant_id, warehouse_id))


def sequence_lock(tenant_id: uuid.UUID) -> asyncio.Lock:
    """Lock guarding document number generation for a tenant."""
    return _registry.get(("sequence", tenant_id))


def reset_locks() -> None:
    """Drop all locks (tests create a fresh event loop per test)."""
    _registry.clear()
