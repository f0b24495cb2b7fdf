"""
Multi-Tenant Cache Service for dock schedule views and yard policy.

All cache keys include tenant_id so one tenant never reads another
tenant's schedule. Keys follow:

    {namespace}:{tenant_id}:{resource}:{identifier...}

Supports:
1. Redis (REDIS_URL set and CACHE_ENABLED)
2. In-memory fallback (development / tests)

Usage:
    cache = get_cache()
    await cache.set_dock_schedule(tenant_id, warehouse_id, day, None, payload)
    await cache.invalidate_dock_schedule(tenant_id, warehouse_id, day)

The slot allocator never reads from this cache.
"""
import json
from typing import Any, Optional, Dict
from datetime import datetime, date, timedelta, timezone
from abc import ABC, abstractmethod
import asyncio
import logging

import redis.asyncio as redis

from dockyard.config import settings
from dockyard.database import custom_json_dumps

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (seconds)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Clear all keys matching pattern."""
        pass


class InMemoryCache(CacheBackend):
    """
    In-memory cache for development/fallback.

    Not shared across server instances; use Redis when running more than one.
    """

    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.now(timezone.utc):
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
            self._cache[key] = (value, expires_at)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def clear_pattern(self, pattern: str) -> int:
        """Clear keys matching pattern (simple prefix match)."""
        async with self._lock:
            prefix = pattern.rstrip('*')
            keys_to_delete = [k for k in self._cache.keys() if k.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)

    async def cleanup_expired(self) -> int:
        """Remove expired entries. Called periodically by the scheduler."""
        async with self._lock:
            now = datetime.now(timezone.utc)
            expired_keys = [
                k for k, (_, expires_at) in self._cache.items()
                if expires_at <= now
            ]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)


class RedisCache(CacheBackend):
    """Redis cache backend for production."""

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._get_client().get(key)
            if value:
                return json.loads(value)
            return None
        except redis.RedisError as e:
            logger.warning(f"Redis GET failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            await self._get_client().set(key, custom_json_dumps(value), ex=ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis SET failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._get_client().delete(key)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE failed for {key}: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        try:
            client = self._get_client()
            cursor = 0
            deleted = 0
            while True:
                cursor, keys = await client.scan(cursor, match=pattern, count=100)
                if keys:
                    await client.delete(*keys)
                    deleted += len(keys)
                if cursor == 0:
                    break
            return deleted
        except redis.RedisError as e:
            logger.warning(f"Redis pattern clear failed for {pattern}: {e}")
            return 0


class CacheService:
    """
    Multi-Tenant Cache Service.

    Cache keys follow the format:

        {namespace}:{tenant_id}:{resource_type}:{identifier}

    Examples:
        dockyard:9f1c...:dock_schedule:4be0...:2026-03-02:all
        dockyard:9f1c...:yard_config:4be0...
    """

    def __init__(self, backend: CacheBackend, namespace: str = "dockyard"):
        self._backend = backend
        self._namespace = namespace

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def _make_key(self, tenant_id: Any, key: str) -> str:
        """Create namespaced, tenant-isolated cache key."""
        if not tenant_id:
            logger.warning(f"Cache key created without tenant_id: {key}")
        return f"{self._namespace}:{tenant_id}:{key}"

    async def get(self, tenant_id: Any, key: str) -> Optional[Any]:
        """Get value from tenant-specific cache."""
        return await self._backend.get(self._make_key(tenant_id, key))

    async def set(self, tenant_id: Any, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in tenant-specific cache."""
        return await self._backend.set(self._make_key(tenant_id, key), value, ttl)

    async def delete(self, tenant_id: Any, key: str) -> bool:
        """Delete key from tenant-specific cache."""
        return await self._backend.delete(self._make_key(tenant_id, key))

    async def clear_pattern(self, tenant_id: Any, pattern: str) -> int:
        """Clear all keys matching pattern for a tenant."""
        return await self._backend.clear_pattern(self._make_key(tenant_id, pattern))

    # ==================== Dock Schedule Cache ====================

    @staticmethod
    def _dock_schedule_key(warehouse_id: Any, day: date, dock_number: Optional[str]) -> str:
        return f"dock_schedule:{warehouse_id}:{day.isoformat()}:{dock_number or 'all'}"

    async def get_dock_schedule(
        self,
        tenant_id: Any,
        warehouse_id: Any,
        day: date,
        dock_number: Optional[str] = None
    ) -> Optional[dict]:
        """Get a cached dock schedule view."""
        return await self.get(tenant_id, self._dock_schedule_key(warehouse_id, day, dock_number))

    async def set_dock_schedule(
        self,
        tenant_id: Any,
        warehouse_id: Any,
        day: date,
        dock_number: Optional[str],
        data: dict,
        ttl: Optional[int] = None
    ) -> bool:
        """Cache a dock schedule view."""
        key = self._dock_schedule_key(warehouse_id, day, dock_number)
        ttl = ttl or settings.DOCK_SCHEDULE_CACHE_TTL
        return await self.set(tenant_id, key, data, ttl)

    async def invalidate_dock_schedule(
        self,
        tenant_id: Any,
        warehouse_id: Any,
        day: Optional[date] = None
    ) -> int:
        """Drop cached schedule views for one day, or every day of a warehouse."""
        if day is not None:
            return await self.clear_pattern(
                tenant_id, f"dock_schedule:{warehouse_id}:{day.isoformat()}:*"
            )
        return await self.clear_pattern(tenant_id, f"dock_schedule:{warehouse_id}:*")

    # ==================== Yard Config Cache ====================

    async def get_yard_config(self, tenant_id: Any, warehouse_id: Any) -> Optional[dict]:
        """Get cached effective yard policy."""
        return await self.get(tenant_id, f"yard_config:{warehouse_id}")

    async def set_yard_config(
        self,
        tenant_id: Any,
        warehouse_id: Any,
        data: dict,
        ttl: Optional[int] = None
    ) -> bool:
        """Cache effective yard policy."""
        ttl = ttl or settings.YARD_CONFIG_CACHE_TTL
        return await self.set(tenant_id, f"yard_config:{warehouse_id}", data, ttl)

    async def invalidate_yard_config(self, tenant_id: Any, warehouse_id: Any) -> bool:
        """Invalidate cached yard policy."""
        return await self.delete(tenant_id, f"yard_config:{warehouse_id}")


# Singleton cache instance
_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the cache service singleton."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Cache initialized with in-memory backend")

        _cache_instance = CacheService(backend)

    return _cache_instance


def set_cache(cache: Optional[CacheService]) -> None:
    """Replace the singleton (tests install a fresh in-memory cache)."""
    global _cache_instance
    _cache_instance = cache
