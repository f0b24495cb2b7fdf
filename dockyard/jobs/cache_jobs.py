"""
Cache Management Jobs

Redis expires keys on its own; the in-memory backend only drops an expired
entry when it is read, so a periodic purge keeps it bounded.
"""

import logging

from dockyard.services.cache_service import get_cache, InMemoryCache

logger = logging.getLogger(__name__)


async def cleanup_expired_cache() -> int:
    """Remove expired entries from the in-memory cache backend."""
    backend = get_cache().backend
    if not isinstance(backend, InMemoryCache):
        return 0

    try:
        removed = await backend.cleanup_expired()
    except Exception as e:
        logger.error(f"Cache cleanup failed: {e}")
        return 0

    if removed:
        logger.info(f"Cache cleanup removed {removed} expired entries ({len(backend)} remaining)")
    return removed
