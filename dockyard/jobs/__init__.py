"""
Background Jobs Module

Handles scheduled tasks for:
- In-memory cache cleanup
- Notification delivery retries (queued by the event publisher)
"""

from dockyard.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from dockyard.jobs.cache_jobs import cleanup_expired_cache

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "cleanup_expired_cache",
]
