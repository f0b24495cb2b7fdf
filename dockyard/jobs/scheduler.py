"""
APScheduler configuration.

One in-process AsyncIOScheduler shared by:
- periodic maintenance jobs (expired cache purge)
- one-off notification retries queued by the EventPublisher
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from dockyard.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        from dockyard.jobs.cache_jobs import cleanup_expired_cache

        # Purge expired in-memory cache entries
        scheduler.add_job(
            cleanup_expired_cache,
            'interval',
            minutes=settings.CACHE_CLEANUP_INTERVAL_MINUTES,
            id='cleanup_expired_cache',
            name='Cleanup Expired Cache Entries',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
