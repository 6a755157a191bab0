"""
APScheduler Configuration

Background jobs run in the API process:
- notification outbox delivery (every few seconds)
- inventory ledger consistency check (hourly by default)

Each job opens its own database session; a failing run is logged and the
next run starts clean.
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

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
    'misfire_grace_time': 60,
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


def register_jobs():
    """Add the recurring jobs; safe to call again (existing jobs are replaced)."""
    from app.jobs.notification_jobs import process_notification_queue
    from app.jobs.inventory_jobs import check_inventory_consistency

    scheduler.add_job(
        process_notification_queue,
        'interval',
        seconds=settings.NOTIFICATION_QUEUE_INTERVAL_SECONDS,
        id='process_notification_queue',
        name='Process Notification Queue',
        replace_existing=True,
    )

    scheduler.add_job(
        check_inventory_consistency,
        'interval',
        minutes=settings.INVENTORY_CONSISTENCY_INTERVAL_MINUTES,
        id='check_inventory_consistency',
        name='Inventory Ledger Consistency Check',
        replace_existing=True,
    )


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        register_jobs()
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
    status = []
    for job in scheduler.get_jobs():
        # Jobs added before start() are pending and have no next_run_time yet
        next_run_time = getattr(job, 'next_run_time', None)
        status.append({
            'id': job.id,
            'name': job.name,
            'next_run_time': str(next_run_time) if next_run_time else None,
            'trigger': str(job.trigger),
        })
    return status
