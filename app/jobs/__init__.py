"""
Background Jobs Module

Handles scheduled tasks for:
- Notification outbox delivery with retries
- Inventory ledger consistency checks
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from app.jobs.notification_jobs import process_notification_queue
from app.jobs.inventory_jobs import check_inventory_consistency

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "process_notification_queue",
    "check_inventory_consistency",
]
