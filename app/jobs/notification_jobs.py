"""
Notification Jobs

Drains the notification outbox. Rows written by the workflows are sent
here, retried on the configured backoff and given up on after
NOTIFICATION_MAX_ATTEMPTS.
"""

import logging
from typing import Dict

from app.database import get_db_session
from app.services.notification_service import NotificationDeliveryService

logger = logging.getLogger(__name__)


async def process_notification_queue() -> Dict[str, int]:
    """
    Send every notification that is due.

    Runs every NOTIFICATION_QUEUE_INTERVAL_SECONDS. A failure here never
    reaches the workflows that queued the notifications.
    """
    try:
        async with get_db_session() as session:
            return await NotificationDeliveryService(session).process_due()
    except Exception as e:
        logger.error(f"Notification queue run failed: {e}")
        return {"processed": 0, "sent": 0, "retrying": 0, "failed": 0}
