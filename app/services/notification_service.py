"""
Workflow Notification Service

Two halves:

- NotificationDispatcher.notify() is called by the workflows after their
  transaction commits. It renders the message and writes a PENDING row to
  the ``notifications`` outbox in its own session. It never raises: a
  notification problem is logged and the workflow result stands.
- NotificationDeliveryService.process_due() is run by the scheduler. It
  sends due rows through the SMS gateway, reschedules failures according
  to NOTIFICATION_RETRY_DELAYS and marks a row FAILED once
  NOTIFICATION_MAX_ATTEMPTS is reached.
"""
import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, Callable, Sequence

import httpx
from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import async_session_factory
from app.models.notifications import Notification, NotificationEvent, NotificationStatus, NotificationChannel


logger = logging.getLogger(__name__)


# Customer-facing events are sent by SMS when the context carries a phone
# number; staff-facing events are written to the log channel.
SMS_TEMPLATES = {
    NotificationEvent.GRN_CREATED: (
        "Goods receipt {receipt_number} created against PO {po_number}. "
        "Awaiting quality check. - {company_name}"
    ),
    NotificationEvent.GRN_COMPLETED: (
        "Goods receipt {receipt_number} approved. {items_received} items added to stock "
        "(value Rs.{total_value}). PO {po_number} is now {po_status}."
    ),
    NotificationEvent.RETURN_CREATED: (
        "Hello {customer_name}, your return request {return_number} for {product_name} "
        "has been created. We'll process it soon. - {company_name}"
    ),
    NotificationEvent.RETURN_INSPECTED: (
        "Hello {customer_name}, your returned {product_name} ({return_number}) has been "
        "inspected. Status: {return_status}. - {company_name}"
    ),
    NotificationEvent.RETURN_APPROVED: (
        "Hello {customer_name}, your return {return_number} for {product_name} has been "
        "approved. Processing soon. - {company_name}"
    ),
    NotificationEvent.RETURN_REJECTED: (
        "Hello {customer_name}, unfortunately your return {return_number} for {product_name} "
        "has been rejected. Reason: {reason}. Contact: {contact_phone} - {company_name}"
    ),
    NotificationEvent.RETURN_COMPLETED: (
        "Hello {customer_name}, your return {return_number} for {product_name} has been "
        "processed. {resolution_text} Thank you! - {company_name}"
    ),
    NotificationEvent.RETURN_CANCELLED: (
        "Hello {customer_name}, your return {return_number} has been cancelled. "
        "Reason: {reason}. - {company_name}"
    ),
}


class _BlankMissing(dict):
    """format_map() helper: unknown placeholders render as empty strings."""

    def __missing__(self, key):
        return ""


def render_message(event_kind: NotificationEvent, context: Dict[str, Any]) -> str:
    values = _BlankMissing({"company_name": settings.COMPANY_NAME})
    values.update({k: v for k, v in context.items() if v is not None})
    return SMS_TEMPLATES[event_kind].format_map(values)


def _stringify(values: Dict[str, Any]) -> Dict[str, Optional[str]]:
    return {k: (str(v) if v is not None else None) for k, v in values.items()}


class NotificationDispatcher:
    """
    Fire-and-forget outbox writer used by the workflow services.

    The session factory is injectable so tests can point it at their own
    engine.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] = async_session_factory):
        self.session_factory = session_factory

    async def notify(
        self,
        event_kind: NotificationEvent,
        entity_ids: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[uuid.UUID]:
        """
        Queue one notification. Returns the outbox row id, or None when
        queuing failed (the failure is logged, never raised).
        """
        context = context or {}
        try:
            event_kind = NotificationEvent(event_kind)
            message = render_message(event_kind, context)
            recipient = context.get("customer_phone")
            channel = NotificationChannel.SMS if recipient else NotificationChannel.LOG

            async with self.session_factory() as session:
                notification = Notification(
                    event_kind=event_kind.value,
                    entity_ids=_stringify(entity_ids),
                    context=_stringify(context),
                    channel=channel.value,
                    recipient=recipient,
                    message=message,
                    status=NotificationStatus.PENDING.value,
                    attempt_count=0,
                    next_attempt_at=datetime.now(timezone.utc),
                )
                session.add(notification)
                await session.commit()
                logger.info("Queued %s notification %s via %s", event_kind.value, notification.id, channel.value)
                return notification.id
        except Exception as e:
            logger.error("Failed to queue %s notification for %s: %s", event_kind, entity_ids, e)
            return None


class SmsGatewayError(Exception):
    pass


class SmsGateway:
    """
    Outbound SMS over the configured HTTP gateway.

    With no SMS_API_URL configured, messages are only logged.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        sender_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_url = api_url if api_url is not None else settings.SMS_API_URL
        self.api_key = api_key if api_key is not None else settings.SMS_API_KEY
        self.sender_id = sender_id or settings.SMS_SENDER_ID
        self.timeout = timeout or settings.SMS_TIMEOUT_SECONDS

    async def send(self, phone: str, message: str) -> None:
        if not self.api_url:
            logger.info(f"[SMS] Sending to {phone}: {message[:50]}...")
            return

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"to": phone, "sender": self.sender_id, "message": message},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise SmsGatewayError(f"SMS gateway error: {e}") from e


class NotificationDeliveryService:
    """Drains the outbox with bounded retries."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[SmsGateway] = None,
        retry_delays: Optional[Sequence[int]] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.gateway = gateway or SmsGateway()
        self.retry_delays = list(retry_delays if retry_delays is not None else settings.NOTIFICATION_RETRY_DELAYS)
        self.max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS

    def next_delay(self, attempt_count: int) -> timedelta:
        """Delay before the attempt following ``attempt_count`` failures."""
        if not self.retry_delays:
            return timedelta(0)
        index = min(attempt_count - 1, len(self.retry_delays) - 1)
        return timedelta(seconds=self.retry_delays[max(index, 0)])

    async def process_due(self, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> Dict[str, int]:
        """
        Attempt every PENDING notification whose next attempt is due.

        Returns:
            {"processed": n, "sent": n, "retrying": n, "failed": n}
        """
        now = now or datetime.now(timezone.utc)
        batch_size = batch_size or settings.NOTIFICATION_BATCH_SIZE

        result = await self.db.execute(
            select(Notification)
            .where(
                and_(
                    Notification.status == NotificationStatus.PENDING.value,
                    or_(Notification.next_attempt_at.is_(None), Notification.next_attempt_at <= now),
                )
            )
            .order_by(Notification.created_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        notifications = result.scalars().all()

        summary = {"processed": 0, "sent": 0, "retrying": 0, "failed": 0}
        for notification in notifications:
            outcome = await self.deliver(notification, now)
            summary["processed"] += 1
            summary[outcome] += 1

        await self.db.commit()
        if summary["processed"]:
            logger.info(
                "Notification queue: %(processed)d processed, %(sent)d sent, "
                "%(retrying)d retrying, %(failed)d failed", summary,
            )
        return summary

    async def deliver(self, notification: Notification, now: Optional[datetime] = None) -> str:
        """One delivery attempt. Returns 'sent', 'retrying' or 'failed'."""
        now = now or datetime.now(timezone.utc)
        notification.attempt_count = (notification.attempt_count or 0) + 1

        try:
            if notification.channel == NotificationChannel.SMS.value and notification.recipient:
                await self.gateway.send(notification.recipient, notification.message)
            else:
                logger.info(f"[{notification.event_kind}] {notification.message}")
        except Exception as e:
            notification.error_message = str(e)
            if notification.attempt_count >= self.max_attempts:
                notification.status = NotificationStatus.FAILED.value
                notification.next_attempt_at = None
                logger.error(
                    "Notification %s failed after %d attempts: %s",
                    notification.id, notification.attempt_count, e,
                )
                return "failed"

            notification.next_attempt_at = now + self.next_delay(notification.attempt_count)
            logger.warning(
                "Notification %s attempt %d failed, retrying at %s: %s",
                notification.id, notification.attempt_count, notification.next_attempt_at, e,
            )
            return "retrying"

        notification.status = NotificationStatus.SENT.value
        notification.sent_at = now
        notification.next_attempt_at = None
        notification.error_message = None
        return "sent"
