"""Database models for the notification outbox."""
from datetime import datetime, timezone
from enum import Enum
import uuid

from sqlalchemy import Column, String, Text, DateTime, Integer, Index

from app.database import Base
from app.db_types import UUIDType, JSONType


class NotificationEvent(str, Enum):
    """Workflow events that produce a notification."""
    GRN_CREATED = "GRN_CREATED"
    GRN_COMPLETED = "GRN_COMPLETED"
    RETURN_CREATED = "RETURN_CREATED"
    RETURN_INSPECTED = "RETURN_INSPECTED"
    RETURN_APPROVED = "RETURN_APPROVED"
    RETURN_REJECTED = "RETURN_REJECTED"
    RETURN_COMPLETED = "RETURN_COMPLETED"
    RETURN_CANCELLED = "RETURN_CANCELLED"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    DELIVERED = "DELIVERED"


class NotificationChannel(str, Enum):
    """Delivery channels for notifications."""
    SMS = "SMS"
    LOG = "LOG"  # Internal staff events with no phone number


class Notification(Base):
    """
    One outgoing message.

    Written after the workflow commit and delivered by the queue job, which
    retries until ``attempt_count`` reaches the configured maximum.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_status_next_attempt", "status", "next_attempt_at"),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    event_kind = Column(String(50), nullable=False, index=True)
    entity_ids = Column(JSONType, nullable=False, default=dict)
    context = Column(JSONType, nullable=False, default=dict)

    channel = Column(String(20), nullable=False, default=NotificationChannel.SMS.value)
    recipient = Column(String(50))
    message = Column(Text, nullable=False)

    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = Column(DateTime(timezone=True))
    error_message = Column(Text)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Notification {self.event_kind} {self.status}>"
