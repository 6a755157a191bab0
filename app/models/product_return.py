"""Customer product return model."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, MoneyType


class ReturnStatus(str, Enum):
    RECEIVED = "RECEIVED"
    INSPECTING = "INSPECTING"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReturnSourceType(str, Enum):
    SALE = "SALE"
    WARRANTY_CLAIM = "WARRANTY_CLAIM"
    JOB_SHEET = "JOB_SHEET"
    STOCK_CHECK = "STOCK_CHECK"
    DIRECT = "DIRECT"
    GOODS_RECEIPT = "GOODS_RECEIPT"


class ReturnCategory(str, Enum):
    CUSTOMER_RETURN = "CUSTOMER_RETURN"
    WARRANTY_RETURN = "WARRANTY_RETURN"
    DEFECTIVE = "DEFECTIVE"
    EXCESS_STOCK = "EXCESS_STOCK"
    QUALITY_FAILURE = "QUALITY_FAILURE"
    DAMAGED = "DAMAGED"
    INTERNAL_TRANSFER = "INTERNAL_TRANSFER"


class ProductCondition(str, Enum):
    NEW_SEALED = "NEW_SEALED"
    NEW_OPEN_BOX = "NEW_OPEN_BOX"
    USED_EXCELLENT = "USED_EXCELLENT"
    USED_GOOD = "USED_GOOD"
    USED_FAIR = "USED_FAIR"
    DEFECTIVE = "DEFECTIVE"
    DAMAGED = "DAMAGED"
    PARTS_MISSING = "PARTS_MISSING"
    DESTROYED = "DESTROYED"


class ResolutionType(str, Enum):
    REPAIRED = "REPAIRED"
    REPLACED = "REPLACED"
    REFUNDED = "REFUNDED"
    STORE_CREDIT = "STORE_CREDIT"
    REJECTED = "REJECTED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    RESTOCKED_BRANCH = "RESTOCKED_BRANCH"
    TRANSFERRED_WAREHOUSE = "TRANSFERRED_WAREHOUSE"
    RETURNED_SUPPLIER = "RETURNED_SUPPLIER"
    SCRAPPED = "SCRAPPED"
    PENDING_DECISION = "PENDING_DECISION"


class InspectionAction(str, Enum):
    """Inspector's recommendation; drives the next return status."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    FURTHER_INSPECTION = "FURTHER_INSPECTION"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ProductReturn(Base):
    """
    A product handed back by a customer (or pulled from stock) for
    inspection and resolution.

    Terminal once COMPLETED or CANCELLED. Only processing touches inventory.
    """
    __tablename__ = "product_returns"
    __table_args__ = (
        Index("ix_product_returns_source", "source_type", "source_id"),
        CheckConstraint("quantity > 0", name="ck_product_return_quantity_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    return_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="RTN-YYYY-NNNN"
    )
    location_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Where the return came from
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    # Customer
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True
    )
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # What came back
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_value: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    return_reason: Mapped[str] = mapped_column(Text, nullable=False)
    return_category: Mapped[str] = mapped_column(String(30), nullable=False)
    condition: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    condition_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(20), default=Priority.NORMAL.value, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        default=ReturnStatus.RECEIVED.value,
        nullable=False,
        index=True,
        comment="RECEIVED, INSPECTING, PENDING_APPROVAL, APPROVED, REJECTED, COMPLETED, CANCELLED"
    )

    # Inspection
    inspected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    inspected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    inspection_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Approval / rejection
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Resolution
    resolution_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    resolution_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    sale_refund_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("sale_refunds.id", ondelete="SET NULL"),
        nullable=True
    )
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProductReturn {self.return_number} {self.status}>"
