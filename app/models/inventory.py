"""Inventory models for stock management."""
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, String, Text, ForeignKey, Integer, DateTime
from sqlalchemy import UniqueConstraint, CheckConstraint, Index
import uuid

from app.database import Base
from app.db_types import UUIDType, MoneyType, CostType


class StockMovementType(str, Enum):
    """Stock movement type enum."""
    PURCHASE = "PURCHASE"  # Goods receipt approval
    SALES = "SALES"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    RETURN_FROM_CUSTOMER = "RETURN_FROM_CUSTOMER"
    RETURN_TO_SUPPLIER = "RETURN_TO_SUPPLIER"
    DAMAGED = "DAMAGED"
    EXPIRED = "EXPIRED"
    STOLEN = "STOLEN"
    FOUND = "FOUND"
    USAGE = "USAGE"  # Parts consumed by a job sheet
    RESERVATION = "RESERVATION"  # reserved_quantity only
    RELEASE = "RELEASE"  # reserved_quantity only
    WRITE_OFF = "WRITE_OFF"


class ReferenceType(str, Enum):
    """What a stock movement was caused by."""
    PURCHASE_ORDER = "PURCHASE_ORDER"
    JOB_SHEET = "JOB_SHEET"
    TRANSFER = "TRANSFER"
    RETURN = "RETURN"
    ADJUSTMENT = "ADJUSTMENT"
    GOODS_RECEIPT = "GOODS_RECEIPT"
    STOCK_RELEASE = "STOCK_RELEASE"
    SALE = "SALE"
    SALE_REFUND = "SALE_REFUND"


INBOUND_MOVEMENT_TYPES = frozenset({
    StockMovementType.PURCHASE,
    StockMovementType.RETURN_FROM_CUSTOMER,
    StockMovementType.TRANSFER_IN,
    StockMovementType.ADJUSTMENT_IN,
    StockMovementType.FOUND,
})

OUTBOUND_MOVEMENT_TYPES = frozenset({
    StockMovementType.SALES,
    StockMovementType.TRANSFER_OUT,
    StockMovementType.ADJUSTMENT_OUT,
    StockMovementType.RETURN_TO_SUPPLIER,
    StockMovementType.DAMAGED,
    StockMovementType.EXPIRED,
    StockMovementType.STOLEN,
    StockMovementType.USAGE,
    StockMovementType.WRITE_OFF,
})

RESERVATION_MOVEMENT_TYPES = frozenset({
    StockMovementType.RESERVATION,
    StockMovementType.RELEASE,
})


class InventoryRecord(Base):
    """
    Current stock of one product at one location.

    Cached projection of the stock movement journal. Created lazily by the
    first movement and never deleted. ``available_quantity`` is derived.
    """

    __tablename__ = "product_inventory"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_product_inventory_product_location"),
        CheckConstraint("quantity >= 0", name="ck_product_inventory_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_product_inventory_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_product_inventory_reserved_le_quantity"),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    product_id = Column(UUIDType, ForeignKey("products.id"), nullable=False, index=True)
    location_id = Column(UUIDType, ForeignKey("locations.id"), nullable=False, index=True)

    # Stock levels
    quantity = Column(Integer, default=0, nullable=False)
    reserved_quantity = Column(Integer, default=0, nullable=False)
    min_stock_level = Column(Integer, default=0, nullable=False)
    max_stock_level = Column(Integer, nullable=True)

    # Valuation
    average_cost = Column(CostType, default=Decimal("0"), nullable=False)
    total_value = Column(MoneyType, default=Decimal("0"), nullable=False)

    last_restocked = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    def __repr__(self):
        return f"<InventoryRecord {self.product_id}@{self.location_id}: {self.quantity}>"


class StockMovement(Base):
    """
    Append-only journal entry for one inventory change.

    For physical movement types ``quantity_after - quantity_before ==
    quantity``. RESERVATION and RELEASE rows leave physical stock untouched
    (before == after) and carry the change of reserved_quantity in
    ``quantity``.
    """

    __tablename__ = "product_stock_movements"
    __table_args__ = (
        Index("ix_product_stock_movements_product_location", "product_id", "location_id"),
        Index("ix_product_stock_movements_reference", "reference_type", "reference_id"),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    product_id = Column(UUIDType, ForeignKey("products.id"), nullable=False)
    location_id = Column(UUIDType, ForeignKey("locations.id"), nullable=False)

    movement_type = Column(
        String(50), nullable=False, index=True,
        comment="PURCHASE, SALES, TRANSFER_IN, TRANSFER_OUT, ADJUSTMENT_IN, ADJUSTMENT_OUT, RETURN_FROM_CUSTOMER, "
                "RETURN_TO_SUPPLIER, DAMAGED, EXPIRED, STOLEN, FOUND, USAGE, RESERVATION, RELEASE, WRITE_OFF"
    )
    quantity = Column(Integer, nullable=False)  # Signed change
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    unit_cost = Column(MoneyType)

    reference_type = Column(String(50))
    reference_id = Column(UUIDType)
    reference_number = Column(String(50))

    notes = Column(Text)
    created_by = Column(UUIDType)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    @property
    def is_reservation(self) -> bool:
        return self.movement_type in RESERVATION_MOVEMENT_TYPES

    def __repr__(self):
        return f"<StockMovement {self.movement_type} {self.quantity:+d}>"
