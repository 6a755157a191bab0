"""
Inventory Ledger

The only code that writes ``product_inventory`` and
``product_stock_movements``. Every change is a read-lock-modify-write on
one (product, location) row plus one appended journal entry, flushed in the
caller's transaction so both land or neither does.

Flow of apply_movement():
1. SELECT ... FOR UPDATE the inventory row (create it at zero if absent)
2. Check the delta's sign against the movement type
3. Check the result keeps quantity >= reserved >= 0
4. Update quantity / reserved / valuation
5. Append the StockMovement with before/after snapshots
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Tuple, Union

from sqlalchemy import select, func, and_, or_, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError, InsufficientStockError, NotFoundError
from app.models.inventory import (
    InventoryRecord, StockMovement, StockMovementType, ReferenceType,
    INBOUND_MOVEMENT_TYPES, OUTBOUND_MOVEMENT_TYPES, RESERVATION_MOVEMENT_TYPES,
)
from app.services.transaction import insert_if_missing


logger = logging.getLogger(__name__)

MONEY_PLACES = Decimal("0.01")
COST_PLACES = Decimal("0.0001")


@dataclass
class MovementReference:
    """What caused a movement; copied onto the journal entry."""
    reference_type: Optional[Union[ReferenceType, str]] = None
    reference_id: Optional[uuid.UUID] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class LedgerDiscrepancy:
    """One inventory row (or journal entry) that disagrees with the journal."""
    product_id: uuid.UUID
    location_id: uuid.UUID
    kind: str
    expected: int
    actual: int
    movement_id: Optional[uuid.UUID] = None

    def as_dict(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "location_id": str(self.location_id),
            "kind": self.kind,
            "expected": self.expected,
            "actual": self.actual,
            "movement_id": str(self.movement_id) if self.movement_id else None,
        }


@dataclass
class ConsistencyReport:
    records_checked: int = 0
    movements_checked: int = 0
    discrepancies: List[LedgerDiscrepancy] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies


def _enum_value(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


class InventoryLedger:
    """Atomic stock movements against per-(product, location) inventory rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOCKING ====================

    async def _lock_record(self, product_id: uuid.UUID, location_id: uuid.UUID) -> Optional[InventoryRecord]:
        result = await self.db.execute(
            select(InventoryRecord)
            .where(
                and_(
                    InventoryRecord.product_id == product_id,
                    InventoryRecord.location_id == location_id,
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_or_create_record(self, product_id: uuid.UUID, location_id: uuid.UUID) -> InventoryRecord:
        """Lock the row, inserting a zero row first when this pair has never moved."""
        record = await self._lock_record(product_id, location_id)
        if record is not None:
            return record

        await insert_if_missing(
            self.db,
            InventoryRecord,
            ("product_id", "location_id"),
            product_id=product_id,
            location_id=location_id,
            quantity=0,
            reserved_quantity=0,
            average_cost=Decimal("0"),
            total_value=Decimal("0"),
        )
        logger.debug("Ensured inventory record for product %s at location %s", product_id, location_id)

        record = await self._lock_record(product_id, location_id)
        if record is None:
            raise RuntimeError(f"Inventory record for {product_id}@{location_id} could not be created")
        return record

    # ==================== MOVEMENTS ====================

    @staticmethod
    def _check_direction(movement_type: StockMovementType, delta: int) -> None:
        if delta == 0:
            raise ValidationError("Movement quantity must not be zero")
        if movement_type in INBOUND_MOVEMENT_TYPES and delta < 0:
            raise ValidationError(f"{movement_type.value} movements must increase stock, got {delta}")
        if movement_type in OUTBOUND_MOVEMENT_TYPES and delta > 0:
            raise ValidationError(f"{movement_type.value} movements must decrease stock, got +{delta}")
        if movement_type == StockMovementType.RESERVATION and delta < 0:
            raise ValidationError(f"RESERVATION must increase the reserved quantity, got {delta}")
        if movement_type == StockMovementType.RELEASE and delta > 0:
            raise ValidationError(f"RELEASE must decrease the reserved quantity, got +{delta}")

    async def apply_movement(
        self,
        product_id: uuid.UUID,
        location_id: uuid.UUID,
        movement_type: Union[StockMovementType, str],
        delta_quantity: int,
        reference: Optional[MovementReference] = None,
        unit_cost: Optional[Decimal] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> Tuple[StockMovement, InventoryRecord]:
        """
        Apply one signed stock change and journal it.

        Args:
            product_id: Product moved
            location_id: Location whose stock changes
            movement_type: Decides the allowed sign of delta_quantity
            delta_quantity: Signed change; for RESERVATION/RELEASE the
                change of reserved_quantity
            reference: Document that caused the movement
            unit_cost: Cost per unit for inbound valuation
            created_by: Acting user

        Returns:
            (movement, updated inventory record)

        Raises:
            ValidationError: zero delta or sign not matching the type
            InsufficientStockError: result would be negative or below reserved
        """
        try:
            movement_type = StockMovementType(movement_type)
        except ValueError:
            raise ValidationError(f"Unknown movement type '{movement_type}'")
        self._check_direction(movement_type, delta_quantity)
        reference = reference or MovementReference()

        record = await self._lock_or_create_record(product_id, location_id)
        quantity_before = record.quantity or 0
        reserved_before = record.reserved_quantity or 0

        if movement_type in RESERVATION_MOVEMENT_TYPES:
            reserved_after = reserved_before + delta_quantity
            if reserved_after > quantity_before:
                raise InsufficientStockError(
                    f"Cannot reserve {delta_quantity} units: only {quantity_before - reserved_before} available",
                    available=quantity_before - reserved_before,
                )
            if reserved_after < 0:
                raise ValidationError(
                    f"Cannot release {-delta_quantity} units: only {reserved_before} reserved"
                )
            record.reserved_quantity = reserved_after
            quantity_after = quantity_before
        else:
            quantity_after = quantity_before + delta_quantity
            if quantity_after < 0:
                raise InsufficientStockError(
                    f"Insufficient stock: {quantity_before} on hand, movement needs {-delta_quantity}",
                    available=quantity_before - reserved_before,
                )
            if quantity_after < reserved_before:
                raise InsufficientStockError(
                    f"Insufficient available stock: {quantity_before - reserved_before} available "
                    f"({reserved_before} reserved), movement needs {-delta_quantity}",
                    available=quantity_before - reserved_before,
                )
            self._revalue(record, quantity_before, quantity_after, delta_quantity, unit_cost)
            record.quantity = quantity_after
            if delta_quantity > 0:
                record.last_restocked = datetime.now(timezone.utc)

        record.updated_at = datetime.now(timezone.utc)

        movement = StockMovement(
            product_id=product_id,
            location_id=location_id,
            movement_type=movement_type.value,
            quantity=delta_quantity,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            unit_cost=unit_cost,
            reference_type=_enum_value(reference.reference_type),
            reference_id=reference.reference_id,
            reference_number=reference.reference_number,
            notes=reference.notes,
            created_by=created_by,
        )
        self.db.add(movement)
        await self.db.flush()

        logger.info(
            "Stock %s %+d for product %s at %s (%d -> %d, reserved %d)",
            movement_type.value, delta_quantity, product_id, location_id,
            quantity_before, quantity_after, record.reserved_quantity,
        )
        return movement, record

    @staticmethod
    def _revalue(
        record: InventoryRecord,
        quantity_before: int,
        quantity_after: int,
        delta: int,
        unit_cost: Optional[Decimal],
    ) -> None:
        """Weighted average cost on the way in, average cost on the way out."""
        average_cost = Decimal(record.average_cost or 0)
        if delta > 0 and unit_cost is not None:
            unit_cost = Decimal(unit_cost)
            total_value = quantity_before * average_cost + delta * unit_cost
            record.average_cost = (
                (total_value / quantity_after).quantize(COST_PLACES, rounding=ROUND_HALF_UP)
                if quantity_after > 0 else unit_cost
            )
            record.total_value = total_value.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
        else:
            record.total_value = (quantity_after * average_cost).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)

    async def reserve(
        self,
        product_id: uuid.UUID,
        location_id: uuid.UUID,
        quantity: int,
        reference: Optional[MovementReference] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> Tuple[StockMovement, InventoryRecord]:
        """Hold stock for a job sheet or sale; physical quantity is unchanged."""
        if quantity <= 0:
            raise ValidationError("Reservation quantity must be positive")
        return await self.apply_movement(
            product_id, location_id, StockMovementType.RESERVATION, quantity,
            reference=reference, created_by=created_by,
        )

    async def release(
        self,
        product_id: uuid.UUID,
        location_id: uuid.UUID,
        quantity: int,
        reference: Optional[MovementReference] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> Tuple[StockMovement, InventoryRecord]:
        """Give back previously reserved stock."""
        if quantity <= 0:
            raise ValidationError("Release quantity must be positive")
        return await self.apply_movement(
            product_id, location_id, StockMovementType.RELEASE, -quantity,
            reference=reference, created_by=created_by,
        )

    # ==================== READ SIDE ====================

    async def get_record(self, product_id: uuid.UUID, location_id: uuid.UUID) -> InventoryRecord:
        result = await self.db.execute(
            select(InventoryRecord).where(
                and_(
                    InventoryRecord.product_id == product_id,
                    InventoryRecord.location_id == location_id,
                )
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("No inventory recorded for this product at this location")
        return record

    async def get_quantity(self, product_id: uuid.UUID, location_id: uuid.UUID) -> int:
        """On-hand quantity, zero when the pair has never moved."""
        result = await self.db.execute(
            select(InventoryRecord.quantity).where(
                and_(
                    InventoryRecord.product_id == product_id,
                    InventoryRecord.location_id == location_id,
                )
            )
        )
        return result.scalar_one_or_none() or 0

    async def list_movements(
        self,
        product_id: Optional[uuid.UUID] = None,
        location_id: Optional[uuid.UUID] = None,
        movement_type: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[StockMovement], int]:
        """Journal entries, newest first."""
        conditions = []
        if product_id:
            conditions.append(StockMovement.product_id == product_id)
        if location_id:
            conditions.append(StockMovement.location_id == location_id)
        if movement_type:
            conditions.append(StockMovement.movement_type == _enum_value(movement_type))
        if reference_type:
            conditions.append(StockMovement.reference_type == _enum_value(reference_type))
        if reference_id:
            conditions.append(StockMovement.reference_id == reference_id)

        count_query = select(func.count(StockMovement.id))
        query = select(StockMovement)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(StockMovement.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    # ==================== CONSISTENCY CHECK ====================

    async def verify_consistency(
        self,
        product_id: Optional[uuid.UUID] = None,
        location_id: Optional[uuid.UUID] = None,
    ) -> ConsistencyReport:
        """
        Recompute inventory rows from the journal.

        Checks that the running sum of physical deltas equals quantity, that
        the sum of reservation deltas equals reserved_quantity, and that
        every journal entry's before/after arithmetic holds. Read-only.
        """
        report = ConsistencyReport()
        reservation_types = [t.value for t in RESERVATION_MOVEMENT_TYPES]

        record_conditions = []
        movement_conditions = []
        if product_id:
            record_conditions.append(InventoryRecord.product_id == product_id)
            movement_conditions.append(StockMovement.product_id == product_id)
        if location_id:
            record_conditions.append(InventoryRecord.location_id == location_id)
            movement_conditions.append(StockMovement.location_id == location_id)

        is_reservation = StockMovement.movement_type.in_(reservation_types)
        totals_query = (
            select(
                StockMovement.product_id,
                StockMovement.location_id,
                func.coalesce(func.sum(case((is_reservation, 0), else_=StockMovement.quantity)), 0),
                func.coalesce(func.sum(case((is_reservation, StockMovement.quantity), else_=0)), 0),
                func.count(StockMovement.id),
            )
            .group_by(StockMovement.product_id, StockMovement.location_id)
        )
        if movement_conditions:
            totals_query = totals_query.where(and_(*movement_conditions))
        totals = {
            (row[0], row[1]): (int(row[2]), int(row[3]), int(row[4]))
            for row in (await self.db.execute(totals_query)).all()
        }

        records_query = select(InventoryRecord)
        if record_conditions:
            records_query = records_query.where(and_(*record_conditions))
        records = (await self.db.execute(records_query)).scalars().all()

        seen = set()
        for record in records:
            key = (record.product_id, record.location_id)
            seen.add(key)
            report.records_checked += 1
            physical, reserved, count = totals.get(key, (0, 0, 0))
            report.movements_checked += count
            if physical != record.quantity:
                report.discrepancies.append(LedgerDiscrepancy(
                    record.product_id, record.location_id, "QUANTITY", physical, record.quantity,
                ))
            if reserved != record.reserved_quantity:
                report.discrepancies.append(LedgerDiscrepancy(
                    record.product_id, record.location_id, "RESERVED", reserved, record.reserved_quantity,
                ))

        for key, (physical, reserved, count) in totals.items():
            if key not in seen:
                report.movements_checked += count
                report.discrepancies.append(LedgerDiscrepancy(key[0], key[1], "MISSING_RECORD", physical, 0))

        # Per-entry arithmetic
        arithmetic_query = select(StockMovement).where(
            or_(
                and_(is_reservation, StockMovement.quantity_after != StockMovement.quantity_before),
                and_(
                    ~is_reservation,
                    (StockMovement.quantity_after - StockMovement.quantity_before) != StockMovement.quantity,
                ),
            )
        )
        if movement_conditions:
            arithmetic_query = arithmetic_query.where(and_(*movement_conditions))
        for movement in (await self.db.execute(arithmetic_query)).scalars().all():
            expected = movement.quantity_before if movement.is_reservation else movement.quantity_before + movement.quantity
            report.discrepancies.append(LedgerDiscrepancy(
                movement.product_id, movement.location_id, "MOVEMENT_ARITHMETIC",
                expected, movement.quantity_after, movement_id=movement.id,
            ))

        if report.discrepancies:
            logger.warning(
                "Inventory consistency check found %d discrepancies in %d records",
                len(report.discrepancies), report.records_checked,
            )
        return report
