"""
Goods Receipt (GRN) workflow.

Lifecycle:
    create (PENDING_QC) -> quality check (PENDING_QC / INSPECTING) -> approve (COMPLETED)

Only approval touches inventory: each accepted line becomes a PURCHASE
movement at the approving location and the PO line's received quantity is
advanced in the same transaction. Creation and quality check only record
what arrived.
"""
import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    ValidationError, NotFoundError, InvalidStateError, ConflictError, OverReceiptError,
)
from app.models.purchase import (
    PurchaseOrder, PurchaseOrderItem, GoodsReceipt, GoodsReceiptItem,
    GoodsReceiptStatus, PurchaseOrderStatus, ItemQualityStatus,
)
from app.models.inventory import StockMovementType, ReferenceType
from app.models.document_sequence import DocumentType
from app.models.notifications import NotificationEvent
from app.schemas.goods_receipt import GoodsReceiptCreate, GoodsReceiptUpdate, QualityCheckRequest
from app.services.directories import LocationDirectory, SupplierDirectory
from app.services.document_sequence_service import DocumentSequenceService
from app.services.inventory_ledger import InventoryLedger, MovementReference
from app.services.notification_service import NotificationDispatcher
from app.services.status_transitions import (
    EntityKind, transition_entity, can_receive_goods, can_delete_goods_receipt,
)
from app.services.transaction import transaction_scope


logger = logging.getLogger(__name__)


class GoodsReceiptService:
    """Receiving workflow against purchase orders."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.notifier = notifier or NotificationDispatcher()
        self.ledger = InventoryLedger(db)
        self.locations = LocationDirectory(db)
        self.suppliers = SupplierDirectory(db)
        self.sequences = DocumentSequenceService(db)

    # ==================== LOADERS ====================

    async def _lock_goods_receipt(self, grn_id: uuid.UUID) -> GoodsReceipt:
        result = await self.db.execute(
            select(GoodsReceipt)
            .options(selectinload(GoodsReceipt.items))
            .where(GoodsReceipt.id == grn_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        grn = result.scalar_one_or_none()
        if not grn:
            raise NotFoundError("Goods receipt not found")
        return grn

    async def _lock_purchase_order(self, po_id: uuid.UUID) -> PurchaseOrder:
        result = await self.db.execute(
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items))
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        po = result.scalar_one_or_none()
        if not po:
            raise NotFoundError("Purchase order not found")
        return po

    async def _has_open_receipt(self, po_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(func.count(GoodsReceipt.id)).where(
                and_(
                    GoodsReceipt.purchase_order_id == po_id,
                    GoodsReceipt.status != GoodsReceiptStatus.COMPLETED.value,
                )
            )
        )
        return (result.scalar() or 0) > 0

    # ==================== CREATE ====================

    async def create_goods_receipt(
        self,
        data: GoodsReceiptCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> Tuple[GoodsReceipt, bool]:
        """
        Record goods arriving against a PO.

        Returns:
            (goods receipt, completes_purchase_order) where the flag tells
            whether every PO line would be fully accepted once this receipt
            is approved.

        Raises:
            NotFoundError: PO, its supplier or main warehouse location missing
            InvalidStateError: PO not in a receivable status
            ConflictError: PO already has a receipt awaiting approval
            ValidationError: item does not match the PO
            OverReceiptError: item would take the line past its ordered quantity
        """
        async with transaction_scope(self.db):
            po = await self._lock_purchase_order(data.purchase_order_id)

            if not can_receive_goods(po.status):
                raise InvalidStateError(
                    f"Cannot receive goods against purchase order in '{po.status}' status. "
                    "Purchase order must be submitted or confirmed."
                )

            await self.suppliers.get_supplier(po.supplier_id)

            if await self._has_open_receipt(po.id):
                raise ConflictError(
                    "Cannot create goods receipt. Previous goods receipt is not confirmed yet."
                )

            po_items = {item.product_id: item for item in po.items}
            seen_products = set()
            for item in data.items:
                po_item = po_items.get(item.product_id)
                if po_item is None:
                    raise ValidationError(f"Product {item.product_id} not found in purchase order")
                if item.product_id in seen_products:
                    raise ValidationError(f"Product {item.product_id} appears more than once")
                seen_products.add(item.product_id)

                if item.ordered_quantity != po_item.quantity:
                    raise ValidationError(f"Ordered quantity mismatch for product {item.product_id}")
                if item.received_quantity <= 0:
                    raise ValidationError(
                        f"Received quantity must be greater than 0 for product {item.product_id}"
                    )
                if item.accepted_quantity + item.rejected_quantity > item.received_quantity:
                    raise ValidationError(
                        f"Accepted plus rejected quantity exceeds received quantity for product {item.product_id}"
                    )

                already_received = po_item.received_quantity or 0
                if already_received + item.received_quantity > po_item.quantity:
                    remaining = po_item.quantity - already_received
                    raise OverReceiptError(
                        f"Cannot receive {item.received_quantity} units of product {item.product_id}. "
                        f"Ordered: {po_item.quantity}, Already received: {already_received}, "
                        f"Remaining: {remaining}. You can only receive up to {remaining} more units.",
                        remaining=remaining,
                    )

            destination = await self.locations.get_main_warehouse_location()
            receipt_number = await self.sequences.get_next_number(DocumentType.GOODS_RECEIPT)

            grn = GoodsReceipt(
                receipt_number=receipt_number,
                purchase_order_id=po.id,
                destination_location_id=destination.id,
                status=GoodsReceiptStatus.PENDING_QC.value,
                receipt_date=data.receipt_date or datetime.now(timezone.utc),
                received_by=user_id,
                invoice_number=data.invoice_number,
                invoice_date=data.invoice_date,
                notes=data.notes,
            )

            total_value = Decimal("0")
            for item in data.items:
                unit_price = po_items[item.product_id].unit_price
                grn.items.append(GoodsReceiptItem(
                    product_id=item.product_id,
                    ordered_quantity=item.ordered_quantity,
                    received_quantity=item.received_quantity,
                    accepted_quantity=item.accepted_quantity,
                    rejected_quantity=item.rejected_quantity,
                    quality_status=item.quality_status.value,
                    rejection_reason=item.rejection_reason,
                    unit_price=unit_price,
                    batch_number=item.batch_number,
                    expiry_date=item.expiry_date,
                    notes=item.notes,
                ))
                total_value += item.received_quantity * unit_price
            grn.total_value = total_value
            self.db.add(grn)
            await self.db.flush()

            accepted_now = {item.product_id: item.accepted_quantity for item in data.items}
            completes_purchase_order = all(
                (po_item.received_quantity or 0) + accepted_now.get(po_item.product_id, 0) >= po_item.quantity
                for po_item in po.items
            )
            po_number = po.po_number

        logger.info(
            "Created goods receipt %s for PO %s (%d items, completes PO: %s)",
            grn.receipt_number, po_number, len(grn.items), completes_purchase_order,
        )
        await self.notifier.notify(
            NotificationEvent.GRN_CREATED,
            {"goods_receipt_id": grn.id, "purchase_order_id": grn.purchase_order_id},
            {"receipt_number": grn.receipt_number, "po_number": po_number},
        )
        return grn, completes_purchase_order

    # ==================== QUALITY CHECK ====================

    async def perform_quality_check(
        self,
        grn_id: uuid.UUID,
        data: QualityCheckRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> GoodsReceipt:
        """
        Record accepted/rejected quantities per item.

        The receipt moves to INSPECTING once every item has a decided
        quality status, otherwise it stays PENDING_QC. Inventory is not
        touched; that happens on approval.
        """
        async with transaction_scope(self.db):
            grn = await self._lock_goods_receipt(grn_id)
            if grn.status != GoodsReceiptStatus.PENDING_QC.value:
                raise InvalidStateError("Goods receipt is not pending quality check")

            items_by_id = {item.id: item for item in grn.items}
            for result in data.items:
                item = items_by_id.get(result.item_id)
                if item is None:
                    raise NotFoundError(f"Goods receipt item {result.item_id} not found")
                if result.accepted_quantity + result.rejected_quantity > item.received_quantity:
                    raise ValidationError(
                        f"Accepted ({result.accepted_quantity}) plus rejected ({result.rejected_quantity}) "
                        f"exceeds received quantity ({item.received_quantity}) for product {item.product_id}"
                    )
                item.accepted_quantity = result.accepted_quantity
                item.rejected_quantity = result.rejected_quantity
                item.quality_status = result.quality_status.value
                item.rejection_reason = result.rejection_reason

            all_decided = all(item.quality_status != ItemQualityStatus.PENDING.value for item in grn.items)
            new_status = GoodsReceiptStatus.INSPECTING if all_decided else GoodsReceiptStatus.PENDING_QC
            transition_entity(grn, EntityKind.GOODS_RECEIPT, new_status)

            grn.quality_check_by = user_id
            grn.quality_check_date = datetime.now(timezone.utc)
            grn.quality_check_notes = data.quality_check_notes
            grn.total_value = sum(
                (item.accepted_quantity * item.unit_price for item in grn.items), Decimal("0")
            )

        logger.info("Quality check on %s: status %s", grn.receipt_number, grn.status)
        return grn

    # ==================== APPROVE ====================

    async def approve_goods_receipt(
        self,
        grn_id: uuid.UUID,
        location_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> GoodsReceipt:
        """
        Post accepted quantities to stock and advance the PO.

        All of it is one transaction: the GRN row lock makes a concurrent
        second approval wait and then see COMPLETED.

        Raises:
            NotFoundError: GRN or location missing
            ConflictError: GRN already approved
            OverReceiptError: PO line would exceed its ordered quantity
            InvalidStateError: PO can no longer be received against
        """
        async with transaction_scope(self.db):
            grn = await self._lock_goods_receipt(grn_id)
            if grn.status == GoodsReceiptStatus.COMPLETED.value:
                raise ConflictError("Goods receipt already completed")

            location = await self.locations.get_location(location_id)
            po = await self._lock_purchase_order(grn.purchase_order_id)
            po_items: Dict[uuid.UUID, PurchaseOrderItem] = {item.product_id: item for item in po.items}

            total_value = Decimal("0")
            items_received = 0
            reference = MovementReference(
                reference_type=ReferenceType.GOODS_RECEIPT,
                reference_id=grn.id,
                reference_number=grn.receipt_number,
                notes=f"Received from supplier via {grn.receipt_number}",
            )

            for item in sorted(grn.items, key=lambda i: str(i.product_id)):
                if item.accepted_quantity <= 0:
                    continue
                po_item = po_items.get(item.product_id)
                if po_item is None:
                    raise ValidationError(f"Product {item.product_id} not found in purchase order")

                already_received = po_item.received_quantity or 0
                if already_received + item.accepted_quantity > po_item.quantity:
                    remaining = po_item.quantity - already_received
                    raise OverReceiptError(
                        f"Cannot accept {item.accepted_quantity} units of product {item.product_id}. "
                        f"Ordered: {po_item.quantity}, Already received: {already_received}, "
                        f"Remaining: {remaining}.",
                        remaining=remaining,
                    )

                await self.ledger.apply_movement(
                    item.product_id,
                    location.id,
                    StockMovementType.PURCHASE,
                    item.accepted_quantity,
                    reference=reference,
                    unit_cost=item.unit_price,
                    created_by=user_id,
                )
                po_item.received_quantity = already_received + item.accepted_quantity
                total_value += item.accepted_quantity * item.unit_price
                items_received += item.accepted_quantity

            now = datetime.now(timezone.utc)
            transition_entity(grn, EntityKind.GOODS_RECEIPT, GoodsReceiptStatus.COMPLETED)
            grn.approved_by = user_id
            grn.approved_at = now
            grn.approved_location_id = location.id
            grn.total_value = total_value
            if grn.quality_check_date is None:
                grn.quality_check_by = user_id
                grn.quality_check_date = now
            if notes:
                grn.notes = f"{grn.notes}\n{notes}" if grn.notes else notes

            fully_received = all((i.received_quantity or 0) >= i.quantity for i in po.items)
            po_status = (
                PurchaseOrderStatus.RECEIVED if fully_received else PurchaseOrderStatus.PARTIALLY_RECEIVED
            )
            transition_entity(po, EntityKind.PURCHASE_ORDER, po_status)
            if fully_received:
                po.received_date = now
            po_number = po.po_number
            po_status_value = po.status

        logger.info(
            "Approved goods receipt %s: %d units (%s) into %s, PO %s now %s",
            grn.receipt_number, items_received, total_value, location_id, po_number, po_status_value,
        )
        await self.notifier.notify(
            NotificationEvent.GRN_COMPLETED,
            {"goods_receipt_id": grn.id, "purchase_order_id": grn.purchase_order_id},
            {
                "receipt_number": grn.receipt_number,
                "po_number": po_number,
                "po_status": po_status_value,
                "items_received": items_received,
                "total_value": total_value,
            },
        )
        return grn

    # ==================== UPDATE / DELETE ====================

    async def update_goods_receipt(self, grn_id: uuid.UUID, data: GoodsReceiptUpdate) -> GoodsReceipt:
        """Header fields only, while the receipt is still open."""
        async with transaction_scope(self.db):
            grn = await self._lock_goods_receipt(grn_id)
            if grn.status == GoodsReceiptStatus.COMPLETED.value:
                raise InvalidStateError("Cannot update completed goods receipt")

            for field, value in data.model_dump(exclude_unset=True).items():
                setattr(grn, field, value)
            grn.updated_at = datetime.now(timezone.utc)

        return grn

    async def delete_goods_receipt(self, grn_id: uuid.UUID) -> None:
        """Remove an unapproved receipt and its items; nothing else changes."""
        async with transaction_scope(self.db):
            grn = await self._lock_goods_receipt(grn_id)
            if not can_delete_goods_receipt(grn.status):
                raise InvalidStateError("Cannot delete completed goods receipt")
            receipt_number = grn.receipt_number
            await self.db.delete(grn)

        logger.info("Deleted goods receipt %s", receipt_number)

    # ==================== READ SIDE ====================

    async def get_goods_receipt(self, grn_id: uuid.UUID) -> GoodsReceipt:
        result = await self.db.execute(
            select(GoodsReceipt)
            .options(selectinload(GoodsReceipt.items))
            .where(GoodsReceipt.id == grn_id)
        )
        grn = result.scalar_one_or_none()
        if not grn:
            raise NotFoundError("Goods receipt not found")
        return grn

    async def list_goods_receipts(
        self,
        purchase_order_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        """Paginated receipts, newest first. Search matches receipt, invoice and PO numbers."""
        conditions = []
        if purchase_order_id:
            conditions.append(GoodsReceipt.purchase_order_id == purchase_order_id)
        if status:
            conditions.append(GoodsReceipt.status == status)
        if start_date:
            conditions.append(GoodsReceipt.receipt_date >= start_date)
        if end_date:
            conditions.append(GoodsReceipt.receipt_date <= end_date)
        if search:
            pattern = f"%{search}%"
            po_ids = select(PurchaseOrder.id).where(PurchaseOrder.po_number.ilike(pattern))
            conditions.append(
                or_(
                    GoodsReceipt.receipt_number.ilike(pattern),
                    GoodsReceipt.invoice_number.ilike(pattern),
                    GoodsReceipt.purchase_order_id.in_(po_ids),
                )
            )

        count_query = select(func.count(GoodsReceipt.id))
        query = select(GoodsReceipt).options(selectinload(GoodsReceipt.items))
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(GoodsReceipt.created_at.desc()).offset((page - 1) * size).limit(size)
        )

        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": math.ceil(total / size) if size else 0,
        }

    async def get_goods_receipts_by_purchase_order(self, purchase_order_id: uuid.UUID) -> List[GoodsReceipt]:
        result = await self.db.execute(
            select(GoodsReceipt)
            .options(selectinload(GoodsReceipt.items))
            .where(GoodsReceipt.purchase_order_id == purchase_order_id)
            .order_by(GoodsReceipt.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_stats(self) -> Dict[str, Any]:
        result = await self.db.execute(
            select(GoodsReceipt.status, func.count(GoodsReceipt.id), func.sum(GoodsReceipt.total_value))
            .group_by(GoodsReceipt.status)
        )
        counts: Dict[str, int] = {}
        completed_value = Decimal("0")
        for status, count, value in result.all():
            counts[status] = count
            if status == GoodsReceiptStatus.COMPLETED.value and value is not None:
                completed_value = Decimal(str(value))

        return {
            "total": sum(counts.values()),
            "pending_qc": counts.get(GoodsReceiptStatus.PENDING_QC.value, 0),
            "inspecting": counts.get(GoodsReceiptStatus.INSPECTING.value, 0),
            "completed": counts.get(GoodsReceiptStatus.COMPLETED.value, 0),
            "completed_value": completed_value,
        }
