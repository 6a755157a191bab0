"""Tests for the goods receipt workflow."""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from app.core.exceptions import (
    ValidationError, NotFoundError, InvalidStateError, ConflictError, OverReceiptError,
)
from app.models import (
    GoodsReceipt, GoodsReceiptItem, PurchaseOrder, PurchaseOrderItem, StockMovement,
    PurchaseOrderStatus, NotificationEvent,
)
from app.schemas.goods_receipt import (
    GoodsReceiptCreate, GoodsReceiptItemCreate, GoodsReceiptUpdate,
    QualityCheckItem, QualityCheckRequest,
)
from app.services.goods_receipt_service import GoodsReceiptService
from app.services.inventory_ledger import InventoryLedger


def receipt_for(po, quantities, accepted=None, **extra) -> GoodsReceiptCreate:
    """Build a create request from {product_id: received} (accepted defaults to received)."""
    ordered = {item.product_id: item.quantity for item in po.items}
    accepted = accepted if accepted is not None else quantities
    return GoodsReceiptCreate(
        purchase_order_id=po.id,
        items=[
            GoodsReceiptItemCreate(
                product_id=product_id,
                ordered_quantity=ordered[product_id],
                received_quantity=received,
                accepted_quantity=accepted.get(product_id, 0),
            )
            for product_id, received in quantities.items()
        ],
        **extra,
    )


async def _movements_for(db, reference_id):
    result = await db.execute(select(StockMovement).where(StockMovement.reference_id == reference_id))
    return list(result.scalars().all())


async def _po_item(db, po_id, product_id) -> PurchaseOrderItem:
    result = await db.execute(
        select(PurchaseOrderItem)
        .where(PurchaseOrderItem.purchase_order_id == po_id, PurchaseOrderItem.product_id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestCreateGoodsReceipt:
    async def test_full_receipt_is_pending_and_leaves_stock_alone(
        self, db, notifier, user_id, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)

        grn, completes = await service.create_goods_receipt(
            receipt_for(po, {product.id: 10}, invoice_number="INV-7788"), user_id=user_id,
        )

        assert grn.status == "PENDING_QC"
        assert grn.receipt_number.startswith("GRN-")
        assert grn.destination_location_id == main_location.id
        assert grn.received_by == user_id
        assert grn.total_value == Decimal("80.00")
        assert completes is True

        [item] = grn.items
        assert item.unit_price == Decimal("8.00")
        assert item.accepted_quantity == 10

        assert po.status == "CONFIRMED"
        assert await InventoryLedger(db).get_quantity(product.id, main_location.id) == 0
        assert await db.scalar(select(func.count(StockMovement.id))) == 0
        assert notifier.events == [NotificationEvent.GRN_CREATED]

    async def test_partial_receipt_does_not_complete(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        _, completes = await GoodsReceiptService(db, notifier).create_goods_receipt(receipt_for(po, {product.id: 6}))
        assert completes is False

    async def test_receipt_numbers_increase(self, db, notifier, main_location, product, make_purchase_order):
        service = GoodsReceiptService(db, notifier)
        first_po = await make_purchase_order([(product, 5, "8.00")])
        second_po = await make_purchase_order([(product, 5, "8.00")])

        first, _ = await service.create_goods_receipt(receipt_for(first_po, {product.id: 5}))
        second, _ = await service.create_goods_receipt(receipt_for(second_po, {product.id: 5}))

        assert first.receipt_number.endswith("-0001")
        assert second.receipt_number.endswith("-0002")

    async def test_draft_purchase_order_cannot_be_received(
        self, db, notifier, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")], status=PurchaseOrderStatus.DRAFT)
        with pytest.raises(InvalidStateError, match="DRAFT"):
            await GoodsReceiptService(db, notifier).create_goods_receipt(receipt_for(po, {product.id: 10}))
        assert notifier.calls == []

    async def test_second_receipt_waits_for_first_approval(
        self, db, notifier, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        data = receipt_for(po, {product.id: 3})
        service = GoodsReceiptService(db, notifier)
        await service.create_goods_receipt(data)

        with pytest.raises(ConflictError, match="not confirmed yet"):
            await service.create_goods_receipt(data)

    async def test_over_receipt_on_create(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        with pytest.raises(OverReceiptError) as exc_info:
            await GoodsReceiptService(db, notifier).create_goods_receipt(receipt_for(po, {product.id: 11}))
        assert exc_info.value.remaining == 10
        assert await db.scalar(select(func.count(GoodsReceipt.id))) == 0

    async def test_product_not_on_purchase_order(
        self, db, notifier, main_location, product, second_product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        data = GoodsReceiptCreate(
            purchase_order_id=po.id,
            items=[GoodsReceiptItemCreate(product_id=second_product.id, ordered_quantity=10, received_quantity=1)],
        )
        with pytest.raises(ValidationError, match="not found in purchase order"):
            await GoodsReceiptService(db, notifier).create_goods_receipt(data)

    async def test_item_checks(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        po_id, product_id = po.id, product.id
        service = GoodsReceiptService(db, notifier)

        def request(**item):
            fields = {"product_id": product_id, "ordered_quantity": 10, "received_quantity": 5}
            fields.update(item)
            return GoodsReceiptCreate(purchase_order_id=po_id, items=[GoodsReceiptItemCreate(**fields)])

        with pytest.raises(ValidationError, match="Ordered quantity mismatch"):
            await service.create_goods_receipt(request(ordered_quantity=9))
        with pytest.raises(ValidationError, match="greater than 0"):
            await service.create_goods_receipt(request(received_quantity=0))
        with pytest.raises(ValidationError, match="exceeds received"):
            await service.create_goods_receipt(request(accepted_quantity=4, rejected_quantity=2))

    async def test_duplicate_product_lines(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        line = GoodsReceiptItemCreate(product_id=product.id, ordered_quantity=10, received_quantity=2)
        data = GoodsReceiptCreate(purchase_order_id=po.id, items=[line, line])
        with pytest.raises(ValidationError, match="more than once"):
            await GoodsReceiptService(db, notifier).create_goods_receipt(data)

    async def test_purchase_order_supplier_must_exist(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        request = receipt_for(po, {product.id: 10})
        po.supplier_id = uuid.uuid4()
        await db.commit()

        with pytest.raises(NotFoundError, match="Supplier not found"):
            await GoodsReceiptService(db, notifier).create_goods_receipt(request)
        assert await db.scalar(select(func.count(GoodsReceipt.id))) == 0

    async def test_missing_main_warehouse(self, db, notifier, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        with pytest.raises(NotFoundError, match="Main warehouse"):
            await GoodsReceiptService(db, notifier).create_goods_receipt(receipt_for(po, {product.id: 10}))


class TestQualityCheck:
    async def test_all_items_decided_moves_to_inspecting(
        self, db, notifier, user_id, main_location, product, second_product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00"), (second_product, 4, "2.50")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(
            receipt_for(po, {product.id: 10, second_product.id: 4}, accepted={})
        )
        items = {item.product_id: item for item in grn.items}

        grn = await service.perform_quality_check(grn.id, QualityCheckRequest(items=[
            QualityCheckItem(
                item_id=items[product.id].id, accepted_quantity=8, rejected_quantity=2,
                quality_status="PARTIAL", rejection_reason="Cracked casing",
            ),
        ]), user_id=user_id)
        assert grn.status == "PENDING_QC"

        grn = await service.perform_quality_check(grn.id, QualityCheckRequest(items=[
            QualityCheckItem(
                item_id=items[second_product.id].id, accepted_quantity=4, rejected_quantity=0,
                quality_status="ACCEPTED",
            ),
        ]), user_id=user_id)

        assert grn.status == "INSPECTING"
        assert grn.quality_check_by == user_id
        assert grn.total_value == Decimal("74.00")
        assert await db.scalar(select(func.count(StockMovement.id))) == 0

    async def test_quantities_must_fit_received(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 5}, accepted={}))

        with pytest.raises(ValidationError, match="exceeds received quantity"):
            await service.perform_quality_check(grn.id, QualityCheckRequest(items=[
                QualityCheckItem(
                    item_id=grn.items[0].id, accepted_quantity=5, rejected_quantity=1, quality_status="PARTIAL",
                ),
            ]))

    async def test_unknown_item(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 5}))

        with pytest.raises(NotFoundError):
            await service.perform_quality_check(grn.id, QualityCheckRequest(items=[
                QualityCheckItem(
                    item_id=po.id, accepted_quantity=1, rejected_quantity=0, quality_status="ACCEPTED",
                ),
            ]))


class TestApproveGoodsReceipt:
    async def test_full_receipt_stocks_and_completes_purchase_order(
        self, db, notifier, user_id, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}))

        grn = await service.approve_goods_receipt(grn.id, main_location.id, user_id=user_id, notes="Checked by store")

        assert grn.status == "COMPLETED"
        assert grn.approved_by == user_id
        assert grn.approved_location_id == main_location.id
        assert grn.total_value == Decimal("80.00")
        assert grn.notes == "Checked by store"

        [movement] = await _movements_for(db, grn.id)
        assert movement.movement_type == "PURCHASE"
        assert movement.reference_type == "GOODS_RECEIPT"
        assert movement.reference_number == grn.receipt_number
        assert (movement.quantity_before, movement.quantity_after) == (0, 10)
        assert movement.unit_cost == Decimal("8.00")

        record = await InventoryLedger(db).get_record(product.id, main_location.id)
        assert record.quantity == 10
        assert record.average_cost == Decimal("8.00")

        po = await db.get(PurchaseOrder, po.id, populate_existing=True)
        assert po.status == "RECEIVED"
        assert po.received_date is not None
        assert (await _po_item(db, po.id, product.id)).received_quantity == 10
        assert notifier.events == [NotificationEvent.GRN_CREATED, NotificationEvent.GRN_COMPLETED]

    async def test_partial_receipt_then_over_receipt(
        self, db, notifier, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 6}))
        await service.approve_goods_receipt(grn.id, main_location.id)
        second_request = receipt_for(po, {product.id: 5})

        po = await db.get(PurchaseOrder, po.id, populate_existing=True)
        assert po.status == "PARTIALLY_RECEIVED"
        assert (await _po_item(db, po.id, product.id)).received_quantity == 6

        with pytest.raises(OverReceiptError) as exc_info:
            await service.create_goods_receipt(second_request)
        assert exc_info.value.remaining == 4

    async def test_rejected_units_never_reach_stock(
        self, db, notifier, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}, accepted={}))
        await service.perform_quality_check(grn.id, QualityCheckRequest(items=[
            QualityCheckItem(
                item_id=grn.items[0].id, accepted_quantity=7, rejected_quantity=3, quality_status="PARTIAL",
            ),
        ]))

        grn = await service.approve_goods_receipt(grn.id, main_location.id)

        assert grn.total_value == Decimal("56.00")
        assert await InventoryLedger(db).get_quantity(product.id, main_location.id) == 7
        po = await db.get(PurchaseOrder, po.id, populate_existing=True)
        assert po.status == "PARTIALLY_RECEIVED"

    async def test_second_approval_conflicts_and_adds_nothing(
        self, db, notifier, main_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}))
        grn_id, location_id, product_id = grn.id, main_location.id, product.id
        await service.approve_goods_receipt(grn_id, location_id)

        with pytest.raises(ConflictError, match="already completed"):
            await service.approve_goods_receipt(grn_id, location_id)

        assert await InventoryLedger(db).get_quantity(product_id, location_id) == 10
        assert len(await _movements_for(db, grn_id)) == 1

    async def test_unknown_location_rolls_back(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}))
        grn_id = grn.id

        with pytest.raises(NotFoundError, match="Location not found"):
            await service.approve_goods_receipt(grn_id, po.id)

        grn = await service.get_goods_receipt(grn_id)
        assert grn.status == "PENDING_QC"
        assert await db.scalar(select(func.count(StockMovement.id))) == 0

    async def test_approve_into_branch_location(
        self, db, notifier, main_location, branch_location, product, make_purchase_order,
    ):
        po = await make_purchase_order([(product, 4, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 4}))

        await service.approve_goods_receipt(grn.id, branch_location.id)

        ledger = InventoryLedger(db)
        assert await ledger.get_quantity(product.id, branch_location.id) == 4
        assert await ledger.get_quantity(product.id, main_location.id) == 0
        assert (await ledger.verify_consistency()).is_consistent


class TestUpdateDelete:
    async def test_update_open_receipt(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}, notes="Two boxes"))

        grn = await service.update_goods_receipt(grn.id, GoodsReceiptUpdate(invoice_number="INV-1234"))
        assert grn.invoice_number == "INV-1234"
        assert grn.notes == "Two boxes"

    async def test_completed_receipt_is_immutable(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}))
        grn_id = grn.id
        await service.approve_goods_receipt(grn_id, main_location.id)

        with pytest.raises(InvalidStateError):
            await service.update_goods_receipt(grn_id, GoodsReceiptUpdate(notes="late edit"))
        with pytest.raises(InvalidStateError, match="Cannot delete completed"):
            await service.delete_goods_receipt(grn_id)

    async def test_delete_open_receipt_removes_items(self, db, notifier, main_location, product, make_purchase_order):
        po = await make_purchase_order([(product, 10, "8.00")])
        service = GoodsReceiptService(db, notifier)
        grn, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}))

        await service.delete_goods_receipt(grn.id)

        assert await db.scalar(select(func.count(GoodsReceipt.id))) == 0
        assert await db.scalar(select(func.count(GoodsReceiptItem.id))) == 0
        with pytest.raises(NotFoundError):
            await service.get_goods_receipt(grn.id)

        # The purchase order is open for receiving again
        replacement, _ = await service.create_goods_receipt(receipt_for(po, {product.id: 10}))
        assert replacement.status == "PENDING_QC"


class TestReadSide:
    async def test_list_search_and_stats(self, db, notifier, main_location, product, make_purchase_order):
        service = GoodsReceiptService(db, notifier)
        first_po = await make_purchase_order([(product, 10, "8.00")])
        second_po = await make_purchase_order([(product, 5, "8.00")])
        first, _ = await service.create_goods_receipt(receipt_for(first_po, {product.id: 10}))
        second, _ = await service.create_goods_receipt(
            receipt_for(second_po, {product.id: 5}, invoice_number="SUP-INV-42")
        )
        await service.approve_goods_receipt(first.id, main_location.id)

        listing = await service.list_goods_receipts()
        assert listing["total"] == 2
        assert listing["pages"] == 1

        assert (await service.list_goods_receipts(status="COMPLETED"))["total"] == 1
        assert (await service.list_goods_receipts(search="SUP-INV"))["items"][0].id == second.id
        assert (await service.list_goods_receipts(search=first_po.po_number))["items"][0].id == first.id

        by_po = await service.get_goods_receipts_by_purchase_order(second_po.id)
        assert [g.id for g in by_po] == [second.id]

        stats = await service.get_stats()
        assert stats["total"] == 2
        assert stats["pending_qc"] == 1
        assert stats["completed"] == 1
        assert stats["completed_value"] == Decimal("80.00")
