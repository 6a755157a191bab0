"""Tests for the product return workflow."""
from decimal import Decimal

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError, NotFoundError, InvalidStateError, OverRefundError
from app.models import (
    ProductReturn, Sale, SaleRefund, StockMovement, WarrantyClaim, NotificationEvent,
)
from app.schemas.product_return import (
    ProductReturnCreate, InspectReturnRequest, ApproveReturnRequest,
    RejectReturnRequest, ProcessReturnRequest,
)
from app.services.inventory_ledger import InventoryLedger
from app.services.product_return_service import ProductReturnService


def return_request(product, location, **overrides) -> ProductReturnCreate:
    fields = {
        "location_id": location.id,
        "product_id": product.id,
        "quantity": 1,
        "source_type": "DIRECT",
        "return_reason": "Stopped charging after two days",
        "return_category": "DEFECTIVE",
    }
    fields.update(overrides)
    return ProductReturnCreate(**fields)


async def _approved_return(service, request, resolution="REFUND_PROCESSED", refund_amount=None):
    product_return = await service.create_return(request)
    await service.inspect_return(product_return.id, InspectReturnRequest(
        condition="DEFECTIVE", recommended_action="APPROVE", inspection_notes="Port damaged",
    ))
    return await service.approve_return(product_return.id, ApproveReturnRequest(
        resolution_type=resolution, refund_amount=refund_amount,
    ))


async def _movement_count(db) -> int:
    return await db.scalar(select(func.count(StockMovement.id)))


class TestCreateReturn:
    async def test_create_from_customer(self, db, notifier, user_id, product, branch_location, customer):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(
            return_request(
                product, branch_location, customer_id=customer.id, batch_number="B-7", notes="Box included",
                product_value=Decimal("15.00"),
            ),
            user_id=user_id,
        )

        assert product_return.status == "RECEIVED"
        assert product_return.return_number.startswith("RTN-")
        assert product_return.customer_name == "Nimal Perera"
        assert product_return.customer_phone == "0771234567"
        assert product_return.notes == "Batch: B-7; Box included"
        assert product_return.condition == "USED_GOOD"
        assert product_return.priority == "NORMAL"
        assert product_return.created_by == user_id
        assert await _movement_count(db) == 0

        [(event, entity_ids, context)] = notifier.calls
        assert event == NotificationEvent.RETURN_CREATED
        assert entity_ids["product_return_id"] == product_return.id
        assert context["product_name"] == "20W Phone Charger"
        assert context["customer_phone"] == "0771234567"

    @pytest.mark.parametrize("overrides, message", [
        ({"quantity": 0}, "minimum 1"),
        ({"return_reason": "   "}, "reason is required"),
        ({"product_value": Decimal("-1")}, "product value"),
        ({"source_type": "SALE"}, "Sale ID is required"),
    ])
    async def test_invalid_requests(self, db, notifier, product, branch_location, overrides, message):
        with pytest.raises(ValidationError, match=message):
            await ProductReturnService(db, notifier).create_return(
                return_request(product, branch_location, **overrides)
            )
        assert await db.scalar(select(func.count(ProductReturn.id))) == 0

    async def test_unknown_references(self, db, notifier, product, branch_location, main_location):
        service = ProductReturnService(db, notifier)
        with pytest.raises(NotFoundError, match="Product not found"):
            await service.create_return(return_request(product, branch_location, product_id=main_location.id))
        with pytest.raises(NotFoundError, match="Location not found"):
            await service.create_return(return_request(product, branch_location, location_id=product.id))
        with pytest.raises(NotFoundError, match="Source sale not found"):
            await service.create_return(
                return_request(product, branch_location, source_type="SALE", source_id=product.id)
            )
        with pytest.raises(NotFoundError, match="Source warranty claim not found"):
            await service.create_return(
                return_request(product, branch_location, source_type="WARRANTY_CLAIM", source_id=product.id)
            )

    async def test_warranty_claim_source(self, db, notifier, product, branch_location):
        claim = WarrantyClaim(claim_number="WC-2026-0001")
        db.add(claim)
        await db.commit()

        product_return = await ProductReturnService(db, notifier).create_return(
            return_request(product, branch_location, source_type="WARRANTY_CLAIM", source_id=claim.id,
                           return_category="WARRANTY_RETURN")
        )
        assert product_return.source_id == claim.id


class TestInspectApproveReject:
    async def test_inspection_outcomes(self, db, notifier, user_id, product, branch_location):
        service = ProductReturnService(db, notifier)

        further = await service.create_return(return_request(product, branch_location))
        further = await service.inspect_return(further.id, InspectReturnRequest(
            condition="USED_FAIR", recommended_action="FURTHER_INSPECTION",
        ), user_id=user_id)
        assert further.status == "INSPECTING"
        assert further.condition == "USED_FAIR"
        assert further.inspected_by == user_id

        # Another pass from INSPECTING
        further = await service.inspect_return(further.id, InspectReturnRequest(
            condition="USED_FAIR", recommended_action="APPROVE",
        ))
        assert further.status == "PENDING_APPROVAL"

        rejected = await service.create_return(return_request(product, branch_location))
        rejected = await service.inspect_return(rejected.id, InspectReturnRequest(
            condition="DESTROYED", recommended_action="REJECT",
        ))
        assert rejected.status == "REJECTED"

    async def test_failed_context_lookup_keeps_committed_inspection(
        self, db, notifier, product, branch_location, monkeypatch,
    ):
        service = ProductReturnService(db, notifier)
        return_id = (await service.create_return(return_request(product, branch_location))).id

        async def broken_get(self, *args, **kwargs):
            raise SQLAlchemyError("connection lost")

        monkeypatch.setattr(AsyncSession, "get", broken_get)
        inspected = await service.inspect_return(return_id, InspectReturnRequest(
            condition="DEFECTIVE", recommended_action="APPROVE",
        ))

        assert inspected.status == "PENDING_APPROVAL"
        event, _, context = notifier.calls[-1]
        assert event == NotificationEvent.RETURN_INSPECTED
        assert context["product_name"] == "your product"

    async def test_cannot_inspect_after_approval(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        approved = await _approved_return(service, return_request(product, branch_location), "RESTOCKED_BRANCH")
        with pytest.raises(InvalidStateError, match="cannot be inspected"):
            await service.inspect_return(approved.id, InspectReturnRequest(
                condition="USED_GOOD", recommended_action="APPROVE",
            ))

    async def test_approve_requires_inspection(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(return_request(product, branch_location))
        with pytest.raises(InvalidStateError, match="cannot be approved"):
            await service.approve_return(product_return.id, ApproveReturnRequest(resolution_type="REPLACED"))

    async def test_approve_records_resolution(self, db, notifier, user_id, product, branch_location):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(return_request(product, branch_location))
        await service.inspect_return(product_return.id, InspectReturnRequest(
            condition="DEFECTIVE", recommended_action="APPROVE",
        ))
        approved = await service.approve_return(product_return.id, ApproveReturnRequest(
            resolution_type="STORE_CREDIT", refund_amount=Decimal("15.00"), approval_notes="Loyal customer",
        ), user_id=user_id)

        assert approved.status == "APPROVED"
        assert approved.approved_by == user_id
        assert approved.resolution_type == "STORE_CREDIT"
        assert approved.refund_amount == Decimal("15.00")
        assert approved.approval_notes == "Loyal customer"
        assert NotificationEvent.RETURN_APPROVED in notifier.events

    async def test_negative_approved_refund(self, db, notifier, product, branch_location):
        with pytest.raises(ValidationError, match="cannot be negative"):
            await ProductReturnService(db, notifier).approve_return(
                product.id, ApproveReturnRequest(resolution_type="REFUNDED", refund_amount=Decimal("-5")),
            )

    async def test_reject(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(return_request(product, branch_location))

        rejected = await service.reject_return(product_return.id, RejectReturnRequest(
            rejection_reason="Physical damage not covered", notes="Customer informed",
        ))

        assert rejected.status == "REJECTED"
        assert rejected.approval_notes == "REJECTED: Physical damage not covered"
        assert rejected.resolution_type == "REJECTED"
        assert rejected.resolution_details == "Customer informed"
        assert rejected.completed_at is not None

        event, _, context = notifier.calls[-1]
        assert event == NotificationEvent.RETURN_REJECTED
        assert context["reason"] == "Physical damage not covered"
        assert context["contact_phone"] == "0112345678"

    async def test_reject_needs_reason(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(return_request(product, branch_location))
        with pytest.raises(ValidationError, match="Rejection reason is required"):
            await service.reject_return(product_return.id, RejectReturnRequest(rejection_reason=" "))

    async def test_unknown_return(self, db, notifier, product):
        with pytest.raises(NotFoundError, match="Product return not found"):
            await ProductReturnService(db, notifier).inspect_return(product.id, InspectReturnRequest(
                condition="USED_GOOD", recommended_action="APPROVE",
            ))


class TestProcessRefund:
    async def test_partial_refund_then_over_refund(
        self, db, notifier, user_id, product, branch_location, customer, make_sale,
    ):
        sale = await make_sale("100.00")
        sale_id, product_id, location_id = sale.id, product.id, branch_location.id
        service = ProductReturnService(db, notifier)
        first = await _approved_return(
            service,
            return_request(product, branch_location, source_type="SALE", source_id=sale_id, customer_id=customer.id),
            refund_amount=Decimal("60.00"),
        )

        completed, refund, movement = await service.process_return(
            first.id,
            ProcessReturnRequest(resolution_type="REFUND_PROCESSED", refund_method="CASH"),
            user_id=user_id,
        )

        assert completed.status == "COMPLETED"
        assert completed.refund_amount == Decimal("60.00")
        assert completed.sale_refund_id == refund.id
        assert completed.processed_by == user_id
        assert refund.amount == Decimal("60.00")
        assert refund.refund_method == "CASH"
        assert refund.refund_number.startswith("REF-")
        assert refund.sale.status == "PARTIAL_REFUND"

        assert movement.movement_type == "RETURN_FROM_CUSTOMER"
        assert movement.reference_type == "SALE_REFUND"
        assert movement.reference_id == refund.id
        assert movement.location_id == location_id
        assert await InventoryLedger(db).get_quantity(product_id, location_id) == 1

        second = await _approved_return(
            service,
            return_request(product, branch_location, source_type="SALE", source_id=sale_id),
        )
        second_id = second.id
        with pytest.raises(OverRefundError) as exc_info:
            await service.process_return(second_id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_amount=Decimal("50.00"), refund_method="CARD",
            ))

        assert exc_info.value.remaining == Decimal("40.00")
        assert (await service.get_return(second_id)).status == "APPROVED"
        assert await db.scalar(select(func.count(SaleRefund.id))) == 1
        assert await InventoryLedger(db).get_quantity(product_id, location_id) == 1

    async def test_refunds_up_to_total_mark_sale_refunded(
        self, db, notifier, product, branch_location, make_sale,
    ):
        sale = await make_sale("100.00")
        sale_id = sale.id
        service = ProductReturnService(db, notifier)

        for amount in ("30.00", "70.00"):
            approved = await _approved_return(
                service,
                return_request(product, branch_location, source_type="SALE", source_id=sale_id),
                refund_amount=Decimal(amount),
            )
            await service.process_return(approved.id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_method="BANK_TRANSFER",
            ))

        sale = await db.get(Sale, sale_id, populate_existing=True)
        assert sale.status == "REFUNDED"
        refunded = await db.scalar(select(func.sum(SaleRefund.amount)).where(SaleRefund.sale_id == sale_id))
        assert Decimal(str(refunded)) == Decimal("100.00")

        # Nothing is left to refund on a fully refunded sale
        third = await _approved_return(
            service,
            return_request(product, branch_location, source_type="SALE", source_id=sale_id),
            refund_amount=Decimal("1.00"),
        )
        with pytest.raises(InvalidStateError, match="Cannot refund sale"):
            await service.process_return(third.id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_method="CASH",
            ))

    async def test_refund_inputs(self, db, notifier, product, branch_location, make_sale):
        sale = await make_sale("100.00")
        service = ProductReturnService(db, notifier)
        from_sale = await _approved_return(
            service, return_request(product, branch_location, source_type="SALE", source_id=sale.id),
        )
        direct = await _approved_return(service, return_request(product, branch_location))
        from_sale_id, direct_id = from_sale.id, direct.id

        with pytest.raises(ValidationError, match="Valid refund amount"):
            await service.process_return(from_sale_id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_method="CASH",
            ))
        with pytest.raises(ValidationError, match="Valid refund amount"):
            await service.process_return(from_sale_id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_amount=Decimal("0.004"), refund_method="CASH",
            ))
        with pytest.raises(ValidationError, match="Refund method is required"):
            await service.process_return(from_sale_id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_amount=Decimal("10.00"),
            ))
        with pytest.raises(ValidationError, match="only be processed for returns from sales"):
            await service.process_return(direct_id, ProcessReturnRequest(
                resolution_type="REFUND_PROCESSED", refund_amount=Decimal("10.00"), refund_method="CASH",
            ))
        assert await _movement_count(db) == 0


class TestProcessRestock:
    async def test_restock_branch(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        approved = await _approved_return(
            service, return_request(product, branch_location, quantity=3), "RESTOCKED_BRANCH",
        )

        completed, refund, movement = await service.process_return(approved.id, ProcessReturnRequest(
            resolution_type="RESTOCKED_BRANCH", resolution_details="Resealed and shelved",
        ))

        assert refund is None
        assert completed.status == "COMPLETED"
        assert completed.resolution_details == "Resealed and shelved"
        assert movement.reference_type == "RETURN"
        assert movement.reference_id == completed.id
        assert movement.quantity == 3
        assert await InventoryLedger(db).get_quantity(product.id, branch_location.id) == 3
        assert notifier.events[-1] == NotificationEvent.RETURN_COMPLETED

    async def test_transfer_to_main_warehouse(self, db, notifier, product, branch_location, main_location):
        service = ProductReturnService(db, notifier)
        approved = await _approved_return(
            service, return_request(product, branch_location, quantity=2), "TRANSFERRED_WAREHOUSE",
        )

        _, _, movement = await service.process_return(approved.id, ProcessReturnRequest(
            resolution_type="TRANSFERRED_WAREHOUSE",
        ))

        ledger = InventoryLedger(db)
        assert movement.location_id == main_location.id
        assert await ledger.get_quantity(product.id, main_location.id) == 2
        assert await ledger.get_quantity(product.id, branch_location.id) == 0

    async def test_other_resolutions_leave_stock_alone(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        approved = await _approved_return(service, return_request(product, branch_location), "REPLACED")

        completed, refund, movement = await service.process_return(approved.id, ProcessReturnRequest(
            resolution_type="REPLACED",
        ))

        assert completed.status == "COMPLETED"
        assert refund is None and movement is None
        assert await _movement_count(db) == 0

    async def test_process_requires_approval_and_runs_once(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        received = await service.create_return(return_request(product, branch_location))
        approved = await _approved_return(service, return_request(product, branch_location), "RESTOCKED_BRANCH")
        received_id, approved_id = received.id, approved.id
        product_id, location_id = product.id, branch_location.id

        with pytest.raises(InvalidStateError, match="must be approved"):
            await service.process_return(received_id, ProcessReturnRequest(resolution_type="RESTOCKED_BRANCH"))

        await service.process_return(approved_id, ProcessReturnRequest(resolution_type="RESTOCKED_BRANCH"))

        with pytest.raises(InvalidStateError, match="Current status: COMPLETED"):
            await service.process_return(approved_id, ProcessReturnRequest(resolution_type="RESTOCKED_BRANCH"))
        assert await InventoryLedger(db).get_quantity(product_id, location_id) == 1


class TestCancelReturn:
    async def test_cancel_after_approval_creates_no_movements(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        approved = await _approved_return(service, return_request(product, branch_location, notes="Walk-in"))

        cancelled = await service.cancel_return(approved.id, "Customer changed their mind")

        assert cancelled.status == "CANCELLED"
        assert cancelled.notes == "Walk-in\n\nCANCELLED: Customer changed their mind"
        assert cancelled.completed_at is not None
        movements = await db.execute(select(StockMovement).where(StockMovement.reference_id == cancelled.id))
        assert movements.scalars().all() == []
        assert await _movement_count(db) == 0
        assert notifier.events[-1] == NotificationEvent.RETURN_CANCELLED

    async def test_rejected_return_can_be_cancelled(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(return_request(product, branch_location))
        await service.reject_return(product_return.id, RejectReturnRequest(rejection_reason="Out of warranty"))

        cancelled = await service.cancel_return(product_return.id, "Duplicate entry")
        assert cancelled.status == "CANCELLED"
        assert cancelled.notes == "CANCELLED: Duplicate entry"

    async def test_terminal_returns_cannot_be_cancelled(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        approved = await _approved_return(service, return_request(product, branch_location), "REPAIRED")
        product_return = await service.create_return(return_request(product, branch_location))
        completed_id, cancelled_id = approved.id, product_return.id
        await service.process_return(completed_id, ProcessReturnRequest(resolution_type="REPAIRED"))

        with pytest.raises(InvalidStateError, match="Cannot cancel a completed return"):
            await service.cancel_return(completed_id, "Too late")

        await service.cancel_return(cancelled_id, "Entered by mistake")
        with pytest.raises(InvalidStateError, match="already cancelled"):
            await service.cancel_return(cancelled_id, "Again")

    async def test_cancel_needs_reason(self, db, notifier, product, branch_location):
        service = ProductReturnService(db, notifier)
        product_return = await service.create_return(return_request(product, branch_location))
        with pytest.raises(ValidationError, match="Cancellation reason is required"):
            await service.cancel_return(product_return.id, "")


class TestReadSide:
    async def test_lookup_list_and_stats(self, db, notifier, product, branch_location, main_location, customer):
        service = ProductReturnService(db, notifier)
        first = await service.create_return(
            return_request(product, branch_location, customer_id=customer.id, product_value=Decimal("15.00"))
        )
        approved = await _approved_return(
            service,
            return_request(product, main_location, return_category="CUSTOMER_RETURN", product_value=Decimal("6.00")),
            "STORE_CREDIT",
            refund_amount=Decimal("6.00"),
        )
        await service.process_return(approved.id, ProcessReturnRequest(resolution_type="STORE_CREDIT"))

        assert (await service.get_return_by_number(first.return_number)).id == first.id
        with pytest.raises(NotFoundError):
            await service.get_return_by_number("RTN-1999-9999")

        assert (await service.list_returns())["total"] == 2
        assert (await service.list_returns(location_id=branch_location.id))["total"] == 1
        assert (await service.list_returns(status="COMPLETED"))["items"][0].id == approved.id
        assert (await service.list_returns(search="Nimal"))["items"][0].id == first.id
        assert (await service.list_returns(search="0771"))["total"] == 1

        stats = await service.get_stats()
        assert stats["total"] == 2
        assert stats["by_status"] == {"RECEIVED": 1, "COMPLETED": 1}
        assert stats["by_category"] == {"DEFECTIVE": 1, "CUSTOMER_RETURN": 1}
        assert stats["total_value"] == Decimal("21.00")
        assert stats["total_refunded"] == Decimal("6.00")

        branch_stats = await service.get_stats(location_id=branch_location.id)
        assert branch_stats["total"] == 1
        assert branch_stats["total_refunded"] == Decimal("0")
