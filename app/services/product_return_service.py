"""
Product Return workflow.

Lifecycle:
    create (RECEIVED) -> inspect -> approve / reject -> process (COMPLETED)
    cancel from any open status

Nothing before processing changes inventory. Processing runs as one
transaction: return row locked, resolution applied (sale refund, restock,
warehouse transfer or nothing), return COMPLETED.
"""
import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, Tuple

from sqlalchemy import select, func, and_, or_, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError, NotFoundError, InvalidStateError, OverRefundError
from app.models.product_return import (
    ProductReturn, ReturnStatus, ReturnSourceType, ResolutionType, InspectionAction,
)
from app.models.product import Product
from app.models.sales import SaleRefund, SaleStatus, PaymentMethod
from app.models.inventory import StockMovement, StockMovementType, ReferenceType
from app.models.document_sequence import DocumentType
from app.models.notifications import NotificationEvent
from app.schemas.product_return import (
    ProductReturnCreate, InspectReturnRequest, ApproveReturnRequest,
    RejectReturnRequest, ProcessReturnRequest,
)
from app.services.directories import (
    ProductCatalog, LocationDirectory, CustomerDirectory, SaleDirectory, SourceDirectory,
)
from app.services.document_sequence_service import DocumentSequenceService
from app.services.inventory_ledger import InventoryLedger, MovementReference
from app.services.notification_service import NotificationDispatcher
from app.services.status_transitions import (
    EntityKind, transition_entity, can_transition, can_inspect_return, can_approve_return,
)
from app.services.transaction import transaction_scope


logger = logging.getLogger(__name__)

MONEY_PLACES = Decimal("0.01")

RESOLUTION_MESSAGES = {
    ResolutionType.REFUND_PROCESSED: "Your refund of Rs.{refund_amount} has been processed.",
    ResolutionType.REFUNDED: "Your refund of Rs.{refund_amount} has been processed.",
    ResolutionType.STORE_CREDIT: "Store credit of Rs.{refund_amount} has been issued.",
    ResolutionType.REPLACED: "A replacement has been arranged.",
    ResolutionType.REPAIRED: "Your product has been repaired.",
}


class ProductReturnService:
    """Customer and stock returns from intake to resolution."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationDispatcher] = None):
        self.db = db
        self.notifier = notifier or NotificationDispatcher()
        self.ledger = InventoryLedger(db)
        self.products = ProductCatalog(db)
        self.locations = LocationDirectory(db)
        self.customers = CustomerDirectory(db)
        self.sales = SaleDirectory(db)
        self.sources = SourceDirectory(db)
        self.sequences = DocumentSequenceService(db)

    # ==================== HELPERS ====================

    async def _lock_return(self, return_id: uuid.UUID) -> ProductReturn:
        result = await self.db.execute(
            select(ProductReturn)
            .where(ProductReturn.id == return_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product_return = result.scalar_one_or_none()
        if not product_return:
            raise NotFoundError("Product return not found")
        return product_return

    async def _notification_context(self, product_return: ProductReturn, **extra) -> Dict[str, Any]:
        """Template values for return notifications; lookups that fail just leave blanks."""
        try:
            product = await self.db.get(Product, product_return.product_id)
        except SQLAlchemyError as e:
            logger.warning("Product lookup for return %s notification failed: %s", product_return.return_number, e)
            product = None
        context = {
            "return_number": product_return.return_number,
            "return_status": product_return.status,
            "customer_name": product_return.customer_name or "Valued Customer",
            "customer_phone": product_return.customer_phone,
            "product_name": product.name if product else "your product",
        }
        context.update(extra)
        return context

    async def _notify(self, event: NotificationEvent, product_return: ProductReturn, context: Dict[str, Any]) -> None:
        await self.notifier.notify(
            event,
            {"product_return_id": product_return.id, "location_id": product_return.location_id},
            context,
        )

    # ==================== CREATE ====================

    async def create_return(self, data: ProductReturnCreate, user_id: Optional[uuid.UUID] = None) -> ProductReturn:
        """
        Register a returned product. No inventory effect.

        Raises:
            ValidationError: quantity below 1, blank reason, negative value
            NotFoundError: product, location, customer or source missing
        """
        if data.quantity is None or data.quantity < 1:
            raise ValidationError("Valid quantity is required (minimum 1)")
        if not data.return_reason or not data.return_reason.strip():
            raise ValidationError("Return reason is required")
        if data.product_value is not None and data.product_value < 0:
            raise ValidationError("Valid product value is required")
        if data.source_type == ReturnSourceType.SALE and data.source_id is None:
            raise ValidationError("Sale ID is required for returns from a sale")

        product = await self.products.get_product(data.product_id)
        location = await self.locations.get_location(data.location_id)
        await self.sources.ensure_exists(data.source_type, data.source_id)

        customer_name = data.customer_name
        customer_phone = data.customer_phone
        if data.customer_id:
            customer = await self.customers.get_customer(data.customer_id)
            customer_name = customer_name or customer.name
            customer_phone = customer_phone or customer.phone

        notes = data.notes
        if data.batch_number:
            notes = f"Batch: {data.batch_number}; {notes}" if notes else f"Batch: {data.batch_number}"

        async with transaction_scope(self.db):
            return_number = await self.sequences.get_next_number(DocumentType.PRODUCT_RETURN)
            product_return = ProductReturn(
                return_number=return_number,
                location_id=location.id,
                source_type=data.source_type.value,
                source_id=data.source_id,
                customer_id=data.customer_id,
                customer_name=customer_name,
                customer_phone=customer_phone,
                product_id=product.id,
                quantity=data.quantity,
                serial_number=data.serial_number,
                product_value=data.product_value,
                return_reason=data.return_reason,
                return_category=data.return_category.value,
                condition=data.condition.value,
                condition_notes=data.condition_notes,
                priority=data.priority.value,
                status=ReturnStatus.RECEIVED.value,
                notes=notes,
                created_by=user_id,
            )
            self.db.add(product_return)
            await self.db.flush()

        logger.info(
            "Created product return %s: %d x %s at %s",
            product_return.return_number, product_return.quantity, product.product_code, location.location_code,
        )
        await self._notify(NotificationEvent.RETURN_CREATED, product_return, {
            "return_number": product_return.return_number,
            "customer_name": customer_name or "Valued Customer",
            "customer_phone": customer_phone,
            "product_name": product.name,
        })
        return product_return

    # ==================== INSPECT / APPROVE / REJECT ====================

    async def inspect_return(
        self,
        return_id: uuid.UUID,
        data: InspectReturnRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductReturn:
        """
        Record the inspection. APPROVE sends the return for approval,
        REJECT rejects it, anything else keeps it under inspection.
        """
        async with transaction_scope(self.db):
            product_return = await self._lock_return(return_id)
            if not can_inspect_return(product_return.status):
                raise InvalidStateError(
                    f"Return cannot be inspected in current status: {product_return.status}"
                )

            if data.recommended_action == InspectionAction.APPROVE:
                new_status = ReturnStatus.PENDING_APPROVAL
            elif data.recommended_action == InspectionAction.REJECT:
                new_status = ReturnStatus.REJECTED
            else:
                new_status = ReturnStatus.INSPECTING
            transition_entity(product_return, EntityKind.PRODUCT_RETURN, new_status)

            product_return.condition = data.condition.value
            product_return.inspection_notes = data.inspection_notes
            product_return.inspected_by = user_id
            product_return.inspected_at = datetime.now(timezone.utc)

        logger.info("Inspected return %s: %s", product_return.return_number, product_return.status)
        await self._notify(
            NotificationEvent.RETURN_INSPECTED, product_return,
            await self._notification_context(product_return),
        )
        return product_return

    async def approve_return(
        self,
        return_id: uuid.UUID,
        data: ApproveReturnRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductReturn:
        if data.refund_amount is not None and data.refund_amount < 0:
            raise ValidationError("Refund amount cannot be negative")

        async with transaction_scope(self.db):
            product_return = await self._lock_return(return_id)
            if not can_approve_return(product_return.status):
                raise InvalidStateError(
                    f"Return cannot be approved in current status: {product_return.status}"
                )

            transition_entity(product_return, EntityKind.PRODUCT_RETURN, ReturnStatus.APPROVED)
            product_return.approved_by = user_id
            product_return.approved_at = datetime.now(timezone.utc)
            product_return.approval_notes = data.approval_notes
            product_return.resolution_type = data.resolution_type.value
            product_return.refund_amount = data.refund_amount

        logger.info(
            "Approved return %s for %s", product_return.return_number, product_return.resolution_type,
        )
        await self._notify(
            NotificationEvent.RETURN_APPROVED, product_return,
            await self._notification_context(product_return),
        )
        return product_return

    async def reject_return(
        self,
        return_id: uuid.UUID,
        data: RejectReturnRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductReturn:
        if not data.rejection_reason or not data.rejection_reason.strip():
            raise ValidationError("Rejection reason is required")

        async with transaction_scope(self.db):
            product_return = await self._lock_return(return_id)
            transition_entity(product_return, EntityKind.PRODUCT_RETURN, ReturnStatus.REJECTED)

            now = datetime.now(timezone.utc)
            product_return.approved_by = user_id
            product_return.approved_at = now
            product_return.approval_notes = f"REJECTED: {data.rejection_reason}"
            product_return.resolution_type = ResolutionType.REJECTED.value
            product_return.resolution_details = data.notes
            product_return.completed_at = now

            location = await self.locations.get_location(product_return.location_id)

        logger.info("Rejected return %s: %s", product_return.return_number, data.rejection_reason)
        await self._notify(
            NotificationEvent.RETURN_REJECTED, product_return,
            await self._notification_context(
                product_return, reason=data.rejection_reason, contact_phone=location.phone,
            ),
        )
        return product_return

    # ==================== PROCESS ====================

    async def process_return(
        self,
        return_id: uuid.UUID,
        data: ProcessReturnRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> Tuple[ProductReturn, Optional[SaleRefund], Optional[StockMovement]]:
        """
        Apply the resolution and complete the return, atomically.

        REFUND_PROCESSED refunds the source sale (bounded by its total),
        restocks the return location and moves the sale to REFUNDED or
        PARTIAL_REFUND. RESTOCKED_BRANCH restocks the return location,
        TRANSFERRED_WAREHOUSE restocks the main warehouse. Other
        resolutions complete the return without touching stock.

        Returns:
            (return, sale refund or None, stock movement or None)

        Raises:
            InvalidStateError: return not APPROVED (a second concurrent call
                sees COMPLETED here), or sale not refundable
            ValidationError: refund inputs missing or source is not a sale
            OverRefundError: refund would exceed the sale total
        """
        resolution = ResolutionType(data.resolution_type)
        sale_refund: Optional[SaleRefund] = None
        movement: Optional[StockMovement] = None
        sale_status: Optional[str] = None

        async with transaction_scope(self.db):
            product_return = await self._lock_return(return_id)
            if product_return.status != ReturnStatus.APPROVED.value:
                raise InvalidStateError(
                    f"Return must be approved before processing. Current status: {product_return.status}"
                )

            refund_amount = data.refund_amount if data.refund_amount is not None else product_return.refund_amount

            if resolution == ResolutionType.REFUND_PROCESSED:
                sale_refund, movement, sale_status = await self._process_refund(
                    product_return, refund_amount, data.refund_method, user_id,
                )
            elif resolution == ResolutionType.RESTOCKED_BRANCH:
                movement, _ = await self.ledger.apply_movement(
                    product_return.product_id,
                    product_return.location_id,
                    StockMovementType.RETURN_FROM_CUSTOMER,
                    product_return.quantity,
                    reference=MovementReference(
                        reference_type=ReferenceType.RETURN,
                        reference_id=product_return.id,
                        reference_number=product_return.return_number,
                        notes=f"Restocked at branch - Return: {product_return.return_number}",
                    ),
                    created_by=user_id,
                )
            elif resolution == ResolutionType.TRANSFERRED_WAREHOUSE:
                warehouse_location = await self.locations.get_main_warehouse_location()
                movement, _ = await self.ledger.apply_movement(
                    product_return.product_id,
                    warehouse_location.id,
                    StockMovementType.RETURN_FROM_CUSTOMER,
                    product_return.quantity,
                    reference=MovementReference(
                        reference_type=ReferenceType.RETURN,
                        reference_id=product_return.id,
                        reference_number=product_return.return_number,
                        notes=f"Transferred to main warehouse - Return: {product_return.return_number}",
                    ),
                    created_by=user_id,
                )

            now = datetime.now(timezone.utc)
            transition_entity(product_return, EntityKind.PRODUCT_RETURN, ReturnStatus.COMPLETED)
            product_return.resolution_type = resolution.value
            product_return.resolution_details = data.resolution_details
            product_return.refund_amount = refund_amount
            product_return.processed_by = user_id
            product_return.completed_at = now
            if sale_refund is not None:
                product_return.sale_refund_id = sale_refund.id

        logger.info(
            "Processed return %s as %s%s",
            product_return.return_number, resolution.value,
            f" (sale now {sale_status})" if sale_status else "",
        )
        resolution_text = RESOLUTION_MESSAGES.get(resolution, "")
        await self._notify(
            NotificationEvent.RETURN_COMPLETED, product_return,
            await self._notification_context(
                product_return,
                resolution_text=resolution_text.format(refund_amount=refund_amount),
            ),
        )
        return product_return, sale_refund, movement

    async def _process_refund(
        self,
        product_return: ProductReturn,
        refund_amount: Optional[Decimal],
        refund_method: Optional[PaymentMethod],
        user_id: Optional[uuid.UUID],
    ) -> Tuple[SaleRefund, StockMovement, str]:
        """Refund half of process_return; runs inside its transaction."""
        if refund_amount is not None:
            refund_amount = Decimal(refund_amount).quantize(MONEY_PLACES)
        if refund_amount is None or refund_amount <= 0:
            raise ValidationError("Valid refund amount is required for refund processing")
        if not refund_method:
            raise ValidationError("Refund method is required for refund processing")
        if product_return.source_type != ReturnSourceType.SALE.value:
            raise ValidationError("Refunds can only be processed for returns from sales")
        if not product_return.source_id:
            raise ValidationError("Sale ID is required to process refund")

        sale = await self.sales.lock_sale_with_refunds(product_return.source_id)

        if not (
            can_transition(EntityKind.SALE, sale.status, SaleStatus.PARTIAL_REFUND)
            or can_transition(EntityKind.SALE, sale.status, SaleStatus.REFUNDED)
        ):
            raise InvalidStateError(f"Cannot refund sale in '{sale.status}' status")

        already_refunded = sale.refunded_amount
        sale_total = Decimal(sale.total_amount)
        if already_refunded + refund_amount > sale_total:
            remaining = sale_total - already_refunded
            raise OverRefundError(
                f"Refund amount exceeds remaining sale total. Already refunded: {already_refunded}, "
                f"Sale total: {sale_total}, Remaining: {remaining}",
                remaining=remaining,
            )

        refund_number = await self.sequences.get_next_number(DocumentType.SALE_REFUND)
        sale_refund = SaleRefund(
            refund_number=refund_number,
            sale_id=sale.id,
            amount=refund_amount,
            refund_method=getattr(refund_method, "value", refund_method),
            reason=f"Product Return: {product_return.return_number} - {product_return.return_reason}",
            processed_by=user_id or product_return.approved_by,
        )
        sale.refunds.append(sale_refund)
        await self.db.flush()

        movement, _ = await self.ledger.apply_movement(
            product_return.product_id,
            product_return.location_id,
            StockMovementType.RETURN_FROM_CUSTOMER,
            product_return.quantity,
            reference=MovementReference(
                reference_type=ReferenceType.SALE_REFUND,
                reference_id=sale_refund.id,
                reference_number=refund_number,
                notes=f"Stock restored - Return: {product_return.return_number} - Refund: {refund_number}",
            ),
            created_by=user_id,
        )

        new_status = SaleStatus.REFUNDED if already_refunded + refund_amount >= sale_total else SaleStatus.PARTIAL_REFUND
        transition_entity(sale, EntityKind.SALE, new_status)

        logger.info(
            "Sale refund %s of %s against sale %s (%s of %s refunded)",
            refund_number, refund_amount, sale.invoice_number, already_refunded + refund_amount, sale_total,
        )
        return sale_refund, movement, sale.status

    # ==================== CANCEL ====================

    async def cancel_return(
        self,
        return_id: uuid.UUID,
        reason: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductReturn:
        """Withdraw an open return. Never touches inventory."""
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")

        async with transaction_scope(self.db):
            product_return = await self._lock_return(return_id)
            if product_return.status == ReturnStatus.COMPLETED.value:
                raise InvalidStateError("Cannot cancel a completed return")
            if product_return.status == ReturnStatus.CANCELLED.value:
                raise InvalidStateError("Return is already cancelled")

            transition_entity(product_return, EntityKind.PRODUCT_RETURN, ReturnStatus.CANCELLED)
            product_return.notes = f"{product_return.notes or ''}\n\nCANCELLED: {reason}".lstrip()
            product_return.completed_at = datetime.now(timezone.utc)

        logger.info("Cancelled return %s by %s: %s", product_return.return_number, user_id, reason)
        await self._notify(
            NotificationEvent.RETURN_CANCELLED, product_return,
            await self._notification_context(product_return, reason=reason),
        )
        return product_return

    # ==================== READ SIDE ====================

    async def get_return(self, return_id: uuid.UUID) -> ProductReturn:
        product_return = await self.db.get(ProductReturn, return_id)
        if not product_return:
            raise NotFoundError("Product return not found")
        return product_return

    async def get_return_by_number(self, return_number: str) -> ProductReturn:
        result = await self.db.execute(
            select(ProductReturn).where(ProductReturn.return_number == return_number)
        )
        product_return = result.scalar_one_or_none()
        if not product_return:
            raise NotFoundError("Product return not found")
        return product_return

    async def list_returns(
        self,
        location_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        return_category: Optional[str] = None,
        source_type: Optional[str] = None,
        source_id: Optional[uuid.UUID] = None,
        customer_id: Optional[uuid.UUID] = None,
        product_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        size: int = 20,
    ) -> Dict[str, Any]:
        conditions = []
        if location_id:
            conditions.append(ProductReturn.location_id == location_id)
        if status:
            conditions.append(ProductReturn.status == status)
        if return_category:
            conditions.append(ProductReturn.return_category == return_category)
        if source_type:
            conditions.append(ProductReturn.source_type == source_type)
        if source_id:
            conditions.append(ProductReturn.source_id == source_id)
        if customer_id:
            conditions.append(ProductReturn.customer_id == customer_id)
        if product_id:
            conditions.append(ProductReturn.product_id == product_id)
        if start_date:
            conditions.append(ProductReturn.created_at >= start_date)
        if end_date:
            conditions.append(ProductReturn.created_at <= end_date)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    ProductReturn.return_number.ilike(pattern),
                    ProductReturn.customer_name.ilike(pattern),
                    ProductReturn.customer_phone.like(pattern),
                )
            )

        count_query = select(func.count(ProductReturn.id))
        query = select(ProductReturn)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(ProductReturn.created_at.desc()).offset((page - 1) * size).limit(size)
        )

        return {
            "items": list(result.scalars().all()),
            "total": total,
            "page": page,
            "size": size,
            "pages": math.ceil(total / size) if size else 0,
        }

    async def get_stats(self, location_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        conditions = [ProductReturn.location_id == location_id] if location_id else []

        async def grouped(column) -> Dict[str, int]:
            query = select(column, func.count(ProductReturn.id)).group_by(column)
            if conditions:
                query = query.where(and_(*conditions))
            return {key: count for key, count in (await self.db.execute(query)).all()}

        by_status = await grouped(ProductReturn.status)
        by_category = await grouped(ProductReturn.return_category)
        by_source_type = await grouped(ProductReturn.source_type)

        totals_query = select(
            func.coalesce(func.sum(ProductReturn.product_value), 0),
            func.coalesce(
                func.sum(case(
                    (ProductReturn.status == ReturnStatus.COMPLETED.value, ProductReturn.refund_amount),
                    else_=0,
                )),
                0,
            ),
        )
        if conditions:
            totals_query = totals_query.where(and_(*conditions))
        total_value, total_refunded = (await self.db.execute(totals_query)).one()

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_category": by_category,
            "by_source_type": by_source_type,
            "total_value": Decimal(str(total_value)),
            "total_refunded": Decimal(str(total_refunded)),
        }
