"""Product return API endpoints."""
from typing import Optional
from uuid import UUID
from datetime import datetime

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentUserId, Notifier
from app.schemas.product_return import (
    ProductReturnCreate,
    InspectReturnRequest,
    ApproveReturnRequest,
    RejectReturnRequest,
    ProcessReturnRequest,
    CancelReturnRequest,
    ProductReturnResponse,
    ProductReturnListResponse,
    ProductReturnStats,
    ProcessReturnResponse,
    SaleRefundResponse,
)
from app.services.product_return_service import ProductReturnService

router = APIRouter(tags=["Product Returns"])


@router.get("/stats", response_model=ProductReturnStats)
async def get_return_stats(
    db: DB,
    current_user_id: CurrentUserId,
    location_id: Optional[UUID] = None,
):
    return await ProductReturnService(db).get_stats(location_id=location_id)


@router.get("", response_model=ProductReturnListResponse)
async def list_returns(
    db: DB,
    current_user_id: CurrentUserId,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    location_id: Optional[UUID] = None,
    status: Optional[str] = None,
    return_category: Optional[str] = None,
    source_type: Optional[str] = None,
    source_id: Optional[UUID] = None,
    customer_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
):
    """List returns with filtering and pagination."""
    return await ProductReturnService(db).list_returns(
        location_id=location_id,
        status=status.upper() if status else None,
        return_category=return_category,
        source_type=source_type,
        source_id=source_id,
        customer_id=customer_id,
        product_id=product_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        page=page,
        size=size,
    )


@router.get("/number/{return_number}", response_model=ProductReturnResponse)
async def get_return_by_number(
    return_number: str,
    db: DB,
    current_user_id: CurrentUserId,
):
    return await ProductReturnService(db).get_return_by_number(return_number)


@router.get("/{return_id}", response_model=ProductReturnResponse)
async def get_return(
    return_id: UUID,
    db: DB,
    current_user_id: CurrentUserId,
):
    return await ProductReturnService(db).get_return(return_id)


@router.post("", response_model=ProductReturnResponse, status_code=status.HTTP_201_CREATED)
async def create_return(
    data: ProductReturnCreate,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    """Register a returned product. Stock is not touched until processing."""
    return await ProductReturnService(db, notifier).create_return(data, user_id=current_user_id)


@router.post("/{return_id}/inspect", response_model=ProductReturnResponse)
async def inspect_return(
    return_id: UUID,
    data: InspectReturnRequest,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    return await ProductReturnService(db, notifier).inspect_return(return_id, data, user_id=current_user_id)


@router.post("/{return_id}/approve", response_model=ProductReturnResponse)
async def approve_return(
    return_id: UUID,
    data: ApproveReturnRequest,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    return await ProductReturnService(db, notifier).approve_return(return_id, data, user_id=current_user_id)


@router.post("/{return_id}/reject", response_model=ProductReturnResponse)
async def reject_return(
    return_id: UUID,
    data: RejectReturnRequest,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    return await ProductReturnService(db, notifier).reject_return(return_id, data, user_id=current_user_id)


@router.post("/{return_id}/process", response_model=ProcessReturnResponse)
async def process_return(
    return_id: UUID,
    data: ProcessReturnRequest,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    """
    Apply the approved resolution and complete the return.

    REFUND_PROCESSED refunds the source sale and restocks the return
    location; RESTOCKED_BRANCH and TRANSFERRED_WAREHOUSE only restock.
    """
    product_return, sale_refund, movement = await ProductReturnService(db, notifier).process_return(
        return_id, data, user_id=current_user_id
    )
    return ProcessReturnResponse(
        product_return=ProductReturnResponse.model_validate(product_return),
        sale_refund=SaleRefundResponse.model_validate(sale_refund) if sale_refund else None,
        sale_status=sale_refund.sale.status if sale_refund else None,
        stock_movement_id=movement.id if movement else None,
    )


@router.post("/{return_id}/cancel", response_model=ProductReturnResponse)
async def cancel_return(
    return_id: UUID,
    data: CancelReturnRequest,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    return await ProductReturnService(db, notifier).cancel_return(return_id, data.reason, user_id=current_user_id)
