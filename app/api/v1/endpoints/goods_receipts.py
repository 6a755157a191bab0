"""Goods Receipt Note (GRN) API endpoints."""
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from fastapi import APIRouter, Query, status

from app.api.deps import DB, CurrentUserId, Notifier
from app.schemas.goods_receipt import (
    GoodsReceiptCreate,
    GoodsReceiptUpdate,
    QualityCheckRequest,
    ApproveGoodsReceiptRequest,
    GoodsReceiptResponse,
    GoodsReceiptCreateResponse,
    GoodsReceiptListResponse,
    GoodsReceiptStats,
)
from app.services.goods_receipt_service import GoodsReceiptService

router = APIRouter(tags=["Goods Receipts"])


@router.get("/stats", response_model=GoodsReceiptStats)
async def get_goods_receipt_stats(
    db: DB,
    current_user_id: CurrentUserId,
):
    """Receipt counts by status and total approved value."""
    return await GoodsReceiptService(db).get_stats()


@router.get("", response_model=GoodsReceiptListResponse)
async def list_goods_receipts(
    db: DB,
    current_user_id: CurrentUserId,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    purchase_order_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
):
    """List goods receipts with filtering and pagination."""
    return await GoodsReceiptService(db).list_goods_receipts(
        purchase_order_id=purchase_order_id,
        status=status.upper() if status else None,
        search=search,
        start_date=start_date,
        end_date=end_date,
        page=page,
        size=size,
    )


@router.get("/purchase-order/{purchase_order_id}", response_model=List[GoodsReceiptResponse])
async def get_goods_receipts_by_purchase_order(
    purchase_order_id: UUID,
    db: DB,
    current_user_id: CurrentUserId,
):
    return await GoodsReceiptService(db).get_goods_receipts_by_purchase_order(purchase_order_id)


@router.get("/{grn_id}", response_model=GoodsReceiptResponse)
async def get_goods_receipt(
    grn_id: UUID,
    db: DB,
    current_user_id: CurrentUserId,
):
    return await GoodsReceiptService(db).get_goods_receipt(grn_id)


@router.post("", response_model=GoodsReceiptCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_goods_receipt(
    data: GoodsReceiptCreate,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    """
    Create a goods receipt against a purchase order.

    Goods go to the main warehouse location and wait for quality check.
    Stock is not updated until the receipt is approved.
    """
    grn, completes_purchase_order = await GoodsReceiptService(db, notifier).create_goods_receipt(
        data, user_id=current_user_id
    )
    return GoodsReceiptCreateResponse(
        **GoodsReceiptResponse.model_validate(grn).model_dump(),
        completes_purchase_order=completes_purchase_order,
    )


@router.patch("/{grn_id}", response_model=GoodsReceiptResponse)
async def update_goods_receipt(
    grn_id: UUID,
    data: GoodsReceiptUpdate,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Update invoice details and notes of an open receipt."""
    return await GoodsReceiptService(db).update_goods_receipt(grn_id, data)


@router.post("/{grn_id}/quality-check", response_model=GoodsReceiptResponse)
async def perform_quality_check(
    grn_id: UUID,
    data: QualityCheckRequest,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Record accepted and rejected quantities per item."""
    return await GoodsReceiptService(db).perform_quality_check(grn_id, data, user_id=current_user_id)


@router.post("/{grn_id}/approve", response_model=GoodsReceiptResponse)
async def approve_goods_receipt(
    grn_id: UUID,
    data: ApproveGoodsReceiptRequest,
    db: DB,
    current_user_id: CurrentUserId,
    notifier: Notifier,
):
    """
    Approve a receipt: accepted quantities are added to stock at the given
    location and the purchase order is advanced.
    """
    return await GoodsReceiptService(db, notifier).approve_goods_receipt(
        grn_id, data.location_id, user_id=current_user_id, notes=data.notes,
    )


@router.delete("/{grn_id}")
async def delete_goods_receipt(
    grn_id: UUID,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Delete a receipt that has not been approved."""
    await GoodsReceiptService(db).delete_goods_receipt(grn_id)
    return {"message": "Goods receipt deleted successfully"}
