"""Inventory ledger API endpoints."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, Query

from app.api.deps import DB, CurrentUserId
from app.schemas.inventory import (
    InventoryRecordResponse,
    StockMovementResponse,
    StockMovementListResponse,
    ReservationRequest,
    ConsistencyReportResponse,
)
from app.services.inventory_ledger import InventoryLedger, MovementReference
from app.services.transaction import transaction_scope


router = APIRouter(tags=["Inventory"])


@router.get("/movements", response_model=StockMovementListResponse)
async def list_stock_movements(
    db: DB,
    current_user_id: CurrentUserId,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    product_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
    movement_type: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[uuid.UUID] = None,
):
    """Stock movement journal, newest first."""
    items, total = await InventoryLedger(db).list_movements(
        product_id=product_id,
        location_id=location_id,
        movement_type=movement_type.upper() if movement_type else None,
        reference_type=reference_type.upper() if reference_type else None,
        reference_id=reference_id,
        skip=(page - 1) * size,
        limit=size,
    )
    return StockMovementListResponse(
        items=[StockMovementResponse.model_validate(m) for m in items],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 0,
    )


@router.get("/consistency", response_model=ConsistencyReportResponse)
async def check_consistency(
    db: DB,
    current_user_id: CurrentUserId,
    product_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
):
    """Recompute inventory from the movement journal and list any mismatches."""
    report = await InventoryLedger(db).verify_consistency(product_id=product_id, location_id=location_id)
    return ConsistencyReportResponse(
        is_consistent=report.is_consistent,
        records_checked=report.records_checked,
        movements_checked=report.movements_checked,
        discrepancies=[d.as_dict() for d in report.discrepancies],
    )


@router.post("/reserve", response_model=StockMovementResponse)
async def reserve_stock(
    data: ReservationRequest,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Hold available stock; on-hand quantity is unchanged."""
    ledger = InventoryLedger(db)
    async with transaction_scope(db):
        movement, _ = await ledger.reserve(
            data.product_id,
            data.location_id,
            data.quantity,
            reference=MovementReference(data.reference_type, data.reference_id, notes=data.notes),
            created_by=current_user_id,
        )
    return movement


@router.post("/release", response_model=StockMovementResponse)
async def release_stock(
    data: ReservationRequest,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Give back previously reserved stock."""
    ledger = InventoryLedger(db)
    async with transaction_scope(db):
        movement, _ = await ledger.release(
            data.product_id,
            data.location_id,
            data.quantity,
            reference=MovementReference(data.reference_type, data.reference_id, notes=data.notes),
            created_by=current_user_id,
        )
    return movement


@router.get("/{product_id}/{location_id}", response_model=InventoryRecordResponse)
async def get_inventory_record(
    product_id: uuid.UUID,
    location_id: uuid.UUID,
    db: DB,
    current_user_id: CurrentUserId,
):
    """Current stock of one product at one location."""
    return await InventoryLedger(db).get_record(product_id, location_id)
