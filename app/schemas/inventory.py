"""Inventory ledger schemas for API requests/responses."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import BaseModel, Field

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


class InventoryRecordResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    location_id: uuid.UUID
    quantity: int
    reserved_quantity: int
    available_quantity: int
    average_cost: Decimal
    total_value: Decimal
    min_stock_level: int
    max_stock_level: Optional[int] = None
    last_restocked: Optional[datetime] = None


class StockMovementResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    location_id: uuid.UUID
    movement_type: str
    quantity: int
    quantity_before: int
    quantity_after: int
    unit_cost: Optional[Decimal] = None
    reference_type: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class StockMovementListResponse(BaseModel):
    items: List[StockMovementResponse]
    total: int
    page: int
    size: int
    pages: int


class ReservationRequest(BaseCreateSchema):
    product_id: uuid.UUID
    location_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    reference_type: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None


class LedgerDiscrepancyResponse(BaseModel):
    product_id: uuid.UUID
    location_id: uuid.UUID
    kind: str
    expected: int
    actual: int
    movement_id: Optional[uuid.UUID] = None


class ConsistencyReportResponse(BaseModel):
    is_consistent: bool
    records_checked: int
    movements_checked: int
    discrepancies: List[LedgerDiscrepancyResponse]
