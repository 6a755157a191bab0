"""Goods receipt schemas for API requests/responses."""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import BaseModel, Field

from app.models.purchase import ItemQualityStatus
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== REQUEST SCHEMAS ====================

class GoodsReceiptItemCreate(BaseCreateSchema):
    product_id: uuid.UUID
    ordered_quantity: int = Field(..., ge=0)
    received_quantity: int
    accepted_quantity: int = Field(0, ge=0)
    rejected_quantity: int = Field(0, ge=0)
    quality_status: ItemQualityStatus = ItemQualityStatus.PENDING
    rejection_reason: Optional[str] = None
    batch_number: Optional[str] = Field(None, max_length=50)
    expiry_date: Optional[date] = None
    notes: Optional[str] = None


class GoodsReceiptCreate(BaseCreateSchema):
    purchase_order_id: uuid.UUID
    invoice_number: Optional[str] = Field(None, max_length=50)
    invoice_date: Optional[date] = None
    receipt_date: Optional[datetime] = None
    notes: Optional[str] = None
    items: List[GoodsReceiptItemCreate] = Field(..., min_length=1)


class GoodsReceiptUpdate(BaseUpdateSchema):
    invoice_number: Optional[str] = Field(None, max_length=50)
    invoice_date: Optional[date] = None
    receipt_date: Optional[datetime] = None
    notes: Optional[str] = None


class QualityCheckItem(BaseCreateSchema):
    item_id: uuid.UUID
    accepted_quantity: int = Field(..., ge=0)
    rejected_quantity: int = Field(..., ge=0)
    quality_status: ItemQualityStatus
    rejection_reason: Optional[str] = None


class QualityCheckRequest(BaseCreateSchema):
    items: List[QualityCheckItem] = Field(..., min_length=1)
    quality_check_notes: Optional[str] = None


class ApproveGoodsReceiptRequest(BaseCreateSchema):
    location_id: uuid.UUID
    notes: Optional[str] = None


# ==================== RESPONSE SCHEMAS ====================

class GoodsReceiptItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    ordered_quantity: int
    received_quantity: int
    accepted_quantity: int
    rejected_quantity: int
    quality_status: str
    rejection_reason: Optional[str] = None
    unit_price: Decimal
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None


class GoodsReceiptResponse(BaseResponseSchema):
    id: uuid.UUID
    receipt_number: str
    purchase_order_id: uuid.UUID
    destination_location_id: uuid.UUID
    status: str
    receipt_date: datetime
    received_by: Optional[uuid.UUID] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    quality_check_by: Optional[uuid.UUID] = None
    quality_check_date: Optional[datetime] = None
    quality_check_notes: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    approved_location_id: Optional[uuid.UUID] = None
    total_value: Decimal
    notes: Optional[str] = None
    created_at: datetime
    items: List[GoodsReceiptItemResponse] = []


class GoodsReceiptCreateResponse(GoodsReceiptResponse):
    """Creation also reports whether this receipt, once approved, completes the PO."""
    completes_purchase_order: bool


class GoodsReceiptListResponse(BaseModel):
    items: List[GoodsReceiptResponse]
    total: int
    page: int
    size: int
    pages: int


class GoodsReceiptStats(BaseModel):
    total: int
    pending_qc: int
    inspecting: int
    completed: int
    completed_value: Decimal
