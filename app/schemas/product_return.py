"""Product return schemas for API requests/responses."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import BaseModel, Field

from app.models.product_return import (
    ReturnSourceType, ReturnCategory, ProductCondition, ResolutionType,
    InspectionAction, Priority,
)
from app.models.sales import PaymentMethod
from app.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== REQUEST SCHEMAS ====================

class ProductReturnCreate(BaseCreateSchema):
    """
    Return intake. Quantity, reason and value are checked by the service
    so the caller gets the same error whether it comes over HTTP or not.
    """
    location_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    source_type: ReturnSourceType
    source_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=20)
    serial_number: Optional[str] = Field(None, max_length=100)
    batch_number: Optional[str] = Field(None, max_length=50)
    return_reason: str
    return_category: ReturnCategory
    condition: ProductCondition = ProductCondition.USED_GOOD
    condition_notes: Optional[str] = None
    product_value: Optional[Decimal] = None
    priority: Priority = Priority.NORMAL
    notes: Optional[str] = None


class InspectReturnRequest(BaseCreateSchema):
    condition: ProductCondition
    inspection_notes: Optional[str] = None
    recommended_action: InspectionAction


class ApproveReturnRequest(BaseCreateSchema):
    resolution_type: ResolutionType
    refund_amount: Optional[Decimal] = None
    approval_notes: Optional[str] = None


class RejectReturnRequest(BaseCreateSchema):
    rejection_reason: str
    notes: Optional[str] = None


class ProcessReturnRequest(BaseCreateSchema):
    resolution_type: ResolutionType
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[PaymentMethod] = None
    resolution_details: Optional[str] = None


class CancelReturnRequest(BaseCreateSchema):
    reason: str


# ==================== RESPONSE SCHEMAS ====================

class ProductReturnResponse(BaseResponseSchema):
    id: uuid.UUID
    return_number: str
    location_id: uuid.UUID
    source_type: str
    source_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    product_id: uuid.UUID
    quantity: int
    serial_number: Optional[str] = None
    product_value: Optional[Decimal] = None
    return_reason: str
    return_category: str
    condition: Optional[str] = None
    condition_notes: Optional[str] = None
    priority: str
    status: str
    inspected_by: Optional[uuid.UUID] = None
    inspected_at: Optional[datetime] = None
    inspection_notes: Optional[str] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    resolution_type: Optional[str] = None
    resolution_details: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    sale_refund_id: Optional[uuid.UUID] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class SaleRefundResponse(BaseResponseSchema):
    id: uuid.UUID
    refund_number: str
    sale_id: uuid.UUID
    amount: Decimal
    refund_method: str
    reason: Optional[str] = None
    created_at: datetime


class ProcessReturnResponse(BaseModel):
    product_return: ProductReturnResponse
    sale_refund: Optional[SaleRefundResponse] = None
    sale_status: Optional[str] = None
    stock_movement_id: Optional[uuid.UUID] = None


class ProductReturnListResponse(BaseModel):
    items: List[ProductReturnResponse]
    total: int
    page: int
    size: int
    pages: int


class ProductReturnStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_category: dict[str, int]
    by_source_type: dict[str, int]
    total_value: Decimal
    total_refunded: Decimal
