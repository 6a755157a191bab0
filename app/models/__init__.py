"""SQLAlchemy models. Importing this package registers every table on Base.metadata."""
from app.models.location import Warehouse, Location
from app.models.product import Product
from app.models.customer import Customer, Supplier
from app.models.purchase import (
    PurchaseOrder, PurchaseOrderItem, GoodsReceipt, GoodsReceiptItem,
    PurchaseOrderStatus, GoodsReceiptStatus, ItemQualityStatus,
)
from app.models.inventory import InventoryRecord, StockMovement, StockMovementType, ReferenceType
from app.models.sales import Sale, SaleRefund, SaleStatus, PaymentMethod
from app.models.product_return import (
    ProductReturn, ReturnStatus, ReturnSourceType, ReturnCategory,
    ProductCondition, ResolutionType, InspectionAction, Priority,
)
from app.models.service import WarrantyClaim, JobSheet
from app.models.notifications import Notification, NotificationEvent, NotificationStatus, NotificationChannel
from app.models.document_sequence import DocumentSequence, DocumentType

__all__ = [
    "Warehouse", "Location", "Product", "Customer", "Supplier",
    "PurchaseOrder", "PurchaseOrderItem", "GoodsReceipt", "GoodsReceiptItem",
    "PurchaseOrderStatus", "GoodsReceiptStatus", "ItemQualityStatus",
    "InventoryRecord", "StockMovement", "StockMovementType", "ReferenceType",
    "Sale", "SaleRefund", "SaleStatus", "PaymentMethod",
    "ProductReturn", "ReturnStatus", "ReturnSourceType", "ReturnCategory",
    "ProductCondition", "ResolutionType", "InspectionAction", "Priority",
    "WarrantyClaim", "JobSheet",
    "Notification", "NotificationEvent", "NotificationStatus", "NotificationChannel",
    "DocumentSequence", "DocumentType",
]
