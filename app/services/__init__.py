# Services module
from app.services.inventory_ledger import InventoryLedger, MovementReference, ConsistencyReport
from app.services.goods_receipt_service import GoodsReceiptService
from app.services.product_return_service import ProductReturnService
from app.services.document_sequence_service import DocumentSequenceService
from app.services.notification_service import (
    NotificationDispatcher,
    NotificationDeliveryService,
    SmsGateway,
)
from app.services.transaction import transaction_scope

__all__ = [
    "InventoryLedger",
    "MovementReference",
    "ConsistencyReport",
    "GoodsReceiptService",
    "ProductReturnService",
    "DocumentSequenceService",
    # Notifications
    "NotificationDispatcher",
    "NotificationDeliveryService",
    "SmsGateway",
    "transaction_scope",
]
