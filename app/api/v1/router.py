from fastapi import APIRouter

from app.api.v1.endpoints import (
    goods_receipts,
    product_returns,
    inventory,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Receiving ====================
api_router.include_router(
    goods_receipts.router,
    prefix="/goods-receipts",
    tags=["Goods Receipts"]
)

# ==================== Returns ====================
api_router.include_router(
    product_returns.router,
    prefix="/product-returns",
    tags=["Product Returns"]
)

# ==================== Inventory Ledger ====================
api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory"]
)
