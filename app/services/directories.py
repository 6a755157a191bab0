"""
Read-only lookups the workflows consult for validation and pricing.

Each directory wraps the session it is given; none of them writes.
"""
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import NotFoundError
from app.models.location import Location, Warehouse
from app.models.product import Product
from app.models.customer import Customer, Supplier
from app.models.sales import Sale
from app.models.service import WarrantyClaim, JobSheet
from app.models.product_return import ReturnSourceType


class ProductCatalog:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product


class LocationDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_location(self, location_id: uuid.UUID) -> Location:
        location = await self.db.get(Location, location_id)
        if not location:
            raise NotFoundError("Location not found")
        return location

    async def get_main_warehouse_location(self) -> Location:
        """The single implicit destination for goods receipts."""
        result = await self.db.execute(
            select(Warehouse).where(Warehouse.is_main_warehouse == True)  # noqa: E712
        )
        warehouse = result.scalars().first()
        if not warehouse:
            raise NotFoundError("Main warehouse not found")

        result = await self.db.execute(
            select(Location)
            .where(Location.warehouse_id == warehouse.id)
            .order_by(Location.created_at)
        )
        location = result.scalars().first()
        if not location:
            raise NotFoundError("Main warehouse location not found")
        return location


class SupplierDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_supplier(self, supplier_id: uuid.UUID) -> Supplier:
        supplier = await self.db.get(Supplier, supplier_id)
        if not supplier:
            raise NotFoundError("Supplier not found")
        return supplier


class CustomerDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = await self.db.get(Customer, customer_id)
        if not customer:
            raise NotFoundError("Customer not found")
        return customer


class SaleDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_sale_with_refunds(self, sale_id: uuid.UUID) -> Sale:
        """
        SELECT ... FOR UPDATE the sale and load its refunds.

        Holding the sale row lock is what keeps two concurrent refunds from
        both reading the same already-refunded total.
        """
        result = await self.db.execute(
            select(Sale)
            .options(selectinload(Sale.refunds))
            .where(Sale.id == sale_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sale = result.scalar_one_or_none()
        if not sale:
            raise NotFoundError("Sale not found")
        return sale


class SourceDirectory:
    """Resolves the document a return claims to come from."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure_exists(self, source_type: str, source_id: Optional[uuid.UUID]) -> None:
        if source_id is None:
            return

        model = {
            ReturnSourceType.SALE: Sale,
            ReturnSourceType.WARRANTY_CLAIM: WarrantyClaim,
            ReturnSourceType.JOB_SHEET: JobSheet,
        }.get(source_type)
        if model is None:
            # STOCK_CHECK, DIRECT and GOODS_RECEIPT carry no checked reference
            return

        if not await self.db.get(model, source_id):
            label = ReturnSourceType(source_type).value.replace("_", " ").lower()
            raise NotFoundError(f"Source {label} not found")
