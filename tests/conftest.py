"""
Pytest Configuration and Fixtures

Every test gets a fresh in-memory SQLite database (aiosqlite, one shared
connection through StaticPool) with the full schema created from the
models. Row locks are no-ops on SQLite; the tests cover the state rules,
not the locking.
"""
import itertools
import os
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal

# Settings are read at import time; these must be in place before any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SMS_API_URL"] = ""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import (
    Warehouse, Location, Product, Customer, Supplier,
    PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus,
    Sale, SaleStatus,
)


class FakeNotifier:
    """Records notify() calls instead of writing the outbox."""

    def __init__(self):
        self.calls = []

    async def notify(self, event_kind, entity_ids, context=None):
        self.calls.append((event_kind, entity_ids, context or {}))
        return uuid.uuid4()

    @property
    def events(self):
        return [call[0] for call in self.calls]


# Database
@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


# Directory data
@pytest.fixture
async def main_location(db) -> Location:
    warehouse = Warehouse(warehouse_code="WH-MAIN", name="Main Warehouse", is_main_warehouse=True)
    db.add(warehouse)
    await db.flush()
    location = Location(location_code="WH-01", name="Main Warehouse Floor", warehouse_id=warehouse.id)
    db.add(location)
    await db.commit()
    return location


@pytest.fixture
async def branch_location(db) -> Location:
    location = Location(location_code="BR-01", name="Town Branch", phone="0112345678")
    db.add(location)
    await db.commit()
    return location


@pytest.fixture
async def product(db) -> Product:
    product = Product(
        product_code="P-1001", sku="CHG-20W", name="20W Phone Charger",
        unit_cost=Decimal("8.00"), unit_price=Decimal("15.00"),
    )
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def second_product(db) -> Product:
    product = Product(
        product_code="P-1002", sku="SCR-A52", name="Screen Protector A52",
        unit_cost=Decimal("2.50"), unit_price=Decimal("6.00"),
    )
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def supplier(db) -> Supplier:
    supplier = Supplier(supplier_code="SUP-001", name="Island Mobile Parts")
    db.add(supplier)
    await db.commit()
    return supplier


@pytest.fixture
async def customer(db) -> Customer:
    customer = Customer(customer_code="C-0001", name="Nimal Perera", phone="0771234567")
    db.add(customer)
    await db.commit()
    return customer


@pytest.fixture
def make_purchase_order(db, supplier):
    """Factory: ``await make_purchase_order([(product, quantity, "unit price"), ...])``."""
    counter = itertools.count(1)

    async def _make(lines, status=PurchaseOrderStatus.CONFIRMED) -> PurchaseOrder:
        po = PurchaseOrder(
            po_number=f"PO-2026-{next(counter):04d}",
            supplier_id=supplier.id,
            status=status.value,
            total_amount=sum((Decimal(price) * quantity for _, quantity, price in lines), Decimal("0")),
        )
        for line_product, quantity, price in lines:
            po.items.append(PurchaseOrderItem(
                product_id=line_product.id,
                quantity=quantity,
                received_quantity=0,
                unit_price=Decimal(price),
                total_price=Decimal(price) * quantity,
            ))
        db.add(po)
        await db.commit()
        return po

    return _make


@pytest.fixture
def make_sale(db, branch_location, customer):
    counter = itertools.count(1)

    async def _make(total_amount="100.00", status=SaleStatus.COMPLETED) -> Sale:
        sale = Sale(
            invoice_number=f"INV-2026-{next(counter):04d}",
            customer_id=customer.id,
            location_id=branch_location.id,
            total_amount=Decimal(total_amount),
            status=status.value,
        )
        db.add(sale)
        await db.commit()
        return sale

    return _make
