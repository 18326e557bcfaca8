# tests/conftest.py
import os

# The application engine is never used by the tests, but it is built on import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from stockledger.core.enums import FulfillmentType, MovementReason, OrderStatus
from stockledger.database import Base
from stockledger.dependencies import get_db, get_notifier
from stockledger.main import app
from stockledger.models import BundleComponent, Order, OrderItem, Product
from stockledger.services.notification_service import OrderNotificationService
from stockledger.services.stock_adjustment_service import StockAdjustmentService


@pytest.fixture(scope="function")
async def test_engine(tmp_path):
    """
    File-backed SQLite engine, one database per test.

    Every transaction starts with BEGIN IMMEDIATE, so concurrent sessions
    queue on the database write lock the way they queue on the product row
    lock in Postgres.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'stockledger.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_product(session_factory):
    """Create a product; opening stock goes through the ledger as a restock."""

    async def _make(name="Test Guitar", stock=0, sku=None, is_active=True):
        async with session_factory() as session:
            product = Product(name=name, sku=sku, is_active=is_active, stock=0)
            session.add(product)
            await session.commit()
            if stock:
                await StockAdjustmentService(session).adjust(
                    product.id, stock, MovementReason.RESTOCK, note="opening stock", actor="test"
                )
            return product.id

    return _make


@pytest.fixture
def make_order(session_factory):
    """Create an order. ``items`` are dicts of OrderItem fields."""

    async def _make(
        items=(),
        status=OrderStatus.PLACED,
        fulfillment_type=FulfillmentType.DELIVERY,
        order_number=None,
    ):
        async with session_factory() as session:
            order = Order(status=status, fulfillment_type=fulfillment_type, order_number=order_number)
            session.add(order)
            await session.flush()
            for item in items:
                session.add(OrderItem(order_id=order.id, **item))
            await session.commit()
            return order.id

    return _make


@pytest.fixture
def make_bundle(session_factory, make_product):
    """Create a bundle product from ``(component_id, quantity)`` pairs."""

    async def _make(components, name="Starter Bundle", sku=None):
        bundle_id = await make_product(name=name, sku=sku)
        async with session_factory() as session:
            for component_id, quantity in components:
                session.add(BundleComponent(bundle_id=bundle_id, component_id=component_id, quantity=quantity))
            await session.commit()
        return bundle_id

    return _make


@pytest.fixture
def get_stock(session_factory):
    async def _get(product_id):
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return _get


@pytest.fixture
def notifier(mocker):
    """Order status notifier that never leaves the process"""
    return mocker.Mock(spec=OrderNotificationService)


@pytest.fixture
async def client(session_factory, notifier):
    """HTTP client bound to the app, with the database and notifier overridden"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
