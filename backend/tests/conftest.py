"""
Test Configuration — Fixtures for an async SQLite store and seed data.

Each test gets its own file-backed SQLite database under tmp_path, so the
operations under test can commit and roll back for real.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import db.models  # noqa: F401  (registers tables on Base.metadata)
from db.session import Base


@pytest.fixture
async def test_engine(tmp_path):
    """Create a per-test database and build all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'retail.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded_db(test_db):
    """A small store with no data-quality defects."""
    from db.models import Customer, Order, OrderItem, PricingHistory, Product

    today = date.today()

    customer = Customer(
        customer_name="John Smith",
        email="john.smith@email.com",
        phone="5550101",
        customer_segment="Retail",
        registration_date=today - timedelta(days=400),
        city="Houston",
        state="TX",
        loyalty_tier="Gold",
    )
    test_db.add(customer)
    await test_db.flush()

    product = Product(
        product_name="Wireless Mouse",
        category="Electronics",
        subcategory="Accessories",
        unit_price=Decimal("29.99"),
        cost=Decimal("15.00"),
        supplier="TechSupply Co",
        stock_quantity=150,
    )
    test_db.add(product)
    await test_db.flush()

    order = Order(
        customer_id=customer.customer_id,
        order_date=today - timedelta(days=10),
        ship_date=today - timedelta(days=8),
        ship_mode="Standard",
        order_status="Delivered",
        total_amount=Decimal("59.98"),
        discount_percent=Decimal("0"),
    )
    test_db.add(order)
    await test_db.flush()

    item = OrderItem(
        order_id=order.order_id,
        product_id=product.product_id,
        quantity=2,
        unit_price=Decimal("29.99"),
        discount_amount=Decimal("0"),
        line_total=Decimal("59.98"),
    )
    test_db.add(item)

    test_db.add(
        PricingHistory(
            product_id=product.product_id,
            old_price=Decimal("27.99"),
            new_price=Decimal("29.99"),
            effective_date=today - timedelta(days=30),
            updated_by="pricing_team",
        )
    )
    await test_db.commit()

    return {
        "customer": customer,
        "product": product,
        "order": order,
        "item": item,
        "today": today,
    }
