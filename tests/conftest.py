"""
Test Suite Configuration
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from snapshot_engine.config import Settings
from snapshot_engine.config.settings import SnapshotSettings
from snapshot_engine.database.models import (
    AdInsight,
    Base,
    Customer,
    InventoryLevel,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    VariantCost,
)
from snapshot_engine.engine import LocalRebuildLock

REFERENCE_NOW = datetime(2025, 6, 30, 12, 0, 0)
ORGANIZATION_ID = "org-1"


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for rebuilds"""
    return REFERENCE_NOW


@pytest.fixture
def organization_id() -> str:
    return ORGANIZATION_ID


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        APP_ENV="testing",
        snapshots=SnapshotSettings(lock_backend="local", order_items_batch_size=2, ad_insights_page_size=3),
    )


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory database shared by every session of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def rebuild_lock() -> LocalRebuildLock:
    return LocalRebuildLock()


def build_sample_records(organization_id: str, now: datetime) -> list:
    """
    Small organization with known expected snapshots.

    Catalog:
        prod-1 "Trail Backpack": var-1a (100.00, 40 available, 2 committed,
            cogs 45.00), var-1b (110.00, legacy quantity 5, no level)
        prod-2 "Camp Mug": var-2 (20.00, compare-at 12.00, 3 available)
        prod-3 "Old Lantern": var-3 (50.00, 10 available, never sold)

    Orders:
        ord-1 paid, cust-1, now-2d: 2 x var-1a, 1 x var-2
        ord-2 paid, cust-1, now-10d: 1 x var-1b (price from variant)
        ord-3 cancelled, cust-2, now-5d: 1 x var-1a
        ord-4 paid, cust-2, now-60d: 1 x var-2 (outside 30-day window)
        ord-5 paid, no customer, now-3d: custom item 15.00
    """
    org = organization_id
    return [
        Product(id="prod-1", organization_id=org, external_id="gid-1", title="Trail Backpack",
                handle="trail-backpack", product_type="Outdoor", vendor="Fernway",
                featured_image="https://cdn.example.com/backpack.png"),
        Product(id="prod-2", organization_id=org, external_id="gid-2", title="Camp Mug"),
        Product(id="prod-3", organization_id=org, external_id="gid-3", title="Old Lantern",
                product_type="Outdoor", vendor="Fernway"),
        ProductVariant(id="var-1a", organization_id=org, product_id="prod-1", sku="BP-S",
                       title="Small", price=100.0, inventory_quantity=12),
        ProductVariant(id="var-1b", organization_id=org, product_id="prod-1", sku="BP-L",
                       title="Large", price=110.0, inventory_quantity=5),
        ProductVariant(id="var-2", organization_id=org, product_id="prod-2", sku="MUG-1",
                       price=20.0, compare_at_price=12.0, inventory_quantity=0),
        ProductVariant(id="var-3", organization_id=org, product_id="prod-3", sku="LAN-1",
                       price=50.0, inventory_quantity=0),
        InventoryLevel(id="lvl-1a", organization_id=org, variant_id="var-1a",
                       available=40, incoming=10, committed=2),
        InventoryLevel(id="lvl-2", organization_id=org, variant_id="var-2",
                       available=3, incoming=0, committed=0),
        InventoryLevel(id="lvl-3", organization_id=org, variant_id="var-3",
                       available=10, incoming=0, committed=0),
        VariantCost(id="cost-1a", organization_id=org, variant_id="var-1a", cogs_per_unit=45.0),
        Customer(id="cust-1", organization_id=org, first_name="Ada", last_name="Lovelace",
                 email="Ada@Example.com", orders_count=2, total_spent=330.0, city="London",
                 country="GB", created_at=now - timedelta(days=200),
                 updated_at=now - timedelta(days=1)),
        Customer(id="cust-2", organization_id=org, first_name="", email=" grace@example.com ",
                 orders_count=1, total_spent=100.0, created_at=now - timedelta(days=100)),
        Customer(id="cust-3", organization_id=org, orders_count=0, total_spent=0.0,
                 created_at=now - timedelta(days=50), updated_at=now - timedelta(days=40)),
        Order(id="ord-1", organization_id=org, customer_id="cust-1",
              created_at=now - timedelta(days=2), total_price=220.0, financial_status="paid"),
        Order(id="ord-2", organization_id=org, customer_id="cust-1",
              created_at=now - timedelta(days=10), total_price=110.0, financial_status="paid"),
        Order(id="ord-3", organization_id=org, customer_id="cust-2",
              created_at=now - timedelta(days=5), total_price=100.0, financial_status="Cancelled"),
        Order(id="ord-4", organization_id=org, customer_id="cust-2",
              created_at=now - timedelta(days=60), total_price=20.0, financial_status="paid"),
        Order(id="ord-5", organization_id=org, customer_id=None,
              created_at=now - timedelta(days=3), total_price=15.0, financial_status="paid"),
        OrderItem(id="item-1", order_id="ord-1", variant_id="var-1a", quantity=2, price=100.0,
                  total_discount=0.0),
        OrderItem(id="item-2", order_id="ord-1", variant_id="var-2", quantity=1, price=20.0,
                  total_discount=0.0),
        OrderItem(id="item-3", order_id="ord-2", variant_id="var-1b", quantity=1, price=None,
                  total_discount=0.0),
        OrderItem(id="item-4", order_id="ord-3", variant_id="var-1a", quantity=1, price=100.0,
                  total_discount=0.0),
        OrderItem(id="item-5", order_id="ord-4", variant_id="var-2", quantity=1, price=20.0,
                  total_discount=0.0),
        OrderItem(id="item-6", order_id="ord-5", variant_id=None, quantity=1, price=15.0,
                  total_discount=0.0),
        AdInsight(id="ad-1", organization_id=org, date=(now - timedelta(days=1)).date(),
                  entity_type="account", impressions=1000, clicks=50, conversions=5.0),
        AdInsight(id="ad-2", organization_id=org, date=(now - timedelta(days=2)).date(),
                  entity_type="account", impressions=1000, clicks=50, conversions=5.0),
        AdInsight(id="ad-3", organization_id=org, date=(now - timedelta(days=2)).date(),
                  entity_type="campaign", impressions=999, clicks=99, conversions=9.0),
        AdInsight(id="ad-4", organization_id=org, date=(now - timedelta(days=3)).date(),
                  entity_type="account", impressions=0, clicks=0, conversions=0.0),
        AdInsight(id="ad-5", organization_id=org, date=(now - timedelta(days=4)).date(),
                  entity_type="account", impressions=None, clicks=None, conversions=None),
    ]


@pytest.fixture
def sample_records(organization_id, now) -> list:
    return build_sample_records(organization_id, now)


@pytest.fixture
async def seeded_organization(session_factory, organization_id, sample_records) -> str:
    """Insert the sample organization and return its id"""
    async with session_factory() as session:
        session.add_all(sample_records)
        await session.commit()
    return organization_id
