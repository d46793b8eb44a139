"""
Database Models - Raw Commerce Collections and Derived Snapshots

Raw tables are written by the platform connectors and are read-only to the
snapshot engine:
- Order, OrderItem: order transactions and line items
- Product, ProductVariant: catalog
- InventoryLevel: per-variant stock totals
- VariantCost: per-variant cost components
- Customer: customer records with lifetime counters
- AdInsight: daily ad-platform totals

Snapshot tables are owned by the engine and replaced on every rebuild.
Each snapshot row carries the generation it was written under; the
SnapshotPointer names the generation readers should see. A generation is
written at most once: unique constraints reject a second writer.
"""

from datetime import datetime, date
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# Money columns come back as floats; the engine does float arithmetic throughout
Money = Numeric(14, 2, asdecimal=False)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class StockStatus(str, Enum):
    """Inventory health tier"""
    HEALTHY = "healthy"
    LOW = "low"
    CRITICAL = "critical"
    OUT = "out"


class AbcCategory(str, Enum):
    """Pareto tier"""
    A = "A"
    B = "B"
    C = "C"


class CustomerSegment(str, Enum):
    """Customer lifecycle segment"""
    PROSPECT = "prospect"
    NEW = "new"
    REGULAR = "regular"
    VIP = "vip"
    CHAMPION = "champion"


class CustomerStatus(str, Enum):
    """Purchase status within the analysis window"""
    CONVERTED = "converted"
    ABANDONED_CART = "abandoned_cart"


class SnapshotKind(str, Enum):
    """Snapshot families replaced independently"""
    INVENTORY = "inventory"
    CUSTOMERS = "customers"


# =============================================================================
# RAW COLLECTIONS
# =============================================================================

class Product(Base):
    """Catalog product"""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(100))
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    handle: Mapped[Optional[str]] = mapped_column(String(300))
    product_type: Mapped[Optional[str]] = mapped_column(String(200))
    vendor: Mapped[Optional[str]] = mapped_column(String(200))
    featured_image: Mapped[Optional[str]] = mapped_column(String(2000))

    variants: Mapped[List["ProductVariant"]] = relationship(back_populates="product")

    __table_args__ = (
        Index("ix_products_organization", "organization_id"),
    )


class ProductVariant(Base):
    """Sellable variant of a product"""
    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("products.id"), nullable=False
    )
    sku: Mapped[Optional[str]] = mapped_column(String(100))
    title: Mapped[Optional[str]] = mapped_column(String(300))
    price: Mapped[Optional[float]] = mapped_column(Money)
    compare_at_price: Mapped[Optional[float]] = mapped_column(Money)
    # Legacy stock counter; inventory levels are authoritative when present
    inventory_quantity: Mapped[Optional[int]] = mapped_column(Integer)

    product: Mapped["Product"] = relationship(back_populates="variants")

    __table_args__ = (
        Index("ix_product_variants_organization", "organization_id"),
        Index("ix_product_variants_product", "product_id"),
    )


class InventoryLevel(Base):
    """Aggregated stock totals for a variant across locations"""
    __tablename__ = "inventory_levels"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("product_variants.id"), nullable=False
    )
    available: Mapped[Optional[int]] = mapped_column(Integer)
    incoming: Mapped[Optional[int]] = mapped_column(Integer)
    committed: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_inventory_levels_organization", "organization_id"),
    )


class VariantCost(Base):
    """Merchant-supplied cost components for a variant"""
    __tablename__ = "variant_costs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cogs_per_unit: Mapped[Optional[float]] = mapped_column(Money)
    handling_per_unit: Mapped[Optional[float]] = mapped_column(Money)
    tax_percent: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_variant_costs_organization", "organization_id"),
    )


class Customer(Base):
    """Customer record as synced from the commerce platform"""
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(320))
    orders_count: Mapped[Optional[int]] = mapped_column(Integer)
    total_spent: Mapped[Optional[float]] = mapped_column(Money)
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_customers_organization", "organization_id"),
    )


class Order(Base):
    """Order header"""
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total_price: Mapped[Optional[float]] = mapped_column(Money)
    financial_status: Mapped[Optional[str]] = mapped_column(String(50))

    items: Mapped[List["OrderItem"]] = relationship(back_populates="order")

    __table_args__ = (
        Index("ix_orders_organization_created", "organization_id", "created_at"),
    )


class OrderItem(Base):
    """Order line item"""
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("orders.id"), nullable=False
    )
    variant_id: Mapped[Optional[str]] = mapped_column(String(64))
    quantity: Mapped[Optional[int]] = mapped_column(Integer)
    price: Mapped[Optional[float]] = mapped_column(Money)
    total_discount: Mapped[Optional[float]] = mapped_column(Money)

    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
    )


class AdInsight(Base):
    """Daily ad-platform totals"""
    __tablename__ = "ad_insights"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), default="account")
    impressions: Mapped[Optional[int]] = mapped_column(Integer)
    clicks: Mapped[Optional[int]] = mapped_column(Integer)
    conversions: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_ad_insights_org_date", "organization_id", "date"),
    )


# =============================================================================
# SNAPSHOTS
# =============================================================================

class SnapshotPointer(Base):
    """
    Current snapshot generation per organization and snapshot kind.

    Flipped in the same transaction that inserts a new generation, so
    readers filtering on it never see a half-written snapshot.
    """
    __tablename__ = "snapshot_pointers"

    organization_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), primary_key=True)
    current_generation: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    analysis_window_days: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[Optional[datetime]] = mapped_column(DateTime)
    window_end: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class InventoryProductSummary(Base):
    """Per-product inventory health. Grain: one row per product per generation."""
    __tablename__ = "inventory_product_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    sku: Mapped[str] = mapped_column(String(300), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(2000))
    category: Mapped[str] = mapped_column(String(200), nullable=False)
    vendor: Mapped[str] = mapped_column(String(200), nullable=False)

    stock: Mapped[int] = mapped_column(Integer, default=0)
    reserved: Mapped[int] = mapped_column(Integer, default=0)
    available: Mapped[int] = mapped_column(Integer, default=0)
    reorder_point: Mapped[int] = mapped_column(Integer, default=0)
    stock_status: Mapped[str] = mapped_column(String(20), nullable=False)

    price: Mapped[float] = mapped_column(Float, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0)
    margin: Mapped[float] = mapped_column(Float, default=0)
    turnover_rate: Mapped[float] = mapped_column(Float, default=0)

    units_sold: Mapped[Optional[int]] = mapped_column(Integer)
    period_revenue: Mapped[Optional[float]] = mapped_column(Float)
    last_sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    abc_category: Mapped[str] = mapped_column(String(1), nullable=False)
    variant_count: Mapped[int] = mapped_column(Integer, default=1)
    variants: Mapped[Optional[list]] = mapped_column(JSON)

    __table_args__ = (
        UniqueConstraint("organization_id", "generation", "product_id", name="uq_inventory_products_generation"),
        Index("ix_inventory_products_org_product", "organization_id", "product_id"),
    )


class InventoryOverviewSummary(Base):
    """Organization-level inventory overview. Grain: one row per generation."""
    __tablename__ = "inventory_overview_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    analysis_window_days: Mapped[int] = mapped_column(Integer, nullable=False)

    total_value: Mapped[float] = mapped_column(Float, default=0)
    total_cogs: Mapped[float] = mapped_column(Float, default=0)
    total_skus: Mapped[int] = mapped_column(Integer, default=0)
    stock_coverage_days: Mapped[int] = mapped_column(Integer, default=0)
    dead_stock: Mapped[int] = mapped_column(Integer, default=0)
    total_units_in_stock: Mapped[int] = mapped_column(Integer, default=0)
    total_units_sold: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("organization_id", "generation", name="uq_inventory_overview_generation"),
    )


class CustomerMetricsSummary(Base):
    """Per-customer lifetime and period metrics. Grain: one row per customer per generation."""
    __tablename__ = "customer_metrics_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    analysis_window_days: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    segment: Mapped[str] = mapped_column(String(20), nullable=False)

    lifetime_orders: Mapped[int] = mapped_column(Integer, default=0)
    lifetime_value: Mapped[float] = mapped_column(Float, default=0)
    avg_order_value: Mapped[float] = mapped_column(Float, default=0)
    period_orders: Mapped[int] = mapped_column(Integer, default=0)
    period_revenue: Mapped[float] = mapped_column(Float, default=0)

    first_order_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_order_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    customer_created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    customer_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    is_returning: Mapped[bool] = mapped_column(Boolean, default=False)
    search_name: Mapped[str] = mapped_column(Text, nullable=False)
    search_email: Mapped[Optional[str]] = mapped_column(String(320))

    __table_args__ = (
        UniqueConstraint("organization_id", "generation", "customer_id", name="uq_customer_metrics_generation"),
        Index("ix_customer_metrics_org_customer", "organization_id", "customer_id"),
        Index("ix_customer_metrics_segment", "segment"),
    )


class CustomerOverviewSummary(Base):
    """Organization-level customer overview. Grain: one row per generation."""
    __tablename__ = "customer_overview_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    analysis_window_days: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # exclusive

    total_customers: Mapped[int] = mapped_column(Integer, default=0)
    converted_customers: Mapped[int] = mapped_column(Integer, default=0)
    abandoned_customers: Mapped[int] = mapped_column(Integer, default=0)
    returning_customers: Mapped[int] = mapped_column(Integer, default=0)
    new_customers: Mapped[int] = mapped_column(Integer, default=0)
    active_customers: Mapped[int] = mapped_column(Integer, default=0)
    period_orders: Mapped[int] = mapped_column(Integer, default=0)
    period_revenue: Mapped[float] = mapped_column(Float, default=0)

    __table_args__ = (
        UniqueConstraint("organization_id", "generation", name="uq_customer_overview_generation"),
    )
