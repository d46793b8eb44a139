"""
Unit Tests - Inventory Snapshot Computation
"""
from datetime import timedelta

import pytest

from snapshot_engine.database.models import (
    InventoryLevel,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    VariantCost,
)
from snapshot_engine.engine.dead_stock import dead_stock_cutoff
from snapshot_engine.engine.inventory import (
    IDLE_STOCK_COVERAGE_DAYS,
    aggregate_inventory_levels,
    compute_inventory_snapshot,
)


def of_type(records, model):
    return sorted((r for r in records if isinstance(r, model)), key=lambda r: r.id)


@pytest.fixture
def inventory_snapshot(sample_records, now):
    """Snapshot of the sample organization over a 30-day window"""
    orders = of_type(sample_records, Order)
    items = of_type(sample_records, OrderItem)
    window_start = now - timedelta(days=30)
    cutoff = dead_stock_cutoff(now)

    window_orders = [o for o in orders if window_start <= o.created_at <= now]
    window_ids = {o.id for o in window_orders}
    recent_ids = {o.id for o in orders if o.created_at > cutoff}

    return compute_inventory_snapshot(
        of_type(sample_records, Product),
        of_type(sample_records, ProductVariant),
        of_type(sample_records, InventoryLevel),
        of_type(sample_records, VariantCost),
        window_orders,
        [i for i in items if i.order_id in window_ids],
        [i for i in items if i.order_id in recent_ids],
        30,
    )


class TestInventoryLevels:
    """Tests for aggregate_inventory_levels"""

    def test_levels_and_legacy_quantity(self):
        levels = [
            InventoryLevel(variant_id="v1", available=10, incoming=4, committed=2),
            InventoryLevel(variant_id="v2", available=3, incoming=None, committed=None),
            InventoryLevel(variant_id="v4", available=-5, incoming=0, committed=0),
        ]
        variants = [
            ProductVariant(id="v1", inventory_quantity=6),
            ProductVariant(id="v2", inventory_quantity=9),
            ProductVariant(id="v3", inventory_quantity=7),
        ]

        totals = aggregate_inventory_levels(levels, variants)

        assert (totals["v1"].available, totals["v1"].incoming, totals["v1"].committed) == (10, 4, 2)
        assert totals["v2"].available == 9
        assert totals["v2"].committed == 0
        assert totals["v3"].available == 7
        assert totals["v4"].available == 0


class TestInventorySnapshot:
    """Tests for compute_inventory_snapshot"""

    def test_product_rows(self, inventory_snapshot, now):
        rows = {row.product_id: row for row in inventory_snapshot.products}

        assert list(rows) == ["prod-1", "prod-2", "prod-3"]

        backpack = rows["prod-1"]
        assert backpack.sku == "trail-backpack"
        assert backpack.category == "Outdoor"
        assert (backpack.available, backpack.reserved, backpack.stock) == (45, 2, 47)
        assert backpack.units_sold == 3
        assert backpack.period_revenue == pytest.approx(310.0)
        assert backpack.last_sold_at == now - timedelta(days=2)
        assert backpack.stock_status == "healthy"
        assert backpack.reorder_point == 1
        assert backpack.turnover_rate == 0.8
        assert backpack.price == 100.0
        assert backpack.cost == pytest.approx(2130 / 45)
        assert backpack.margin == pytest.approx((100 - 2130 / 45))
        assert backpack.abc_category == "B"
        assert backpack.variant_count == 2
        assert [v.id for v in backpack.variants] == ["var-1a", "var-1b"]
        assert backpack.variants[0].stock == 42
        assert backpack.variants[1].sku == "BP-L"

    def test_fallback_fields(self, inventory_snapshot):
        """Test defaults for missing handle, category and vendor"""
        mug = inventory_snapshot.products[1]

        assert mug.sku == "MUG-1"
        assert mug.category == "Uncategorized"
        assert mug.vendor == "Unknown"
        assert mug.image is None
        assert mug.cost == pytest.approx(12.0)
        assert mug.turnover_rate == 4.1
        assert mug.abc_category == "C"
        assert mug.variant_count == 1
        assert mug.variants is None

    def test_unsold_product(self, inventory_snapshot):
        lantern = inventory_snapshot.products[2]

        assert lantern.units_sold is None
        assert lantern.period_revenue is None
        assert lantern.last_sold_at is None
        assert lantern.stock_status == "low"
        assert lantern.reorder_point == 0
        assert lantern.turnover_rate == 0.0
        assert lantern.cost == pytest.approx(30.0)

    def test_overview(self, inventory_snapshot):
        overview = inventory_snapshot.overview

        assert overview.total_value == pytest.approx(5110.0)
        assert overview.total_cogs == pytest.approx(2466.0)
        assert overview.total_skus == 4
        assert overview.total_units_in_stock == 58
        # Includes the custom line item without a variant
        assert overview.total_units_sold == 5
        assert overview.stock_coverage_days == 348
        assert overview.dead_stock == 1
        assert overview.analysis_window_days == 30

    def test_empty_catalog(self):
        snapshot = compute_inventory_snapshot([], [], [], [], [], [], [], 30)

        assert snapshot.products == []
        assert snapshot.overview.total_skus == 0
        assert snapshot.overview.stock_coverage_days == 0
        assert snapshot.overview.dead_stock == 0

    def test_idle_stock_coverage(self):
        """Test coverage when stock exists but nothing sold"""
        products = [Product(id="p1", title="Idle")]
        variants = [ProductVariant(id="v1", product_id="p1", price=5.0, inventory_quantity=8)]

        snapshot = compute_inventory_snapshot(products, variants, [], [], [], [], [], 30)

        assert snapshot.overview.stock_coverage_days == IDLE_STOCK_COVERAGE_DAYS
        assert snapshot.overview.dead_stock == 1
        assert snapshot.products[0].abc_category == "C"
