"""
Inventory Snapshot Builder

Per-product inventory health and an organization overview:

- Stock totals per variant (inventory levels, legacy quantity as fallback)
- Period sales per product with ABC tiers
- Coverage-based stock status, reorder point, turnover, weighted cost
- Dead-stock count over a fixed 90-day lookback
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from snapshot_engine.database.models import (
    AbcCategory,
    InventoryLevel,
    InventoryOverviewSummary,
    InventoryProductSummary,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    SnapshotKind,
    VariantCost,
)
from .abc import assign_abc_categories
from .builder import SnapshotBuilder
from .costs import CostResolver
from .dead_stock import collect_sold_variant_ids, count_dead_stock, dead_stock_cutoff
from .numeric import as_count, as_number, round_half_up
from .sales import (
    SalesStats,
    aggregate_product_sales,
    aggregate_variant_sales,
    build_line_items_frame,
    compute_sales_totals,
)
from .stock import (
    average_daily_sales,
    classify_stock_status,
    margin_percent,
    reorder_point,
    turnover_rate,
    weighted_average_cost,
)
from .store import SnapshotStore
from .windows import AnalysisWindow

logger = structlog.get_logger(__name__)

# Coverage reported when stock exists but nothing sold in the window
IDLE_STOCK_COVERAGE_DAYS = 90


@dataclass
class InventoryTotals:
    """Stock totals for one variant"""
    available: int = 0
    incoming: int = 0
    committed: int = 0


@dataclass
class VariantRollup:
    id: str
    sku: str
    title: str
    price: float
    stock: int
    reserved: int
    available: int


@dataclass
class ProductInventoryRow:
    """Computed inventory health of one product"""
    product_id: str
    name: str
    sku: str
    image: Optional[str]
    category: str
    vendor: str
    stock: int
    reserved: int
    available: int
    reorder_point: int
    stock_status: str
    price: float
    cost: float
    margin: float
    turnover_rate: float
    units_sold: Optional[int]
    period_revenue: Optional[float]
    last_sold_at: Optional[datetime]
    abc_category: str
    variant_count: int
    variants: Optional[List[VariantRollup]] = None


@dataclass
class InventoryOverview:
    total_value: float = 0.0
    total_cogs: float = 0.0
    total_skus: int = 0
    stock_coverage_days: int = 0
    dead_stock: int = 0
    total_units_in_stock: int = 0
    total_units_sold: int = 0
    analysis_window_days: int = 0


@dataclass
class InventorySnapshot:
    products: List[ProductInventoryRow] = field(default_factory=list)
    overview: InventoryOverview = field(default_factory=InventoryOverview)


def aggregate_inventory_levels(
    levels: Iterable[InventoryLevel],
    variants: Iterable[ProductVariant] = (),
) -> Dict[str, InventoryTotals]:
    """
    Stock totals per variant id.

    Inventory levels are authoritative, except that a larger legacy
    variant quantity wins. Variants without a level use their legacy
    quantity with nothing incoming or committed.
    """
    totals: Dict[str, InventoryTotals] = {}

    for level in levels:
        totals[level.variant_id] = InventoryTotals(
            available=as_count(level.available),
            incoming=as_count(level.incoming),
            committed=as_count(level.committed),
        )

    for variant in variants:
        quantity = as_count(variant.inventory_quantity)
        existing = totals.get(variant.id)
        if existing is None:
            totals[variant.id] = InventoryTotals(available=quantity)
        elif quantity > existing.available:
            existing.available = quantity

    return totals


def group_variants_by_product(variants: Iterable[ProductVariant]) -> Dict[str, List[ProductVariant]]:
    grouped: Dict[str, List[ProductVariant]] = {}
    for variant in variants:
        grouped.setdefault(variant.product_id, []).append(variant)
    return grouped


def prepare_inventory_summaries(
    products: Sequence[Product],
    variants: Sequence[ProductVariant],
    inventory_totals: Mapping[str, InventoryTotals],
    product_sales: Mapping[str, SalesStats],
    abc_categories: Mapping[str, str],
    resolver: CostResolver,
    analysis_days: int,
) -> List[ProductInventoryRow]:
    """Build one inventory row per product, in catalog order."""
    variants_by_product = group_variants_by_product(variants)
    rows: List[ProductInventoryRow] = []

    for product in products:
        product_variants = variants_by_product.get(product.id, [])
        total_available = 0
        total_reserved = 0
        cost_and_stock: List[Tuple[float, float]] = []
        rollups: List[VariantRollup] = []

        for variant in product_variants:
            totals = inventory_totals.get(variant.id) or InventoryTotals()
            total_available += totals.available
            total_reserved += totals.committed
            cost_and_stock.append((resolver.resolve(variant), totals.available))
            rollups.append(
                VariantRollup(
                    id=variant.id,
                    sku=variant.sku or product.handle or "N/A",
                    title=variant.title or "Default",
                    price=max(as_number(variant.price), 0.0),
                    stock=totals.available + totals.committed,
                    reserved=totals.committed,
                    available=totals.available,
                )
            )

        stats = product_sales.get(product.id) or SalesStats()
        avg_daily = average_daily_sales(stats.units, analysis_days)

        default_variant = product_variants[0] if product_variants else None
        price = max(as_number(default_variant.price), 0.0) if default_variant else 0.0
        cost = weighted_average_cost(cost_and_stock)

        rows.append(
            ProductInventoryRow(
                product_id=product.id,
                name=product.title,
                sku=(
                    product.handle
                    or (default_variant.sku if default_variant else None)
                    or product.external_id
                    or product.id
                ),
                image=product.featured_image or None,
                category=product.product_type or "Uncategorized",
                vendor=product.vendor or "Unknown",
                stock=total_available + total_reserved,
                reserved=total_reserved,
                available=total_available,
                reorder_point=reorder_point(avg_daily),
                stock_status=classify_stock_status(total_available, avg_daily),
                price=price,
                cost=cost,
                margin=margin_percent(price, cost),
                turnover_rate=turnover_rate(stats.units, total_available, analysis_days),
                units_sold=stats.units or None,
                period_revenue=stats.revenue or None,
                last_sold_at=stats.last_sold_at,
                abc_category=abc_categories.get(product.id, AbcCategory.C.value),
                variant_count=max(len(product_variants), 1),
                variants=rollups if len(rollups) > 1 else None,
            )
        )

    return rows


def build_inventory_overview(
    variants: Sequence[ProductVariant],
    inventory_totals: Mapping[str, InventoryTotals],
    sales_totals: SalesStats,
    resolver: CostResolver,
    analysis_days: int,
    dead_stock: int,
) -> InventoryOverview:
    """Organization-level stock value, cost, coverage and dead stock."""
    total_value = 0.0
    total_cogs = 0.0
    total_units_in_stock = 0

    for variant in variants:
        totals = inventory_totals.get(variant.id)
        available = totals.available if totals is not None else 0
        total_value += available * max(as_number(variant.price), 0.0)
        total_cogs += available * resolver.resolve(variant)
        total_units_in_stock += available

    avg_daily_units = average_daily_sales(sales_totals.units, analysis_days)
    if avg_daily_units > 0:
        coverage = int(round_half_up(total_units_in_stock / avg_daily_units))
    elif total_units_in_stock > 0:
        coverage = IDLE_STOCK_COVERAGE_DAYS
    else:
        coverage = 0

    return InventoryOverview(
        total_value=total_value,
        total_cogs=total_cogs,
        total_skus=len(variants),
        stock_coverage_days=coverage,
        dead_stock=dead_stock,
        total_units_in_stock=total_units_in_stock,
        total_units_sold=sales_totals.units,
        analysis_window_days=analysis_days,
    )


def compute_inventory_snapshot(
    products: Sequence[Product],
    variants: Sequence[ProductVariant],
    levels: Sequence[InventoryLevel],
    cost_records: Sequence[VariantCost],
    orders: Sequence[Order],
    items: Sequence[OrderItem],
    recent_items: Sequence[OrderItem],
    analysis_days: int,
) -> InventorySnapshot:
    """
    Compute the full inventory snapshot from raw collections.

    Args:
        orders, items: Orders in the analysis window and their line items
        recent_items: Line items of orders inside the dead-stock lookback
    """
    resolver = CostResolver()
    resolver.prime(cost_records)

    inventory_totals = aggregate_inventory_levels(levels, variants)
    variant_lookup = {variant.id: variant for variant in variants}

    line_items = build_line_items_frame(orders, items, variant_lookup, resolver)
    variant_sales = aggregate_variant_sales(line_items)
    product_sales = aggregate_product_sales(variant_sales, variants)
    abc_categories = assign_abc_categories([product.id for product in products], product_sales)

    rows = prepare_inventory_summaries(
        products,
        variants,
        inventory_totals,
        product_sales,
        abc_categories,
        resolver,
        analysis_days,
    )

    dead_stock = count_dead_stock(
        (variant.id for variant in variants),
        {variant_id: totals.available for variant_id, totals in inventory_totals.items()},
        collect_sold_variant_ids(recent_items),
    )

    overview = build_inventory_overview(
        variants,
        inventory_totals,
        compute_sales_totals(line_items),
        resolver,
        analysis_days,
        dead_stock,
    )

    return InventorySnapshot(products=rows, overview=overview)


class InventorySnapshotBuilder(SnapshotBuilder):
    """
    Rebuilds the inventory snapshot of an organization.

    Example:
        builder = InventorySnapshotBuilder(get_session_factory())
        result = await builder.rebuild(org_id, analysis_window_days=30)
    """

    kind = SnapshotKind.INVENTORY.value

    async def build_rows(
        self,
        store: SnapshotStore,
        organization_id: str,
        window: AnalysisWindow,
        now: datetime,
        generation: int,
    ) -> Tuple[List[InventoryProductSummary], InventoryOverviewSummary]:
        products = await store.load_products(organization_id)
        variants = await store.load_variants(organization_id)
        levels = await store.load_inventory_levels(organization_id)
        cost_records = await store.load_cost_components(organization_id)

        orders = await store.load_orders(organization_id, start=window.start, end=window.end)
        items = await store.load_order_items([order.id for order in orders])

        recent_orders = await store.load_orders(
            organization_id, start=dead_stock_cutoff(now), start_inclusive=False
        )
        recent_items = await store.load_order_items([order.id for order in recent_orders])

        logger.debug(
            "Inventory inputs loaded",
            organization_id=organization_id,
            products=len(products),
            variants=len(variants),
            orders=len(orders),
            order_items=len(items),
            recent_orders=len(recent_orders),
        )

        snapshot = compute_inventory_snapshot(
            products, variants, levels, cost_records, orders, items, recent_items, window.days
        )

        product_rows = [
            InventoryProductSummary(
                organization_id=organization_id,
                generation=generation,
                computed_at=now,
                product_id=row.product_id,
                name=row.name,
                sku=row.sku,
                image=row.image,
                category=row.category,
                vendor=row.vendor,
                stock=row.stock,
                reserved=row.reserved,
                available=row.available,
                reorder_point=row.reorder_point,
                stock_status=row.stock_status,
                price=row.price,
                cost=row.cost,
                margin=row.margin,
                turnover_rate=row.turnover_rate,
                units_sold=row.units_sold,
                period_revenue=row.period_revenue,
                last_sold_at=row.last_sold_at,
                abc_category=row.abc_category,
                variant_count=row.variant_count,
                variants=[asdict(v) for v in row.variants] if row.variants else None,
            )
            for row in snapshot.products
        ]

        overview = snapshot.overview
        overview_row = InventoryOverviewSummary(
            organization_id=organization_id,
            generation=generation,
            computed_at=now,
            analysis_window_days=overview.analysis_window_days,
            total_value=overview.total_value,
            total_cogs=overview.total_cogs,
            total_skus=overview.total_skus,
            stock_coverage_days=overview.stock_coverage_days,
            dead_stock=overview.dead_stock,
            total_units_in_stock=overview.total_units_in_stock,
            total_units_sold=overview.total_units_sold,
        )

        return product_rows, overview_row
