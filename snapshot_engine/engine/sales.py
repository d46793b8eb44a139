"""
Sales Aggregator

Joins order line items against their orders and variants and rolls them up
to per-variant and per-product unit, revenue and cost totals.

Line revenue is max(0, unit_price * quantity - line_discount); line cost is
quantity * resolved unit cost. Line items of cancelled orders are excluded.
Items without a resolvable variant do not contribute to variant or product
attribution but still count towards organization totals.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Sequence

import polars as pl
import structlog

from snapshot_engine.database.models import Order, OrderItem, ProductVariant
from .costs import CostResolver, DEFAULT_COST_RATIO
from .numeric import as_count, as_number

logger = structlog.get_logger(__name__)

LINE_ITEM_SCHEMA = {
    "order_id": pl.Utf8,
    "variant_id": pl.Utf8,
    "quantity": pl.Int64,
    "unit_price": pl.Float64,
    "discount": pl.Float64,
    "unit_cost": pl.Float64,
    "sold_at": pl.Datetime("us"),
}


@dataclass
class SalesStats:
    """Aggregated sales for a variant or product"""
    units: int = 0
    revenue: float = 0.0
    cost: float = 0.0
    last_sold_at: Optional[datetime] = None


def is_cancelled_order(order: Order) -> bool:
    """Orders whose financial status mentions a cancellation."""
    status = order.financial_status
    return isinstance(status, str) and "cancel" in status.lower()


def build_line_items_frame(
    orders: Iterable[Order],
    items: Iterable[OrderItem],
    variants: Mapping[str, ProductVariant],
    resolver: CostResolver,
) -> pl.DataFrame:
    """
    Build the joined line-item frame used by every sales aggregation.

    Args:
        orders: Orders that own the items (used for timestamps and cancellation)
        items: Order line items
        variants: Variant lookup by id
        resolver: Primed cost resolver

    Returns:
        DataFrame with LINE_ITEM_SCHEMA plus revenue and cost columns
    """
    order_lookup = {order.id: order for order in orders}
    columns = {name: [] for name in LINE_ITEM_SCHEMA}

    for item in items:
        order = order_lookup.get(item.order_id)
        if order is not None and is_cancelled_order(order):
            continue

        variant = variants.get(item.variant_id) if item.variant_id else None
        if item.price is not None:
            unit_price = max(as_number(item.price), 0.0)
        elif variant is not None:
            unit_price = max(as_number(variant.price), 0.0)
        else:
            unit_price = 0.0

        columns["order_id"].append(item.order_id)
        columns["variant_id"].append(variant.id if variant is not None else None)
        columns["quantity"].append(as_count(item.quantity))
        columns["unit_price"].append(unit_price)
        columns["discount"].append(max(as_number(item.total_discount), 0.0))
        columns["unit_cost"].append(
            resolver.resolve(variant) if variant is not None else unit_price * DEFAULT_COST_RATIO
        )
        columns["sold_at"].append(order.created_at if order is not None else None)

    frame = pl.DataFrame(columns, schema=LINE_ITEM_SCHEMA)
    return frame.with_columns(
        (pl.col("unit_price") * pl.col("quantity") - pl.col("discount"))
        .clip(lower_bound=0.0)
        .alias("revenue"),
        (pl.col("unit_cost") * pl.col("quantity")).alias("cost"),
    )


def aggregate_variant_sales(line_items: pl.DataFrame) -> Dict[str, SalesStats]:
    """Per-variant units, revenue, cost and most recent sale."""
    grouped = (
        line_items
        .filter(pl.col("variant_id").is_not_null())
        .group_by("variant_id", maintain_order=True)
        .agg(
            pl.col("quantity").sum().alias("units"),
            pl.col("revenue").sum(),
            pl.col("cost").sum(),
            pl.col("sold_at").max().alias("last_sold_at"),
        )
    )
    return {
        row["variant_id"]: SalesStats(
            units=int(row["units"]),
            revenue=float(row["revenue"]),
            cost=float(row["cost"]),
            last_sold_at=row["last_sold_at"],
        )
        for row in grouped.iter_rows(named=True)
    }


def aggregate_product_sales(
    variant_sales: Mapping[str, SalesStats],
    variants: Sequence[ProductVariant],
) -> Dict[str, SalesStats]:
    """Roll variant sales up to their products."""
    product_sales: Dict[str, SalesStats] = {}

    for variant in variants:
        stats = variant_sales.get(variant.id)
        if stats is None:
            continue

        current = product_sales.setdefault(variant.product_id, SalesStats())
        current.units += stats.units
        current.revenue += stats.revenue
        current.cost += stats.cost
        if stats.last_sold_at is not None and (
            current.last_sold_at is None or stats.last_sold_at > current.last_sold_at
        ):
            current.last_sold_at = stats.last_sold_at

    return product_sales


def compute_sales_totals(line_items: pl.DataFrame) -> SalesStats:
    """Organization totals over every line item, attributed or not."""
    if line_items.is_empty():
        return SalesStats()

    totals = line_items.select(
        pl.col("quantity").sum().alias("units"),
        pl.col("revenue").sum(),
        pl.col("cost").sum(),
        pl.col("sold_at").max().alias("last_sold_at"),
    ).row(0, named=True)

    return SalesStats(
        units=int(totals["units"]),
        revenue=float(totals["revenue"]),
        cost=float(totals["cost"]),
        last_sold_at=totals["last_sold_at"],
    )
