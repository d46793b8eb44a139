"""
ABC Classifier

Pareto tiering of products by their contribution to period revenue.

- Revenue ranking: cumulative share <= 80% -> A, <= 95% -> B, else C
- Zero total revenue: same thresholds on units sold
- No sales at all: rank tiering by product id (first 20% A, next 30% B)

Every product always receives exactly one tier.
"""

from typing import Dict, Mapping, Sequence

import polars as pl

from snapshot_engine.database.models import AbcCategory
from .sales import SalesStats

A_SHARE_THRESHOLD = 0.80
B_SHARE_THRESHOLD = 0.95
A_RANK_THRESHOLD = 0.20
B_RANK_THRESHOLD = 0.50


def _pareto_tiers(distribution: pl.DataFrame, key: str, total: float) -> Dict[str, str]:
    ranked = (
        distribution
        .sort(key, descending=True, maintain_order=True)
        .with_columns((pl.col(key).cum_sum() / total).alias("share"))
        .with_columns(
            pl.when(pl.col("share") <= A_SHARE_THRESHOLD)
            .then(pl.lit(AbcCategory.A.value))
            .when(pl.col("share") <= B_SHARE_THRESHOLD)
            .then(pl.lit(AbcCategory.B.value))
            .otherwise(pl.lit(AbcCategory.C.value))
            .alias("abc_category")
        )
    )
    return dict(zip(ranked["product_id"].to_list(), ranked["abc_category"].to_list()))


def _rank_tiers(product_ids: Sequence[str]) -> Dict[str, str]:
    ordered = sorted(product_ids)
    total = max(len(ordered), 1)
    tiers: Dict[str, str] = {}
    for index, product_id in enumerate(ordered):
        position = (index + 1) / total
        if position <= A_RANK_THRESHOLD:
            tiers[product_id] = AbcCategory.A.value
        elif position <= B_RANK_THRESHOLD:
            tiers[product_id] = AbcCategory.B.value
        else:
            tiers[product_id] = AbcCategory.C.value
    return tiers


def assign_abc_categories(
    product_ids: Sequence[str],
    product_sales: Mapping[str, SalesStats],
) -> Dict[str, str]:
    """
    Assign an ABC tier to every product.

    Args:
        product_ids: Products to classify, in catalog order (ties keep this order)
        product_sales: Period sales per product; missing products count as zero

    Returns:
        Mapping of product id to "A", "B" or "C"
    """
    if not product_ids:
        return {}

    distribution = pl.DataFrame(
        {
            "product_id": list(product_ids),
            "revenue": [
                product_sales[pid].revenue if pid in product_sales else 0.0
                for pid in product_ids
            ],
            "units": [
                float(product_sales[pid].units) if pid in product_sales else 0.0
                for pid in product_ids
            ],
        },
        schema={"product_id": pl.Utf8, "revenue": pl.Float64, "units": pl.Float64},
    )

    total_revenue = distribution["revenue"].sum()
    if total_revenue > 0:
        return _pareto_tiers(distribution, "revenue", total_revenue)

    total_units = distribution["units"].sum()
    if total_units > 0:
        return _pareto_tiers(distribution, "units", total_units)

    return _rank_tiers(product_ids)
