"""
Dead-Stock Detector

A variant is dead stock when it holds available units but has not appeared
in any order line item during a fixed trailing lookback. The lookback is
independent of the configurable analysis window.
"""

from datetime import datetime, timedelta
from typing import Iterable, Mapping, Set

from snapshot_engine.database.models import OrderItem

DEAD_STOCK_LOOKBACK_DAYS = 90


def dead_stock_cutoff(now: datetime) -> datetime:
    """Orders created strictly after this moment count as recent sales."""
    return now - timedelta(days=DEAD_STOCK_LOOKBACK_DAYS)


def collect_sold_variant_ids(items: Iterable[OrderItem]) -> Set[str]:
    return {item.variant_id for item in items if item.variant_id}


def count_dead_stock(
    variant_ids: Iterable[str],
    available_by_variant: Mapping[str, int],
    sold_variant_ids: Set[str],
) -> int:
    """Count variants with stock that are absent from the recent sold set."""
    return sum(
        1
        for variant_id in variant_ids
        if available_by_variant.get(variant_id, 0) > 0 and variant_id not in sold_variant_ids
    )
