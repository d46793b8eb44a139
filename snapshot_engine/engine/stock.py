"""
Stock Classifier

Coverage-based health tiers, reorder points, annualized turnover and
stock-weighted unit cost for a product.

Two classification modes:
- With sales velocity: coverage days against safety stock and lead time
- Without velocity (new or slow SKUs): absolute quantity thresholds
"""

from typing import Iterable, Tuple

from snapshot_engine.database.models import StockStatus
from .numeric import round_half_up, safe_ratio

LEAD_TIME_DAYS = 7
SAFETY_STOCK_DAYS = 3

# Absolute thresholds when there is no velocity signal
CRITICAL_UNITS = 5
LOW_UNITS = 20


def average_daily_sales(units_sold: float, window_days: int) -> float:
    return safe_ratio(units_sold, window_days)


def coverage_days(available: float, avg_daily_sales: float) -> float:
    """Days until stockout at the current velocity; 0 without velocity."""
    return safe_ratio(available, avg_daily_sales)


def classify_stock_status(available: float, avg_daily_sales: float) -> str:
    """
    Classify a product's stock health.

    Args:
        available: Units available to sell
        avg_daily_sales: Units sold per day over the analysis window

    Returns:
        One of "healthy", "low", "critical", "out"
    """
    if available <= 0:
        return StockStatus.OUT.value

    if avg_daily_sales > 0:
        coverage = available / avg_daily_sales
        if coverage <= SAFETY_STOCK_DAYS:
            return StockStatus.CRITICAL.value
        if coverage <= LEAD_TIME_DAYS + SAFETY_STOCK_DAYS:
            return StockStatus.LOW.value
        return StockStatus.HEALTHY.value

    if available < CRITICAL_UNITS:
        return StockStatus.CRITICAL.value
    if available < LOW_UNITS:
        return StockStatus.LOW.value
    return StockStatus.HEALTHY.value


def reorder_point(avg_daily_sales: float) -> int:
    """Units to hold when reordering: demand over lead time plus safety stock."""
    if avg_daily_sales <= 0:
        return 0
    return max(1, int(round_half_up(avg_daily_sales * (LEAD_TIME_DAYS + SAFETY_STOCK_DAYS))))


def turnover_rate(units_sold: float, available: float, window_days: int) -> float:
    """Annualized turnover estimate rounded to one decimal."""
    if available <= 0 or window_days <= 0:
        return 0.0
    return round_half_up((units_sold * (365 / window_days)) / available, 1)


def weighted_average_cost(cost_and_stock: Iterable[Tuple[float, float]]) -> float:
    """
    Stock-weighted mean unit cost.

    Variants without stock weigh 1 so an all-out-of-stock product still
    averages its variant costs.
    """
    weighted_sum = 0.0
    total_weight = 0.0
    for cost, available in cost_and_stock:
        weight = available if available > 0 else 1
        weighted_sum += cost * weight
        total_weight += weight
    return safe_ratio(weighted_sum, total_weight)


def margin_percent(price: float, cost: float) -> float:
    if price <= 0:
        return 0.0
    return (price - cost) / price * 100
