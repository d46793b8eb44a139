"""
Numeric coercion helpers for raw records.

Connector-written columns are frequently null; every aggregation treats a
missing number as zero rather than failing.
"""

import math
from typing import Any


def as_number(value: Any) -> float:
    """Coerce a nullable numeric column to a finite float (None, NaN, inf -> 0.0)."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def as_count(value: Any) -> int:
    """Coerce a nullable quantity to a non-negative int."""
    return max(int(as_number(value)), 0)


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round halves away from zero for non-negative values.

    Python's round() uses banker's rounding; dashboards compare against
    figures produced with the usual commercial rounding.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is not positive."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator
