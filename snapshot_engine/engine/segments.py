"""
Customer Segmenter

Lifecycle segment from lifetime counters, purchase status from the
analysis window, and display name resolution.
"""

import re

from snapshot_engine.database.models import Customer, CustomerSegment, CustomerStatus

CHAMPION_MIN_VALUE = 1000
VIP_MIN_VALUE = 500

_WHITESPACE = re.compile(r"\s+")


def resolve_segment(lifetime_orders: int, lifetime_value: float) -> str:
    """
    Lifecycle segment of a customer.

    Order count takes precedence: one order is always "new" whatever it
    was worth. Value thresholds only apply from the second order on.
    """
    if lifetime_orders <= 0:
        return CustomerSegment.PROSPECT.value
    if lifetime_orders == 1:
        return CustomerSegment.NEW.value
    if lifetime_value >= CHAMPION_MIN_VALUE:
        return CustomerSegment.CHAMPION.value
    if lifetime_value >= VIP_MIN_VALUE:
        return CustomerSegment.VIP.value
    return CustomerSegment.REGULAR.value


def resolve_status(period_orders: int) -> str:
    if period_orders > 0:
        return CustomerStatus.CONVERTED.value
    return CustomerStatus.ABANDONED_CART.value


def resolve_customer_name(customer: Customer) -> str:
    """Full name with collapsed whitespace, else trimmed email, else "Anonymous"."""
    combined = _WHITESPACE.sub(
        " ", f"{customer.first_name or ''} {customer.last_name or ''}".strip()
    )
    if combined:
        return combined
    if customer.email and customer.email.strip():
        return customer.email.strip()
    return "Anonymous"
