"""
Customer Snapshot Builder

Per-customer lifetime and period metrics plus an organization overview.
The analysis window is half-open: [window_start, window_end).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from snapshot_engine.database.models import (
    Customer,
    CustomerMetricsSummary,
    CustomerOverviewSummary,
    Order,
    SnapshotKind,
)
from .builder import SnapshotBuilder
from .numeric import as_count, as_number, safe_ratio
from .sales import is_cancelled_order
from .segments import resolve_customer_name, resolve_segment, resolve_status
from .store import SnapshotStore
from .windows import AnalysisWindow

logger = structlog.get_logger(__name__)

# A trailing window ends just after `now` so orders stamped exactly now count
TRAILING_END_OFFSET = timedelta(microseconds=1)


@dataclass
class CustomerPeriodStats:
    period_orders: int = 0
    period_revenue: float = 0.0
    first_order_at: Optional[datetime] = None
    last_order_at: Optional[datetime] = None


@dataclass
class CustomerSnapshot:
    """Computed metrics of one customer"""
    customer_id: str
    name: str
    email: Optional[str]
    status: str
    segment: str
    lifetime_orders: int
    lifetime_value: float
    avg_order_value: float
    period_orders: int
    period_revenue: float
    first_order_at: Optional[datetime]
    last_order_at: Optional[datetime]
    customer_created_at: datetime
    customer_updated_at: Optional[datetime]
    city: Optional[str]
    country: Optional[str]
    is_returning: bool
    search_name: str
    search_email: Optional[str]


@dataclass
class CustomerOverview:
    total_customers: int = 0
    converted_customers: int = 0
    abandoned_customers: int = 0
    returning_customers: int = 0
    new_customers: int = 0
    active_customers: int = 0
    period_orders: int = 0
    period_revenue: float = 0.0


@dataclass
class CustomerSnapshotResult:
    customers: List[CustomerSnapshot] = field(default_factory=list)
    overview: CustomerOverview = field(default_factory=CustomerOverview)


def build_order_stats(orders: Iterable[Order]) -> Dict[str, CustomerPeriodStats]:
    """
    Period order statistics per customer id.

    Cancelled orders add neither orders nor revenue, but still bound the
    first and last order timestamps.
    """
    stats_by_customer: Dict[str, CustomerPeriodStats] = {}

    for order in orders:
        if not order.customer_id:
            continue

        stats = stats_by_customer.setdefault(str(order.customer_id), CustomerPeriodStats())
        if not is_cancelled_order(order):
            stats.period_orders += 1
            stats.period_revenue += max(as_number(order.total_price), 0.0)

        created_at = order.created_at
        if stats.first_order_at is None or created_at < stats.first_order_at:
            stats.first_order_at = created_at
        if stats.last_order_at is None or created_at > stats.last_order_at:
            stats.last_order_at = created_at

    return stats_by_customer


def build_customer_snapshots(
    customers: Sequence[Customer],
    stats_by_customer: Mapping[str, CustomerPeriodStats],
) -> CustomerSnapshotResult:
    """Build one snapshot per customer and the overview counters."""
    snapshots: List[CustomerSnapshot] = []
    overview = CustomerOverview(total_customers=len(customers))

    for customer in customers:
        stats = stats_by_customer.get(str(customer.id)) or CustomerPeriodStats()

        lifetime_orders = as_count(customer.orders_count)
        lifetime_value = max(as_number(customer.total_spent), 0.0)
        is_returning = lifetime_orders > 1
        name = resolve_customer_name(customer)
        email = customer.email or None

        if stats.period_orders > 0:
            overview.converted_customers += 1
            if is_returning:
                overview.returning_customers += 1
            if lifetime_orders == stats.period_orders:
                overview.new_customers += 1

        overview.period_orders += stats.period_orders
        overview.period_revenue += stats.period_revenue

        snapshots.append(
            CustomerSnapshot(
                customer_id=customer.id,
                name=name,
                email=email,
                status=resolve_status(stats.period_orders),
                segment=resolve_segment(lifetime_orders, lifetime_value),
                lifetime_orders=lifetime_orders,
                lifetime_value=lifetime_value,
                avg_order_value=safe_ratio(lifetime_value, lifetime_orders),
                period_orders=stats.period_orders,
                period_revenue=stats.period_revenue,
                first_order_at=stats.first_order_at,
                last_order_at=stats.last_order_at or customer.updated_at or stats.first_order_at,
                customer_created_at=customer.created_at,
                customer_updated_at=customer.updated_at,
                city=customer.city,
                country=customer.country,
                is_returning=is_returning,
                search_name=name.lower(),
                search_email=email.lower() if email else None,
            )
        )

    overview.abandoned_customers = max(overview.total_customers - overview.converted_customers, 0)
    overview.active_customers = overview.converted_customers

    return CustomerSnapshotResult(customers=snapshots, overview=overview)


class CustomerSnapshotBuilder(SnapshotBuilder):
    """
    Rebuilds the customer snapshot of an organization.

    Example:
        builder = CustomerSnapshotBuilder(get_session_factory())
        result = await builder.rebuild(org_id, window_start=start, window_end=end)
    """

    kind = SnapshotKind.CUSTOMERS.value

    def resolve_window(
        self,
        now: datetime,
        analysis_window_days: Optional[float] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AnalysisWindow:
        return super().resolve_window(
            now + TRAILING_END_OFFSET,
            analysis_window_days,
            window_start,
            window_end,
        )

    async def build_rows(
        self,
        store: SnapshotStore,
        organization_id: str,
        window: AnalysisWindow,
        now: datetime,
        generation: int,
    ) -> Tuple[List[CustomerMetricsSummary], CustomerOverviewSummary]:
        customers = await store.load_customers(organization_id)
        orders = await store.load_orders(
            organization_id, start=window.start, end=window.end, end_inclusive=False
        )

        logger.debug(
            "Customer inputs loaded",
            organization_id=organization_id,
            customers=len(customers),
            orders=len(orders),
        )

        result = build_customer_snapshots(customers, build_order_stats(orders))

        customer_rows = [
            CustomerMetricsSummary(
                organization_id=organization_id,
                generation=generation,
                computed_at=now,
                analysis_window_days=window.days,
                customer_id=snapshot.customer_id,
                name=snapshot.name,
                email=snapshot.email,
                status=snapshot.status,
                segment=snapshot.segment,
                lifetime_orders=snapshot.lifetime_orders,
                lifetime_value=snapshot.lifetime_value,
                avg_order_value=snapshot.avg_order_value,
                period_orders=snapshot.period_orders,
                period_revenue=snapshot.period_revenue,
                first_order_at=snapshot.first_order_at,
                last_order_at=snapshot.last_order_at,
                customer_created_at=snapshot.customer_created_at,
                customer_updated_at=snapshot.customer_updated_at,
                city=snapshot.city,
                country=snapshot.country,
                is_returning=snapshot.is_returning,
                search_name=snapshot.search_name,
                search_email=snapshot.search_email,
            )
            for snapshot in result.customers
        ]

        overview = result.overview
        overview_row = CustomerOverviewSummary(
            organization_id=organization_id,
            generation=generation,
            computed_at=now,
            analysis_window_days=window.days,
            window_start=window.start,
            window_end=window.end,
            total_customers=overview.total_customers,
            converted_customers=overview.converted_customers,
            abandoned_customers=overview.abandoned_customers,
            returning_customers=overview.returning_customers,
            new_customers=overview.new_customers,
            active_customers=overview.active_customers,
            period_orders=overview.period_orders,
            period_revenue=overview.period_revenue,
        )

        return customer_rows, overview_row
