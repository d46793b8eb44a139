"""
Journey Funnel Estimator

Five-stage customer journey from ad-platform totals and the current
customer overview snapshot:

    Awareness -> Interest -> Consideration -> Purchase -> Retention

Awareness and Interest come from account-level ad impressions and clicks;
the remaining stages come from the customer overview.
"""

from dataclasses import dataclass, replace
from datetime import date
import math
from typing import List, Optional, Sequence

import structlog

from snapshot_engine.database.models import CustomerOverviewSummary
from .numeric import round_half_up
from .store import AdTotals, SnapshotStore

logger = structlog.get_logger(__name__)

STAGE_NAMES = ("Awareness", "Interest", "Consideration", "Purchase", "Retention")


@dataclass(frozen=True)
class JourneyStage:
    stage: str
    customers: float
    percentage: float
    avg_days: float
    conversion_rate: float
    meta_conversion_rate: Optional[float] = None


DEFAULT_JOURNEY_STAGES: List[JourneyStage] = [
    JourneyStage(stage=name, customers=0, percentage=0.0, avg_days=0.0, conversion_rate=0.0)
    for name in STAGE_NAMES
]


def clamp_percent(value: float) -> float:
    """Clamp to [0, 100] and round to two decimals; non-finite values are 0."""
    if not math.isfinite(value):
        return 0.0
    return round_half_up(min(100.0, max(0.0, value)), 2)


def _base_for_percentage(values: Sequence[float]) -> float:
    for value in values:
        if value > 0:
            return value
    return 1


def _rate(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return clamp_percent(numerator / denominator * 100)


def estimate_journey_stages(
    ad_totals: AdTotals,
    overview: Optional[CustomerOverviewSummary],
) -> List[JourneyStage]:
    """
    Estimate the funnel.

    Args:
        ad_totals: Account-level ad totals over the range
        overview: Current customer overview, or None before the first rebuild

    Returns:
        Five stages; the all-zero defaults when there is no overview
    """
    if overview is None:
        return [replace(stage) for stage in DEFAULT_JOURNEY_STAGES]

    awareness = max(ad_totals.impressions, 0)
    interest = max(ad_totals.clicks, 0)
    consideration = max(
        (overview.abandoned_customers or 0) + (overview.converted_customers or 0), 0
    )
    purchase = max(overview.converted_customers or 0, 0)
    retention = max(overview.returning_customers or 0, 0)

    counts = [awareness, interest, consideration, purchase, retention]
    base = _base_for_percentage(counts)
    percentages = [clamp_percent(value / base * 100) for value in counts]
    if awareness > 0:
        percentages[0] = 100.0

    conversion_rates = [
        _rate(interest, awareness),
        _rate(consideration, interest),
        _rate(purchase, consideration),
        _rate(retention, purchase),
        0.0,
    ]

    stages = []
    for index, name in enumerate(STAGE_NAMES):
        stages.append(
            JourneyStage(
                stage=name,
                customers=counts[index],
                percentage=percentages[index],
                avg_days=0.0,
                conversion_rate=conversion_rates[index],
                meta_conversion_rate=(
                    _rate(ad_totals.conversions, interest) if name == "Interest" else None
                ),
            )
        )
    return stages


async def load_journey_stages(
    store: SnapshotStore,
    organization_id: str,
    start_date: date,
    end_date: date,
) -> List[JourneyStage]:
    """Read the customer overview and ad totals for a range and estimate the funnel."""
    overview = await store.get_customer_overview(organization_id)
    if overview is None:
        logger.debug("No customer overview snapshot", organization_id=organization_id)
        return estimate_journey_stages(AdTotals(), None)

    ad_totals = await store.load_ad_totals(organization_id, start_date, end_date)
    return estimate_journey_stages(ad_totals, overview)
