"""
Cost Resolver

Resolves an authoritative per-unit cost for a product variant.

Resolution order:
1. Merchant cost component with an explicit cost-of-goods value
2. Compare-at price when it is below the selling price
3. DEFAULT_COST_RATIO of the selling price

A resolver is created for a single rebuild and primed once with every cost
component of the organization, so lookups never touch storage and state
never leaks between organizations or runs.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import structlog

from snapshot_engine.database.models import ProductVariant, VariantCost
from .numeric import as_number

logger = structlog.get_logger(__name__)

DEFAULT_COST_RATIO = 0.6


@dataclass(frozen=True)
class CostComponents:
    """Cached cost components for one variant"""
    cogs_per_unit: Optional[float] = None
    handling_per_unit: Optional[float] = None
    tax_percent: Optional[float] = None


class CostResolver:
    """
    Per-rebuild variant cost lookup.

    Example:
        resolver = CostResolver()
        resolver.prime(await store.load_cost_components(org_id))
        unit_cost = resolver.resolve(variant)
    """

    def __init__(self):
        self._components: Dict[str, CostComponents] = {}
        self._primed = False

    @property
    def primed(self) -> bool:
        return self._primed

    def __len__(self) -> int:
        return len(self._components)

    def prime(self, records: Iterable[VariantCost]) -> None:
        """Replace the cache with the given cost component records."""
        components: Dict[str, CostComponents] = {}
        for record in records:
            components[str(record.variant_id)] = CostComponents(
                cogs_per_unit=record.cogs_per_unit,
                handling_per_unit=record.handling_per_unit,
                tax_percent=record.tax_percent,
            )
        self._components = components
        self._primed = True
        logger.debug("Cost cache primed", components=len(components))

    def components_for(self, variant_id: str) -> Optional[CostComponents]:
        return self._components.get(str(variant_id))

    def resolve(self, variant: ProductVariant) -> float:
        """Per-unit cost of a variant; always a non-negative float."""
        components = self.components_for(variant.id)
        if components is not None and components.cogs_per_unit is not None:
            return max(as_number(components.cogs_per_unit), 0.0)

        price = max(as_number(variant.price), 0.0)
        compare_at = as_number(variant.compare_at_price)
        if 0 < compare_at < price:
            return compare_at

        return price * DEFAULT_COST_RATIO
