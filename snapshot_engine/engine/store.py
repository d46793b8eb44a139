"""
Snapshot Store

Storage adapter for the snapshot engine. Reads raw commerce collections by
organization and time window, and publishes snapshots with generation
semantics:

1. Insert every new row under generation = current + 1
2. Flip the SnapshotPointer to the new generation (same transaction)
3. Delete rows of every generation except the new one and the one it replaced

Readers join rows to the pointer in one statement, or pin the generation
they read from metadata, so they see either the previous snapshot or the
complete new one, never an empty or partial one. A second writer of the
same generation fails on the unique constraints and publishes nothing.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Type

import structlog
from sqlalchemy import and_, delete, func, select, union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from snapshot_engine.database.models import (
    AdInsight,
    Base,
    Customer,
    CustomerMetricsSummary,
    CustomerOverviewSummary,
    InventoryLevel,
    InventoryOverviewSummary,
    InventoryProductSummary,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    SnapshotKind,
    SnapshotPointer,
    VariantCost,
)
from .exceptions import GenerationConflictError

logger = structlog.get_logger(__name__)

DEFAULT_ORDER_ITEMS_BATCH_SIZE = 10
DEFAULT_AD_INSIGHTS_PAGE_SIZE = 250

SNAPSHOT_TABLES: Dict[str, Sequence[Type[Base]]] = {
    SnapshotKind.INVENTORY.value: (InventoryProductSummary, InventoryOverviewSummary),
    SnapshotKind.CUSTOMERS.value: (CustomerMetricsSummary, CustomerOverviewSummary),
}


@dataclass
class AdTotals:
    """Account-level ad totals over a window"""
    impressions: int = 0
    clicks: int = 0
    conversions: float = 0.0


@dataclass
class SnapshotMetadata:
    """Metadata of the current snapshot, used by readers to detect 'calculating'"""
    organization_id: str
    kind: str
    generation: int
    computed_at: datetime
    analysis_window_days: int
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class SnapshotStore:
    """
    Storage collaborator bound to one session.

    Example:
        async with session_factory() as session:
            store = SnapshotStore(session)
            products = await store.load_products(org_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        order_items_batch_size: int = DEFAULT_ORDER_ITEMS_BATCH_SIZE,
        ad_insights_page_size: int = DEFAULT_AD_INSIGHTS_PAGE_SIZE,
    ):
        self.session = session
        self.order_items_batch_size = max(1, order_items_batch_size)
        self.ad_insights_page_size = max(1, ad_insights_page_size)

    # -------------------------------------------------------------------------
    # Raw reads
    # -------------------------------------------------------------------------

    async def _scalars(self, statement) -> list:
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def load_products(self, organization_id: str) -> List[Product]:
        return await self._scalars(
            select(Product).where(Product.organization_id == organization_id).order_by(Product.id)
        )

    async def load_variants(self, organization_id: str) -> List[ProductVariant]:
        return await self._scalars(
            select(ProductVariant)
            .where(ProductVariant.organization_id == organization_id)
            .order_by(ProductVariant.id)
        )

    async def load_inventory_levels(self, organization_id: str) -> List[InventoryLevel]:
        return await self._scalars(
            select(InventoryLevel)
            .where(InventoryLevel.organization_id == organization_id)
            .order_by(InventoryLevel.id)
        )

    async def load_cost_components(self, organization_id: str) -> List[VariantCost]:
        return await self._scalars(
            select(VariantCost)
            .where(VariantCost.organization_id == organization_id)
            .order_by(VariantCost.id)
        )

    async def load_customers(self, organization_id: str) -> List[Customer]:
        return await self._scalars(
            select(Customer).where(Customer.organization_id == organization_id).order_by(Customer.id)
        )

    async def load_orders(
        self,
        organization_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        end_inclusive: bool = True,
        start_inclusive: bool = True,
    ) -> List[Order]:
        """Orders of an organization created within the given bounds."""
        statement = select(Order).where(Order.organization_id == organization_id)
        if start is not None:
            statement = statement.where(
                Order.created_at >= start if start_inclusive else Order.created_at > start
            )
        if end is not None:
            statement = statement.where(
                Order.created_at <= end if end_inclusive else Order.created_at < end
            )
        return await self._scalars(statement.order_by(Order.created_at, Order.id))

    async def load_order_items(self, order_ids: Sequence[str]) -> List[OrderItem]:
        """Line items of the given orders, read in batches of order ids."""
        items: List[OrderItem] = []
        for offset in range(0, len(order_ids), self.order_items_batch_size):
            batch = list(order_ids[offset:offset + self.order_items_batch_size])
            items.extend(
                await self._scalars(
                    select(OrderItem)
                    .where(OrderItem.order_id.in_(batch))
                    .order_by(OrderItem.order_id, OrderItem.id)
                )
            )
        return items

    async def load_ad_totals(
        self,
        organization_id: str,
        start_date: date,
        end_date: date,
    ) -> AdTotals:
        """Sum account-level ad insights over [start_date, end_date], page by page."""
        totals = AdTotals()
        offset = 0
        while True:
            page = await self._scalars(
                select(AdInsight)
                .where(
                    AdInsight.organization_id == organization_id,
                    AdInsight.date >= start_date,
                    AdInsight.date <= end_date,
                )
                .order_by(AdInsight.date, AdInsight.id)
                .offset(offset)
                .limit(self.ad_insights_page_size)
            )
            for insight in page:
                if insight.entity_type != "account":
                    continue
                totals.impressions += max(insight.impressions or 0, 0)
                totals.clicks += max(insight.clicks or 0, 0)
                totals.conversions += max(insight.conversions or 0.0, 0.0)

            if len(page) < self.ad_insights_page_size:
                break
            offset += self.ad_insights_page_size

        return totals

    async def list_organization_ids(self) -> List[str]:
        """Organizations with any catalog, customer or order data."""
        statement = union(
            select(Product.organization_id),
            select(Customer.organization_id),
            select(Order.organization_id),
        )
        result = await self.session.execute(statement)
        return sorted(row[0] for row in result.all())

    # -------------------------------------------------------------------------
    # Snapshot lifecycle
    # -------------------------------------------------------------------------

    async def get_pointer(self, organization_id: str, kind: str) -> Optional[SnapshotPointer]:
        result = await self.session.execute(
            select(SnapshotPointer).where(
                SnapshotPointer.organization_id == organization_id,
                SnapshotPointer.kind == kind,
            )
            # a pointer loaded earlier in this session may have moved since
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def next_generation(self, organization_id: str, kind: str) -> int:
        """
        Generation number for a new snapshot.

        Accounts for rows left above the pointer by an interrupted rebuild.
        """
        pointer = await self.get_pointer(organization_id, kind)
        highest = pointer.current_generation if pointer is not None else 0
        for table in SNAPSHOT_TABLES[kind]:
            result = await self.session.execute(
                select(func.max(table.generation)).where(table.organization_id == organization_id)
            )
            stale = result.scalar()
            if stale is not None and stale > highest:
                highest = stale
        return highest + 1

    async def publish(
        self,
        organization_id: str,
        kind: str,
        generation: int,
        rows: Sequence[Base],
        computed_at: datetime,
        analysis_window_days: int,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> int:
        """
        Insert a generation and make it current, then drop older generations.

        The generation the pointer named before the flip is kept until the
        next publish, so a reader pinned to it still finds its rows.

        Returns:
            Number of superseded rows removed

        Raises:
            GenerationConflictError: A concurrent rebuild already wrote this
                generation or moved the pointer past it; nothing was written
        """
        try:
            self.session.add_all(rows)
            await self.session.flush()

            pointer = await self.get_pointer(organization_id, kind)
            previous = pointer.current_generation if pointer is not None else None
            if previous is not None and previous >= generation:
                raise GenerationConflictError(organization_id, kind, generation)
            if pointer is None:
                pointer = SnapshotPointer(organization_id=organization_id, kind=kind)
                self.session.add(pointer)
            pointer.current_generation = generation
            pointer.computed_at = computed_at
            pointer.analysis_window_days = analysis_window_days
            pointer.window_start = window_start
            pointer.window_end = window_end
            await self.session.commit()
        except GenerationConflictError:
            await self.session.rollback()
            raise
        except IntegrityError:
            await self.session.rollback()
            logger.warning(
                "Snapshot generation already written by another rebuild",
                organization_id=organization_id,
                kind=kind,
                generation=generation,
            )
            raise GenerationConflictError(organization_id, kind, generation) from None

        keep = [generation] if previous is None else [generation, previous]
        removed = 0
        for table in SNAPSHOT_TABLES[kind]:
            result = await self.session.execute(
                delete(table).where(
                    table.organization_id == organization_id,
                    table.generation.not_in(keep),
                )
            )
            removed += result.rowcount or 0
        await self.session.commit()

        logger.debug(
            "Snapshot generation published",
            organization_id=organization_id,
            kind=kind,
            generation=generation,
            retained_generation=previous,
            rows=len(rows),
            removed=removed,
        )
        return removed

    # -------------------------------------------------------------------------
    # Snapshot reads
    # -------------------------------------------------------------------------

    async def get_snapshot_metadata(self, organization_id: str, kind: str) -> Optional[SnapshotMetadata]:
        """Metadata of the current snapshot, or None while none has been published."""
        pointer = await self.get_pointer(organization_id, kind)
        if pointer is None:
            return None
        return SnapshotMetadata(
            organization_id=organization_id,
            kind=kind,
            generation=pointer.current_generation,
            computed_at=pointer.computed_at,
            analysis_window_days=pointer.analysis_window_days,
            window_start=pointer.window_start,
            window_end=pointer.window_end,
        )

    async def _current_rows(
        self,
        table: Type[Base],
        organization_id: str,
        kind: str,
        order_by,
        generation: Optional[int] = None,
    ) -> list:
        """
        Rows of one generation.

        Without `generation` the pointer is resolved in the same statement
        as the rows; callers that already read metadata pass its generation
        so metadata and rows describe the same snapshot.
        """
        statement = select(table).where(table.organization_id == organization_id)
        if generation is None:
            statement = statement.join(
                SnapshotPointer,
                and_(
                    SnapshotPointer.organization_id == table.organization_id,
                    SnapshotPointer.kind == kind,
                    SnapshotPointer.current_generation == table.generation,
                ),
            )
        else:
            statement = statement.where(table.generation == generation)
        return await self._scalars(statement.order_by(*order_by))

    async def get_inventory_products(
        self, organization_id: str, generation: Optional[int] = None
    ) -> List[InventoryProductSummary]:
        return await self._current_rows(
            InventoryProductSummary,
            organization_id,
            SnapshotKind.INVENTORY.value,
            (InventoryProductSummary.product_id,),
            generation,
        )

    async def get_inventory_overview(
        self, organization_id: str, generation: Optional[int] = None
    ) -> Optional[InventoryOverviewSummary]:
        rows = await self._current_rows(
            InventoryOverviewSummary,
            organization_id,
            SnapshotKind.INVENTORY.value,
            (InventoryOverviewSummary.id,),
            generation,
        )
        return rows[0] if rows else None

    async def get_customer_metrics(
        self, organization_id: str, generation: Optional[int] = None
    ) -> List[CustomerMetricsSummary]:
        return await self._current_rows(
            CustomerMetricsSummary,
            organization_id,
            SnapshotKind.CUSTOMERS.value,
            (CustomerMetricsSummary.customer_id,),
            generation,
        )

    async def get_customer_overview(
        self, organization_id: str, generation: Optional[int] = None
    ) -> Optional[CustomerOverviewSummary]:
        rows = await self._current_rows(
            CustomerOverviewSummary,
            organization_id,
            SnapshotKind.CUSTOMERS.value,
            (CustomerOverviewSummary.id,),
            generation,
        )
        return rows[0] if rows else None
