"""
Integration Tests - Inventory Snapshot Rebuilds
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import delete, func, select

from snapshot_engine.database.models import (
    InventoryLevel,
    InventoryOverviewSummary,
    InventoryProductSummary,
    Product,
    ProductVariant,
)
from snapshot_engine.engine import (
    InvalidWindowError,
    InventorySnapshotBuilder,
    SnapshotStore,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def builder(session_factory, rebuild_lock, test_settings, now):
    return InventorySnapshotBuilder(
        session_factory,
        lock=rebuild_lock,
        settings=test_settings,
        clock=lambda: now,
    )


def snapshot_fields(row) -> dict:
    return {
        column.name: getattr(row, column.name)
        for column in row.__table__.columns
        if column.name not in ("id", "generation")
    }


async def count_rows(session, table, organization_id) -> int:
    result = await session.execute(
        select(func.count()).select_from(table).where(table.organization_id == organization_id)
    )
    return result.scalar_one()


async def stored_generations(session, table, organization_id) -> list:
    result = await session.execute(
        select(table.generation, func.count())
        .where(table.organization_id == organization_id)
        .group_by(table.generation)
        .order_by(table.generation)
    )
    return [tuple(row) for row in result.all()]


class TestInventoryRebuild:
    """Tests for InventorySnapshotBuilder.rebuild"""

    async def test_publishes_snapshot(self, builder, session_factory, seeded_organization, now):
        result = await builder.rebuild(seeded_organization)

        assert result.generation == 1
        assert result.rows == 3
        assert result.analysis_window_days == 30
        assert result.computed_at == now

        async with session_factory() as session:
            store = SnapshotStore(session)
            products = await store.get_inventory_products(seeded_organization)
            overview = await store.get_inventory_overview(seeded_organization)
            metadata = await store.get_snapshot_metadata(seeded_organization, "inventory")

        assert [p.product_id for p in products] == ["prod-1", "prod-2", "prod-3"]
        backpack = products[0]
        assert backpack.units_sold == 3
        assert backpack.period_revenue == pytest.approx(310.0)
        assert backpack.abc_category == "B"
        assert [v["id"] for v in backpack.variants] == ["var-1a", "var-1b"]
        assert products[2].units_sold is None

        assert overview.total_value == pytest.approx(5110.0)
        assert overview.total_units_sold == 5
        assert overview.dead_stock == 1

        assert metadata.generation == 1
        assert metadata.computed_at == now
        assert metadata.analysis_window_days == 30

    async def test_rebuild_is_idempotent(self, builder, session_factory, seeded_organization):
        """Test two rebuilds on unchanged data publish identical rows"""
        await builder.rebuild(seeded_organization)
        async with session_factory() as session:
            store = SnapshotStore(session)
            first = [snapshot_fields(r) for r in await store.get_inventory_products(seeded_organization)]
            first_overview = snapshot_fields(await store.get_inventory_overview(seeded_organization))

        result = await builder.rebuild(seeded_organization)
        async with session_factory() as session:
            store = SnapshotStore(session)
            second = [snapshot_fields(r) for r in await store.get_inventory_products(seeded_organization)]
            second_overview = snapshot_fields(await store.get_inventory_overview(seeded_organization))
            generations = await stored_generations(session, InventoryProductSummary, seeded_organization)

        assert result.generation == 2
        assert second == first
        assert second_overview == first_overview
        assert generations == [(1, 3), (2, 3)]

    async def test_removed_products_disappear(self, builder, session_factory, seeded_organization):
        """Test a shrinking catalog drops removed products from the current generation"""
        await builder.rebuild(seeded_organization)

        async with session_factory() as session:
            await session.execute(delete(InventoryLevel).where(InventoryLevel.variant_id == "var-3"))
            await session.execute(delete(ProductVariant).where(ProductVariant.id == "var-3"))
            await session.execute(delete(Product).where(Product.id == "prod-3"))
            await session.commit()

        await builder.rebuild(seeded_organization)

        async with session_factory() as session:
            store = SnapshotStore(session)
            products = await store.get_inventory_products(seeded_organization)
            overview = await store.get_inventory_overview(seeded_organization)
            generations = await stored_generations(session, InventoryProductSummary, seeded_organization)

        assert [p.product_id for p in products] == ["prod-1", "prod-2"]
        assert generations == [(1, 3), (2, 2)]
        assert overview.dead_stock == 0

    async def test_publish_keeps_only_replaced_generation(self, builder, session_factory, seeded_organization):
        """Test each publish drops generations older than the one it replaces"""
        for _ in range(3):
            result = await builder.rebuild(seeded_organization)

        async with session_factory() as session:
            products = await stored_generations(session, InventoryProductSummary, seeded_organization)
            overviews = await stored_generations(session, InventoryOverviewSummary, seeded_organization)

        assert result.generation == 3
        assert products == [(2, 3), (3, 3)]
        assert overviews == [(2, 1), (3, 1)]

    async def test_new_dead_stock_variant(self, builder, session_factory, seeded_organization):
        """Test adding a stocked, never-sold variant increments dead stock by one"""
        await builder.rebuild(seeded_organization)
        async with session_factory() as session:
            before = (await SnapshotStore(session).get_inventory_overview(seeded_organization)).dead_stock

            session.add_all([
                Product(id="prod-4", organization_id=seeded_organization, title="Spare Stakes"),
                ProductVariant(id="var-4", organization_id=seeded_organization, product_id="prod-4",
                               price=4.0, inventory_quantity=25),
            ])
            await session.commit()

        await builder.rebuild(seeded_organization)
        async with session_factory() as session:
            after = (await SnapshotStore(session).get_inventory_overview(seeded_organization)).dead_stock

        assert after == before + 1

    async def test_explicit_window(self, builder, session_factory, seeded_organization, now):
        """Test an explicit window bounds period sales"""
        result = await builder.rebuild(
            seeded_organization,
            window_start=now - timedelta(days=7),
            window_end=now,
        )

        async with session_factory() as session:
            store = SnapshotStore(session)
            products = {p.product_id: p for p in await store.get_inventory_products(seeded_organization)}
            metadata = await store.get_snapshot_metadata(seeded_organization, "inventory")

        assert result.analysis_window_days == 7
        assert products["prod-1"].units_sold == 2
        assert products["prod-1"].period_revenue == pytest.approx(200.0)
        assert metadata.window_start == now - timedelta(days=7)
        assert metadata.window_end == now

    async def test_empty_organization(self, builder, session_factory):
        result = await builder.rebuild("org-empty")

        async with session_factory() as session:
            store = SnapshotStore(session)
            products = await store.get_inventory_products("org-empty")
            overview = await store.get_inventory_overview("org-empty")

        assert result.rows == 0
        assert products == []
        assert overview.total_skus == 0
        assert overview.total_value == 0
        assert overview.stock_coverage_days == 0

    async def test_stale_generation_rows_are_replaced(self, builder, session_factory, seeded_organization, now):
        """Test rows left by an interrupted rebuild are never served and get removed"""
        async with session_factory() as session:
            session.add(
                InventoryProductSummary(
                    organization_id=seeded_organization,
                    generation=5,
                    product_id="prod-ghost",
                    computed_at=now,
                    name="Ghost",
                    sku="ghost",
                    category="Uncategorized",
                    vendor="Unknown",
                    stock_status="out",
                    abc_category="C",
                )
            )
            await session.commit()

            assert await SnapshotStore(session).get_inventory_products(seeded_organization) == []

        result = await builder.rebuild(seeded_organization)

        async with session_factory() as session:
            products = await SnapshotStore(session).get_inventory_products(seeded_organization)
            total_rows = await count_rows(session, InventoryProductSummary, seeded_organization)

        assert result.generation == 6
        assert "prod-ghost" not in [p.product_id for p in products]
        assert total_rows == 3

    async def test_other_organizations_untouched(self, builder, session_factory, seeded_organization):
        async with session_factory() as session:
            session.add(Product(id="prod-other", organization_id="org-2", title="Other"))
            await session.commit()

        await builder.rebuild(seeded_organization)

        async with session_factory() as session:
            store = SnapshotStore(session)
            assert await store.get_snapshot_metadata("org-2", "inventory") is None
            assert await store.list_organization_ids() == ["org-1", "org-2"]

    async def test_metadata_before_first_rebuild(self, session_factory, seeded_organization):
        async with session_factory() as session:
            store = SnapshotStore(session)
            assert await store.get_snapshot_metadata(seeded_organization, "inventory") is None
            assert await store.get_inventory_overview(seeded_organization) is None

    async def test_invalid_window_reads_nothing(self, test_settings, now):
        """Test window validation happens before any storage access"""
        session_factory = MagicMock()
        builder = InventorySnapshotBuilder(session_factory, settings=test_settings, clock=lambda: now)

        with pytest.raises(InvalidWindowError):
            await builder.rebuild("org-1", window_start=now, window_end=now - timedelta(days=1))

        session_factory.assert_not_called()
