"""
Seed the database with synthetic commerce data

Creates missing tables, writes generated raw collections for one or more
organizations and optionally builds their first snapshots.

Usage:
    python scripts/seed_db.py --organizations 2 --orders 1000 --rebuild
"""

import argparse
import asyncio

import structlog

from snapshot_engine.config.logging import configure_logging
from snapshot_engine.data import CommerceDataGenerator
from snapshot_engine.database import close_database, create_tables, get_session_factory, init_database
from snapshot_engine.engine import CustomerSnapshotBuilder, InventorySnapshotBuilder, LocalRebuildLock

logger = structlog.get_logger(__name__)


async def seed(args: argparse.Namespace) -> None:
    configure_logging(service="seed")
    await init_database(args.database_url)
    await create_tables()

    generator = CommerceDataGenerator(seed=args.seed)
    session_factory = get_session_factory()
    organization_ids = [f"{args.prefix}-{index + 1}" for index in range(args.organizations)]

    try:
        for organization_id in organization_ids:
            dataset = generator.generate(
                organization_id,
                n_products=args.products,
                n_customers=args.customers,
                n_orders=args.orders,
            )
            async with session_factory() as session:
                session.add_all(dataset.all_records())
                await session.commit()
            logger.info("Organization seeded", organization_id=organization_id, **dataset.counts())

        if args.rebuild:
            lock = LocalRebuildLock()
            for organization_id in organization_ids:
                for builder_class in (InventorySnapshotBuilder, CustomerSnapshotBuilder):
                    result = await builder_class(session_factory, lock=lock).rebuild(organization_id)
                    logger.info(
                        "Initial snapshot built",
                        organization_id=organization_id,
                        kind=result.kind,
                        rows=result.rows,
                    )
    finally:
        await close_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed synthetic commerce data")
    parser.add_argument("--organizations", type=int, default=1, help="Organizations to create")
    parser.add_argument("--prefix", default="org-demo", help="Organization id prefix")
    parser.add_argument("--products", type=int, default=50)
    parser.add_argument("--customers", type=int, default=200)
    parser.add_argument("--orders", type=int, default=600)
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--database-url", default=None, help="Override the configured async URL")
    parser.add_argument("--rebuild", action="store_true", help="Build snapshots after seeding")

    asyncio.run(seed(parser.parse_args()))
