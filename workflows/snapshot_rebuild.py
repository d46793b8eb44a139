"""
Prefect Workflow Orchestration - Snapshot Rebuilds

Trigger surface for the snapshot engine:
- rebuild_organization_snapshots: inventory and customer rebuilds of one
  organization, run concurrently
- rebuild_all_snapshots: every organization with data, on a schedule

Task retries are the retry policy for storage failures. A rebuild that
finds its lease held is reported as skipped rather than retried.
"""

import argparse
import asyncio
from datetime import datetime
from typing import Optional

from prefect import flow, task, get_run_logger

from snapshot_engine.config import get_settings
from snapshot_engine.config.logging import configure_logging
from snapshot_engine.database.connection import close_database, get_session_factory, init_database
from snapshot_engine.engine import (
    CustomerSnapshotBuilder,
    GenerationConflictError,
    InventorySnapshotBuilder,
    LeaseLostError,
    RebuildInProgressError,
    RebuildLock,
    SnapshotStore,
    build_rebuild_lock,
)
from snapshot_engine.engine.locking import close_redis

settings = get_settings()

# Lease backend shared by the tasks of the current flow run
_rebuild_lock: Optional[RebuildLock] = None

# Another rebuild owns or already published the snapshot
CONTENDED_ERRORS = (RebuildInProgressError, LeaseLostError, GenerationConflictError)


async def _start_runtime() -> None:
    global _rebuild_lock
    configure_logging(service="rebuild-worker")
    await init_database()
    _rebuild_lock = await build_rebuild_lock(settings)


async def _stop_runtime() -> None:
    global _rebuild_lock
    _rebuild_lock = None
    await close_redis()
    await close_database()


def _get_lock() -> RebuildLock:
    if _rebuild_lock is None:
        raise RuntimeError("Rebuild lease backend not initialized. Run inside a snapshot flow.")
    return _rebuild_lock


def _result_payload(result) -> dict:
    return {
        "organization_id": result.organization_id,
        "kind": result.kind,
        "generation": result.generation,
        "computed_at": result.computed_at.isoformat(),
        "rows": result.rows,
        "analysis_window_days": result.analysis_window_days,
        "status": "completed",
    }


def _skipped_payload(error) -> dict:
    return {
        "organization_id": error.organization_id,
        "kind": error.kind,
        "status": "skipped",
        "reason": str(error),
    }


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="rebuild_inventory_snapshot",
    description="Replace the inventory snapshot of one organization",
    retries=2,
    retry_delay_seconds=30,
)
async def rebuild_inventory_snapshot(
    organization_id: str,
    analysis_window_days: Optional[float] = None,
) -> dict:
    logger = get_run_logger()
    builder = InventorySnapshotBuilder(get_session_factory(), lock=_get_lock())

    try:
        result = await builder.rebuild(organization_id, analysis_window_days=analysis_window_days)
    except CONTENDED_ERRORS as e:
        logger.warning(f"Inventory rebuild skipped: {e}")
        return _skipped_payload(e)

    logger.info(
        f"Inventory snapshot for {organization_id}: "
        f"generation {result.generation}, {result.rows} products"
    )
    return _result_payload(result)


@task(
    name="rebuild_customer_snapshot",
    description="Replace the customer snapshot of one organization",
    retries=2,
    retry_delay_seconds=30,
)
async def rebuild_customer_snapshot(
    organization_id: str,
    analysis_window_days: Optional[float] = None,
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
) -> dict:
    logger = get_run_logger()
    builder = CustomerSnapshotBuilder(get_session_factory(), lock=_get_lock())

    try:
        result = await builder.rebuild(
            organization_id,
            analysis_window_days=analysis_window_days,
            window_start=window_start,
            window_end=window_end,
        )
    except CONTENDED_ERRORS as e:
        logger.warning(f"Customer rebuild skipped: {e}")
        return _skipped_payload(e)

    logger.info(
        f"Customer snapshot for {organization_id}: "
        f"generation {result.generation}, {result.rows} customers"
    )
    return _result_payload(result)


@task(
    name="list_organizations",
    description="Organizations with catalog, customer or order data",
    retries=2,
    retry_delay_seconds=10,
)
async def list_organizations() -> list:
    async with get_session_factory()() as session:
        return await SnapshotStore(session).list_organization_ids()


# =============================================================================
# FLOWS
# =============================================================================

async def _rebuild_organization(
    organization_id: str,
    analysis_window_days: Optional[float],
) -> dict:
    # Disjoint tables and separate sessions; safe to run side by side
    inventory, customers = await asyncio.gather(
        rebuild_inventory_snapshot(organization_id, analysis_window_days),
        rebuild_customer_snapshot(organization_id, analysis_window_days),
    )
    return {"organization_id": organization_id, "inventory": inventory, "customers": customers}


@flow(
    name="rebuild_organization_snapshots",
    description="Rebuild inventory and customer snapshots for one organization",
)
async def rebuild_organization_snapshots(
    organization_id: str,
    analysis_window_days: Optional[float] = None,
) -> dict:
    await _start_runtime()
    try:
        return await _rebuild_organization(organization_id, analysis_window_days)
    finally:
        await _stop_runtime()


@flow(
    name="rebuild_all_snapshots",
    description="Scheduled rebuild of every organization's snapshots",
    retries=1,
    retry_delay_seconds=300,
)
async def rebuild_all_snapshots(analysis_window_days: Optional[float] = None) -> dict:
    """
    Rebuild snapshots for every organization with data.

    Organizations are processed one after another; within an organization
    the two snapshot kinds run concurrently.
    """
    logger = get_run_logger()
    await _start_runtime()

    results = {"organizations": [], "skipped": 0}
    try:
        organization_ids = await list_organizations()
        logger.info(f"Rebuilding snapshots for {len(organization_ids)} organizations")

        for organization_id in organization_ids:
            outcome = await _rebuild_organization(organization_id, analysis_window_days)
            results["skipped"] += sum(
                1 for key in ("inventory", "customers") if outcome[key]["status"] == "skipped"
            )
            results["organizations"].append(outcome)
    finally:
        await _stop_runtime()

    logger.info(
        f"Snapshot rebuild complete: {len(results['organizations'])} organizations, "
        f"{results['skipped']} rebuilds skipped"
    )
    return results


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Snapshot rebuild flows")
    parser.add_argument("--organization", help="Rebuild a single organization")
    parser.add_argument("--days", type=float, default=None, help="Analysis window in days")
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Serve rebuild_all_snapshots on the configured cron schedule",
    )
    args = parser.parse_args()

    if args.serve:
        rebuild_all_snapshots.serve(
            name="scheduled-snapshot-rebuild",
            cron=settings.snapshots.schedule_cron,
        )
    elif args.organization:
        asyncio.run(rebuild_organization_snapshots(args.organization, args.days))
    else:
        asyncio.run(rebuild_all_snapshots(args.days))
