"""
Snapshot API Endpoints

Read access to the current inventory and customer snapshots, the journey
funnel, and on-demand rebuild triggers.

While no snapshot has been published for an organization the read
endpoints answer {"status": "calculating"}.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from snapshot_engine.config import get_settings
from snapshot_engine.database.connection import get_read_session, get_session_factory
from snapshot_engine.database.models import SnapshotKind
from snapshot_engine.engine import (
    CustomerSnapshotBuilder,
    GenerationConflictError,
    InvalidWindowError,
    InventorySnapshotBuilder,
    LeaseLostError,
    RebuildInProgressError,
    RebuildLock,
    SnapshotStore,
    load_journey_stages,
)
from snapshot_engine.engine.store import SnapshotMetadata
from snapshot_engine.engine.windows import utcnow

router = APIRouter()
logger = structlog.get_logger(__name__)

STATUS_READY = "ready"
STATUS_CALCULATING = "calculating"


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class SnapshotMetadataModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    generation: int
    computed_at: datetime
    analysis_window_days: int
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class MetadataResponse(BaseModel):
    status: str
    metadata: Optional[SnapshotMetadataModel] = None


class InventoryOverviewModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_value: float
    total_cogs: float
    total_skus: int
    stock_coverage_days: int
    dead_stock: int
    total_units_in_stock: int
    total_units_sold: int
    analysis_window_days: int


class InventoryOverviewResponse(BaseModel):
    status: str
    metadata: Optional[SnapshotMetadataModel] = None
    overview: Optional[InventoryOverviewModel] = None


class InventoryProductModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    name: str
    sku: str
    image: Optional[str] = None
    category: str
    vendor: str
    stock: int
    reserved: int
    available: int
    reorder_point: int
    stock_status: str
    price: float
    cost: float
    margin: float
    turnover_rate: float
    units_sold: Optional[int] = None
    period_revenue: Optional[float] = None
    last_sold_at: Optional[datetime] = None
    abc_category: str
    variant_count: int
    variants: Optional[List[Dict[str, Any]]] = None


class InventoryProductsResponse(BaseModel):
    status: str
    metadata: Optional[SnapshotMetadataModel] = None
    items: Optional[List[InventoryProductModel]] = None
    total: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None


class CustomerOverviewModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_customers: int
    converted_customers: int
    abandoned_customers: int
    returning_customers: int
    new_customers: int
    active_customers: int
    period_orders: int
    period_revenue: float
    analysis_window_days: int
    window_start: datetime
    window_end: datetime


class CustomerOverviewResponse(BaseModel):
    status: str
    metadata: Optional[SnapshotMetadataModel] = None
    overview: Optional[CustomerOverviewModel] = None


class CustomerMetricsModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    customer_id: str
    name: str
    email: Optional[str] = None
    status: str
    segment: str
    lifetime_orders: int
    lifetime_value: float
    avg_order_value: float
    period_orders: int
    period_revenue: float
    first_order_at: Optional[datetime] = None
    last_order_at: Optional[datetime] = None
    customer_created_at: datetime
    customer_updated_at: Optional[datetime] = None
    city: Optional[str] = None
    country: Optional[str] = None
    is_returning: bool


class CustomerListResponse(BaseModel):
    status: str
    metadata: Optional[SnapshotMetadataModel] = None
    items: Optional[List[CustomerMetricsModel]] = None
    total: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None


class JourneyStageModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage: str
    customers: float
    percentage: float
    avg_days: float
    conversion_rate: float
    meta_conversion_rate: Optional[float] = None


class JourneyResponse(BaseModel):
    status: str
    start_date: date
    end_date: date
    stages: List[JourneyStageModel]


class RebuildRequest(BaseModel):
    analysis_window_days: Optional[float] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class RebuildResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    organization_id: str
    kind: str
    generation: int
    computed_at: datetime
    rows: int
    analysis_window_days: int


# =============================================================================
# HELPERS
# =============================================================================

async def get_store(db: AsyncSession = Depends(get_read_session)) -> SnapshotStore:
    settings = get_settings()
    return SnapshotStore(
        db,
        order_items_batch_size=settings.snapshots.order_items_batch_size,
        ad_insights_page_size=settings.snapshots.ad_insights_page_size,
    )


def get_rebuild_lock(request: Request) -> RebuildLock:
    """Lease backend created at startup; every rebuild trigger shares it."""
    lock = getattr(request.app.state, "rebuild_lock", None)
    if lock is None:
        raise HTTPException(status_code=503, detail="Rebuild lease backend is not initialized")
    return lock


def get_rebuild_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def _metadata_model(metadata: SnapshotMetadata) -> SnapshotMetadataModel:
    return SnapshotMetadataModel.model_validate(metadata)


def _paginate(rows: list, page: int, page_size: int) -> list:
    offset = (page - 1) * page_size
    return rows[offset:offset + page_size]


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)


# =============================================================================
# INVENTORY
# =============================================================================

@router.get(
    "/{organization_id}/inventory/metadata",
    response_model=MetadataResponse,
    response_model_exclude_none=True,
)
async def get_inventory_metadata(
    organization_id: str,
    store: SnapshotStore = Depends(get_store),
) -> MetadataResponse:
    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.INVENTORY.value)
    if metadata is None:
        return MetadataResponse(status=STATUS_CALCULATING)
    return MetadataResponse(status=STATUS_READY, metadata=_metadata_model(metadata))


@router.get(
    "/{organization_id}/inventory/overview",
    response_model=InventoryOverviewResponse,
    response_model_exclude_none=True,
)
async def get_inventory_overview(
    organization_id: str,
    store: SnapshotStore = Depends(get_store),
) -> InventoryOverviewResponse:
    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.INVENTORY.value)
    if metadata is None:
        return InventoryOverviewResponse(status=STATUS_CALCULATING)
    overview = await store.get_inventory_overview(organization_id, generation=metadata.generation)
    if overview is None:
        return InventoryOverviewResponse(status=STATUS_CALCULATING)

    return InventoryOverviewResponse(
        status=STATUS_READY,
        metadata=_metadata_model(metadata),
        overview=InventoryOverviewModel.model_validate(overview),
    )


@router.get(
    "/{organization_id}/inventory/products",
    response_model=InventoryProductsResponse,
    response_model_exclude_none=True,
)
async def list_inventory_products(
    organization_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    stock_status: Optional[str] = None,
    abc_category: Optional[str] = None,
    category: Optional[str] = None,
    store: SnapshotStore = Depends(get_store),
) -> InventoryProductsResponse:
    """Current per-product inventory rows, optionally filtered."""
    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.INVENTORY.value)
    if metadata is None:
        return InventoryProductsResponse(status=STATUS_CALCULATING)

    rows = await store.get_inventory_products(organization_id, generation=metadata.generation)
    if stock_status:
        rows = [row for row in rows if row.stock_status == stock_status.lower()]
    if abc_category:
        rows = [row for row in rows if row.abc_category == abc_category.upper()]
    if category:
        rows = [row for row in rows if row.category == category]

    logger.debug(
        "Inventory products served",
        organization_id=organization_id,
        generation=metadata.generation,
        total=len(rows),
    )

    return InventoryProductsResponse(
        status=STATUS_READY,
        metadata=_metadata_model(metadata),
        items=[InventoryProductModel.model_validate(row) for row in _paginate(rows, page, page_size)],
        total=len(rows),
        page=page,
        page_size=page_size,
    )


# =============================================================================
# CUSTOMERS
# =============================================================================

@router.get(
    "/{organization_id}/customers/metadata",
    response_model=MetadataResponse,
    response_model_exclude_none=True,
)
async def get_customer_metadata(
    organization_id: str,
    store: SnapshotStore = Depends(get_store),
) -> MetadataResponse:
    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.CUSTOMERS.value)
    if metadata is None:
        return MetadataResponse(status=STATUS_CALCULATING)
    return MetadataResponse(status=STATUS_READY, metadata=_metadata_model(metadata))


@router.get(
    "/{organization_id}/customers/overview",
    response_model=CustomerOverviewResponse,
    response_model_exclude_none=True,
)
async def get_customer_overview(
    organization_id: str,
    store: SnapshotStore = Depends(get_store),
) -> CustomerOverviewResponse:
    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.CUSTOMERS.value)
    if metadata is None:
        return CustomerOverviewResponse(status=STATUS_CALCULATING)
    overview = await store.get_customer_overview(organization_id, generation=metadata.generation)
    if overview is None:
        return CustomerOverviewResponse(status=STATUS_CALCULATING)

    return CustomerOverviewResponse(
        status=STATUS_READY,
        metadata=_metadata_model(metadata),
        overview=CustomerOverviewModel.model_validate(overview),
    )


@router.get(
    "/{organization_id}/customers",
    response_model=CustomerListResponse,
    response_model_exclude_none=True,
)
async def list_customers(
    organization_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    segment: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = Query(None, min_length=1),
    store: SnapshotStore = Depends(get_store),
) -> CustomerListResponse:
    """Current per-customer rows, filtered by segment, status or name/email search."""
    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.CUSTOMERS.value)
    if metadata is None:
        return CustomerListResponse(status=STATUS_CALCULATING)

    rows = await store.get_customer_metrics(organization_id, generation=metadata.generation)
    if segment:
        rows = [row for row in rows if row.segment == segment.lower()]
    if status:
        rows = [row for row in rows if row.status == status.lower()]
    if search:
        needle = search.strip().lower()
        rows = [
            row for row in rows
            if needle in row.search_name or (row.search_email and needle in row.search_email)
        ]

    return CustomerListResponse(
        status=STATUS_READY,
        metadata=_metadata_model(metadata),
        items=[CustomerMetricsModel.model_validate(row) for row in _paginate(rows, page, page_size)],
        total=len(rows),
        page=page,
        page_size=page_size,
    )


@router.get("/{organization_id}/journey", response_model=JourneyResponse)
async def get_customer_journey(
    organization_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    store: SnapshotStore = Depends(get_store),
) -> JourneyResponse:
    """Five-stage journey funnel over an inclusive date range (default: trailing window)."""
    end = end_date or utcnow().date()
    start = start_date or end - timedelta(days=get_settings().snapshots.default_analysis_days - 1)
    if end < start:
        raise HTTPException(status_code=422, detail="end_date must not be before start_date")

    metadata = await store.get_snapshot_metadata(organization_id, SnapshotKind.CUSTOMERS.value)
    stages = await load_journey_stages(store, organization_id, start, end)

    return JourneyResponse(
        status=STATUS_READY if metadata is not None else STATUS_CALCULATING,
        start_date=start,
        end_date=end,
        stages=[JourneyStageModel.model_validate(stage) for stage in stages],
    )


# =============================================================================
# REBUILD TRIGGERS
# =============================================================================

async def _run_rebuild(
    builder_class,
    organization_id: str,
    body: Optional[RebuildRequest],
    session_factory: async_sessionmaker[AsyncSession],
    lock: RebuildLock,
) -> RebuildResponse:
    body = body or RebuildRequest()
    builder = builder_class(session_factory, lock=lock)
    try:
        result = await builder.rebuild(
            organization_id,
            analysis_window_days=body.analysis_window_days,
            window_start=_naive_utc(body.window_start),
            window_end=_naive_utc(body.window_end),
        )
    except InvalidWindowError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (RebuildInProgressError, LeaseLostError, GenerationConflictError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RebuildResponse.model_validate(result)


@router.post("/{organization_id}/inventory/rebuild", response_model=RebuildResponse)
async def rebuild_inventory(
    organization_id: str,
    body: Optional[RebuildRequest] = None,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_rebuild_session_factory),
    lock: RebuildLock = Depends(get_rebuild_lock),
) -> RebuildResponse:
    return await _run_rebuild(InventorySnapshotBuilder, organization_id, body, session_factory, lock)


@router.post("/{organization_id}/customers/rebuild", response_model=RebuildResponse)
async def rebuild_customers(
    organization_id: str,
    body: Optional[RebuildRequest] = None,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_rebuild_session_factory),
    lock: RebuildLock = Depends(get_rebuild_lock),
) -> RebuildResponse:
    return await _run_rebuild(CustomerSnapshotBuilder, organization_id, body, session_factory, lock)
