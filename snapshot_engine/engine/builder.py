"""
Snapshot Builder Base

Shared rebuild lifecycle for every snapshot family:

1. Resolve and validate the analysis window (before any read)
2. Hold the rebuild lease for (organization, kind)
3. Read raw collections and compute rows in memory
4. Confirm the lease is still held, publish the rows as a new generation,
   then garbage-collect generations older than the one replaced
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
import time
from typing import Callable, List, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snapshot_engine.config import Settings, get_settings
from snapshot_engine.database.models import Base
from .locking import LocalRebuildLock, RebuildLock
from .store import SnapshotStore
from .windows import AnalysisWindow, resolve_window, utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RebuildResult:
    """Outcome of one completed rebuild"""
    organization_id: str
    kind: str
    generation: int
    computed_at: datetime
    rows: int
    analysis_window_days: int


class SnapshotBuilder(ABC):
    """
    Base class for snapshot builders.

    Subclasses set `kind` and implement `build_rows`.
    """

    kind: str = ""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: Optional[RebuildLock] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.lock = lock or LocalRebuildLock()
        self.settings = settings or get_settings()
        self.clock = clock

    def resolve_window(
        self,
        now: datetime,
        analysis_window_days: Optional[float] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AnalysisWindow:
        return resolve_window(
            analysis_window_days=analysis_window_days,
            window_start=window_start,
            window_end=window_end,
            now=now,
            default_days=self.settings.snapshots.default_analysis_days,
        )

    def create_store(self, session: AsyncSession) -> SnapshotStore:
        return SnapshotStore(
            session,
            order_items_batch_size=self.settings.snapshots.order_items_batch_size,
            ad_insights_page_size=self.settings.snapshots.ad_insights_page_size,
        )

    @abstractmethod
    async def build_rows(
        self,
        store: SnapshotStore,
        organization_id: str,
        window: AnalysisWindow,
        now: datetime,
        generation: int,
    ) -> Tuple[List[Base], Base]:
        """
        Compute the snapshot for one organization.

        Returns:
            (per-entity rows, overview row), all tagged with `generation`
        """

    async def rebuild(
        self,
        organization_id: str,
        analysis_window_days: Optional[float] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> RebuildResult:
        """
        Replace the organization's snapshot of this kind.

        Raises:
            InvalidWindowError: The window is invalid; nothing was read
            RebuildInProgressError: Another rebuild holds the lease
            LeaseLostError: The lease expired before publishing; nothing was published
            GenerationConflictError: A concurrent rebuild published first; nothing was published
        """
        now = self.clock()
        window = self.resolve_window(now, analysis_window_days, window_start, window_end)

        log = logger.bind(organization_id=organization_id, kind=self.kind)
        log.info(
            "Snapshot rebuild started",
            analysis_window_days=window.days,
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
        )
        started = time.perf_counter()

        async with self.lock.hold(organization_id, self.kind) as lease:
            async with self.session_factory() as session:
                store = self.create_store(session)
                generation = await store.next_generation(organization_id, self.kind)
                entity_rows, overview = await self.build_rows(
                    store, organization_id, window, now, generation
                )
                await lease.refresh()
                removed = await store.publish(
                    organization_id,
                    self.kind,
                    generation,
                    [*entity_rows, overview],
                    computed_at=now,
                    analysis_window_days=window.days,
                    window_start=window.start,
                    window_end=window.end,
                )

        log.info(
            "Snapshot rebuild completed",
            generation=generation,
            rows=len(entity_rows),
            superseded_rows=removed,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

        return RebuildResult(
            organization_id=organization_id,
            kind=self.kind,
            generation=generation,
            computed_at=now,
            rows=len(entity_rows),
            analysis_window_days=window.days,
        )
