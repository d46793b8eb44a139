"""
Snapshot Engine

Builds materialized inventory and customer snapshots from raw commerce
collections and replaces them atomically per organization.
"""

from .builder import RebuildResult, SnapshotBuilder
from .customers import CustomerSnapshotBuilder
from .exceptions import (
    GenerationConflictError,
    InvalidWindowError,
    LeaseLostError,
    RebuildInProgressError,
    SnapshotError,
)
from .inventory import InventorySnapshotBuilder
from .journey import JourneyStage, estimate_journey_stages, load_journey_stages
from .locking import LocalRebuildLock, RebuildLease, RebuildLock, RedisRebuildLock, build_rebuild_lock
from .store import SnapshotMetadata, SnapshotStore

__all__ = [
    "CustomerSnapshotBuilder",
    "GenerationConflictError",
    "InvalidWindowError",
    "InventorySnapshotBuilder",
    "JourneyStage",
    "LeaseLostError",
    "LocalRebuildLock",
    "RebuildInProgressError",
    "RebuildLease",
    "RebuildLock",
    "RebuildResult",
    "RedisRebuildLock",
    "SnapshotBuilder",
    "SnapshotError",
    "SnapshotMetadata",
    "SnapshotStore",
    "build_rebuild_lock",
    "estimate_journey_stages",
    "load_journey_stages",
]
