"""
Rebuild Leases

Mutual exclusion per organization and snapshot kind, so two rebuilds of
the same snapshot never interleave their writes.

- RedisRebuildLock: expiring Redis lease, safe across workers and hosts
- LocalRebuildLock: asyncio lock for single-process deployments and tests
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Tuple

import structlog
from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import LockError

from snapshot_engine.config import Settings, get_settings
from .exceptions import LeaseLostError, RebuildInProgressError

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
    )
    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error("Redis connection failed", error=str(e))
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def lease_key(organization_id: str, kind: str) -> str:
    return f"snapshot-rebuild:{kind}:{organization_id}"


class RebuildLease:
    """
    Handle on a held lease, yielded by RebuildLock.hold.

    Builders call `refresh` right before publishing; an in-process lease
    cannot be lost, so the base implementation does nothing.
    """

    def __init__(self, organization_id: str, kind: str):
        self.organization_id = organization_id
        self.kind = kind

    async def refresh(self) -> None:
        return None


class RedisRebuildLease(RebuildLease):
    def __init__(self, lock, organization_id: str, kind: str):
        super().__init__(organization_id, kind)
        self.lock = lock

    async def refresh(self) -> None:
        """
        Reset the lease expiry to its full timeout.

        Raises:
            LeaseLostError: The lease expired and may be held by another worker
        """
        try:
            await self.lock.reacquire()
        except LockError:
            logger.warning(
                "Rebuild lease lost before publish",
                organization_id=self.organization_id,
                kind=self.kind,
            )
            raise LeaseLostError(self.organization_id, self.kind) from None


class RebuildLock(ABC):
    """Lease held for the duration of one rebuild"""

    @abstractmethod
    def hold(self, organization_id: str, kind: str):
        """
        Async context manager holding the lease, yielding a RebuildLease.

        Raises:
            RebuildInProgressError: The lease is held elsewhere
        """


class LocalRebuildLock(RebuildLock):
    """In-process lease keyed by organization and snapshot kind."""

    def __init__(self, blocking_timeout: float = 0.0):
        self.blocking_timeout = blocking_timeout
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        # holders plus waiters; an entry is dropped when it reaches zero
        self._users: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, organization_id: str, kind: str) -> AsyncIterator[RebuildLease]:
        key = (organization_id, kind)
        lock = self._locks.get(key)
        if lock is not None and lock.locked() and self.blocking_timeout <= 0:
            raise RebuildInProgressError(organization_id, kind)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()

        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout or None)
            except asyncio.TimeoutError:
                raise RebuildInProgressError(organization_id, kind) from None

            try:
                yield RebuildLease(organization_id, kind)
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class RedisRebuildLock(RebuildLock):
    """Expiring Redis lease; an abandoned rebuild frees it after `timeout` seconds."""

    def __init__(self, redis: Redis, timeout: int = 600, blocking_timeout: float = 5.0):
        self.redis = redis
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, organization_id: str, kind: str) -> AsyncIterator[RebuildLease]:
        lock = self.redis.lock(
            lease_key(organization_id, kind),
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning(
                "Rebuild lease held elsewhere",
                organization_id=organization_id,
                kind=kind,
            )
            raise RebuildInProgressError(organization_id, kind)

        try:
            yield RedisRebuildLease(lock, organization_id, kind)
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease expired mid-rebuild; another worker may already hold it
                logger.warning(
                    "Rebuild lease expired before release",
                    organization_id=organization_id,
                    kind=kind,
                    timeout_seconds=self.timeout,
                )


async def build_rebuild_lock(settings: Optional[Settings] = None) -> RebuildLock:
    """Create the configured lease backend."""
    settings = settings or get_settings()
    if settings.snapshots.lock_backend == "local":
        return LocalRebuildLock(blocking_timeout=settings.snapshots.lock_blocking_timeout_seconds)

    redis = await init_redis()
    return RedisRebuildLock(
        redis,
        timeout=settings.snapshots.lock_timeout_seconds,
        blocking_timeout=settings.snapshots.lock_blocking_timeout_seconds,
    )
