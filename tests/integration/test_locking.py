"""
Integration Tests - Rebuild Leases
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockNotOwnedError

from snapshot_engine.config import Settings
from snapshot_engine.config.settings import SnapshotSettings
from snapshot_engine.engine import (
    CustomerSnapshotBuilder,
    InventorySnapshotBuilder,
    LeaseLostError,
    LocalRebuildLock,
    RebuildInProgressError,
    RedisRebuildLock,
    SnapshotStore,
    build_rebuild_lock,
)
from snapshot_engine.engine.locking import lease_key

pytestmark = pytest.mark.integration


class TestLocalRebuildLock:
    """Tests for LocalRebuildLock"""

    async def test_same_key_is_exclusive(self):
        lock = LocalRebuildLock()

        async with lock.hold("org-1", "inventory"):
            with pytest.raises(RebuildInProgressError) as exc_info:
                async with lock.hold("org-1", "inventory"):
                    pass

        assert exc_info.value.organization_id == "org-1"
        assert exc_info.value.kind == "inventory"

    async def test_different_keys_do_not_block(self):
        lock = LocalRebuildLock()

        async with lock.hold("org-1", "inventory"):
            async with lock.hold("org-1", "customers"):
                async with lock.hold("org-2", "inventory"):
                    pass

    async def test_released_after_failure(self):
        lock = LocalRebuildLock()

        with pytest.raises(RuntimeError):
            async with lock.hold("org-1", "inventory"):
                raise RuntimeError("rebuild failed")

        async with lock.hold("org-1", "inventory"):
            pass

    async def test_waits_for_release(self):
        """Test a blocking lease acquires once the holder finishes"""
        lock = LocalRebuildLock(blocking_timeout=1.0)
        order = []

        async def holder():
            async with lock.hold("org-1", "inventory"):
                order.append("first")
                await asyncio.sleep(0.05)

        async def waiter():
            await asyncio.sleep(0.01)
            async with lock.hold("org-1", "inventory"):
                order.append("second")

        await asyncio.gather(holder(), waiter())

        assert order == ["first", "second"]

    async def test_blocking_timeout_expires(self):
        lock = LocalRebuildLock(blocking_timeout=0.01)

        async with lock.hold("org-1", "inventory"):
            with pytest.raises(RebuildInProgressError):
                async with lock.hold("org-1", "inventory"):
                    pass

        assert lock._locks == {}

    async def test_entries_dropped_once_unused(self):
        """Test a key stays registered while a waiter is queued and is dropped after"""
        lock = LocalRebuildLock(blocking_timeout=1.0)
        seen = []

        async def holder():
            async with lock.hold("org-1", "inventory"):
                await asyncio.sleep(0.05)

        async def waiter():
            await asyncio.sleep(0.01)
            async with lock.hold("org-1", "inventory"):
                seen.append(list(lock._locks))

        await asyncio.gather(holder(), waiter())

        async with lock.hold("org-2", "customers"):
            seen.append(list(lock._locks))

        assert seen == [[("org-1", "inventory")], [("org-2", "customers")]]
        assert lock._locks == {}
        assert lock._users == {}


class TestRedisRebuildLock:
    """Tests for RedisRebuildLock against a mocked client"""

    def make_redis(self, acquired: bool):
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(return_value=acquired)
        redis_lock.release = AsyncMock()
        redis_lock.reacquire = AsyncMock()
        redis = MagicMock()
        redis.lock.return_value = redis_lock
        return redis, redis_lock

    async def test_acquire_and_release(self):
        redis, redis_lock = self.make_redis(acquired=True)
        lock = RedisRebuildLock(redis, timeout=120, blocking_timeout=0.5)

        async with lock.hold("org-1", "customers"):
            redis_lock.release.assert_not_called()

        redis.lock.assert_called_once_with(
            lease_key("org-1", "customers"), timeout=120, blocking_timeout=0.5
        )
        redis_lock.release.assert_awaited_once()

    async def test_held_elsewhere(self):
        redis, redis_lock = self.make_redis(acquired=False)
        lock = RedisRebuildLock(redis)

        with pytest.raises(RebuildInProgressError):
            async with lock.hold("org-1", "customers"):
                pass

        redis_lock.release.assert_not_called()

    async def test_refresh_extends_lease(self):
        redis, redis_lock = self.make_redis(acquired=True)
        lock = RedisRebuildLock(redis)

        async with lock.hold("org-1", "inventory") as lease:
            await lease.refresh()

        redis_lock.reacquire.assert_awaited_once()

    async def test_refresh_after_expiry(self):
        redis, redis_lock = self.make_redis(acquired=True)
        redis_lock.reacquire.side_effect = LockNotOwnedError("expired")
        lock = RedisRebuildLock(redis)

        async with lock.hold("org-1", "inventory") as lease:
            with pytest.raises(LeaseLostError) as exc_info:
                await lease.refresh()

        assert exc_info.value.kind == "inventory"
        redis_lock.release.assert_awaited_once()

    async def test_local_backend_from_settings(self):
        settings = Settings(
            APP_ENV="testing",
            snapshots=SnapshotSettings(lock_backend="local", lock_blocking_timeout_seconds=0.0),
        )

        lock = await build_rebuild_lock(settings)

        assert isinstance(lock, LocalRebuildLock)


class TestConcurrentRebuilds:
    """Tests for rebuilds contending for the same lease"""

    async def test_rebuild_rejected_while_lease_held(
        self, session_factory, rebuild_lock, test_settings, seeded_organization, now
    ):
        builder = InventorySnapshotBuilder(
            session_factory, lock=rebuild_lock, settings=test_settings, clock=lambda: now
        )

        async with rebuild_lock.hold(seeded_organization, "inventory"):
            with pytest.raises(RebuildInProgressError):
                await builder.rebuild(seeded_organization)

        async with session_factory() as session:
            assert await SnapshotStore(session).get_snapshot_metadata(seeded_organization, "inventory") is None

        result = await builder.rebuild(seeded_organization)
        assert result.generation == 1

    async def test_kinds_are_independent(
        self, session_factory, rebuild_lock, test_settings, seeded_organization, now
    ):
        """Test a held inventory lease does not block the customer rebuild"""
        builder = CustomerSnapshotBuilder(
            session_factory, lock=rebuild_lock, settings=test_settings, clock=lambda: now
        )

        async with rebuild_lock.hold(seeded_organization, "inventory"):
            result = await builder.rebuild(seeded_organization)

        assert result.kind == "customers"
        assert result.rows == 3
