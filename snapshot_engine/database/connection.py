"""
Database Connection Management

One async engine per process. Rebuilds open their own sessions from the
session factory and commit through SnapshotStore.publish; the read API
uses read-only sessions that never commit.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional, Any
import time

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from snapshot_engine.config import get_settings
from snapshot_engine.database.models import Base, SnapshotPointer

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and session factory, then check connectivity.

    Args:
        url: Async database URL; defaults to the configured Postgres URL

    Raises:
        Exception: The database is unreachable
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    database_url = url or settings.database.async_url

    # asyncpg pools connections itself
    _engine = create_async_engine(
        database_url,
        echo=settings.database.echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        async with _engine.connect() as conn:
            await conn.execute(select(1))
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e), dialect=_engine.dialect.name)
        await close_database()
        raise

    logger.info("Database connection established", dialect=_engine.dialect.name)
    return _engine


async def close_database() -> None:
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory handed to snapshot builders.

    Raises:
        RuntimeError: init_database() has not run
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _async_session_factory


@asynccontextmanager
async def read_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for snapshot reads.

    Always rolls back on exit; errors are logged and re-raised.
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception as e:
        logger.error("Snapshot read failed", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        await session.rollback()
        await session.close()


async def get_read_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a read-only session."""
    async with read_session() as session:
        yield session


async def check_database_health() -> Dict[str, Any]:
    """
    Round-trip to the snapshot pointer table.

    Returns:
        Status, latency and the number of published snapshots
    """
    try:
        start = time.perf_counter()
        async with read_session() as session:
            result = await session.execute(select(func.count()).select_from(SnapshotPointer))
            published = result.scalar_one()
        latency_ms = (time.perf_counter() - start) * 1000
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy",
        "latency_ms": round(latency_ms, 2),
        "published_snapshots": published,
    }


async def create_tables() -> None:
    """Create raw and snapshot tables that do not exist yet."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created", tables=len(Base.metadata.tables))
