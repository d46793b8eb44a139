"""
FastAPI Application

Read API over the published inventory and customer snapshots.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import structlog

from snapshot_engine.config import get_settings
from snapshot_engine.config.logging import configure_logging
from snapshot_engine.database.connection import init_database, close_database
from snapshot_engine.engine.locking import LocalRebuildLock, build_rebuild_lock, close_redis
from snapshot_engine.serving.api.middleware import RequestLoggingMiddleware
from snapshot_engine.serving.api.routes import health_router, snapshots_router

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging(service="api")
    logger.info("Starting commerce snapshot API", environment=settings.app_env)

    await init_database()

    try:
        app.state.rebuild_lock = await build_rebuild_lock(settings)
    except Exception as e:
        # Single-process fallback; concurrent API workers are then not mutually excluded
        logger.warning("Redis lease backend unavailable, using local leases", error=str(e))
        app.state.rebuild_lock = LocalRebuildLock()

    yield

    logger.info("Shutting down...")
    await close_database()
    await close_redis()


app = FastAPI(
    title="Commerce Snapshot API",
    description="Materialized inventory and customer analytics snapshots",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(health_router, prefix="/api/v1", tags=["Health"])
app.include_router(snapshots_router, prefix="/api/v1/snapshots", tags=["Snapshots"])


@app.get("/api/v1/info")
async def api_info():
    return {
        "name": settings.app_name,
        "version": settings.version,
        "environment": settings.app_env,
        "documentation": "/docs",
    }


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
