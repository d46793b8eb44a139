"""
Health Check Endpoints

Liveness and readiness probes for the read API and rebuild workers.
"""

from datetime import datetime
from typing import Dict, Any

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from snapshot_engine.config import get_settings
from snapshot_engine.database.connection import check_database_health
from snapshot_engine.engine.locking import RedisRebuildLock
from snapshot_engine.engine.windows import utcnow

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health of the service and its stores.

    Redis is only checked when rebuild leases are held in Redis.
    """
    settings = get_settings()
    checks: Dict[str, Any] = {}
    overall_status = "healthy"

    db_health = await check_database_health()
    checks["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"

    lock = getattr(request.app.state, "rebuild_lock", None)
    if isinstance(lock, RedisRebuildLock):
        try:
            await lock.redis.ping()
            checks["redis"] = {"status": "healthy"}
        except Exception as e:
            checks["redis"] = {"status": "unhealthy", "error": str(e)}
            if overall_status == "healthy":
                overall_status = "degraded"
    else:
        checks["redis"] = {"status": "skipped", "lock_backend": settings.snapshots.lock_backend}

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response) -> Dict[str, str]:
    """Ready once the snapshot tables are reachable."""
    db_health = await check_database_health()
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
