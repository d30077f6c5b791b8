"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis + reaper heartbeat)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from leadgate.config import get_settings
from leadgate.database import get_db
from leadgate.utils.dedup import get_redis
from leadgate.workers.interaction_reaper import HEARTBEAT_KEY

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - the database is required, Redis only degrades
    (alert cooldowns and webhook dedup fall back to in-process behavior).
    """
    checks = {"database": False, "redis": False}
    reaper = None

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    try:
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
        if get_settings().reaper_enabled:
            reaper = await redis.get(HEARTBEAT_KEY)
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    if not checks["database"]:
        status = "unavailable"
    elif not all(checks.values()):
        status = "degraded"
    else:
        status = "ready"

    return JSONResponse(
        status_code=200 if checks["database"] else 503,
        content={
            "status": status,
            "checks": checks,
            "reaper_last_heartbeat": reaper,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
