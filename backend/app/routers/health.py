"""Health check endpoints for load balancers and monitoring."""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import settings
from app.database import engine, utcnow
from app.utils.cache import get_redis

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB/Redis check)."""
    return {
        "status": "ok",
        "service": "warehouse-composition",
        "timestamp": utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: database always, Redis only when it backs the caches.

    Returns 503 if any required dependency is down.
    """
    checks = {
        "service": "ok",
        "database": "unknown",
        "redis": "not_required",
    }
    overall_healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.critical(f"Readiness: database unavailable: {e}")
        checks["database"] = "error"
        overall_healthy = False

    if settings.cache_backend == "redis":
        try:
            redis_client = await get_redis()
            await redis_client.ping()
            checks["redis"] = "ok"
        except Exception as e:
            logger.critical(f"Readiness: redis unavailable: {e}")
            checks["redis"] = "error"
            overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": "warehouse-composition",
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
