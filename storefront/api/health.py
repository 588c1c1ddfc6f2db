"""
Liveness and readiness checks.

/health is static. /health/ready needs the database; Redis only backs alert
cooldowns, so losing it reports "degraded" with a 200.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from storefront.database import ConnectionHandle, get_connection_handle

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _redis_reachable() -> bool:
    try:
        from storefront.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
    except Exception as e:
        logger.warning("Readiness: redis ping failed: %s", str(e))
        return False
    return True


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": _now(), "version": VERSION}


@router.get("/health/ready")
async def readiness_check(handle: ConnectionHandle = Depends(get_connection_handle)):
    database_ok = await handle.healthcheck()
    if not database_ok:
        logger.error("Readiness: database %s unreachable", handle.target_descriptor)
    redis_ok = await _redis_reachable()

    if not database_ok:
        status = "unavailable"
    elif redis_ok:
        status = "ready"
    else:
        status = "degraded"

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": status,
            "checks": {"database": database_ok, "redis": redis_ok},
            "timestamp": _now(),
        },
    )
