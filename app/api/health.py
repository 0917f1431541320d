"""Health and readiness endpoints.

  /health (liveness):  is the process alive?  Always 200; the ``status``
                       field reports degraded dependencies.
  /ready  (readiness): can this instance serve traffic?  503 when the
                       document store backend is unreachable, which takes
                       the instance out of the load balancer without a
                       restart.

Redis only matters for readiness when it is the document store; as a
cache it degrades to misses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from app.db.engine import engine
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus per-dependency status."""
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: 503 if the backend holding the documents is down."""
    if engine is not None:
        store_status = await _check_database()
    elif redis_pool is not None:
        store_status = await _check_redis()
    else:
        store_status = "ok"
    if store_status != "ok":
        return Response(status_code=503)
    return Response(status_code=200)
