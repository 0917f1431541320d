"""Redis connection management.

Mirrors engine.py: with REDIS_URL set, a pooled asyncio client backs the
document store (when Postgres is not configured) and the progress
summary cache.  Without it, ``redis_pool`` is None and both fall back to
in-memory implementations, so dev and tests need no Redis server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify connectivity on startup, release the pool on shutdown.

    A failed ping is logged, not raised: the cache degrades to misses and
    /health reports the dependency as degraded.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, using in-memory fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except Exception:
        logger.exception("Redis connection failed on startup")

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis connection pool closed")
