"""Read-through cache for the learner progress summary.

Flow:  GET /v1/progress/me → cache → hit  → return
                              cache → miss → store → populate cache → return

Two invalidation strategies cover each other:

  1. TTL: every entry expires on its own, so a missed invalidation only
     serves stale data for a bounded time.
  2. Explicit delete: register_view, initialize and recalculate drop the
     learner's entry right after their transaction commits.

Hits and misses are counted in ``cache_operations_total``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from redis.exceptions import RedisError

from app.core.metrics import CACHE_OPERATIONS
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheService:
    """Process-local cache for dev and tests; TTL is not enforced."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache shared by every API instance.

    Redis errors degrade to a miss (get) or a no-op (set/delete); the
    store stays the source of truth and the TTL bounds staleness.
    """

    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(f"{self._PREFIX}{key}")
        except RedisError:
            logger.warning("Cache get failed key=%s", key, exc_info=True)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except RedisError:
            logger.warning("Cache set failed key=%s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(f"{self._PREFIX}{key}")
        except RedisError:
            logger.warning("Cache delete failed key=%s", key, exc_info=True)


def progress_cache_key(user_id: str) -> str:
    return f"progress:{user_id}"


async def read_through(
    cache: CacheService,
    key: str,
    ttl_seconds: int,
    load: Callable[[], Awaitable[dict]],
) -> dict:
    """Return the cached JSON document for ``key``, loading it on a miss."""
    cached = await cache.get(key)
    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return json.loads(cached)

    CACHE_OPERATIONS.labels(operation="miss").inc()
    value = await load()
    await cache.set(key, json.dumps(value), ttl_seconds)
    return value


if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
