"""Redis implementation of DocumentStore.

Documents are JSON strings under ``doc:<key>``.  Transactions use Redis'
own optimistic primitive:

  1. WATCH each key right before the body reads it
  2. buffer writes in Python while the body runs
  3. MULTI, SET every buffered write, EXEC

If any watched key was modified by another client between its WATCH and
our EXEC, Redis discards the whole MULTI block and redis-py raises
WatchError.  We then rerun the body on a fresh pipeline.

Every document key is also a member of the ``doc-index`` sorted set (all
scores 0, so members sort byte-wise).  ``scan`` is a ZRANGEBYLEX over that
index, which makes ``scan(prefix, start=...)`` a true range read instead
of a walk over the whole keyspace.
"""

from __future__ import annotations

import copy
import json
import logging

from redis.exceptions import RedisError, WatchError

from app.core.metrics import STORE_TRANSACTION_CONFLICTS
from app.repos.document_store import (
    Doc,
    StoreError,
    T,
    TransactionBody,
    TransactionConflictError,
)

logger = logging.getLogger(__name__)


def _decode(raw: str | bytes | None) -> Doc | None:
    if raw is None:
        return None
    return json.loads(raw)


def _lex_range(prefix: str, start: str | None) -> tuple[str, str]:
    """ZRANGEBYLEX bounds covering keys under ``prefix`` from ``start`` on."""
    low = prefix if start is None or start < prefix else start
    if not prefix:
        return f"[{low}", "+"
    # First string past every key that starts with prefix.
    upper = prefix[:-1] + chr(ord(prefix[-1]) + 1)
    return f"[{low}", f"({upper}"


class _RedisTransaction:
    def __init__(self, pipe, prefix: str) -> None:
        self._pipe = pipe
        self._prefix = prefix
        self.writes: dict[str, Doc] = {}

    async def read(self, key: str) -> Doc | None:
        if key in self.writes:
            return copy.deepcopy(self.writes[key])
        full_key = f"{self._prefix}{key}"
        # While watching, the pipeline executes commands immediately.
        await self._pipe.watch(full_key)
        return _decode(await self._pipe.get(full_key))

    def write(self, key: str, value: Doc) -> None:
        self.writes[key] = copy.deepcopy(value)


class RedisDocumentStore:
    """Shared store for multi-instance deployments."""

    _PREFIX = "doc:"
    _INDEX = "doc-index"
    _BACKEND = "redis"

    def __init__(self, redis_client, max_attempts: int = 5) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._redis = redis_client
        self._max_attempts = max_attempts

    async def run_transaction(self, body: TransactionBody[T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    txn = _RedisTransaction(pipe, self._PREFIX)
                    result = await body(txn)
                    pipe.multi()
                    for key, doc in txn.writes.items():
                        pipe.set(f"{self._PREFIX}{key}", json.dumps(doc))
                    if txn.writes:
                        pipe.zadd(self._INDEX, {key: 0 for key in txn.writes})
                    await pipe.execute()
                return result
            except WatchError:
                STORE_TRANSACTION_CONFLICTS.labels(backend=self._BACKEND).inc()
                logger.debug(
                    "Transaction conflict, retrying attempt=%d/%d",
                    attempt,
                    self._max_attempts,
                )
            except RedisError as exc:
                raise StoreError(f"redis transaction failed: {exc}") from exc
        raise TransactionConflictError(
            f"transaction aborted after {self._max_attempts} conflicting attempts"
        )

    async def get(self, key: str) -> Doc | None:
        try:
            return _decode(await self._redis.get(f"{self._PREFIX}{key}"))
        except RedisError as exc:
            raise StoreError(f"redis get failed: {exc}") from exc

    async def put(self, key: str, value: Doc) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(f"{self._PREFIX}{key}", json.dumps(value))
                pipe.zadd(self._INDEX, {key: 0})
                await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"redis set failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(f"{self._PREFIX}{key}")
                pipe.zrem(self._INDEX, key)
                await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"redis delete failed: {exc}") from exc

    async def scan(
        self, prefix: str, *, start: str | None = None
    ) -> list[tuple[str, Doc]]:
        low, high = _lex_range(prefix, start)
        try:
            keys = await self._redis.zrangebylex(self._INDEX, low, high)
            if not keys:
                return []
            values = await self._redis.mget([f"{self._PREFIX}{k}" for k in keys])
        except RedisError as exc:
            raise StoreError(f"redis scan failed: {exc}") from exc

        results: list[tuple[str, Doc]] = []
        for key, raw in zip(keys, values):
            doc = _decode(raw)
            if doc is None:
                continue  # deleted between ZRANGEBYLEX and MGET
            results.append((key.decode() if isinstance(key, bytes) else key, doc))
        return results
