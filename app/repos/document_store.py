"""Transactional document store.

Every progress, points and leaderboard document lives under a
slash-separated key (``users/u-1``, ``moduleProgress/u-1/m-3``...).  The
aggregation services never talk to a backend directly; they hand an async
body to ``run_transaction`` and use the ``Transaction`` it receives:

    async def body(txn: Transaction) -> int:
        doc = await txn.read("users/u-1") or {}
        doc["points"] = doc.get("points", 0) + 2
        txn.write("users/u-1", doc)
        return doc["points"]

    points = await store.run_transaction(body)

OPTIMISTIC CONCURRENCY
----------------------
Bodies run without locks.  At commit, the backend checks that nothing the
body read has been committed by someone else in the meantime; if it has,
the buffered writes are thrown away and the body runs again from scratch
against fresh data.  Consequences for callers:

  - The body may run several times.  Anything that must happen once
    (metrics, cache invalidation, logging "awarded") goes AFTER
    ``run_transaction`` returns, never inside the body.
  - Reads see the body's own earlier writes (read-your-writes).
  - Exhausting ``max_attempts`` raises TransactionConflictError.

Backends: InMemoryDocumentStore (here), RedisDocumentStore
(WATCH/MULTI/EXEC) and PgDocumentStore (version column).
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

from app.core.metrics import STORE_TRANSACTION_CONFLICTS

logger = logging.getLogger(__name__)

Doc = dict[str, Any]
T = TypeVar("T")


class StoreError(Exception):
    """The store could not complete a read or write."""


class TransactionConflictError(StoreError):
    """Every attempt of a transaction lost to a concurrent commit."""


@runtime_checkable
class Transaction(Protocol):
    async def read(self, key: str) -> Doc | None:
        """Return a private copy of the document, or None when absent."""
        ...

    def write(self, key: str, value: Doc) -> None:
        """Buffer a full replacement of the document; applied at commit."""
        ...


TransactionBody = Callable[[Transaction], Awaitable[T]]


@runtime_checkable
class DocumentStore(Protocol):
    async def run_transaction(self, body: TransactionBody[T]) -> T:
        ...

    async def get(self, key: str) -> Doc | None: ...
    async def put(self, key: str, value: Doc) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def scan(
        self, prefix: str, *, start: str | None = None
    ) -> list[tuple[str, Doc]]:
        """Documents whose key starts with ``prefix``, in byte-wise key order.

        ``start`` skips keys that sort before it.
        """
        ...


class _MemoryTransaction:
    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        # key -> version observed on first read
        self.read_versions: dict[str, int] = {}
        self.writes: dict[str, Doc] = {}

    async def read(self, key: str) -> Doc | None:
        if key in self.writes:
            return copy.deepcopy(self.writes[key])
        # Suspension point, like a network round-trip would be.
        await asyncio.sleep(0)
        version, doc = self._store._entry(key)
        self.read_versions.setdefault(key, version)
        return copy.deepcopy(doc)

    def write(self, key: str, value: Doc) -> None:
        self.writes[key] = copy.deepcopy(value)


class InMemoryDocumentStore:
    """Single-process store for dev and tests.

    Each key carries a version number bumped on every commit.  Commit
    validation and apply run without an ``await`` in between, so on one
    event loop they are atomic with respect to every other transaction.
    """

    _BACKEND = "memory"

    def __init__(self, max_attempts: int = 5) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        # key -> (version, document or None once deleted)
        self._docs: dict[str, tuple[int, Doc | None]] = {}

    def _entry(self, key: str) -> tuple[int, Doc | None]:
        return self._docs.get(key, (0, None))

    def _bump(self, key: str, doc: Doc | None) -> None:
        version, _ = self._entry(key)
        self._docs[key] = (version + 1, doc)

    def _try_commit(self, txn: _MemoryTransaction) -> bool:
        for key, seen in txn.read_versions.items():
            if self._entry(key)[0] != seen:
                return False
        for key, doc in txn.writes.items():
            self._bump(key, doc)
        return True

    async def run_transaction(self, body: TransactionBody[T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            txn = _MemoryTransaction(self)
            result = await body(txn)
            if self._try_commit(txn):
                return result
            STORE_TRANSACTION_CONFLICTS.labels(backend=self._BACKEND).inc()
            logger.debug(
                "Transaction conflict, retrying attempt=%d/%d",
                attempt,
                self._max_attempts,
            )
        raise TransactionConflictError(
            f"transaction aborted after {self._max_attempts} conflicting attempts"
        )

    async def get(self, key: str) -> Doc | None:
        return copy.deepcopy(self._entry(key)[1])

    async def put(self, key: str, value: Doc) -> None:
        self._bump(key, copy.deepcopy(value))

    async def delete(self, key: str) -> None:
        if self._entry(key)[1] is not None:
            self._bump(key, None)

    async def scan(
        self, prefix: str, *, start: str | None = None
    ) -> list[tuple[str, Doc]]:
        return [
            (key, copy.deepcopy(doc))
            for key, (_, doc) in sorted(self._docs.items())
            if doc is not None
            and key.startswith(prefix)
            and (start is None or key >= start)
        ]
