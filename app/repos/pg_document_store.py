"""PostgreSQL implementation of DocumentStore.

Postgres runs each transaction at READ COMMITTED, so a second lookup of
a key inside the same transaction can see rows other transactions have
committed since the body read it.  ``_PgTransaction`` therefore pins
down, at read time, what every key looked like and commits against that:

  - key read as present, then written: UPDATE guarded by the loaded
    ``version`` (StaleDataError when someone else bumped it)
  - key read as absent, then written: plain INSERT, never an UPDATE,
    so a row created concurrently fails the primary key (IntegrityError)
  - key read as present, not written: ``SELECT version ... FOR SHARE``
    at flush; a changed version is a conflict, and the share lock holds
    the row still until we commit

Keys read as absent and never written are not checked; the only such
reads are catalog lookups.
"""

from __future__ import annotations

import copy
import logging

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.metrics import STORE_TRANSACTION_CONFLICTS
from app.db.tables import DocumentRow
from app.repos.document_store import (
    Doc,
    StoreError,
    T,
    TransactionBody,
    TransactionConflictError,
)

logger = logging.getLogger(__name__)

class _PgTransaction:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.read_versions: dict[str, int] = {}
        self.absent: set[str] = set()
        self.writes: dict[str, Doc] = {}

    async def read(self, key: str) -> Doc | None:
        if key in self.writes:
            return copy.deepcopy(self.writes[key])
        if key in self.absent:
            return None
        row = await self._session.get(DocumentRow, key)
        if row is None:
            self.absent.add(key)
            return None
        self.read_versions.setdefault(key, row.version)
        return copy.deepcopy(row.value)

    def write(self, key: str, value: Doc) -> None:
        self.writes[key] = copy.deepcopy(value)

    async def _check_unchanged(self, key: str, version: int) -> None:
        current = await self._session.scalar(
            select(DocumentRow.version)
            .where(DocumentRow.key == key)
            .with_for_update(read=True)
        )
        if current != version:
            raise StaleDataError(f"document {key!r} changed since it was read")

    async def flush(self) -> None:
        for key, version in self.read_versions.items():
            if key not in self.writes:
                await self._check_unchanged(key, version)
        for key, value in self.writes.items():
            if key in self.absent:
                self._session.add(DocumentRow(key=key, value=value))
                continue
            # Identity-map hit for keys the body read, so the UPDATE is
            # guarded by the version loaded at read time.
            row = await self._session.get(DocumentRow, key)
            if row is None:
                self._session.add(DocumentRow(key=key, value=value))
            else:
                row.value = value
        await self._session.flush()


class PgDocumentStore:
    """Satisfies the DocumentStore Protocol using PostgreSQL via SQLAlchemy.

    Conflicts surface two ways: StaleDataError when a row we read was
    updated underneath us, IntegrityError when two transactions both
    insert a key that did not exist when they read it.
    """

    _BACKEND = "postgres"

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], max_attempts: int = 5
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._session_factory = session_factory
        self._max_attempts = max_attempts

    async def run_transaction(self, body: TransactionBody[T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        txn = _PgTransaction(session)
                        result = await body(txn)
                        await txn.flush()
                return result
            except (StaleDataError, IntegrityError):
                STORE_TRANSACTION_CONFLICTS.labels(backend=self._BACKEND).inc()
                logger.debug(
                    "Transaction conflict, retrying attempt=%d/%d",
                    attempt,
                    self._max_attempts,
                )
            except SQLAlchemyError as exc:
                raise StoreError(f"postgres transaction failed: {exc}") from exc
        raise TransactionConflictError(
            f"transaction aborted after {self._max_attempts} conflicting attempts"
        )

    async def get(self, key: str) -> Doc | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(DocumentRow, key)
                return None if row is None else copy.deepcopy(row.value)
        except SQLAlchemyError as exc:
            raise StoreError(f"postgres get failed: {exc}") from exc

    async def put(self, key: str, value: Doc) -> None:
        stmt = insert(DocumentRow).values(key=key, value=value, version=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DocumentRow.key],
            set_={"value": stmt.excluded.value, "version": DocumentRow.version + 1},
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreError(f"postgres put failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(DocumentRow).where(DocumentRow.key == key)
                    )
        except SQLAlchemyError as exc:
            raise StoreError(f"postgres delete failed: {exc}") from exc

    async def scan(
        self, prefix: str, *, start: str | None = None
    ) -> list[tuple[str, Doc]]:
        stmt = (
            select(DocumentRow.key, DocumentRow.value)
            .where(DocumentRow.key.startswith(prefix, autoescape=True))
            .order_by(DocumentRow.key)
        )
        if start is not None:
            stmt = stmt.where(DocumentRow.key >= start)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"postgres scan failed: {exc}") from exc
        return [(key, value) for key, value in rows]
