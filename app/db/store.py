"""Module-level DocumentStore singleton.

Backend precedence: PostgreSQL (DATABASE_URL) > Redis (REDIS_URL) >
in-memory.  Every service and router imports ``document_store`` from here.
"""

from __future__ import annotations

import logging

from app.core.config import SETTINGS
from app.db.engine import async_session_factory
from app.db.redis import redis_pool
from app.repos.document_store import DocumentStore, InMemoryDocumentStore

logger = logging.getLogger(__name__)

if async_session_factory is not None:
    from app.repos.pg_document_store import PgDocumentStore

    document_store: DocumentStore = PgDocumentStore(
        async_session_factory, max_attempts=SETTINGS.store_max_attempts
    )
elif redis_pool is not None:
    from app.repos.redis_document_store import RedisDocumentStore

    document_store = RedisDocumentStore(
        redis_pool, max_attempts=SETTINGS.store_max_attempts
    )
else:
    document_store = InMemoryDocumentStore(max_attempts=SETTINGS.store_max_attempts)

logger.debug("Document store backend: %s", type(document_store).__name__)
