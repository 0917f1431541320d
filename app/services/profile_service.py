"""Denormalized profile fields (name, country) on the learner document.

The leaderboards copy these into every entry on their next run.
"""

from __future__ import annotations

import logging

from app.db.store import document_store
from app.models.leaderboard import UNKNOWN_COUNTRY
from app.models.points import PointsBalance
from app.repos import keys
from app.repos.document_store import DocumentStore, Transaction

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def update_profile(
        self,
        user_id: str,
        *,
        name: str | None = None,
        country: str | None = None,
    ) -> PointsBalance:
        """Set whichever of ``name`` / ``country`` is given; None leaves it as is."""
        keys.validate_id("user_id", user_id)
        user_key = keys.user_key(user_id)

        async def body(txn: Transaction) -> PointsBalance:
            user_doc = await txn.read(user_key) or {}
            if name is not None:
                user_doc["name"] = name
            if country is not None:
                user_doc["country"] = country or UNKNOWN_COUNTRY
            txn.write(user_key, user_doc)
            return PointsBalance.from_doc(user_id, user_doc)

        updated = await self._store.run_transaction(body)
        logger.info("Profile updated user=%s", user_id, extra={"user_id": user_id})
        return updated


profile_service = ProfileService(document_store)
