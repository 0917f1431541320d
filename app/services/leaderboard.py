"""Leaderboard Builder: periodic ranked snapshots.

``recompute_leaderboards`` is pure (balances + events + now in, snapshots
out).  ``LeaderboardBuilder.run`` is the scheduled job around it: read the
store, compute, overwrite every snapshot document, drop country boards
that no longer have anyone on them.

Snapshots are eventually consistent; a failed run leaves the previous
snapshots in place and the next run replaces them.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from app.core.clock import Clock, parse_iso, sortable_iso, to_iso, utcnow
from app.core.config import SETTINGS
from app.core.metrics import LEADERBOARD_DURATION, LEADERBOARD_RECOMPUTES
from app.db.store import document_store
from app.models.leaderboard import (
    COUNTRY_SCOPE_PREFIX,
    GLOBAL_SCOPE,
    UNKNOWN_COUNTRY,
    WEEKLY_SCOPE,
    LeaderboardEntry,
    LeaderboardSet,
    LeaderboardSnapshot,
    country_scope,
)
from app.models.points import PointEvent, PointsBalance
from app.repos import keys
from app.repos.document_store import DocumentStore

logger = logging.getLogger(__name__)

GLOBAL_SIZE = 100
COUNTRY_SIZE = 50
WEEKLY_SIZE = 50
WEEKLY_WINDOW = timedelta(days=7)

COUNTRY_SCOPE_GLOBAL_TOP = "global_top"
COUNTRY_SCOPE_ALL = "all"


def _ranked(balances: Iterable[PointsBalance], size: int) -> list[PointsBalance]:
    # sorted() is stable, so equal scores keep their input order.
    return sorted(balances, key=lambda b: b.points, reverse=True)[:size]


def _entries(balances: Sequence[PointsBalance]) -> tuple[LeaderboardEntry, ...]:
    return tuple(
        LeaderboardEntry(
            user_id=b.user_id,
            points=b.points,
            rank=index + 1,
            name=b.name,
            country=b.country or UNKNOWN_COUNTRY,
            badge=b.badge,
        )
        for index, b in enumerate(balances)
    )


def _weekly_balance(
    user_id: str, points: int, profile: PointsBalance | None
) -> PointsBalance:
    if profile is None:
        return PointsBalance(user_id=user_id, points=points)
    return PointsBalance(
        user_id=user_id,
        points=points,
        badge=profile.badge,
        name=profile.name,
        country=profile.country,
    )


def recompute_leaderboards(
    balances: Sequence[PointsBalance],
    events: Iterable[PointEvent],
    now: datetime,
    *,
    country_scope_mode: str = COUNTRY_SCOPE_GLOBAL_TOP,
) -> LeaderboardSet:
    """Build the global, per-country and weekly boards.

    Country boards are cut from the global top slice unless
    ``country_scope_mode`` is "all", in which case every balance counts.
    """
    updated_at = to_iso(now)
    top = _ranked(balances, GLOBAL_SIZE)

    by_country: dict[str, list[PointsBalance]] = defaultdict(list)
    pool = balances if country_scope_mode == COUNTRY_SCOPE_ALL else top
    for balance in pool:
        by_country[balance.country or UNKNOWN_COUNTRY].append(balance)
    countries = {
        country: LeaderboardSnapshot(
            scope=country_scope(country),
            entries=_entries(_ranked(members, COUNTRY_SIZE)),
            updated_at=updated_at,
        )
        for country, members in by_country.items()
    }

    cutoff = now - WEEKLY_WINDOW
    weekly_points: dict[str, int] = {}
    for event in events:
        if parse_iso(event.timestamp) >= cutoff:
            weekly_points[event.user_id] = weekly_points.get(event.user_id, 0) + event.points
    profiles = {b.user_id: b for b in balances}
    weekly_balances = [
        _weekly_balance(user_id, points, profiles.get(user_id))
        for user_id, points in weekly_points.items()
    ]

    return LeaderboardSet(
        global_board=LeaderboardSnapshot(
            scope=GLOBAL_SCOPE, entries=_entries(top), updated_at=updated_at
        ),
        weekly=LeaderboardSnapshot(
            scope=WEEKLY_SCOPE,
            entries=_entries(_ranked(weekly_balances, WEEKLY_SIZE)),
            updated_at=updated_at,
        ),
        countries=countries,
    )


class LeaderboardBuilder:
    def __init__(
        self,
        store: DocumentStore,
        clock: Clock = utcnow,
        country_scope_mode: str = COUNTRY_SCOPE_GLOBAL_TOP,
    ) -> None:
        self._store = store
        self._clock = clock
        self._country_scope_mode = country_scope_mode

    async def _load(
        self, now: datetime
    ) -> tuple[list[PointsBalance], list[PointEvent]]:
        users_prefix = keys.USERS_PREFIX
        balances = [
            PointsBalance.from_doc(key[len(users_prefix) :], doc)
            for key, doc in await self._store.scan(users_prefix)
            if "points" in doc
        ]
        # Event ids lead with their timestamp: start the scan at the cutoff.
        events_prefix = keys.POINT_EVENTS_PREFIX
        rows = await self._store.scan(
            events_prefix,
            start=keys.point_event_key(sortable_iso(now - WEEKLY_WINDOW)),
        )
        events = []
        for key, doc in rows:
            try:
                events.append(PointEvent.from_doc(key[len(events_prefix) :], doc))
            except (TypeError, ValueError):
                logger.warning("Skipping unreadable point event %s", key)
        return balances, events

    async def rebuild(self) -> LeaderboardSet:
        """Recompute and persist every snapshot.  Errors propagate."""
        now = self._clock()
        balances, events = await self._load(now)
        boards = recompute_leaderboards(
            balances, events, now, country_scope_mode=self._country_scope_mode
        )
        for snapshot in boards.snapshots():
            await self._store.put(keys.leaderboard_key(snapshot.scope), snapshot.to_doc())

        live = {keys.leaderboard_key(s.scope) for s in boards.countries.values()}
        stale_prefix = keys.leaderboard_key(COUNTRY_SCOPE_PREFIX)
        for key, _ in await self._store.scan(stale_prefix):
            if key not in live:
                await self._store.delete(key)
                logger.info("Removed stale country leaderboard %s", key)
        return boards

    async def run(self) -> bool:
        """Scheduled entry point.  Never raises; returns False on failure."""
        start = time.perf_counter()
        try:
            boards = await self.rebuild()
        except Exception:
            LEADERBOARD_RECOMPUTES.labels(result="error").inc()
            logger.exception("Leaderboard recompute failed")
            return False
        finally:
            LEADERBOARD_DURATION.observe(time.perf_counter() - start)

        LEADERBOARD_RECOMPUTES.labels(result="ok").inc()
        logger.info(
            "Leaderboards recomputed global=%d weekly=%d countries=%d",
            len(boards.global_board.entries),
            len(boards.weekly.entries),
            len(boards.countries),
        )
        return True

    async def get_snapshot(self, scope: str) -> LeaderboardSnapshot:
        doc = await self._store.get(keys.leaderboard_key(scope))
        return LeaderboardSnapshot.from_doc(scope, doc)


leaderboard_builder = LeaderboardBuilder(
    document_store, country_scope_mode=SETTINGS.leaderboard_country_scope
)
