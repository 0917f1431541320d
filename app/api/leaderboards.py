"""Leaderboard snapshot reads and on-demand recompute.

Snapshots are rebuilt by the scheduler every LEADERBOARD_INTERVAL_SECONDS.
Reads never compute anything; a board that has not been built yet comes
back with no entries and ``updated_at=null``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.api.dependencies import require_permission
from app.core.permissions import LEADERBOARD_READ, LEADERBOARD_RECOMPUTE
from app.models.leaderboard import (
    GLOBAL_SCOPE,
    WEEKLY_SCOPE,
    LeaderboardSnapshot,
    country_scope,
)
from app.models.principal import Principal
from app.services.leaderboard import leaderboard_builder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/leaderboards", tags=["leaderboards"])

_Reader = Annotated[Principal, Depends(require_permission(LEADERBOARD_READ))]

# Strong refs so in-flight recomputes are not garbage-collected.
_background: set[asyncio.Task] = set()


class LeaderboardEntryOut(BaseModel):
    user_id: str
    points: int
    rank: int
    name: str | None
    country: str
    badge: str | None


class LeaderboardOut(BaseModel):
    scope: str
    entries: list[LeaderboardEntryOut]
    updated_at: str | None


def _snapshot_out(snapshot: LeaderboardSnapshot) -> LeaderboardOut:
    return LeaderboardOut(
        scope=snapshot.scope,
        entries=[
            LeaderboardEntryOut(
                user_id=e.user_id,
                points=e.points,
                rank=e.rank,
                name=e.name,
                country=e.country,
                badge=e.badge,
            )
            for e in snapshot.entries
        ],
        updated_at=snapshot.updated_at,
    )


@router.get("/global", response_model=LeaderboardOut)
async def global_leaderboard(_principal: _Reader) -> LeaderboardOut:
    return _snapshot_out(await leaderboard_builder.get_snapshot(GLOBAL_SCOPE))


@router.get("/weekly", response_model=LeaderboardOut)
async def weekly_leaderboard(_principal: _Reader) -> LeaderboardOut:
    return _snapshot_out(await leaderboard_builder.get_snapshot(WEEKLY_SCOPE))


@router.get("/country/{country}", response_model=LeaderboardOut)
async def country_leaderboard(country: str, _principal: _Reader) -> LeaderboardOut:
    if "/" in country or not country.strip():
        raise HTTPException(status_code=422, detail="invalid country")
    return _snapshot_out(await leaderboard_builder.get_snapshot(country_scope(country)))


@router.post("/recompute", status_code=status.HTTP_202_ACCEPTED)
async def recompute(
    principal: Annotated[Principal, Depends(require_permission(LEADERBOARD_RECOMPUTE))],
) -> dict:
    """Queue a rebuild outside the regular schedule."""
    task = asyncio.create_task(leaderboard_builder.run())
    _background.add(task)
    task.add_done_callback(_background.discard)
    logger.info("Leaderboard recompute requested by user=%s", principal.user_id)
    return {"status": "accepted"}
