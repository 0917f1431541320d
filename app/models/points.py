from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from app.core.clock import parse_iso, sortable_iso

# Ascending thresholds; a learner holds the highest badge they have reached.
BADGE_THRESHOLDS: tuple[tuple[str, int], ...] = (
    ("Student", 0),
    ("Cadet", 1000),
    ("Crew", 2000),
    ("Pro Crew", 3000),
    ("Elite Crew", 4000),
    ("Captain", 5000),
)

DEFAULT_BADGE = BADGE_THRESHOLDS[0][0]


def badge_for(points: int) -> str:
    badge = DEFAULT_BADGE
    for name, threshold in BADGE_THRESHOLDS:
        if points >= threshold:
            badge = name
    return badge


def points_to_next_badge(points: int) -> int:
    """Points still needed for the next badge; 0 once the top badge is held."""
    for _, threshold in BADGE_THRESHOLDS:
        if points < threshold:
            return threshold - points
    return 0


@dataclass(frozen=True, slots=True)
class ActionWindow:
    """Fixed 24h counter for one capped action."""

    count: int = 0
    window_start: str | None = None

    def to_doc(self) -> dict:
        return {"count": self.count, "windowStart": self.window_start}

    @staticmethod
    def from_doc(doc: dict | None) -> ActionWindow:
        if not doc:
            return ActionWindow()
        return ActionWindow(
            count=int(doc.get("count", 0)),
            window_start=doc.get("windowStart"),
        )


@dataclass(frozen=True, slots=True)
class PointsBalance:
    """Cumulative score and rate-limit state, stored on the ``users/{id}`` doc.

    name and country are denormalized profile fields the leaderboards copy.
    """

    user_id: str
    points: int = 0
    badge: str = DEFAULT_BADGE
    rate_limits: dict[str, ActionWindow] = field(default_factory=dict)
    name: str | None = None
    country: str | None = None
    verified_crew: bool = False
    login_streak: int = 0

    @staticmethod
    def from_doc(user_id: str, doc: dict | None) -> PointsBalance:
        if not doc:
            return PointsBalance(user_id=user_id)
        points = int(doc.get("points", 0))
        return PointsBalance(
            user_id=user_id,
            points=points,
            badge=doc.get("badge") or badge_for(points),
            rate_limits={
                action: ActionWindow.from_doc(window)
                for action, window in (doc.get("pointsRateLimits") or {}).items()
            },
            name=doc.get("name"),
            country=doc.get("country"),
            verified_crew=bool(doc.get("verifiedCrew", False)),
            login_streak=int(doc.get("dailyLoginStreak", 0)),
        )


@dataclass(frozen=True, slots=True)
class PointEvent:
    """Append-only audit record of one award; never updated or deleted."""

    id: str
    user_id: str
    points: int
    reason: str
    timestamp: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        user_id: str,
        points: int,
        reason: str,
        timestamp: str,
        metadata: dict[str, Any] | None = None,
    ) -> PointEvent:
        # Timestamp first, so event keys sort (and range-scan) by time.
        return PointEvent(
            id=f"{sortable_iso(parse_iso(timestamp))}_{uuid4().hex}",
            user_id=user_id,
            points=points,
            reason=reason,
            timestamp=timestamp,
            metadata=dict(metadata or {}),
        )

    def to_doc(self) -> dict:
        return {
            "userId": self.user_id,
            "points": self.points,
            "reason": self.reason,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_doc(event_id: str, doc: dict) -> PointEvent:
        """Raises ValueError for a document without a user or a readable timestamp."""
        user_id = doc.get("userId")
        timestamp = doc.get("timestamp")
        if not user_id or not isinstance(timestamp, str):
            raise ValueError(f"point event {event_id!r} lacks userId or timestamp")
        parse_iso(timestamp)
        return PointEvent(
            id=event_id,
            user_id=user_id,
            points=int(doc.get("points", 0)),
            reason=doc.get("reason", ""),
            timestamp=timestamp,
            metadata=dict(doc.get("metadata") or {}),
        )
