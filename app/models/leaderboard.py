from __future__ import annotations

from dataclasses import dataclass, field

GLOBAL_SCOPE = "global"
WEEKLY_SCOPE = "weekly"
COUNTRY_SCOPE_PREFIX = "country_"
UNKNOWN_COUNTRY = "Unknown"


def country_scope(country: str) -> str:
    return f"{COUNTRY_SCOPE_PREFIX}{country}"


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    user_id: str
    points: int
    rank: int
    name: str | None = None
    country: str = UNKNOWN_COUNTRY
    badge: str | None = None

    def to_doc(self) -> dict:
        return {
            "userId": self.user_id,
            "points": self.points,
            "rank": self.rank,
            "name": self.name,
            "country": self.country,
            "badge": self.badge,
        }

    @staticmethod
    def from_doc(doc: dict) -> LeaderboardEntry:
        return LeaderboardEntry(
            user_id=doc["userId"],
            points=int(doc.get("points", 0)),
            rank=int(doc["rank"]),
            name=doc.get("name"),
            country=doc.get("country") or UNKNOWN_COUNTRY,
            badge=doc.get("badge"),
        )


@dataclass(frozen=True, slots=True)
class LeaderboardSnapshot:
    """Ranked point-in-time view for one scope; replaced whole on every run."""

    scope: str
    entries: tuple[LeaderboardEntry, ...] = ()
    updated_at: str | None = None

    def to_doc(self) -> dict:
        return {
            "entries": [e.to_doc() for e in self.entries],
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_doc(scope: str, doc: dict | None) -> LeaderboardSnapshot:
        if not doc:
            return LeaderboardSnapshot(scope=scope)
        return LeaderboardSnapshot(
            scope=scope,
            entries=tuple(LeaderboardEntry.from_doc(e) for e in doc.get("entries", [])),
            updated_at=doc.get("updatedAt"),
        )


@dataclass(frozen=True, slots=True)
class LeaderboardSet:
    """Output of one recompute: global, one per country, and weekly."""

    global_board: LeaderboardSnapshot
    weekly: LeaderboardSnapshot
    countries: dict[str, LeaderboardSnapshot] = field(default_factory=dict)

    def snapshots(self) -> list[LeaderboardSnapshot]:
        return [self.global_board, *self.countries.values(), self.weekly]
