from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

# Services take a Clock so tests can move time (window resets, 7-day cutoffs).
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp; naive values are treated as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def sortable_iso(moment: datetime) -> str:
    """Fixed-width UTC timestamp; string order equals time order."""
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
