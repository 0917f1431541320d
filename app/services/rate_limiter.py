"""Daily caps on point-earning actions, using a fixed window.

WHY A FIXED WINDOW HERE
------------------------
Request throttling usually wants a token bucket (smooth bursts, steady
refill).  Point caps are a product rule instead: "at most 20 message
awards per day".  A fixed window states that rule directly and stores
two numbers per action on the learner's balance document:

    pointsRateLimits.message_sent = {count: 7, windowStart: "2026-..."}

The window opens on the first award and lasts 24 hours.  Once
``now - windowStart`` exceeds 24h the counter restarts at zero with
``windowStart = now``.  Within a window the counter only goes up.

Known trade-off: a learner can earn ``cap`` awards at the end of one
window and ``cap`` more right after it rolls over.  For a points game
that is acceptable.

ATOMICITY
----------
``consume`` is a pure function of (stored window, now).  The ledger
calls it INSIDE the same store transaction that awards the points and
appends the event, and writes the returned window back with them.  The
optimistic transaction reruns the whole check if a concurrent award for
the same learner commits first, so the cap holds under concurrency.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.clock import parse_iso, to_iso
from app.models.points import ActionWindow

DAILY_WINDOW = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """cap=None means the action is unlimited."""

    cap: int | None
    window: timedelta = DAILY_WINDOW


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """Outcome of one consume attempt.

    allowed:      True if the award may proceed.
    remaining:    Awards left in this window after this one (None if unlimited).
    limit:        The cap (None if unlimited).
    retry_after:  Seconds until the window rolls over (0 if allowed).
    window:       State to persist when allowed.
    """

    allowed: bool
    remaining: int | None
    limit: int | None
    retry_after: float
    window: ActionWindow


def consume(window: ActionWindow, config: RateLimitConfig, now: datetime) -> RateLimitResult:
    """Try to take one slot from ``window`` at time ``now``."""
    if config.cap is None:
        return RateLimitResult(
            allowed=True, remaining=None, limit=None, retry_after=0, window=window
        )

    start = parse_iso(window.window_start) if window.window_start else None
    if start is None or now - start > config.window:
        window = ActionWindow(count=0, window_start=to_iso(now))
        start = now

    if window.count >= config.cap:
        retry_after = max((start + config.window - now).total_seconds(), 0.0)
        return RateLimitResult(
            allowed=False,
            remaining=0,
            limit=config.cap,
            retry_after=retry_after,
            window=window,
        )

    taken = ActionWindow(count=window.count + 1, window_start=window.window_start)
    return RateLimitResult(
        allowed=True,
        remaining=config.cap - taken.count,
        limit=config.cap,
        retry_after=0,
        window=taken,
    )
