"""Points Ledger: awards for learning and social actions, with daily caps
and an audit log.

Every award is ONE store transaction over these documents:

  users/{user}                              points += n, badge, pointsRateLimits[action]
  pointEvents/{ts}_{hex}                    {userId, points, reason, metadata, timestamp}
  pointEventsByUser/{user}/{ts}_{hex}       same event, indexed by learner
  pointAwards/{user}/{reason}/{subject}     marker for once-per-subject awards

so the balance always equals the sum of the learner's events, and a
rejected award writes nothing at all.

Rejections are normal results (``success=False``, ``points=0``), never
exceptions:

  - verified crew members are frozen and earn nothing further
  - capped actions stop at their daily cap (daily login is a cap of 1)
  - lesson, quiz and module awards are paid once per subject
  - a module award needs the module's roll-up to be complete
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from app.core.clock import Clock, parse_iso, to_iso, utcnow
from app.core.metrics import POINTS_AWARDED, POINTS_RATE_LIMITED, POINTS_REJECTED
from app.db.store import document_store
from app.models.points import ActionWindow, PointEvent, PointsBalance, badge_for
from app.models.progress import ModuleProgress
from app.repos import keys
from app.repos.document_store import DocumentStore, Transaction
from app.services.rate_limiter import RateLimitConfig, consume

logger = logging.getLogger(__name__)

MESSAGE_SENT = "message_sent"
ATTACHMENT_UPLOAD = "attachment_upload"
MESSAGE_LIKE = "message_like"
EMOJI_REACTION = "emoji_reaction"
DAILY_LOGIN = "daily_login"
WATCH_LESSON = "watch_lesson"
PASS_QUIZ = "pass_quiz"
COMPLETE_MODULE = "complete_module"

PASSING_SCORE = 80
# A login within this long of the previous one keeps the streak going.
STREAK_GRACE = timedelta(hours=48)

DAILY_LIMIT_MESSAGE = "Daily limit reached"
FROZEN_MESSAGE = "Points are frozen for verified crew"
DUPLICATE_MESSAGE = "Points already awarded"


@dataclass(frozen=True, slots=True)
class PointAction:
    """``once_per`` names the metadata field whose value may be rewarded only once."""

    reason: str
    points: int
    limit: RateLimitConfig
    message: str
    once_per: str | None = None
    limit_message: str = DAILY_LIMIT_MESSAGE


_UNLIMITED = RateLimitConfig(cap=None)

ACTIONS: dict[str, PointAction] = {
    MESSAGE_SENT: PointAction(
        MESSAGE_SENT, 2, RateLimitConfig(cap=20), "Points awarded for sending a message"
    ),
    ATTACHMENT_UPLOAD: PointAction(
        ATTACHMENT_UPLOAD, 4, RateLimitConfig(cap=5), "Points awarded for uploading an attachment"
    ),
    MESSAGE_LIKE: PointAction(MESSAGE_LIKE, 3, _UNLIMITED, "Points awarded for a liked message"),
    EMOJI_REACTION: PointAction(
        EMOJI_REACTION, 2, _UNLIMITED, "Points awarded for an emoji reaction"
    ),
    DAILY_LOGIN: PointAction(
        DAILY_LOGIN,
        10,
        RateLimitConfig(cap=1),
        "Points awarded for logging in today",
        limit_message="Daily login already rewarded",
    ),
    WATCH_LESSON: PointAction(
        WATCH_LESSON, 40, _UNLIMITED, "Points awarded for watching a lesson", once_per="lessonId"
    ),
    PASS_QUIZ: PointAction(
        PASS_QUIZ, 100, _UNLIMITED, "Points awarded for passing a quiz", once_per="quizId"
    ),
    COMPLETE_MODULE: PointAction(
        COMPLETE_MODULE,
        250,
        _UNLIMITED,
        "Points awarded for completing a module",
        once_per="moduleId",
    ),
}

DEFAULT_HISTORY_LIMIT = 50


@dataclass(frozen=True, slots=True)
class AwardResult:
    success: bool
    message: str
    points: int
    remaining: int | None = None
    streak: int | None = None


# Extra in-transaction check: returns a rejection message, or None to proceed.
Eligibility = Callable[[Transaction], Awaitable[str | None]]


@dataclass(frozen=True, slots=True)
class _Rejected:
    message: str
    cause: str
    remaining: int | None = None


class PointsLedger:
    def __init__(self, store: DocumentStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def award_points(
        self,
        user_id: str,
        points: int,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> PointEvent | None:
        """Credit ``points`` to ``user_id`` and append the matching event.

        Uncapped; the action helpers below apply the daily caps.  Returns
        None, writing nothing, when the learner is frozen as verified crew.
        """
        keys.validate_id("user_id", user_id)
        if points < 0:
            raise ValueError("points must be >= 0")
        user_key = keys.user_key(user_id)

        async def body(txn: Transaction) -> PointEvent | None:
            user_doc = await txn.read(user_key) or {}
            if user_doc.get("verifiedCrew"):
                return None
            return self._credit(txn, user_key, user_doc, user_id, points, reason, metadata)

        event = await self._store.run_transaction(body)
        if event is None:
            POINTS_REJECTED.labels(reason=reason, cause="frozen").inc()
            logger.info("Points frozen for verified crew user=%s reason=%s", user_id, reason)
            return None
        POINTS_AWARDED.labels(reason=reason).inc(points)
        logger.info(
            "Points awarded user=%s reason=%s points=%d",
            user_id,
            reason,
            points,
            extra={"user_id": user_id, "reason": reason, "points": points},
        )
        return event

    def _credit(
        self,
        txn: Transaction,
        user_key: str,
        user_doc: dict,
        user_id: str,
        points: int,
        reason: str,
        metadata: dict[str, Any] | None,
    ) -> PointEvent:
        event = PointEvent.new(
            user_id=user_id,
            points=points,
            reason=reason,
            timestamp=to_iso(self._clock()),
            metadata=metadata,
        )
        total = int(user_doc.get("points", 0)) + points
        user_doc["points"] = total
        user_doc["badge"] = badge_for(total)
        txn.write(user_key, user_doc)
        txn.write(keys.point_event_key(event.id), event.to_doc())
        txn.write(keys.user_point_event_key(user_id, event.id), event.to_doc())
        return event

    async def _award_action(
        self,
        action: PointAction,
        user_id: str,
        metadata: dict[str, Any],
        eligibility: Eligibility | None = None,
    ) -> AwardResult:
        keys.validate_id("user_id", user_id)
        user_key = keys.user_key(user_id)
        marker_key = None
        if action.once_per is not None:
            marker_key = keys.award_marker_key(
                user_id, action.reason, str(metadata[action.once_per])
            )

        async def body(txn: Transaction) -> AwardResult | _Rejected:
            now = self._clock()
            user_doc = await txn.read(user_key) or {}
            balance = PointsBalance.from_doc(user_id, user_doc)
            if balance.verified_crew:
                return _Rejected(FROZEN_MESSAGE, "frozen")
            if eligibility is not None:
                refusal = await eligibility(txn)
                if refusal is not None:
                    return _Rejected(refusal, "ineligible")
            if marker_key is not None and await txn.read(marker_key) is not None:
                return _Rejected(DUPLICATE_MESSAGE, "duplicate")

            previous = balance.rate_limits.get(action.reason, ActionWindow())
            decision = consume(previous, action.limit, now)
            if not decision.allowed:
                return _Rejected(action.limit_message, "rate_limited", remaining=0)
            if action.limit.cap is not None:
                windows = dict(user_doc.get("pointsRateLimits") or {})
                windows[action.reason] = decision.window.to_doc()
                user_doc["pointsRateLimits"] = windows

            details = dict(metadata)
            streak = None
            if action.reason == DAILY_LOGIN:
                streak = _next_streak(balance.login_streak, previous, now)
                user_doc["dailyLoginStreak"] = streak
                details["streak"] = streak

            event = self._credit(
                txn, user_key, user_doc, user_id, action.points, action.reason, details
            )
            if marker_key is not None:
                txn.write(marker_key, {"eventId": event.id, "awardedAt": event.timestamp})
            return AwardResult(
                success=True,
                message=action.message,
                points=action.points,
                remaining=decision.remaining,
                streak=streak,
            )

        outcome = await self._store.run_transaction(body)

        if isinstance(outcome, _Rejected):
            if outcome.cause == "rate_limited":
                POINTS_RATE_LIMITED.labels(reason=action.reason).inc()
                logger.warning(
                    "Daily cap reached user=%s reason=%s",
                    user_id,
                    action.reason,
                    extra={"user_id": user_id, "reason": action.reason},
                )
            else:
                POINTS_REJECTED.labels(reason=action.reason, cause=outcome.cause).inc()
                logger.info(
                    "Award refused user=%s reason=%s cause=%s",
                    user_id,
                    action.reason,
                    outcome.cause,
                    extra={"user_id": user_id, "reason": action.reason},
                )
            return AwardResult(
                success=False, message=outcome.message, points=0, remaining=outcome.remaining
            )

        POINTS_AWARDED.labels(reason=action.reason).inc(action.points)
        logger.info(
            "Points awarded user=%s reason=%s points=%d remaining=%s",
            user_id,
            action.reason,
            action.points,
            outcome.remaining,
            extra={"user_id": user_id, "reason": action.reason, "points": action.points},
        )
        return outcome

    # -- Social actions -------------------------------------------------

    async def award_message_sent(self, user_id: str, conversation_id: str) -> AwardResult:
        return await self._award_action(
            ACTIONS[MESSAGE_SENT], user_id, {"conversationId": conversation_id}
        )

    async def award_attachment_upload(self, user_id: str, conversation_id: str) -> AwardResult:
        return await self._award_action(
            ACTIONS[ATTACHMENT_UPLOAD], user_id, {"conversationId": conversation_id}
        )

    async def award_message_like(
        self, recipient_id: str, message_id: str, conversation_id: str, liked_by: str
    ) -> AwardResult:
        """Credit the author of a liked message, not the person liking it."""
        return await self._award_action(
            ACTIONS[MESSAGE_LIKE],
            recipient_id,
            {"messageId": message_id, "conversationId": conversation_id, "likedBy": liked_by},
        )

    async def award_emoji_reaction(
        self, recipient_id: str, message_id: str, conversation_id: str, emoji: str
    ) -> AwardResult:
        return await self._award_action(
            ACTIONS[EMOJI_REACTION],
            recipient_id,
            {"messageId": message_id, "conversationId": conversation_id, "emoji": emoji},
        )

    # -- Learning actions -----------------------------------------------

    async def award_daily_login(self, user_id: str) -> AwardResult:
        """Once per 24h window; the result carries the updated streak."""
        return await self._award_action(ACTIONS[DAILY_LOGIN], user_id, {})

    async def award_lesson_watched(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> AwardResult:
        keys.validate_id("lesson_id", lesson_id)
        return await self._award_action(
            ACTIONS[WATCH_LESSON], user_id, {"courseId": course_id, "lessonId": lesson_id}
        )

    async def award_quiz_passed(self, user_id: str, quiz_id: str, score: int) -> AwardResult:
        keys.validate_id("quiz_id", quiz_id)
        if not 0 <= score <= 100:
            raise ValueError("score must be between 0 and 100")
        if score < PASSING_SCORE:
            logger.info("Quiz below passing score user=%s quiz=%s score=%d", user_id, quiz_id, score)
            return AwardResult(
                success=False, message=f"A score of {PASSING_SCORE} is needed", points=0
            )
        return await self._award_action(
            ACTIONS[PASS_QUIZ], user_id, {"quizId": quiz_id, "score": score}
        )

    async def award_module_completed(
        self, user_id: str, course_id: str, module_id: str
    ) -> AwardResult:
        """Pays out only once the learner's module roll-up reaches 100%."""
        keys.validate_id("module_id", module_id)
        progress_key = keys.module_progress_key(user_id, module_id)

        async def module_complete(txn: Transaction) -> str | None:
            module = ModuleProgress.from_doc(await txn.read(progress_key))
            if module.total_lessons <= 0 or module.completed_lessons < module.total_lessons:
                return "Module not completed"
            return None

        return await self._award_action(
            ACTIONS[COMPLETE_MODULE],
            user_id,
            {"courseId": course_id, "moduleId": module_id},
            eligibility=module_complete,
        )

    # -- Verified crew --------------------------------------------------

    async def declare_verified_crew(self, user_id: str) -> PointsBalance:
        """Freeze the learner's points; later awards are refused."""
        keys.validate_id("user_id", user_id)
        user_key = keys.user_key(user_id)

        async def body(txn: Transaction) -> PointsBalance:
            user_doc = await txn.read(user_key) or {}
            user_doc["verifiedCrew"] = True
            user_doc.setdefault("points", 0)
            user_doc.setdefault("badge", badge_for(int(user_doc["points"])))
            txn.write(user_key, user_doc)
            return PointsBalance.from_doc(user_id, user_doc)

        balance = await self._store.run_transaction(body)
        logger.info("User declared verified crew user=%s", user_id, extra={"user_id": user_id})
        return balance

    # -- Reads ----------------------------------------------------------

    async def get_balance(self, user_id: str) -> PointsBalance:
        return PointsBalance.from_doc(user_id, await self._store.get(keys.user_key(user_id)))

    async def get_point_history(
        self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[PointEvent]:
        """Newest-first events for one learner, read from the per-learner index."""
        if limit < 1:
            return []
        prefix = keys.user_point_events_prefix(user_id)
        events = []
        # Index keys sort by time, so the newest are at the end.
        for key, doc in reversed(await self._store.scan(prefix)):
            try:
                events.append(PointEvent.from_doc(key[len(prefix) :], doc))
            except (TypeError, ValueError):
                logger.warning("Skipping unreadable point event %s", key)
                continue
            if len(events) == limit:
                break
        return events


def _next_streak(streak: int, previous: ActionWindow, now: datetime) -> int:
    # previous.window_start is the last rewarded login (the cap is 1).
    if previous.window_start is None or streak <= 0:
        return 1
    if now - parse_iso(previous.window_start) <= STREAK_GRACE:
        return streak + 1
    return 1


points_ledger = PointsLedger(document_store)
