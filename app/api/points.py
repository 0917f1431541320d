"""Point awards for social and learning actions, and the caller's balance.

Social awards are called by the messaging service on behalf of the acting
user; learning awards by the course player.  A refused award (daily cap,
already paid, frozen crew, module not finished) is NOT an error: the
response is 200 with ``success=false`` and ``points=0``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.dependencies import require_permission
from app.core.permissions import POINTS_EARN, POINTS_READ, POINTS_VERIFY_CREW
from app.models.points import PointsBalance, points_to_next_badge
from app.models.principal import Principal
from app.services.points_ledger import DEFAULT_HISTORY_LIMIT, AwardResult, points_ledger

router = APIRouter(prefix="/v1/points", tags=["points"])

_Id = Annotated[str, Field(min_length=1, max_length=128, pattern=r"^[^/]+$")]

_Earner = Annotated[Principal, Depends(require_permission(POINTS_EARN))]
_Reader = Annotated[Principal, Depends(require_permission(POINTS_READ))]
_CrewVerifier = Annotated[Principal, Depends(require_permission(POINTS_VERIFY_CREW))]


class MessageSentIn(BaseModel):
    conversation_id: str = Field(min_length=1, max_length=128)


class AttachmentUploadIn(BaseModel):
    conversation_id: str = Field(min_length=1, max_length=128)


class MessageLikeIn(BaseModel):
    message_id: str = Field(min_length=1, max_length=128)
    conversation_id: str = Field(min_length=1, max_length=128)
    recipient_id: _Id


class EmojiReactionIn(BaseModel):
    message_id: str = Field(min_length=1, max_length=128)
    conversation_id: str = Field(min_length=1, max_length=128)
    recipient_id: _Id
    emoji: str = Field(min_length=1, max_length=32)


class LessonWatchedIn(BaseModel):
    course_id: _Id
    lesson_id: _Id


class QuizPassedIn(BaseModel):
    quiz_id: _Id
    score: int = Field(ge=0, le=100)


class ModuleCompletedIn(BaseModel):
    course_id: _Id
    module_id: _Id


class AwardOut(BaseModel):
    success: bool
    message: str
    points: int
    remaining: int | None = None
    streak: int | None = None


class BalanceOut(BaseModel):
    user_id: str
    points: int
    badge: str
    points_to_next_badge: int
    verified_crew: bool
    login_streak: int


class PointEventOut(BaseModel):
    id: str
    points: int
    reason: str
    timestamp: str
    metadata: dict


def _balance_out(balance: PointsBalance) -> BalanceOut:
    return BalanceOut(
        user_id=balance.user_id,
        points=balance.points,
        badge=balance.badge,
        points_to_next_badge=points_to_next_badge(balance.points),
        verified_crew=balance.verified_crew,
        login_streak=balance.login_streak,
    )


def _award_out(result: AwardResult) -> AwardOut:
    return AwardOut(
        success=result.success,
        message=result.message,
        points=result.points,
        remaining=result.remaining,
        streak=result.streak,
    )


@router.post("/message-sent", response_model=AwardOut, response_model_exclude_none=True)
async def message_sent(body: MessageSentIn, principal: _Earner) -> AwardOut:
    result = await points_ledger.award_message_sent(principal.user_id, body.conversation_id)
    return _award_out(result)


@router.post(
    "/attachment-upload", response_model=AwardOut, response_model_exclude_none=True
)
async def attachment_upload(body: AttachmentUploadIn, principal: _Earner) -> AwardOut:
    result = await points_ledger.award_attachment_upload(
        principal.user_id, body.conversation_id
    )
    return _award_out(result)


@router.post("/message-like", response_model=AwardOut, response_model_exclude_none=True)
async def message_like(body: MessageLikeIn, principal: _Earner) -> AwardOut:
    """Award the message author; the caller is recorded as ``likedBy``."""
    result = await points_ledger.award_message_like(
        body.recipient_id, body.message_id, body.conversation_id, principal.user_id
    )
    return _award_out(result)


@router.post("/emoji-reaction", response_model=AwardOut, response_model_exclude_none=True)
async def emoji_reaction(body: EmojiReactionIn, principal: _Earner) -> AwardOut:
    result = await points_ledger.award_emoji_reaction(
        body.recipient_id, body.message_id, body.conversation_id, body.emoji
    )
    return _award_out(result)


@router.post("/daily-login", response_model=AwardOut, response_model_exclude_none=True)
async def daily_login(principal: _Earner) -> AwardOut:
    """Called once per session start; only the first call in 24h pays out."""
    return _award_out(await points_ledger.award_daily_login(principal.user_id))


@router.post("/lesson-watched", response_model=AwardOut, response_model_exclude_none=True)
async def lesson_watched(body: LessonWatchedIn, principal: _Earner) -> AwardOut:
    result = await points_ledger.award_lesson_watched(
        principal.user_id, body.course_id, body.lesson_id
    )
    return _award_out(result)


@router.post("/quiz-passed", response_model=AwardOut, response_model_exclude_none=True)
async def quiz_passed(body: QuizPassedIn, principal: _Earner) -> AwardOut:
    result = await points_ledger.award_quiz_passed(principal.user_id, body.quiz_id, body.score)
    return _award_out(result)


@router.post("/module-completed", response_model=AwardOut, response_model_exclude_none=True)
async def module_completed(body: ModuleCompletedIn, principal: _Earner) -> AwardOut:
    result = await points_ledger.award_module_completed(
        principal.user_id, body.course_id, body.module_id
    )
    return _award_out(result)


@router.post("/users/{user_id}/verified-crew", response_model=BalanceOut)
async def verify_crew(user_id: str, principal: _CrewVerifier) -> BalanceOut:
    """Freeze a learner's points; admin only."""
    return _balance_out(await points_ledger.declare_verified_crew(user_id))


@router.get("/me", response_model=BalanceOut)
async def my_balance(principal: _Reader) -> BalanceOut:
    return _balance_out(await points_ledger.get_balance(principal.user_id))


@router.get("/me/history", response_model=list[PointEventOut])
async def my_history(
    principal: _Reader,
    limit: Annotated[int, Query(ge=1, le=200)] = DEFAULT_HISTORY_LIMIT,
) -> list[PointEventOut]:
    events = await points_ledger.get_point_history(principal.user_id, limit=limit)
    return [
        PointEventOut(
            id=e.id,
            points=e.points,
            reason=e.reason,
            timestamp=e.timestamp,
            metadata=e.metadata,
        )
        for e in events
    ]
