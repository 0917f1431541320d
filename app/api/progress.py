"""Lesson-view ingestion and progress reads.

  POST /v1/progress/views
    -> register_view (one store transaction, idempotent per lesson)
    -> invalidate the caller's cached summary
    -> 204 No Content

  GET /v1/progress/me
    -> read-through cache (check cache → miss → read store → populate → return)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from app.api.dependencies import require_permission
from app.core.permissions import PROGRESS_READ, PROGRESS_WRITE
from app.models.principal import Principal
from app.models.progress import LessonProgress, ModuleProgress, UserCourseProgress
from app.services.cache import cache_service, progress_cache_key, read_through
from app.services.progress_service import progress_service

router = APIRouter(prefix="/v1/progress", tags=["progress"])

# Short enough that stale data resolves within minutes if an explicit
# invalidation is ever missed.
_PROGRESS_CACHE_TTL = 300

_Id = Annotated[str, Field(min_length=1, max_length=128, pattern=r"^[^/]+$")]

_Writer = Annotated[Principal, Depends(require_permission(PROGRESS_WRITE))]
_Reader = Annotated[Principal, Depends(require_permission(PROGRESS_READ))]


class LessonViewIn(BaseModel):
    course_id: _Id
    module_id: _Id
    lesson_id: _Id
    lesson_title: str = Field(default="", max_length=300)


class RecentActivityOut(BaseModel):
    lesson_id: str
    lesson_title: str
    module_id: str
    timestamp: str


class UserProgressOut(BaseModel):
    completed_lessons: int
    total_lessons: int
    progress_percentage: int
    last_active: str | None
    recent_activity: list[RecentActivityOut]


class ModuleProgressOut(BaseModel):
    completed_lessons: int
    total_lessons: int
    progress_percentage: int


class LessonProgressOut(BaseModel):
    viewed: bool
    viewed_at: str | None


def _user_out(progress: UserCourseProgress) -> UserProgressOut:
    return UserProgressOut(
        completed_lessons=progress.completed_lessons,
        total_lessons=progress.total_lessons,
        progress_percentage=progress.progress_percentage,
        last_active=progress.last_active or None,
        recent_activity=[
            RecentActivityOut(
                lesson_id=a.lesson_id,
                lesson_title=a.lesson_title,
                module_id=a.module_id,
                timestamp=a.timestamp,
            )
            for a in progress.recent_activity
        ],
    )


def _module_out(progress: ModuleProgress) -> ModuleProgressOut:
    return ModuleProgressOut(
        completed_lessons=progress.completed_lessons,
        total_lessons=progress.total_lessons,
        progress_percentage=progress.progress_percentage,
    )


def _lesson_out(progress: LessonProgress) -> LessonProgressOut:
    return LessonProgressOut(viewed=progress.viewed, viewed_at=progress.viewed_at)


def _check_id(name: str, value: str) -> None:
    if "/" in value or not value.strip():
        raise HTTPException(status_code=422, detail=f"invalid {name}")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@router.post("/views", status_code=status.HTTP_204_NO_CONTENT)
async def register_lesson_view(body: LessonViewIn, principal: _Writer) -> Response:
    await progress_service.register_view(
        principal.user_id,
        body.course_id,
        body.module_id,
        body.lesson_id,
        body.lesson_title,
    )
    # Both first and repeat views change the summary (lastActive moves).
    await cache_service.delete(progress_cache_key(principal.user_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/courses/{course_id}/initialize", status_code=status.HTTP_204_NO_CONTENT)
async def initialize_course_progress(course_id: str, principal: _Writer) -> Response:
    _check_id("course_id", course_id)
    initialized = await progress_service.initialize_user_progress(
        principal.user_id, course_id
    )
    if not initialized:
        raise HTTPException(status_code=404, detail="course not found")
    await cache_service.delete(progress_cache_key(principal.user_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/courses/{course_id}/recalculate", response_model=UserProgressOut)
async def recalculate_course_progress(
    course_id: str, principal: _Writer
) -> UserProgressOut:
    _check_id("course_id", course_id)
    rebuilt = await progress_service.recalculate_user_progress(principal.user_id, course_id)
    await cache_service.delete(progress_cache_key(principal.user_id))
    return _user_out(rebuilt)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserProgressOut)
async def get_my_progress(principal: _Reader) -> UserProgressOut:
    async def load() -> dict:
        progress = await progress_service.get_user_progress(principal.user_id)
        return _user_out(progress).model_dump()

    payload = await read_through(
        cache_service, progress_cache_key(principal.user_id), _PROGRESS_CACHE_TTL, load
    )
    return UserProgressOut(**payload)


@router.get("/modules/{module_id}", response_model=ModuleProgressOut)
async def get_module_progress(module_id: str, principal: _Reader) -> ModuleProgressOut:
    _check_id("module_id", module_id)
    return _module_out(await progress_service.get_module_progress(principal.user_id, module_id))


@router.get("/modules/{module_id}/lessons/{lesson_id}", response_model=LessonProgressOut)
async def get_lesson_progress(
    module_id: str, lesson_id: str, principal: _Reader
) -> LessonProgressOut:
    _check_id("module_id", module_id)
    _check_id("lesson_id", lesson_id)
    progress = await progress_service.get_lesson_progress(
        principal.user_id, module_id, lesson_id
    )
    return _lesson_out(progress)


@router.get("/courses/{course_id}/modules", response_model=dict[str, ModuleProgressOut])
async def get_course_modules_progress(
    course_id: str, principal: _Reader
) -> dict[str, ModuleProgressOut]:
    _check_id("course_id", course_id)
    modules = await progress_service.get_all_modules_progress(principal.user_id, course_id)
    return {module_id: _module_out(p) for module_id, p in modules.items()}
