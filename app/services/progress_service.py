"""Progress Aggregator: lesson views and their module/course roll-ups.

Store layout (see app/repos/keys.py):

  lessonProgress/{user}/{module}/{lesson}  {viewed, viewedAt}
  moduleProgress/{user}/{module}           {completedLessons, totalLessons, progressPercentage}
  users/{user}                             {completedLessons, totalLessons, progressPercentage,
                                            lastActive, recentActivity[<=20], ...points fields}

Catalog documents (read-only here, owned by course authoring):

  courses/{course}                  {totalLessons}
  courses/{course}/modules/{module} {lessonCount}

``register_view`` reads the lesson row and applies every roll-up inside ONE
optimistic transaction.  Two racing first views of the same lesson both
read ``viewed=False``, but only one can commit; the loser is rerun, sees
``viewed=True`` and takes the repeat-view path.  That is what keeps
``completedLessons`` equal to the number of viewed lessons.

A missing course or module document is not an error: its lesson total
counts as 0 and the percentage as 0.  When a total is known, completed
counts never exceed it.
"""

from __future__ import annotations

import logging

from app.core.clock import Clock, to_iso, utcnow
from app.core.metrics import LESSON_VIEWS
from app.db.store import document_store
from app.models.progress import (
    LessonProgress,
    ModuleProgress,
    RecentActivity,
    RecentActivityBuffer,
    UserCourseProgress,
    progress_percentage,
)
from app.repos import keys
from app.repos.document_store import DocumentStore, Transaction

logger = logging.getLogger(__name__)


def _lesson_total(doc: dict | None, field: str) -> int:
    if not doc:
        return 0
    try:
        return max(int(doc.get(field) or 0), 0)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric catalog field %s=%r", field, doc.get(field))
        return 0


def _capped(completed: int, total: int) -> int:
    # A known total bounds the count; lesson ids outside the catalog still
    # get their row but cannot push a roll-up past 100%.
    return min(completed, total) if total > 0 else completed


class ProgressAggregator:
    def __init__(self, store: DocumentStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def register_view(
        self,
        user_id: str,
        course_id: str,
        module_id: str,
        lesson_id: str,
        lesson_title: str,
    ) -> bool:
        """Record that ``user_id`` opened a lesson.

        Returns True when this was the first view (counters moved), False
        for a repeat view (only ``lastActive`` refreshed).  Safe to call
        any number of times, concurrently included.
        """
        for name, value in (
            ("user_id", user_id),
            ("course_id", course_id),
            ("module_id", module_id),
            ("lesson_id", lesson_id),
        ):
            keys.validate_id(name, value)

        lesson_key = keys.lesson_progress_key(user_id, module_id, lesson_id)
        module_progress_key = keys.module_progress_key(user_id, module_id)
        user_key = keys.user_key(user_id)

        async def body(txn: Transaction) -> bool:
            now = to_iso(self._clock())
            lesson = LessonProgress.from_doc(await txn.read(lesson_key))
            user_doc = await txn.read(user_key) or {}

            if lesson.viewed:
                user_doc["lastActive"] = now
                txn.write(user_key, user_doc)
                return False

            module_progress = ModuleProgress.from_doc(await txn.read(module_progress_key))
            module_total = _lesson_total(
                await txn.read(keys.course_module_key(course_id, module_id)),
                "lessonCount",
            )
            course_total = _lesson_total(
                await txn.read(keys.course_key(course_id)), "totalLessons"
            )

            module_completed = _capped(module_progress.completed_lessons + 1, module_total)
            updated_module = ModuleProgress(
                completed_lessons=module_completed,
                total_lessons=module_total,
                progress_percentage=progress_percentage(module_completed, module_total),
            )

            current = UserCourseProgress.from_doc(user_doc)
            activity = RecentActivityBuffer(current.recent_activity)
            activity.push(
                RecentActivity(
                    lesson_id=lesson_id,
                    lesson_title=lesson_title,
                    module_id=module_id,
                    timestamp=now,
                )
            )
            user_completed = _capped(current.completed_lessons + 1, course_total)
            updated_user = UserCourseProgress(
                completed_lessons=user_completed,
                total_lessons=course_total,
                progress_percentage=progress_percentage(user_completed, course_total),
                last_active=now,
                recent_activity=tuple(activity.newest_first()),
            )

            txn.write(lesson_key, LessonProgress(viewed=True, viewed_at=now).to_doc())
            txn.write(module_progress_key, updated_module.to_doc())
            txn.write(user_key, updated_user.apply_to(user_doc))
            return True

        first_view = await self._store.run_transaction(body)

        LESSON_VIEWS.labels(result="first_view" if first_view else "repeat_view").inc()
        if first_view:
            logger.info(
                "Lesson view registered user=%s module=%s lesson=%s",
                user_id,
                module_id,
                lesson_id,
                extra={
                    "user_id": user_id,
                    "course_id": course_id,
                    "module_id": module_id,
                    "lesson_id": lesson_id,
                },
            )
        else:
            logger.debug(
                "Lesson already viewed, refreshed lastActive user=%s lesson=%s",
                user_id,
                lesson_id,
            )
        return first_view

    async def initialize_user_progress(self, user_id: str, course_id: str) -> bool:
        """Reset the course roll-up on the user document.

        Returns False (and writes nothing) when the course does not exist.
        Lesson and module rows are left untouched.
        """
        keys.validate_id("user_id", user_id)
        keys.validate_id("course_id", course_id)
        user_key = keys.user_key(user_id)

        async def body(txn: Transaction) -> bool:
            course_doc = await txn.read(keys.course_key(course_id))
            if course_doc is None:
                return False
            user_doc = await txn.read(user_key) or {}
            reset = UserCourseProgress(
                completed_lessons=0,
                total_lessons=_lesson_total(course_doc, "totalLessons"),
                progress_percentage=0,
                last_active=user_doc.get("lastActive") or "",
                recent_activity=(),
            )
            txn.write(user_key, reset.apply_to(user_doc))
            return True

        initialized = await self._store.run_transaction(body)
        if initialized:
            logger.info("User progress initialized user=%s course=%s", user_id, course_id)
        else:
            logger.warning(
                "Course not found, progress not initialized user=%s course=%s",
                user_id,
                course_id,
            )
        return initialized

    async def recalculate_user_progress(
        self, user_id: str, course_id: str
    ) -> UserCourseProgress:
        """Rebuild ``completedLessons`` on the user document from the lesson rows.

        Repairs drift left by out-of-band edits.  Lessons first viewed while
        this runs may be missed; the next register_view counts them again.
        """
        keys.validate_id("user_id", user_id)
        keys.validate_id("course_id", course_id)
        user_key = keys.user_key(user_id)
        lesson_keys = [
            key for key, _ in await self._store.scan(keys.lesson_progress_prefix(user_id))
        ]

        async def body(txn: Transaction) -> UserCourseProgress:
            viewed = 0
            for key in lesson_keys:
                if LessonProgress.from_doc(await txn.read(key)).viewed:
                    viewed += 1
            course_total = _lesson_total(
                await txn.read(keys.course_key(course_id)), "totalLessons"
            )
            viewed = _capped(viewed, course_total)
            user_doc = await txn.read(user_key) or {}
            current = UserCourseProgress.from_doc(user_doc)
            rebuilt = UserCourseProgress(
                completed_lessons=viewed,
                total_lessons=course_total,
                progress_percentage=progress_percentage(viewed, course_total),
                last_active=current.last_active,
                recent_activity=current.recent_activity,
            )
            txn.write(user_key, rebuilt.apply_to(user_doc))
            return rebuilt

        rebuilt = await self._store.run_transaction(body)
        logger.info(
            "User progress recalculated user=%s course=%s completed=%d/%d",
            user_id,
            course_id,
            rebuilt.completed_lessons,
            rebuilt.total_lessons,
        )
        return rebuilt

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_lesson_progress(
        self, user_id: str, module_id: str, lesson_id: str
    ) -> LessonProgress:
        doc = await self._store.get(keys.lesson_progress_key(user_id, module_id, lesson_id))
        return LessonProgress.from_doc(doc)

    async def get_module_progress(self, user_id: str, module_id: str) -> ModuleProgress:
        doc = await self._store.get(keys.module_progress_key(user_id, module_id))
        return ModuleProgress.from_doc(doc)

    async def get_user_progress(self, user_id: str) -> UserCourseProgress:
        return UserCourseProgress.from_doc(await self._store.get(keys.user_key(user_id)))

    async def get_all_modules_progress(
        self, user_id: str, course_id: str
    ) -> dict[str, ModuleProgress]:
        """Progress for every module in the course catalog, zeros where unstarted."""
        prefix = keys.course_modules_prefix(course_id)
        module_ids = [
            key[len(prefix) :]
            for key, _ in await self._store.scan(prefix)
            if "/" not in key[len(prefix) :]
        ]
        return {
            module_id: await self.get_module_progress(user_id, module_id)
            for module_id in module_ids
        }


progress_service = ProgressAggregator(document_store)
