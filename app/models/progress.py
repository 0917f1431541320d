from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

RECENT_ACTIVITY_CAPACITY = 20


def progress_percentage(completed: int, total: int) -> int:
    """Whole-number percentage, halves rounded up; 0 when total is 0."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


@dataclass(frozen=True, slots=True)
class RecentActivity:
    lesson_id: str
    lesson_title: str
    module_id: str
    timestamp: str

    def to_doc(self) -> dict:
        return {
            "lessonId": self.lesson_id,
            "lessonTitle": self.lesson_title,
            "moduleId": self.module_id,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_doc(doc: dict) -> RecentActivity:
        return RecentActivity(
            lesson_id=doc.get("lessonId", ""),
            lesson_title=doc.get("lessonTitle", ""),
            module_id=doc.get("moduleId", ""),
            timestamp=doc.get("timestamp", ""),
        )


class RecentActivityBuffer:
    """Fixed-capacity FIFO of activities, exposed newest first.

    Internally oldest → newest so ``deque(maxlen=...)`` evicts the oldest
    entry when a new one is pushed onto a full buffer.
    """

    def __init__(
        self,
        newest_first: Iterable[RecentActivity] = (),
        capacity: int = RECENT_ACTIVITY_CAPACITY,
    ) -> None:
        self._items: deque[RecentActivity] = deque(
            reversed(list(newest_first)), maxlen=capacity
        )

    def push(self, activity: RecentActivity) -> None:
        self._items.append(activity)

    def newest_first(self) -> list[RecentActivity]:
        return list(reversed(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[RecentActivity]:
        return reversed(self._items)


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """One learner's view state of one lesson; viewed flips once, never back."""

    viewed: bool = False
    viewed_at: str | None = None

    def to_doc(self) -> dict:
        return {"viewed": self.viewed, "viewedAt": self.viewed_at}

    @staticmethod
    def from_doc(doc: dict | None) -> LessonProgress:
        if not doc:
            return LessonProgress()
        return LessonProgress(
            viewed=bool(doc.get("viewed", False)),
            viewed_at=doc.get("viewedAt"),
        )


@dataclass(frozen=True, slots=True)
class ModuleProgress:
    """Roll-up of the viewed lessons under one module for one learner."""

    completed_lessons: int = 0
    total_lessons: int = 0
    progress_percentage: int = 0

    def to_doc(self) -> dict:
        return {
            "completedLessons": self.completed_lessons,
            "totalLessons": self.total_lessons,
            "progressPercentage": self.progress_percentage,
        }

    @staticmethod
    def from_doc(doc: dict | None) -> ModuleProgress:
        if not doc:
            return ModuleProgress()
        return ModuleProgress(
            completed_lessons=int(doc.get("completedLessons", 0)),
            total_lessons=int(doc.get("totalLessons", 0)),
            progress_percentage=int(doc.get("progressPercentage", 0)),
        )


@dataclass(frozen=True, slots=True)
class UserCourseProgress:
    """Per-learner roll-up across a course, stored on the ``users/{id}`` doc."""

    completed_lessons: int = 0
    total_lessons: int = 0
    progress_percentage: int = 0
    last_active: str = ""
    recent_activity: tuple[RecentActivity, ...] = ()

    def apply_to(self, user_doc: dict) -> dict:
        """Return ``user_doc`` with the progress fields replaced; other fields kept."""
        updated = dict(user_doc)
        updated.update(
            {
                "completedLessons": self.completed_lessons,
                "totalLessons": self.total_lessons,
                "progressPercentage": self.progress_percentage,
                "lastActive": self.last_active,
                "recentActivity": [a.to_doc() for a in self.recent_activity],
            }
        )
        return updated

    @staticmethod
    def from_doc(doc: dict | None) -> UserCourseProgress:
        if not doc:
            return UserCourseProgress()
        return UserCourseProgress(
            completed_lessons=int(doc.get("completedLessons", 0)),
            total_lessons=int(doc.get("totalLessons", 0)),
            progress_percentage=int(doc.get("progressPercentage", 0)),
            last_active=doc.get("lastActive") or "",
            recent_activity=tuple(
                RecentActivity.from_doc(a) for a in doc.get("recentActivity") or []
            ),
        )
