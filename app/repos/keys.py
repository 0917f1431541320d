"""Document key layout.

Keys are slash-separated paths; ids must therefore never contain "/".

Point event ids start with a fixed-width UTC timestamp
(``2026-03-02T09:00:00.000000Z_<hex>``), so a range scan from a cutoff key
reads only the events recorded after it.
"""

from __future__ import annotations

USERS_PREFIX = "users/"
POINT_EVENTS_PREFIX = "pointEvents/"
USER_POINT_EVENTS_PREFIX = "pointEventsByUser/"
LEADERBOARD_PREFIX = "leaderboard/"


def validate_id(name: str, value: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{name} must be non-empty")
    if "/" in value:
        raise ValueError(f"{name} must not contain '/'")
    return value


def user_key(user_id: str) -> str:
    return f"{USERS_PREFIX}{user_id}"


def lesson_progress_key(user_id: str, module_id: str, lesson_id: str) -> str:
    return f"lessonProgress/{user_id}/{module_id}/{lesson_id}"


def lesson_progress_prefix(user_id: str) -> str:
    return f"lessonProgress/{user_id}/"


def module_progress_key(user_id: str, module_id: str) -> str:
    return f"moduleProgress/{user_id}/{module_id}"


def course_key(course_id: str) -> str:
    return f"courses/{course_id}"


def course_modules_prefix(course_id: str) -> str:
    return f"courses/{course_id}/modules/"


def course_module_key(course_id: str, module_id: str) -> str:
    return f"{course_modules_prefix(course_id)}{module_id}"


def point_event_key(event_id: str) -> str:
    return f"{POINT_EVENTS_PREFIX}{event_id}"


def user_point_events_prefix(user_id: str) -> str:
    return f"{USER_POINT_EVENTS_PREFIX}{user_id}/"


def user_point_event_key(user_id: str, event_id: str) -> str:
    """Per-learner copy of an event, written in the same transaction."""
    return f"{user_point_events_prefix(user_id)}{event_id}"


def award_marker_key(user_id: str, reason: str, subject_id: str) -> str:
    return f"pointAwards/{user_id}/{reason}/{subject_id}"


def leaderboard_key(scope: str) -> str:
    return f"{LEADERBOARD_PREFIX}{scope}"
