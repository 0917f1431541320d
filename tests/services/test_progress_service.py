"""Progress aggregation: first views roll up, repeat views only touch lastActive."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from app.models.progress import RECENT_ACTIVITY_CAPACITY, progress_percentage
from app.repos.document_store import InMemoryDocumentStore
from app.services.progress_service import ProgressAggregator


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


async def _seeded_store(max_attempts: int = 5) -> InMemoryDocumentStore:
    store = InMemoryDocumentStore(max_attempts=max_attempts)
    await store.put("courses/c1", {"totalLessons": 20})
    await store.put("courses/c1/modules/m1", {"lessonCount": 5})
    await store.put("courses/c1/modules/m2", {"lessonCount": 15})
    return store


def test_first_view_rolls_up_module_and_course() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        clock = _Clock()
        agg = ProgressAggregator(store, clock=clock)

        assert await agg.register_view("u1", "c1", "m1", "l1", "Intro") is True

        lesson = await agg.get_lesson_progress("u1", "m1", "l1")
        assert lesson.viewed is True
        assert lesson.viewed_at == clock.now.isoformat()

        module = await agg.get_module_progress("u1", "m1")
        assert (module.completed_lessons, module.total_lessons) == (1, 5)
        assert module.progress_percentage == 20

        user = await agg.get_user_progress("u1")
        assert (user.completed_lessons, user.total_lessons) == (1, 20)
        assert user.progress_percentage == 5
        assert user.last_active == clock.now.isoformat()
        assert [a.lesson_id for a in user.recent_activity] == ["l1"]
        assert user.recent_activity[0].lesson_title == "Intro"

    asyncio.run(scenario())


def test_repeat_view_only_refreshes_last_active() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        clock = _Clock()
        agg = ProgressAggregator(store, clock=clock)
        await agg.register_view("u1", "c1", "m1", "l1", "Intro")
        first_seen = (await agg.get_lesson_progress("u1", "m1", "l1")).viewed_at

        clock.advance(hours=3)
        assert await agg.register_view("u1", "c1", "m1", "l1", "Intro") is False

        lesson = await agg.get_lesson_progress("u1", "m1", "l1")
        assert lesson.viewed_at == first_seen
        module = await agg.get_module_progress("u1", "m1")
        assert module.completed_lessons == 1
        user = await agg.get_user_progress("u1")
        assert user.completed_lessons == 1
        assert len(user.recent_activity) == 1
        assert user.last_active == clock.now.isoformat()

    asyncio.run(scenario())


def test_concurrent_first_views_count_once() -> None:
    async def scenario() -> None:
        store = await _seeded_store(max_attempts=50)
        agg = ProgressAggregator(store, clock=_Clock())

        results = await asyncio.gather(
            *(agg.register_view("u1", "c1", "m1", "l1", "Intro") for _ in range(10))
        )

        assert results.count(True) == 1
        assert (await agg.get_module_progress("u1", "m1")).completed_lessons == 1
        assert (await agg.get_user_progress("u1")).completed_lessons == 1

    asyncio.run(scenario())


def test_concurrent_views_of_different_lessons_all_count() -> None:
    async def scenario() -> None:
        store = await _seeded_store(max_attempts=50)
        agg = ProgressAggregator(store, clock=_Clock())

        await asyncio.gather(
            *(agg.register_view("u1", "c1", "m1", f"l{i}", f"L{i}") for i in range(5))
        )

        module = await agg.get_module_progress("u1", "m1")
        assert module.completed_lessons == 5
        assert module.progress_percentage == 100
        assert (await agg.get_user_progress("u1")).progress_percentage == 25

    asyncio.run(scenario())


def test_recent_activity_keeps_newest_twenty() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        clock = _Clock()
        agg = ProgressAggregator(store, clock=clock)
        for i in range(25):
            clock.advance(minutes=1)
            await agg.register_view("u1", "c1", "m2", f"l{i}", f"Lesson {i}")

        activity = (await agg.get_user_progress("u1")).recent_activity
        assert len(activity) == RECENT_ACTIVITY_CAPACITY
        assert activity[0].lesson_id == "l24"
        assert activity[-1].lesson_id == "l5"

    asyncio.run(scenario())


def test_missing_catalog_counts_as_zero_total() -> None:
    async def scenario() -> None:
        agg = ProgressAggregator(InMemoryDocumentStore(), clock=_Clock())
        assert await agg.register_view("u1", "nope", "m9", "l1", "Orphan") is True

        module = await agg.get_module_progress("u1", "m9")
        assert (module.completed_lessons, module.total_lessons) == (1, 0)
        assert module.progress_percentage == 0

    asyncio.run(scenario())


def test_completed_never_exceeds_known_total() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        await store.put("courses/c1", {"totalLessons": 2})
        await store.put("courses/c1/modules/m1", {"lessonCount": 1})
        agg = ProgressAggregator(store, clock=_Clock())

        for lesson_id in ("l1", "l2", "l3"):
            assert await agg.register_view("u1", "c1", "m1", lesson_id, "x") is True

        module = await agg.get_module_progress("u1", "m1")
        assert module.completed_lessons <= module.total_lessons
        assert (module.completed_lessons, module.progress_percentage) == (1, 100)
        user = await agg.get_user_progress("u1")
        assert (user.completed_lessons, user.progress_percentage) == (2, 100)
        assert (await agg.get_lesson_progress("u1", "m1", "l3")).viewed is True

        rebuilt = await agg.recalculate_user_progress("u1", "c1")
        assert rebuilt.completed_lessons == 2

    asyncio.run(scenario())


def test_other_user_fields_survive_a_view() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        await store.put("users/u1", {"points": 42, "badge": "Student", "country": "FR"})
        agg = ProgressAggregator(store, clock=_Clock())

        await agg.register_view("u1", "c1", "m1", "l1", "Intro")

        doc = await store.get("users/u1")
        assert doc["points"] == 42
        assert doc["country"] == "FR"
        assert doc["completedLessons"] == 1

    asyncio.run(scenario())


def test_blank_or_slashed_ids_are_rejected() -> None:
    async def scenario() -> None:
        agg = ProgressAggregator(InMemoryDocumentStore(), clock=_Clock())
        for bad in ("", "a/b"):
            try:
                await agg.register_view("u1", "c1", bad, "l1", "x")
            except ValueError:
                continue
            raise AssertionError(f"module_id={bad!r} was accepted")

    asyncio.run(scenario())


def test_initialize_resets_course_rollup() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        agg = ProgressAggregator(store, clock=_Clock())
        await agg.register_view("u1", "c1", "m1", "l1", "Intro")

        assert await agg.initialize_user_progress("u1", "c1") is True

        user = await agg.get_user_progress("u1")
        assert (user.completed_lessons, user.total_lessons) == (0, 20)
        assert user.recent_activity == ()

    asyncio.run(scenario())


def test_initialize_unknown_course_writes_nothing() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        agg = ProgressAggregator(store, clock=_Clock())
        assert await agg.initialize_user_progress("u1", "missing") is False
        assert await store.get("users/u1") is None

    asyncio.run(scenario())


def test_recalculate_repairs_drift() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        agg = ProgressAggregator(store, clock=_Clock())
        await agg.register_view("u1", "c1", "m1", "l1", "A")
        await agg.register_view("u1", "c1", "m1", "l2", "B")
        doc = await store.get("users/u1")
        doc["completedLessons"] = 7
        await store.put("users/u1", doc)

        rebuilt = await agg.recalculate_user_progress("u1", "c1")

        assert rebuilt.completed_lessons == 2
        assert rebuilt.progress_percentage == 10
        assert (await agg.get_user_progress("u1")).completed_lessons == 2

    asyncio.run(scenario())


def test_all_modules_progress_lists_catalog_modules() -> None:
    async def scenario() -> None:
        store = await _seeded_store()
        agg = ProgressAggregator(store, clock=_Clock())
        await agg.register_view("u1", "c1", "m1", "l1", "A")

        modules = await agg.get_all_modules_progress("u1", "c1")

        assert set(modules) == {"m1", "m2"}
        assert modules["m1"].completed_lessons == 1
        assert modules["m2"].completed_lessons == 0

    asyncio.run(scenario())


def test_progress_percentage_rounds_half_up() -> None:
    assert progress_percentage(1, 8) == 13  # 12.5
    assert progress_percentage(1, 3) == 33
    assert progress_percentage(2, 3) == 67
    assert progress_percentage(3, 0) == 0
