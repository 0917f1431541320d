"""Tests for lesson-view ingestion and progress reads."""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth, mint_token, seed_course


def _view(client: TestClient, token: str, lesson_id: str = "l1", module_id: str = "m1"):
    return client.post(
        "/v1/progress/views",
        json={
            "course_id": "c1",
            "module_id": module_id,
            "lesson_id": lesson_id,
            "lesson_title": f"Lesson {lesson_id}",
        },
        headers=auth(token),
    )


# ---- 401: unauthenticated ----


def test_view_rejects_missing_token(client: TestClient) -> None:
    resp = client.post(
        "/v1/progress/views",
        json={"course_id": "c1", "module_id": "m1", "lesson_id": "l1"},
    )
    assert resp.status_code == 401


def test_view_rejects_garbage_token(client: TestClient) -> None:
    resp = client.get("/v1/progress/me", headers=auth("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


# ---- 204 / 422 ----


def test_view_returns_no_content(client: TestClient, token: str) -> None:
    seed_course("c1", 20, {"m1": 5})
    resp = _view(client, token)
    assert resp.status_code == 204
    assert resp.content == b""


def test_view_rejects_slash_in_ids(client: TestClient, token: str) -> None:
    resp = _view(client, token, lesson_id="a/b")
    assert resp.status_code == 422


def test_view_rejects_blank_ids(client: TestClient, token: str) -> None:
    resp = _view(client, token, module_id="")
    assert resp.status_code == 422


# ---- end-to-end roll-up ----


def test_lesson_view_scenario(client: TestClient, token: str) -> None:
    seed_course("c1", 20, {"m1": 5})
    _view(client, token)

    lesson = client.get("/v1/progress/modules/m1/lessons/l1", headers=auth(token)).json()
    assert lesson["viewed"] is True
    assert lesson["viewed_at"] is not None

    module = client.get("/v1/progress/modules/m1", headers=auth(token)).json()
    assert module == {"completed_lessons": 1, "total_lessons": 5, "progress_percentage": 20}

    me = client.get("/v1/progress/me", headers=auth(token)).json()
    assert me["completed_lessons"] == 1
    assert me["total_lessons"] == 20
    assert me["progress_percentage"] == 5
    assert me["recent_activity"][0]["lesson_id"] == "l1"


def test_repeat_view_does_not_double_count(client: TestClient, token: str) -> None:
    seed_course("c1", 20, {"m1": 5})
    for _ in range(3):
        assert _view(client, token).status_code == 204

    module = client.get("/v1/progress/modules/m1", headers=auth(token)).json()
    assert module["completed_lessons"] == 1


def test_unviewed_lesson_reads_as_not_viewed(client: TestClient, token: str) -> None:
    resp = client.get("/v1/progress/modules/m1/lessons/nope", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json() == {"viewed": False, "viewed_at": None}


def test_course_modules_lists_every_catalog_module(client: TestClient, token: str) -> None:
    seed_course("c1", 8, {"m1": 5, "m2": 3})
    _view(client, token, module_id="m2")

    resp = client.get("/v1/progress/courses/c1/modules", headers=auth(token))

    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"m1", "m2"}
    assert body["m2"]["progress_percentage"] == 33
    assert body["m1"]["completed_lessons"] == 0


def test_initialize_unknown_course_is_404(client: TestClient, token: str) -> None:
    resp = client.post("/v1/progress/courses/missing/initialize", headers=auth(token))
    assert resp.status_code == 404


def test_initialize_then_recalculate(client: TestClient, token: str) -> None:
    seed_course("c1", 20, {"m1": 5})
    _view(client, token, lesson_id="l1")
    _view(client, token, lesson_id="l2")

    resp = client.post("/v1/progress/courses/c1/initialize", headers=auth(token))
    assert resp.status_code == 204
    assert client.get("/v1/progress/me", headers=auth(token)).json()["completed_lessons"] == 0

    resp = client.post("/v1/progress/courses/c1/recalculate", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["completed_lessons"] == 2
    assert resp.json()["progress_percentage"] == 10


def test_progress_is_per_user(client: TestClient) -> None:
    seed_course("c1", 20, {"m1": 5})
    _view(client, mint_token(username="alice"))

    bob = client.get("/v1/progress/me", headers=auth(mint_token(username="bob"))).json()
    assert bob["completed_lessons"] == 0
    assert bob["recent_activity"] == []
