from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth, mint_token, seed_course


def test_message_sent_reports_remaining(client: TestClient, token: str) -> None:
    resp = client.post(
        "/v1/points/message-sent", json={"conversation_id": "conv-1"}, headers=auth(token)
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "message": "Points awarded for sending a message",
        "points": 2,
        "remaining": 19,
    }


def test_capped_message_is_a_normal_response(client: TestClient, token: str) -> None:
    for _ in range(20):
        client.post(
            "/v1/points/message-sent", json={"conversation_id": "c"}, headers=auth(token)
        )

    resp = client.post(
        "/v1/points/message-sent", json={"conversation_id": "c"}, headers=auth(token)
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["points"] == 0
    assert body["remaining"] == 0
    assert client.get("/v1/points/me", headers=auth(token)).json()["points"] == 40


def test_attachment_upload_cap_is_five(client: TestClient, token: str) -> None:
    results = [
        client.post(
            "/v1/points/attachment-upload", json={"conversation_id": "c"}, headers=auth(token)
        ).json()["success"]
        for _ in range(6)
    ]
    assert results == [True] * 5 + [False]


def test_like_credits_the_author_not_the_caller(client: TestClient) -> None:
    liker = mint_token(username="liker")
    author = mint_token(username="author")

    resp = client.post(
        "/v1/points/message-like",
        json={"message_id": "m1", "conversation_id": "c1", "recipient_id": "author"},
        headers=auth(liker),
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "message": "Points awarded for a liked message",
        "points": 3,
    }
    assert client.get("/v1/points/me", headers=auth(author)).json()["points"] == 3
    assert client.get("/v1/points/me", headers=auth(liker)).json()["points"] == 0

    history = client.get("/v1/points/me/history", headers=auth(author)).json()
    assert history[0]["metadata"]["likedBy"] == "liker"


def test_emoji_reaction(client: TestClient, token: str) -> None:
    resp = client.post(
        "/v1/points/emoji-reaction",
        json={
            "message_id": "m1",
            "conversation_id": "c1",
            "recipient_id": "someone",
            "emoji": "🔥",
        },
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert resp.json()["points"] == 2
    assert "remaining" not in resp.json()


def test_balance_reports_badge_progress(client: TestClient, token: str) -> None:
    client.post("/v1/points/message-sent", json={"conversation_id": "c"}, headers=auth(token))

    body = client.get("/v1/points/me", headers=auth(token)).json()

    assert body == {
        "user_id": "test-user",
        "points": 2,
        "badge": "Student",
        "points_to_next_badge": 998,
        "verified_crew": False,
        "login_streak": 0,
    }


def test_history_limit_is_validated(client: TestClient, token: str) -> None:
    resp = client.get("/v1/points/me/history?limit=0", headers=auth(token))
    assert resp.status_code == 422


def test_history_is_newest_first(client: TestClient, token: str) -> None:
    for conv in ("first", "second"):
        client.post(
            "/v1/points/message-sent", json={"conversation_id": conv}, headers=auth(token)
        )
    history = client.get("/v1/points/me/history?limit=1", headers=auth(token)).json()
    assert len(history) == 1
    assert history[0]["reason"] == "message_sent"


def test_unknown_role_cannot_earn(client: TestClient) -> None:
    guest = mint_token(username="guest", roles=["guest"])
    resp = client.post(
        "/v1/points/message-sent", json={"conversation_id": "c"}, headers=auth(guest)
    )
    assert resp.status_code == 403


def test_daily_login_reports_streak(client: TestClient, token: str) -> None:
    first = client.post("/v1/points/daily-login", headers=auth(token))
    assert first.status_code == 200
    assert first.json() == {
        "success": True,
        "message": "Points awarded for logging in today",
        "points": 10,
        "remaining": 0,
        "streak": 1,
    }

    again = client.post("/v1/points/daily-login", headers=auth(token)).json()
    assert again["success"] is False
    assert again["points"] == 0
    assert client.get("/v1/points/me", headers=auth(token)).json()["login_streak"] == 1


def test_lesson_watched_pays_once(client: TestClient, token: str) -> None:
    body = {"course_id": "c1", "lesson_id": "l1"}
    first = client.post("/v1/points/lesson-watched", json=body, headers=auth(token)).json()
    second = client.post("/v1/points/lesson-watched", json=body, headers=auth(token)).json()
    assert (first["success"], first["points"]) == (True, 40)
    assert (second["success"], second["points"]) == (False, 0)


def test_quiz_score_is_validated(client: TestClient, token: str) -> None:
    resp = client.post(
        "/v1/points/quiz-passed", json={"quiz_id": "q1", "score": 120}, headers=auth(token)
    )
    assert resp.status_code == 422

    low = client.post(
        "/v1/points/quiz-passed", json={"quiz_id": "q1", "score": 50}, headers=auth(token)
    )
    assert low.status_code == 200
    assert low.json()["success"] is False


def test_module_completed_after_every_lesson_viewed(client: TestClient, token: str) -> None:
    seed_course("c1", 2, {"m1": 2})
    body = {"course_id": "c1", "module_id": "m1"}
    early = client.post("/v1/points/module-completed", json=body, headers=auth(token)).json()
    assert early["success"] is False

    for lesson_id in ("l1", "l2"):
        client.post(
            "/v1/progress/views",
            json={"course_id": "c1", "module_id": "m1", "lesson_id": lesson_id},
            headers=auth(token),
        )
    done = client.post("/v1/points/module-completed", json=body, headers=auth(token)).json()
    assert (done["success"], done["points"]) == (True, 250)


def test_verified_crew_requires_admin(client: TestClient, token: str) -> None:
    resp = client.post("/v1/points/users/test-user/verified-crew", headers=auth(token))
    assert resp.status_code == 403


def test_verified_crew_freezes_awards(
    client: TestClient, token: str, admin_token: str
) -> None:
    resp = client.post(
        "/v1/points/users/test-user/verified-crew", headers=auth(admin_token)
    )
    assert resp.status_code == 200
    assert resp.json()["verified_crew"] is True

    award = client.post(
        "/v1/points/message-sent", json={"conversation_id": "c"}, headers=auth(token)
    ).json()
    assert award == {
        "success": False,
        "message": "Points are frozen for verified crew",
        "points": 0,
    }
