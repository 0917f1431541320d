from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth


def test_patch_profile_sets_name_and_country(client: TestClient, token: str) -> None:
    resp = client.patch(
        "/v1/profile", json={"name": "  Ada  ", "country": "UK"}, headers=auth(token)
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "user_id": "test-user",
        "name": "Ada",
        "country": "UK",
        "points": 0,
        "badge": "Student",
    }


def test_patch_profile_keeps_unset_fields(client: TestClient, token: str) -> None:
    client.patch("/v1/profile", json={"name": "Ada", "country": "UK"}, headers=auth(token))
    resp = client.patch("/v1/profile", json={"country": "FR"}, headers=auth(token))
    assert resp.json()["name"] == "Ada"
    assert resp.json()["country"] == "FR"


def test_patch_profile_keeps_points(client: TestClient, token: str) -> None:
    client.post("/v1/points/message-sent", json={"conversation_id": "c"}, headers=auth(token))
    resp = client.patch("/v1/profile", json={"name": "Ada"}, headers=auth(token))
    assert resp.json()["points"] == 2


def test_blank_name_rejected(client: TestClient, token: str) -> None:
    resp = client.patch("/v1/profile", json={"name": "   "}, headers=auth(token))
    assert resp.status_code == 422


def test_country_with_slash_rejected(client: TestClient, token: str) -> None:
    resp = client.patch("/v1/profile", json={"country": "U/S"}, headers=auth(token))
    assert resp.status_code == 422
