from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.db.store import document_store
from app.main import app
from app.services import token_service
from app.services.cache import cache_service

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_document_store() -> None:
    """Empty the in-memory document store between tests."""
    if hasattr(document_store, "_docs"):
        document_store._docs.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


def seed_course(course_id: str, total_lessons: int, modules: dict[str, int]) -> None:
    """Write catalog documents for a course and its modules."""

    async def _seed() -> None:
        await document_store.put(f"courses/{course_id}", {"totalLessons": total_lessons})
        for module_id, lesson_count in modules.items():
            await document_store.put(
                f"courses/{course_id}/modules/{module_id}", {"lessonCount": lesson_count}
            )

    asyncio.run(_seed())
