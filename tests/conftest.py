from __future__ import annotations

import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.course import CourseInfo, ModuleInfo
from app.repos import store
from app.repos.catalog_repo import InMemoryCatalogRepo
from app.repos.enrollment_repo import InMemoryEnrollmentRepo
from app.repos.event_repo import InMemoryEventRepo
from app.repos.store import ProgressStore
from app.services import token_service
from app.services.cache import cache_service
from app.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Fixed clock for service-level tests.
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)

# 4 lessons over 20 days: each lesson is 25%, each day 5% expected.
COURSE = CourseInfo(
    id="py-101",
    title="Python 101",
    total_lessons=4,
    duration_days=20,
    modules=(
        ModuleInfo(id="py-101-m1", title="Basics", position=1, lesson_ids=("l1", "l2")),
        ModuleInfo(
            id="py-101-m2", title="Functions", position=2, lesson_ids=("l3", "l4")
        ),
    ),
)


def make_course(
    course_id: str,
    lessons: int,
    *,
    duration_days: int | None = 30,
    title: str | None = None,
) -> CourseInfo:
    """A single-module course with lessons ``{course_id}-l1..N``."""
    lesson_ids = tuple(f"{course_id}-l{i}" for i in range(1, lessons + 1))
    return CourseInfo(
        id=course_id,
        title=title or course_id.upper(),
        total_lessons=lessons,
        duration_days=duration_days,
        modules=(
            ModuleInfo(id=f"{course_id}-m1", title="All", position=1, lesson_ids=lesson_ids),
        ),
    )


@pytest.fixture(autouse=True)
def reset_progress_store() -> None:
    """Clear the in-memory event log, enrollments and catalog between tests."""
    store.event_repo._completions.clear()
    store.event_repo._quizzes.clear()
    store.event_repo._quiz_by_key.clear()
    store.enrollment_repo._store.clear()
    store.catalog_repo.clear()
    store.catalog_repo.put(COURSE)


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def progress_store() -> ProgressStore:
    """A private in-memory store with COURSE in its catalog."""
    catalog = InMemoryCatalogRepo()
    catalog.put(COURSE)
    return ProgressStore(
        events=InMemoryEventRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        catalog=catalog,
    )


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "student-1",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


@pytest.fixture
def token() -> str:
    """Token with default role (student)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


@pytest.fixture
def instructor_token() -> str:
    return mint_token(username="test-instructor", roles=["instructor"])
