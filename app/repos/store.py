"""The engine's view of persistence: three repos behind one handle.

Services take a ProgressStore instead of individual repos so a request
can swap the whole backend (PostgreSQL session vs in-memory singletons)
in one place.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.engine import async_session_factory, session_scope
from app.models.course import CourseInfo, ModuleInfo
from app.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.event_repo import EventRepo, InMemoryEventRepo
from app.repos.pg_catalog_repo import PgCatalogRepo
from app.repos.pg_enrollment_repo import PgEnrollmentRepo
from app.repos.pg_event_repo import PgEventRepo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressStore:
    events: EventRepo
    enrollments: EnrollmentRepo
    catalog: CatalogRepo
    # The unit of work's session; None for the in-memory store.
    session: AsyncSession | None = None

    async def commit(self) -> None:
        """Commit the unit of work now; a no-op for the in-memory store.

        Handlers call this before invalidating caches or queueing refreshes,
        so neither can observe pre-commit state.
        """
        if self.session is not None:
            await self.session.commit()


def pg_store(session: AsyncSession) -> ProgressStore:
    return ProgressStore(
        events=PgEventRepo(session),
        enrollments=PgEnrollmentRepo(session),
        catalog=PgCatalogRepo(session),
        session=session,
    )


# ---------------------------------------------------------------------------
# Module-level in-memory singletons (used when DATABASE_URL is not set)
# ---------------------------------------------------------------------------

event_repo = InMemoryEventRepo()
enrollment_repo = InMemoryEnrollmentRepo()
catalog_repo = InMemoryCatalogRepo()

memory_store = ProgressStore(
    events=event_repo,
    enrollments=enrollment_repo,
    catalog=catalog_repo,
)


@asynccontextmanager
async def open_store() -> AsyncIterator[ProgressStore]:
    """A store for one unit of work (an HTTP request or a worker task)."""
    if async_session_factory is None:
        yield memory_store
        return
    async with session_scope() as session:
        yield pg_store(session)


@asynccontextmanager
async def isolated_store(store: ProgressStore) -> AsyncIterator[ProgressStore]:
    """A read-only store on a session of its own.

    Work that may be cancelled (a timed-out dashboard course) runs here:
    cancelling a query mid-flight can leave its connection unusable, and
    that must not be the request's connection.  The session is closed,
    never committed.  In-memory stores are returned unchanged.
    """
    if store.session is None or async_session_factory is None:
        yield store
        return
    async with async_session_factory() as session:
        yield pg_store(session)


DEMO_COURSE = CourseInfo(
    id="intro-python",
    title="Introduction to Python",
    total_lessons=6,
    duration_days=30,
    modules=(
        ModuleInfo(
            id="intro-python-m1",
            title="Basics",
            position=1,
            lesson_ids=("py-l1", "py-l2", "py-l3"),
        ),
        ModuleInfo(
            id="intro-python-m2",
            title="Functions",
            position=2,
            lesson_ids=("py-l4", "py-l5", "py-l6"),
        ),
    ),
)


def seed_demo_catalog() -> None:
    """Give a database-less dev server one course to enroll in."""
    catalog_repo.put(DEMO_COURSE)
    logger.info("Seeded in-memory catalog with course=%s", DEMO_COURSE.id)
