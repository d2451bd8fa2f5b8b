"""Read endpoints: the student dashboard and single-course progress.

GET /v1/students/{student_id}/progress-dashboard is read-through cached:

  1. look up ``dashboard:{student_id}``
  2. hit  → return the cached JSON as-is
  3. miss → build from the event store, cache with TTL, return

Because the document is deterministic for unchanged data, a cached copy
and a fresh build differ only in ``as_of``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_store, require_student_access
from app.api.errors import http_error
from app.api.schemas import (
    CourseProgressOut,
    DashboardOut,
    course_progress_out,
    dashboard_out,
)
from app.core.config import SETTINGS
from app.models.principal import Principal
from app.repos.store import ProgressStore
from app.services.cache import cache_service, dashboard_key
from app.services.dashboard import DashboardAggregator
from app.services.errors import ProgressError
from app.services.task_queue import task_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/students", tags=["dashboard"])


@router.get("/{student_id}/progress-dashboard", response_model=DashboardOut)
async def get_progress_dashboard(
    student_id: str,
    _principal: Annotated[Principal, Depends(require_student_access)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> DashboardOut:
    key = dashboard_key(student_id)
    cached = await cache_service.get(key)
    if cached is not None:
        logger.debug("Dashboard cache hit student=%s", student_id)
        return DashboardOut.model_validate_json(cached)

    try:
        summary = await DashboardAggregator(store, queue=task_queue).build_summary(
            student_id, datetime.now(UTC)
        )
    except ProgressError as exc:
        raise http_error(exc) from None

    out = dashboard_out(summary)
    # A degraded build is served but not cached, so the next read retries.
    if not summary.partial:
        await cache_service.set(
            key, out.model_dump_json(), SETTINGS.dashboard_cache_ttl_seconds
        )
    return out


@router.get(
    "/{student_id}/courses/{course_id}/progress",
    response_model=CourseProgressOut,
)
async def get_course_progress(
    student_id: str,
    course_id: str,
    _principal: Annotated[Principal, Depends(require_student_access)],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> CourseProgressOut:
    try:
        report = await DashboardAggregator(store).course_progress(
            student_id, course_id, datetime.now(UTC)
        )
    except ProgressError as exc:
        raise http_error(exc) from None
    return course_progress_out(report)
