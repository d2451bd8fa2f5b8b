"""Staff endpoints: course-wide analytics and enrollment repair."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_store, require_any_role, require_role
from app.api.errors import http_error
from app.api.schemas import (
    CourseRollupOut,
    EnrollmentOut,
    course_rollup_out,
    enrollment_out,
)
from app.models.principal import Principal
from app.repos.store import ProgressStore
from app.services.cache import cache_service, dashboard_key
from app.services.dashboard import DashboardAggregator
from app.services.errors import ProgressError
from app.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["analytics"])


@router.get("/courses/{course_id}/analytics", response_model=CourseRollupOut)
async def get_course_analytics(
    course_id: str,
    _principal: Annotated[
        Principal, Depends(require_any_role({"instructor", "admin"}))
    ],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> CourseRollupOut:
    try:
        rollup = await DashboardAggregator(store).course_rollup(
            course_id, datetime.now(UTC)
        )
    except ProgressError as exc:
        raise http_error(exc) from None
    return course_rollup_out(rollup)


@router.post(
    "/students/{student_id}/courses/{course_id}/reconcile",
    response_model=EnrollmentOut,
)
async def reconcile_enrollment(
    student_id: str,
    course_id: str,
    principal: Annotated[Principal, Depends(require_role("admin"))],
    store: Annotated[ProgressStore, Depends(get_store)],
) -> EnrollmentOut:
    """Rebuild an enrollment row from the completion log."""
    try:
        summary = await ProgressService(store).reconcile(
            student_id, course_id, datetime.now(UTC)
        )
    except ProgressError as exc:
        raise http_error(exc) from None

    await store.commit()
    await cache_service.delete(dashboard_key(student_id))
    logger.info(
        "Admin reconcile by user=%s student=%s course=%s",
        principal.user_id,
        student_id,
        course_id,
    )
    return enrollment_out(summary)
