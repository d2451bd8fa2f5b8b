"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:
  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

The loop polls every registered queue round-robin, hands each task to
its handler, and logs the outcome.  A failing task is logged and
dropped; both handlers are idempotent rebuilds, so the next ingestion
or dashboard read re-queues the work.

Handlers:
  dashboard_refresh      rebuild a student's dashboard into the cache
  enrollment_reconcile   rebuild an enrollment row from the completion log
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from app.api.schemas import dashboard_out
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.repos.store import open_store
from app.services.cache import cache_service, dashboard_key
from app.services.dashboard import DashboardAggregator
from app.services.progress_service import ProgressService
from app.services.task_queue import (
    DASHBOARD_REFRESH,
    ENROLLMENT_RECONCILE,
    task_queue,
)

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(DASHBOARD_REFRESH)
async def handle_dashboard_refresh(payload: dict) -> None:
    student_id = payload["student_id"]
    async with open_store() as store:
        summary = await DashboardAggregator(store, queue=task_queue).build_summary(
            student_id, datetime.now(UTC)
        )
    if summary.partial:
        logger.info("Skipping cache fill for partial dashboard student=%s", student_id)
        return
    await cache_service.set(
        dashboard_key(student_id),
        dashboard_out(summary).model_dump_json(),
        SETTINGS.dashboard_cache_ttl_seconds,
    )
    logger.info(
        "Dashboard refreshed student=%s courses=%d", student_id, len(summary.courses)
    )


@register_handler(ENROLLMENT_RECONCILE)
async def handle_enrollment_reconcile(payload: dict) -> None:
    student_id = payload["student_id"]
    course_id = payload["course_id"]
    async with open_store() as store:
        summary = await ProgressService(store).reconcile(
            student_id, course_id, datetime.now(UTC)
        )
    await cache_service.delete(dashboard_key(student_id))
    logger.info(
        "Enrollment reconciled student=%s course=%s lessons=%d version=%d",
        student_id,
        course_id,
        len(summary.completed_lesson_ids),
        summary.version,
    )


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def process_next(queue_name: str, *, timeout: int = 1) -> bool:
    """Handle at most one task from ``queue_name``.  False if it was empty."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        # At-most-once: the task is dropped after logging.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        handled = [await process_next(queue_name) for queue_name in queues]
        if not any(handled):
            # The in-memory queue returns at once instead of blocking.
            await asyncio.sleep(1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
