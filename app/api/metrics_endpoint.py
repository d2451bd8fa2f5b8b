"""Prometheus scrape endpoint (text exposition format, not JSON).

Exposes the HTTP metrics alongside the engine's own: completion and
quiz ingestion counts, point awards, enrollment conflicts and drift,
dashboard build latency, cache hit ratio and queue depth.  Restrict it
to the Prometheus server at the network layer in production.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
