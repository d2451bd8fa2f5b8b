"""Prometheus metric inventory for progress-service.

Every metric the service exports is declared here; modules import the
one they own and increment/observe it at the point of action.

HTTP metrics are fed by MetricsMiddleware.  The engine metrics answer
the operational questions the aggregation layer raises:

  - How often are completion/quiz events replayed?  (duplicates are
    expected under at-least-once delivery, a spike means a client is
    retrying in a loop)
  - How often does the enrollment optimistic-lock loop retry, and how
    often does it give up?
  - How often does the summary row drift from the completion log?
  - How long do dashboard builds take, and how often do they degrade?
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Aggregation engine metrics
# ---------------------------------------------------------------------------

COMPLETIONS_RECORDED = Counter(
    "progress_completions_total",
    "Lesson completion ingestions by result",
    ["result"],  # "created" or "duplicate"
)

QUIZ_RESULTS_RECORDED = Counter(
    "progress_quiz_results_total",
    "Quiz result ingestions by outcome",
    ["outcome"],  # "passed", "failed" or "duplicate"
)

POINT_AWARDS = Counter(
    "progress_point_awards_total",
    "Point award attempts by event type and result",
    ["event_type", "result"],  # result: "applied" or "duplicate"
)

ENROLLMENT_CONFLICTS = Counter(
    "progress_enrollment_conflicts_total",
    "Optimistic-lock version mismatches on enrollment rows",
    ["outcome"],  # "retried" or "exhausted"
)

ENROLLMENT_DRIFT = Counter(
    "progress_enrollment_drift_total",
    "Enrollment rows found out of sync with the completion log on read",
)

DASHBOARD_BUILD_DURATION = Histogram(
    "progress_dashboard_build_seconds",
    "Time to build one student dashboard from the event store",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

DASHBOARD_PARTIAL = Counter(
    "progress_dashboard_partial_total",
    "Dashboard course entries degraded after hitting the per-course timeout",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "dashboard_refresh", "enrollment_reconcile"
)
