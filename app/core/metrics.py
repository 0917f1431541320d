"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning module
imports the one it needs and increments it at the point of action.
Counters only go up, so dashboards use ``rate()`` over them; the
histograms feed ``histogram_quantile()``.
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

LESSON_VIEWS = Counter(
    "lesson_views_total",
    "Registered lesson views by outcome",
    ["result"],  # "first_view" or "repeat_view"
)

POINTS_AWARDED = Counter(
    "points_awarded_total",
    "Points granted, summed per award reason",
    ["reason"],
)

POINTS_RATE_LIMITED = Counter(
    "points_rate_limited_total",
    "Capped awards rejected because the daily window was full",
    ["reason"],
)

POINTS_REJECTED = Counter(
    "points_rejected_total",
    "Awards refused for a reason other than the daily cap",
    ["reason", "cause"],  # cause: "frozen", "duplicate", "ineligible"
)

STORE_TRANSACTION_CONFLICTS = Counter(
    "store_transaction_conflicts_total",
    "Optimistic transaction attempts discarded due to a conflicting commit",
    ["backend"],  # "memory", "redis", "postgres"
)

LEADERBOARD_RECOMPUTES = Counter(
    "leaderboard_recompute_total",
    "Leaderboard builder runs by outcome",
    ["result"],  # "ok" or "error"
)

LEADERBOARD_DURATION = Histogram(
    "leaderboard_recompute_duration_seconds",
    "Wall time of a full leaderboard recompute",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
