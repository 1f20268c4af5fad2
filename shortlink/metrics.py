"""Prometheus metrics shared by the core components."""

from prometheus_client import Counter, Histogram

__all__ = [
    "LINK_CREATION_REQUESTS_TOTAL",
    "LINK_CREATION_DURATION",
    "RESOLUTION_REQUESTS_TOTAL",
    "RESOLUTION_DURATION",
    "CODE_COLLISIONS_TOTAL",
    "RATE_LIMIT_REJECTIONS_TOTAL",
    "CACHE_ERRORS_TOTAL",
    "DURABLE_INCREMENT_FAILURES_TOTAL",
    "STORE_ERRORS_TOTAL",
    "BACKGROUND_TASK_FAILURES_TOTAL",
    "REAPED_LINKS_TOTAL",
]

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlink_creation_requests_total",
    "Link creation requests by outcome",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlink_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
RESOLUTION_REQUESTS_TOTAL = Counter(
    "shortlink_resolution_requests_total",
    "Resolution requests by outcome and cache status",
    ["status", "cache"],
)
RESOLUTION_DURATION = Histogram(
    "shortlink_resolution_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CODE_COLLISIONS_TOTAL = Counter(
    "shortlink_code_collisions_total",
    "Generated candidates rejected because the code already existed",
)
RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "shortlink_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["actor_kind"],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlink_cache_errors_total",
    "Cache tier operations that failed or timed out",
    ["operation"],
)
DURABLE_INCREMENT_FAILURES_TOTAL = Counter(
    "shortlink_durable_increment_failures_total",
    "Fire-and-forget durable click increments that failed",
)
STORE_ERRORS_TOTAL = Counter(
    "shortlink_store_errors_total",
    "Durable store operations that failed or timed out",
    ["operation"],
)
BACKGROUND_TASK_FAILURES_TOTAL = Counter(
    "shortlink_background_task_failures_total",
    "Background tasks that finished with an exception",
)
REAPED_LINKS_TOTAL = Counter(
    "shortlink_reaped_links_total",
    "Expired links removed by the reaper",
)
