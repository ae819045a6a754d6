"""Prometheus collectors shared by the pipeline and services."""

from prometheus_client import Counter, Histogram, Gauge

REQUEST_COUNT = Counter(
    "automation_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "automation_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
RATE_LIMIT_REJECTIONS = Counter(
    "automation_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
)
TOKEN_VALIDATION_FAILURES = Counter(
    "automation_token_validation_failures_total",
    "Access token validation failures",
    ["reason"],
)
REFRESH_REUSE_DETECTED = Counter(
    "automation_refresh_reuse_detected_total",
    "Rotated refresh tokens presented again outside the grace period",
)
AUDIT_FAILURES = Counter(
    "automation_audit_write_failures_total",
    "Audit records that could not be persisted",
)
AUDIT_DROPPED = Counter(
    "automation_audit_dropped_total",
    "Audit records shed because too many writes were already pending",
)
TOKENS_PURGED = Counter(
    "automation_tokens_purged_total",
    "Expired token rows removed by maintenance",
    ["table"],
)
JANITOR_UP_GAUGE = Gauge("automation_token_janitor_up", "Token janitor liveness (1 running, 0 stopped)")
