"""Prometheus metric inventory for leadcrm.

Every metric the service exports is declared here; the modules that own
the behavior import the metric and increment it at the point of action.

HTTP metrics are populated by MetricsMiddleware.  The domain counters
answer the operational questions specific to this service:

  - are invitations being claimed, or mostly expiring?
  - which authorization guard is rejecting people (and is it new)?
  - is the permission cache earning its keep?
  - how many import rows fail, and is that trending up?
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
    # Imports are the slow path; everything else should land under 250ms.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

INVITES = Counter(
    "invites_total",
    "Invitation lifecycle events by outcome",
    # issued|resent|revoked|claimed|invalid_token|already_claimed|email_mismatch|expired
    ["outcome"],
)

AUTHORIZATION_DENIALS = Counter(
    "authorization_denials_total",
    "Operations rejected before any write, by denial reason",
    ["reason"],
)

PERMISSION_CACHE_OPERATIONS = Counter(
    "permission_cache_operations_total",
    "Permission cache lookups and invalidations",
    ["operation"],  # hit|miss|invalidate
)

IMPORT_ROWS = Counter(
    "import_rows_total",
    "Tabular import rows by outcome",
    ["outcome"],  # created|skipped|failed
)
