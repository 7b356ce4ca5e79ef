"""
Prometheus Metrics Module.

Exposes reference lookup, resolution and HTTP metrics for monitoring
with Prometheus.
"""

from prometheus_client import Counter, Histogram, Info, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "app_info",
    "Application information"
)
APP_INFO.info({
    "app_name": "medicare_reference_resolver",
    "version": "1.0.0",
})

# ============================================
# Reference Lookup Metrics
# ============================================
REFERENCE_LOOKUPS_TOTAL = Counter(
    "reference_lookups_total",
    "Total number of reference table lookups",
    ["table", "outcome"]  # hit, miss, error, timeout
)

REFERENCE_LOOKUP_DURATION_SECONDS = Histogram(
    "reference_lookup_duration_seconds",
    "Duration of reference table lookups",
    ["table"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0]
)

# ============================================
# Resolution Metrics
# ============================================
CODE_RESOLUTIONS_TOTAL = Counter(
    "code_resolutions_total",
    "Total number of per-code reference resolutions",
    ["match_status", "source"]
)

GEO_RESOLUTIONS_TOTAL = Counter(
    "geo_resolutions_total",
    "Total number of geographic resolutions",
    ["method"]
)

RESOLVE_DURATION_SECONDS = Histogram(
    "resolve_duration_seconds",
    "Time spent resolving a batch of codes",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0]
)

RESOLVE_DEADLINE_EXCEEDED_TOTAL = Counter(
    "resolve_deadline_exceeded_total",
    "Number of codes left unresolved when the request deadline expired"
)

# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "Duration of HTTP requests",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Metrics Router
# ============================================
router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """
    Expose Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# ============================================
# Helper Functions
# ============================================
def track_lookup(table: str, outcome: str, duration_seconds: float):
    """Track a single reference lookup."""
    REFERENCE_LOOKUPS_TOTAL.labels(table=table, outcome=outcome).inc()
    REFERENCE_LOOKUP_DURATION_SECONDS.labels(table=table).observe(duration_seconds)


def track_code_resolution(match_status: str, source: str):
    """Track the final outcome of one code."""
    CODE_RESOLUTIONS_TOTAL.labels(match_status=match_status, source=source).inc()


def track_geo_resolution(method: str):
    """Track which geographic tier answered."""
    GEO_RESOLUTIONS_TOTAL.labels(method=method).inc()


def track_resolve(duration_seconds: float, timed_out_codes: int):
    """Track a completed resolve call."""
    RESOLVE_DURATION_SECONDS.observe(duration_seconds)
    if timed_out_codes > 0:
        RESOLVE_DEADLINE_EXCEEDED_TOTAL.inc(timed_out_codes)


def track_http_request(method: str, endpoint: str, status_code: int, duration_seconds: float):
    """Track HTTP request metrics."""
    HTTP_REQUESTS_TOTAL.labels(
        method=method,
        endpoint=endpoint,
        status_code=str(status_code)
    ).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)
