"""
Catalog API - Prometheus Metrics
================================
Centralized metrics definitions for observability.
"""

from prometheus_client import Counter, Histogram, Gauge, Info

# =============================================================================
# Application Info
# =============================================================================

app_info = Info("catalog_api_app", "Application information")
app_info.info({
    "version": "1.0.0",
    "service": "backend",
})

# =============================================================================
# Request Metrics
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    labelnames=["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0)
)

rate_limit_rejections_total = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    labelnames=["scope"]
)

# =============================================================================
# Export Metrics
# =============================================================================

export_sessions_total = Counter(
    "export_sessions_total",
    "Streaming export sessions by outcome",
    labelnames=["export", "outcome"]
)

export_rows_streamed_total = Counter(
    "export_rows_streamed_total",
    "Rows written to streaming export responses",
    labelnames=["export"]
)

export_active_sessions = Gauge(
    "export_active_sessions",
    "Streaming export sessions currently holding a cursor"
)

# =============================================================================
# Cache Metrics
# =============================================================================

cache_hits_total = Counter(
    "response_cache_hits_total",
    "Response cache hits"
)

cache_misses_total = Counter(
    "response_cache_misses_total",
    "Response cache misses"
)

cache_invalidations_total = Counter(
    "response_cache_invalidations_total",
    "Response cache invalidations triggered by writes"
)

# =============================================================================
# Database Metrics
# =============================================================================

database_errors_total = Counter(
    "database_errors_total",
    "Database errors by operation",
    labelnames=["entity", "operation"]
)

database_is_healthy = Gauge(
    "database_is_healthy",
    "Database health status (1=healthy, 0=unhealthy)"
)
