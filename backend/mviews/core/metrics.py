"""Central Prometheus metrics registry.

All application metrics are defined here to avoid scattered metric definitions
and ensure consistent naming/labeling.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("mviews_app", "Materialized view engine info")

# --- HTTP ---
http_requests_total = Counter(
    "mviews_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
http_request_duration_seconds = Histogram(
    "mviews_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

# --- View builds ---
view_builds_total = Counter(
    "mviews_view_builds_total",
    "Total materialized view builds by outcome",
    ["model", "status"],
)
view_build_duration_seconds = Histogram(
    "mviews_view_build_duration_seconds",
    "Duration of a full build-index-swap sequence in seconds",
    ["model"],
)
view_fields_skipped_total = Counter(
    "mviews_view_fields_skipped_total",
    "Filterable fields skipped during schema compilation",
    ["model", "reason"],
)
view_index_failures_total = Counter(
    "mviews_view_index_failures_total",
    "Index creation statements that failed",
    ["kind"],
)

# --- Refresh ---
view_refreshes_total = Counter(
    "mviews_view_refreshes_total",
    "Total refresh attempts by outcome",
    ["outcome"],
)
refresh_schedulers_active = Gauge(
    "mviews_refresh_schedulers_active",
    "Number of running per-tenant refresh schedulers",
)

# --- Audit ---
audit_tenants_missing_views = Gauge(
    "mviews_audit_tenants_missing_views",
    "Tenants found missing at least one view in the last audit",
)

# --- Store health ---
store_health_check_duration_seconds = Histogram(
    "mviews_store_health_check_duration_seconds",
    "Duration of store health check pings in seconds",
    ["store"],
)
store_health_status = Gauge(
    "mviews_store_health_status",
    "Store health status (1=healthy, 0=unhealthy)",
    ["store"],
)
