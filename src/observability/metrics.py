"""Prometheus metric definitions for station self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

PROBE_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)
BACKUP_DURATION_BUCKETS = (0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0)

# ---------------------------------------------------------------------------
# Uptime metrics
# ---------------------------------------------------------------------------

UPTIME_CHECKS_TOTAL = Counter(
    "websync_uptime_checks_total",
    "Total number of uptime probes",
    labelnames=["endpoint", "result"],
)

UPTIME_PROBE_DURATION = Histogram(
    "websync_uptime_probe_duration_seconds",
    "Duration of uptime probes in seconds",
    buckets=PROBE_DURATION_BUCKETS,
)

ENDPOINT_UP = Gauge(
    "websync_endpoint_up",
    "Whether a monitored endpoint is considered up (1=up, 0=down)",
    labelnames=["endpoint"],
)

# ---------------------------------------------------------------------------
# Backup metrics
# ---------------------------------------------------------------------------

BACKUPS_TOTAL = Counter(
    "websync_backups_total",
    "Total number of backup runs",
    labelnames=["source", "trigger", "status"],
)

BACKUP_DURATION = Histogram(
    "websync_backup_duration_seconds",
    "Time taken by a backup run in seconds",
    buckets=BACKUP_DURATION_BUCKETS,
)

BACKUP_BYTES = Counter(
    "websync_backup_bytes_total",
    "Total bytes stored by successful backups",
    labelnames=["source"],
)

ROTATION_FAILURES_TOTAL = Counter(
    "websync_rotation_failures_total",
    "Evicted backup files that could not be deleted",
    labelnames=["source"],
)

# ---------------------------------------------------------------------------
# Warning metrics
# ---------------------------------------------------------------------------

WARNINGS_TOTAL = Counter(
    "websync_warnings_total",
    "Warning events by outcome",
    labelnames=["outcome"],
)

WARNING_DISPATCH_TOTAL = Counter(
    "websync_warning_dispatch_total",
    "Per-channel warning dispatch attempts",
    labelnames=["channel", "status"],
)

# ---------------------------------------------------------------------------
# Info
# ---------------------------------------------------------------------------

APP_INFO = Info(
    "websync_station",
    "WebSync Station build information",
)
