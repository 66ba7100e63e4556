"""Monitoring configuration for the trainer."""
from prometheus_client import Counter, Histogram, start_http_server

# Learning metrics
answers_recorded = Counter(
    "vocasync_answers_recorded_total",
    "Total number of answers recorded in the progress store",
    ["result"],
)

progress_resets = Counter(
    "vocasync_progress_resets_total",
    "Total number of bulk progress resets",
    ["origin"],
)

session_pools_built = Counter(
    "vocasync_session_pools_built_total",
    "Total number of review session pools built",
    ["mode"],
)

# Sync metrics
sync_operations = Counter(
    "vocasync_sync_operations_total",
    "Total number of remote sync operations",
    ["target", "operation", "outcome"],
)

sync_duration = Histogram(
    "vocasync_sync_duration_seconds",
    "Duration of remote sync operations in seconds",
    ["target"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 15.0],
)

# Local storage metrics
storage_errors = Counter(
    "vocasync_storage_errors_total",
    "Total number of local storage errors",
    ["error_type"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
