from prometheus_client import Counter, Histogram, Gauge, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUESTS_TOTAL = get_or_create_metric(
    "planner_requests_total",
    "Total requests",
    Counter,
    labelnames=["endpoint", "status"],
)

REQUEST_LATENCY_SECONDS = get_or_create_metric(
    "planner_request_latency_seconds",
    "Request latency",
    Histogram,
    labelnames=["endpoint"],
)

SYNC_RUNS_TOTAL = get_or_create_metric(
    "planner_sync_runs_total",
    "Calendar sync runs",
    Counter,
    labelnames=["direction", "outcome"],
)

SYNC_DURATION_SECONDS = get_or_create_metric(
    "planner_sync_duration_seconds",
    "Calendar sync run duration",
    Histogram,
)

SYNC_CHANGES_TOTAL = get_or_create_metric(
    "planner_sync_changes_total",
    "Items changed by sync, by action",
    Counter,
    labelnames=["action"],
)

CONFLICTS_DETECTED_TOTAL = get_or_create_metric(
    "planner_sync_conflicts_detected_total",
    "Mappings flagged as conflicting",
    Counter,
)

CONFLICTS_RESOLVED_TOTAL = get_or_create_metric(
    "planner_sync_conflicts_resolved_total",
    "Conflicts resolved, by resolution",
    Counter,
    labelnames=["resolution"],
)

OPEN_CONFLICTS = get_or_create_metric(
    "planner_sync_open_conflicts", "Mappings currently in conflict", Gauge
)
