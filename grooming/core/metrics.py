from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
)

NOTIFICATIONS_DISPATCHED = Counter(
    "notifications_dispatched_total",
    "Notification delivery attempts by channel and resulting status",
    ["channel", "status"],
)

NOTIFICATIONS_SUPPRESSED = Counter(
    "notification_dispatch_suppressed_total",
    "Dispatches skipped because the rule's rate-limit window is still open",
    ["rule"],
)

SCHEDULING_CONFLICTS = Counter(
    "scheduling_conflicts_total",
    "Scheduling writes rejected because the time slot overlaps another appointment",
)

SWEEP_DURATION = Histogram(
    "notification_sweep_duration_seconds",
    "Duration of one pending-notification sweep",
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
