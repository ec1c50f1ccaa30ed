from prometheus_client import Counter, Gauge, Histogram

WEBHOOK_EVENTS = Counter(
    "shiplog_webhook_events_total",
    "GitHub webhook deliveries by outcome",
    ["outcome"],
)
QUEUE_TRANSITIONS = Counter(
    "shiplog_webhook_queue_transitions_total",
    "Webhook queue status transitions",
    ["status"],
)
QUEUE_SIZE = Gauge(
    "shiplog_webhook_queue_size",
    "Number of webhook queue items by status",
    ["status"],
)
CATEGORIZATION_FALLBACKS = Counter(
    "shiplog_categorization_fallback_total",
    "PR categorizations served by the keyword fallback",
)
DRAIN_DURATION = Histogram(
    "shiplog_webhook_drain_duration_seconds",
    "Duration of webhook retry drain passes",
)
NOTIFICATIONS_SENT = Counter(
    "shiplog_notifications_total",
    "Chat notifications by provider and result",
    ["provider", "result"],
)
