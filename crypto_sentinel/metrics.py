"""Prometheus metric definitions.

Metrics are always recorded; the HTTP exporter is only started when
``METRICS_ENABLED`` is set.
"""

from prometheus_client import Counter, Gauge

EVALUATIONS_TOTAL = Counter(
    "sentinel_evaluations_total",
    "Monitor evaluation passes by outcome",
    ["outcome"],
)
MENTIONS_FETCHED_TOTAL = Counter(
    "sentinel_mentions_fetched_total",
    "Mentions returned by the source, before filters",
)
ALERTS_TOTAL = Counter(
    "sentinel_alerts_total",
    "Alerts fired",
    ["type", "severity"],
)
ALERTS_SUPPRESSED_TOTAL = Counter(
    "sentinel_alerts_suppressed_total",
    "Evaluation passes whose alerts were suppressed by cooldown",
)
DELIVERIES_TOTAL = Counter(
    "sentinel_deliveries_total",
    "Notification delivery attempts by channel and result",
    ["channel", "result"],
)
SCHEDULER_TICKS_TOTAL = Counter(
    "sentinel_scheduler_ticks_total",
    "Scheduler ticks executed",
)
ACTIVE_MONITORS = Gauge(
    "sentinel_active_monitors",
    "Currently active monitors",
)
QUEUE_DEPTH = Gauge(
    "sentinel_scheduler_queue_depth",
    "Monitors waiting in the scheduler due queue",
)
