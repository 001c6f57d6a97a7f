from prometheus_client import Counter, Histogram, Gauge

# Traffic Metrics
TRAFFIC_EVENTS_RECORDED = Counter(
    "secmon_traffic_events_total",
    "Total number of traffic events recorded",
    ["module"]
)

TRAFFIC_RECORD_FAILURES = Counter(
    "secmon_traffic_record_failures_total",
    "Traffic events that could not be persisted"
)

SPIKES_DETECTED = Counter(
    "secmon_spikes_detected_total",
    "Requests flagged as part of a per-IP spike"
)

ANOMALY_SCORE = Histogram(
    "secmon_anomaly_score",
    "Distribution of request anomaly scores",
    buckets=(0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100)
)

TRACKED_SOURCES = Gauge(
    "secmon_spike_tracked_sources",
    "Source IPs currently held in the spike window store"
)

# Alert Metrics
ALERTS_RAISED = Counter(
    "secmon_alerts_raised_total",
    "Alerts created from suspicious logs",
    ["severity"]
)

DISPATCH_FAILURES = Counter(
    "secmon_alert_dispatch_failures_total",
    "Alert notification failures",
    ["channel"]
)
