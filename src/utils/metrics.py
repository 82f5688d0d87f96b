"""Prometheus metrics definitions"""

from prometheus_client import Counter, Histogram, Gauge


# Detection outcomes
detections_total = Counter(
    'duplicate_detections_total',
    'Detection calls by recommendation',
    labelnames=['recommendation']  # accept, reject, review
)

duplicate_matches_total = Counter(
    'duplicate_matches_total',
    'Matches produced per matcher level',
    labelnames=['level']
)

detection_latency = Histogram(
    'duplicate_detection_latency_seconds',
    'Time to run one detection call',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1, 5]
)

candidate_errors_total = Counter(
    'duplicate_candidate_errors_total',
    'Stored records skipped because they could not be compared'
)

# Store health
record_store_failures_total = Counter(
    'email_record_store_failures_total',
    'Stored-record lookups that failed after retries'
)

records_stored_total = Counter(
    'email_records_stored_total',
    'Email records persisted after acceptance or approval'
)

# Review queue
review_queue_size = Gauge(
    'review_queue_size',
    'Items awaiting manual review',
    labelnames=['priority']
)

review_decisions_total = Counter(
    'review_decisions_total',
    'Reviewer actions applied',
    labelnames=['action']
)
