"""Prometheus metrics for monitoring reservations, generation quality, and external calls"""

from prometheus_client import Counter, Histogram

# Generation metrics
generation_counter = Counter(
    "quill_generation_total",
    "Total generation requests by final outcome",
    ["outcome"],  # committed | validation_failed | reservation_failed | failed
)

quality_score_bucket_counter = Counter(
    "quill_quality_score_bucket",
    "Delivered documents by quality score bucket",
    ["bucket"],  # <60, 60-75, 75-90, 90+
)

refinement_cycles_histogram = Histogram(
    "quill_section_refinement_cycles",
    "Refinement cycles spent per section",
    buckets=[0, 1, 2, 3, 5],
)

# Ledger metrics
reservation_counter = Counter(
    "quill_reservation_total",
    "Credit reservations by outcome",
    ["outcome"],  # reserved | replayed | insufficient_credits | monthly_limit | ...
)

compensation_counter = Counter(
    "quill_compensation_total",
    "Compensating transactions by outcome",
    ["outcome"],  # restored | already_rolled_back | failed
)

reconciliation_debt_counter = Counter(
    "quill_reconciliation_debt_total",
    "Reservations whose compensation failed and need operator attention",
)

ledger_retry_counter = Counter(
    "quill_ledger_retries_total",
    "Ledger transaction attempts that hit contention or transient errors",
)

# External service metrics
generator_latency_histogram = Histogram(
    "generator_latency_seconds",
    "External generator response time",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

generator_failure_counter = Counter(
    "generator_failures_total",
    "Failed external generator calls",
)

circuit_open_counter = Counter(
    "generator_circuit_open_total",
    "Times the generator circuit breaker opened",
)

detector_fallback_counter = Counter(
    "detector_fallback_total",
    "Detector calls replaced by fallback scores",
)

webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Usage webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed usage webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_generation(quality_score: int) -> None:
    """Record a delivered document and bucket its quality score"""
    generation_counter.labels(outcome="committed").inc()

    if quality_score < 60:
        bucket = "<60"
    elif quality_score < 75:
        bucket = "60-75"
    elif quality_score < 90:
        bucket = "75-90"
    else:
        bucket = "90+"

    quality_score_bucket_counter.labels(bucket=bucket).inc()
