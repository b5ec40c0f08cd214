"""Prometheus metrics for ledger regeneration, calendar fallbacks and throttling"""

from prometheus_client import Counter, Histogram

# Regeneration metrics
regeneration_counter = Counter(
    "rentwatch_ledger_regeneration_total",
    "Ledger regenerations processed",
    ["outcome"],  # completed | failed
)

regeneration_duration_histogram = Histogram(
    "rentwatch_ledger_regeneration_seconds",
    "Time spent regenerating a tenant ledger",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

regeneration_enqueued_counter = Counter(
    "rentwatch_regeneration_enqueued_total",
    "Settings changes queued for regeneration",
    ["mode"],  # created | coalesced
)

# Calculation guards
holiday_fallback_counter = Counter(
    "rentwatch_holiday_fallback_total",
    "Working-day checks for a year missing from the holiday table",
    ["year"],
)

truncated_schedule_counter = Counter(
    "rentwatch_truncated_schedule_total",
    "Due-date generations stopped by a runaway guard",
)

# Throttling
rate_limited_counter = Counter(
    "rentwatch_rate_limited_total",
    "Requests refused by the rate limiter",
    ["action"],
)


def record_regeneration(outcome: str, duration_seconds: float) -> None:
    """Record outcome and latency of one queue item"""
    regeneration_counter.labels(outcome=outcome).inc()
    regeneration_duration_histogram.observe(duration_seconds)
