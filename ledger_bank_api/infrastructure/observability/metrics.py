"""Prometheus metrics for payments, background jobs, bank syncs and HTTP traffic"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Payment metrics
payment_counter = Counter(
    "ledger_payments_processed_total",
    "Payments run through the ledger processor",
    ["outcome"],  # completed | failed | rejected | error
)

payment_amount_histogram = Histogram(
    "ledger_payment_amount",
    "Amount of completed payments",
    buckets=[1, 10, 50, 100, 500, 1000, 5000, 10000],
)

payment_duration_histogram = Histogram(
    "ledger_payment_processing_seconds",
    "Time spent inside the payment processing transaction",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

# Job metrics
job_counter = Counter(
    "ledger_jobs_total",
    "Background jobs executed",
    ["worker", "outcome"],  # completed | retried | discarded
)

# Bank API metrics
bank_fetch_failures_counter = Counter(
    "bank_fetch_failures_total",
    "Failed bank API calls",
)

bank_sync_counter = Counter(
    "ledger_bank_syncs_total",
    "Bank login synchronizations",
    ["outcome"],
)

# Cache metrics
cache_hits_counter = Counter("ledger_cache_hits_total", "Cache hits", ["backend"])
cache_misses_counter = Counter("ledger_cache_misses_total", "Cache misses", ["backend"])

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)

rate_limited_counter = Counter(
    "http_rate_limited_total",
    "Requests rejected by the rate limiter",
)


def record_payment(outcome: str, amount: Decimal | None = None) -> None:
    """Record payment outcome and, for completed payments, the amount"""
    payment_counter.labels(outcome=outcome).inc()
    if outcome == "completed" and amount is not None:
        payment_amount_histogram.observe(float(amount))


def record_job(worker: str, outcome: str) -> None:
    job_counter.labels(worker=worker, outcome=outcome).inc()
