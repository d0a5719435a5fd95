"""Prometheus metrics for monitoring plan creation, charge outcomes and processor performance"""

from prometheus_client import Counter, Histogram

# Plan metrics
plan_creation_counter = Counter(
    "dues_installment_plan_total",
    "Installment plan creation attempts",
    ["outcome"],  # created | resumed | denied | conflict | gateway_error
)

plan_size_counter = Counter(
    "dues_installment_plan_size",
    "Installment plans created by number of installments",
    ["num_installments"],
)

# Charge metrics
charge_submission_counter = Counter(
    "dues_charge_submissions_total",
    "Charge submissions to the payment processor",
    ["outcome", "method"],  # outcome: submitted | declined | error
)

confirmation_counter = Counter(
    "dues_charge_confirmations_total",
    "Processor confirmations received",
    ["outcome", "applied"],
)

sweep_payment_counter = Counter(
    "dues_sweep_payments_total",
    "Payments handled by the scheduled-charge sweep",
    ["result"],  # submitted | failed | skipped | error
)

# Processor API metrics
processor_latency_histogram = Histogram(
    "processor_latency_seconds",
    "Payment processor response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

processor_failure_counter = Counter(
    "processor_failures_total",
    "Failed payment processor calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_plan_created(num_installments: int, resumed: bool = False) -> None:
    """Record plan metrics for monitoring adoption and plan size distribution"""
    plan_creation_counter.labels(outcome="resumed" if resumed else "created").inc()
    if not resumed:
        plan_size_counter.labels(num_installments=str(num_installments)).inc()


def record_charge(outcome: str, method: str) -> None:
    charge_submission_counter.labels(outcome=outcome, method=method).inc()
