"""Prometheus metrics for token flow, milestone events and notification delivery"""

from prometheus_client import Counter, Histogram

# Ledger metrics
transaction_counter = Counter(
    "bizcoin_transaction_total",
    "Token transactions applied",
    ["type"],  # awarded | bonus | spent | penalty | earned
)

tokens_moved_counter = Counter(
    "bizcoin_tokens_moved_total",
    "Absolute tokens moved through the ledger",
    ["direction"],  # credit | debit
)

rejected_debit_counter = Counter(
    "bizcoin_rejected_debit_total",
    "Debits refused for insufficient balance",
    ["type"],
)

uncollected_penalty_counter = Counter(
    "bizcoin_uncollected_penalty_tokens_total",
    "Penalty tokens not collected because the balance hit zero",
)

wallet_conflict_counter = Counter(
    "bizcoin_wallet_conflict_total",
    "Concurrent wallet updates that had to be retried",
)

# Milestone metrics
milestone_event_counter = Counter(
    "bizcoin_milestone_event_total",
    "Milestone events emitted",
    ["metric"],
)

milestone_failure_counter = Counter(
    "bizcoin_milestone_failures_total",
    "Milestone evaluations or deliveries that failed",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transaction(transaction_type: str, amount: int) -> None:
    """Record ledger metrics for one applied transaction"""
    transaction_counter.labels(type=transaction_type).inc()
    direction = "credit" if amount > 0 else "debit"
    tokens_moved_counter.labels(direction=direction).inc(abs(amount))
