"""Prometheus metrics for pricewatch."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("pricewatch", "pricewatch application info")
app_info.info({"version": "0.1.0", "name": "pricewatch"})

# Check metrics
item_checks_total = Counter(
    "item_checks_total",
    "Total number of item checks",
    ["trigger", "outcome"],
)

item_check_duration_seconds = Histogram(
    "item_check_duration_seconds",
    "Time spent checking a single item",
    buckets=[1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 180.0],
)

batch_duration_seconds = Histogram(
    "batch_duration_seconds",
    "Time spent on one scheduled batch run",
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0],
)

batch_items_due = Gauge(
    "batch_items_due",
    "Number of items due at the start of the last batch run",
)

scheduler_ticks_skipped_total = Counter(
    "scheduler_ticks_skipped_total",
    "Ticks skipped because a batch run was already active",
)

# Fetch metrics
fetch_attempts_total = Counter(
    "fetch_attempts_total",
    "Fetch attempts by tier and outcome",
    ["tier", "outcome"],
)

# Reconciliation metrics
reconciliation_outcomes_total = Counter(
    "reconciliation_outcomes_total",
    "How the final price of a check was chosen",
    ["outcome"],
)

oracle_calls_total = Counter(
    "oracle_calls_total",
    "Arbitration oracle calls by operation and status",
    ["operation", "status"],
)

# Change metrics
price_changes_total = Counter(
    "price_changes_total",
    "Total number of price changes recorded",
    ["direction"],
)

stock_status_changes_total = Counter(
    "stock_status_changes_total",
    "Total number of stock status transitions recorded",
    ["status"],
)

notifications_total = Counter(
    "notifications_total",
    "Notification events handed to the notifier",
    ["event_type", "status"],
)


def record_check(trigger: str, outcome: str, duration_seconds: float | None = None) -> None:
    """Record one item check."""
    item_checks_total.labels(trigger=trigger, outcome=outcome).inc()
    if duration_seconds is not None:
        item_check_duration_seconds.observe(duration_seconds)


def record_fetch(tier: str, outcome: str) -> None:
    """Record one fetch attempt for a tier ("static" or "rendered")."""
    fetch_attempts_total.labels(tier=tier, outcome=outcome).inc()


def record_reconciliation(outcome: str) -> None:
    """Record which path selected the price (anchor, consensus, oracle, review...)."""
    reconciliation_outcomes_total.labels(outcome=outcome).inc()


def record_oracle_call(operation: str, status: str) -> None:
    """Record one oracle call."""
    oracle_calls_total.labels(operation=operation, status=status).inc()


def record_notification(event_type: str, status: str) -> None:
    """Record one notification hand-off."""
    notifications_total.labels(event_type=event_type, status=status).inc()
