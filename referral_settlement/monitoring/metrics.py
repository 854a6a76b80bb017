"""
Prometheus metrics for checkout and settlement monitoring.

Tracks:
- Orders created and completed by outcome
- Checkout session latency
- Leaderboard increments
- Ambassador cache lookups
- Cache invalidation throughput and queue depth
- Background task outcomes (notifications)
"""
from prometheus_client import Counter, Gauge, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of checkout attempts",
    ["status"],  # created, invalid, provider_error, failed
)

orders_completed_total = Counter(
    "orders_completed_total",
    "Total number of order completion calls",
    ["status"],  # settled, already_completed, not_found, failed
)

order_amount = Histogram(
    "order_amount",
    "Order line totals in currency units",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000),
)

# Payment provider metrics
checkout_session_duration_seconds = Histogram(
    "checkout_session_duration_seconds",
    "Checkout session creation duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

stripe_api_errors_total = Counter(
    "stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_circuit_breaker_state = Gauge(
    "stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Leaderboard metrics
leaderboard_increments_total = Counter(
    "leaderboard_increments_total",
    "Total leaderboard increments",
    ["status"],  # success, failed
)

# Cache metrics
ambassador_cache_lookups_total = Counter(
    "ambassador_cache_lookups_total",
    "Ambassador revenue cache lookups",
    ["result"],  # hit, miss, error
)

cache_invalidations_total = Counter(
    "cache_invalidations_total",
    "Cache keys deleted by the invalidation worker",
    ["status"],  # success, failed
)

cache_invalidation_queue_depth = Gauge(
    "cache_invalidation_queue_depth",
    "Number of cache keys waiting to be deleted",
)

# Background task metrics
background_tasks_total = Counter(
    "background_tasks_total",
    "Fire-and-forget task outcomes",
    ["task", "status"],  # success, failed
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(status: str) -> None:
        """Record a checkout attempt."""
        orders_created_total.labels(status=status).inc()

    @staticmethod
    def record_order_amount(amount: float) -> None:
        """Record an order line total."""
        order_amount.observe(amount)

    @staticmethod
    def record_order_completed(status: str) -> None:
        """Record an order completion call."""
        orders_completed_total.labels(status=status).inc()

    @staticmethod
    def record_checkout_session_duration(duration_seconds: float) -> None:
        """Record checkout session creation duration."""
        checkout_session_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        """Record Stripe API error."""
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_leaderboard_increment(status: str) -> None:
        """Record a leaderboard increment."""
        leaderboard_increments_total.labels(status=status).inc()

    @staticmethod
    def record_ambassador_cache_lookup(result: str) -> None:
        """Record an ambassador cache lookup."""
        ambassador_cache_lookups_total.labels(result=result).inc()

    @staticmethod
    def record_cache_invalidation(status: str) -> None:
        """Record a cache deletion."""
        cache_invalidations_total.labels(status=status).inc()

    @staticmethod
    def set_invalidation_queue_depth(depth: int) -> None:
        """Set invalidation queue depth."""
        cache_invalidation_queue_depth.set(depth)

    @staticmethod
    def record_background_task(task: str, status: str) -> None:
        """Record a background task outcome."""
        background_tasks_total.labels(task=task, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
