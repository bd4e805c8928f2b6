"""Prometheus metrics exporter for the dispatch service.

Counters are incremented inline by the services; gauges are refreshed from
the database by the offer timeout sweeper on every pass.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

# Use a separate registry to avoid default Python metrics
REGISTRY = CollectorRegistry()

# --- Gauges (point-in-time values) ---

dispatch_trips_in_flight = Gauge(
    "dispatch_trips_in_flight",
    "Number of trips in a non-terminal status",
    registry=REGISTRY,
)

dispatch_trips_searching = Gauge(
    "dispatch_trips_searching",
    "Number of pending trips waiting for a driver",
    registry=REGISTRY,
)

dispatch_drivers_available = Gauge(
    "dispatch_drivers_available",
    "Number of idle drivers with a fresh location",
    registry=REGISTRY,
)

# --- Counters (cumulative values) ---

dispatch_trips_requested_total = Counter(
    "dispatch_trips_requested_total",
    "Trip requests by result",
    ["result"],
    registry=REGISTRY,
)

dispatch_offers_total = Counter(
    "dispatch_offers_total",
    "Driver offers by outcome (sent, accepted, rejected, expired)",
    ["outcome"],
    registry=REGISTRY,
)

dispatch_trips_completed_total = Counter(
    "dispatch_trips_completed_total",
    "Total number of completed trips",
    registry=REGISTRY,
)

dispatch_trips_cancelled_total = Counter(
    "dispatch_trips_cancelled_total",
    "Cancelled trips by initiator and outcome",
    ["cancelled_by", "outcome"],
    registry=REGISTRY,
)

dispatch_payments_total = Counter(
    "dispatch_payments_total",
    "Payment attempts by method and result",
    ["payment_method", "result"],
    registry=REGISTRY,
)

dispatch_errors_total = Counter(
    "dispatch_errors_total",
    "Total errors by component and type",
    ["component", "error_type"],
    registry=REGISTRY,
)

# --- Histograms (latency distributions) ---

REDIS_LATENCY_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, float("inf"))
GATEWAY_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf"))

dispatch_redis_latency_seconds = Histogram(
    "dispatch_redis_latency_seconds",
    "Redis publish latency in seconds",
    buckets=REDIS_LATENCY_BUCKETS,
    registry=REGISTRY,
)

dispatch_gateway_latency_seconds = Histogram(
    "dispatch_gateway_latency_seconds",
    "Payment gateway request latency in seconds",
    buckets=GATEWAY_LATENCY_BUCKETS,
    registry=REGISTRY,
)


def record_trip_requested(result: str) -> None:
    dispatch_trips_requested_total.labels(result=result).inc()


def record_offer(outcome: str) -> None:
    dispatch_offers_total.labels(outcome=outcome).inc()


def record_trip_completed() -> None:
    dispatch_trips_completed_total.inc()


def record_trip_cancelled(cancelled_by: str, outcome: str) -> None:
    dispatch_trips_cancelled_total.labels(cancelled_by=cancelled_by, outcome=outcome).inc()


def record_payment(payment_method: str, result: str) -> None:
    dispatch_payments_total.labels(payment_method=payment_method, result=result).inc()


def record_error(component: str, error_type: str) -> None:
    dispatch_errors_total.labels(component=component, error_type=error_type).inc()


def update_dispatch_gauges(
    *, trips_in_flight: int, trips_searching: int, drivers_available: int
) -> None:
    dispatch_trips_in_flight.set(trips_in_flight)
    dispatch_trips_searching.set(trips_searching)
    dispatch_drivers_available.set(drivers_available)


def observe_latency(component: str, latency_ms: float) -> None:
    """Observe a latency sample for histogram tracking.

    Args:
        component: One of "redis", "gateway"
        latency_ms: Latency in milliseconds
    """
    latency_seconds = latency_ms / 1000.0

    if component == "redis":
        dispatch_redis_latency_seconds.observe(latency_seconds)
    elif component == "gateway":
        dispatch_gateway_latency_seconds.observe(latency_seconds)


def generate_prometheus_metrics() -> bytes:
    """Generate Prometheus format metrics output.

    Returns:
        Prometheus text format as bytes
    """
    result: bytes = generate_latest(REGISTRY)
    return result
