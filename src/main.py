"""
Trip Dispatch Service - Entry Point

Wires the driver registry, dispatch matcher, trip lifecycle, notification
relay and payment service around one SQLite database and serves them
through the FastAPI app. Offer expiry and notification retention run as
background tasks inside the app's lifespan.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any

import uvicorn
from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from sqlalchemy.orm import sessionmaker

from api.app import create_app
from db.database import init_database
from dispatch_logging import setup_logging
from fare import FareCalculator
from matching.dispatch_matcher import DispatchMatcher
from matching.driver_registry import DriverRegistry
from matching.offer_timeout import OfferTimeoutSweeper
from notifications.relay import NotificationRelay
from notifications.retention import NotificationRetentionSweeper
from payments.momo_client import MoMoClient
from payments.payment_service import PaymentService
from redis_client.publisher import RedisPublisher
from settings import Settings, get_settings
from trips.trip_lifecycle import TripLifecycle

logger = logging.getLogger(__name__)


def init_otel_sdk() -> None:
    """Initialize OpenTelemetry SDK for metrics and traces.

    Configures TracerProvider and MeterProvider with OTLP gRPC exporters
    pointing to the OTel Collector. Must be called before creating the
    FastAPI app so auto-instrumentation can pick up the providers.
    """
    resource = Resource.create(
        {
            "service.name": "dispatch",
            "service.version": "1.0.0",
            "deployment.environment": os.getenv("DEPLOYMENT_ENV", "local"),
        }
    )

    # Tracing
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://otel-collector:4317")
    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(trace_provider)
    logger.info("OpenTelemetry tracing initialized (endpoint=%s)", otlp_endpoint)

    # Metrics
    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
        export_interval_millis=15_000,
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    logger.info("OpenTelemetry metrics initialized")

    # Traces outbound HTTP calls to the payment gateway
    HTTPXClientInstrumentor().instrument()


def create_redis_publisher(settings: Settings) -> RedisPublisher | None:
    """Create Redis publisher with settings."""
    try:
        return RedisPublisher.from_settings(settings.redis)
    except Exception as e:
        logger.warning(f"Redis publisher unavailable: {e}")
        return None


@dataclass
class Services:
    session_factory: sessionmaker[Any]
    registry: DriverRegistry
    lifecycle: TripLifecycle
    relay: NotificationRelay
    payment_service: PaymentService
    offer_sweeper: OfferTimeoutSweeper
    retention_sweeper: NotificationRetentionSweeper
    publisher: RedisPublisher | None


def build_services(
    settings: Settings,
    session_factory: sessionmaker[Any] | None = None,
    publisher: RedisPublisher | None = None,
    momo_client: MoMoClient | None = None,
) -> Services:
    """Construct the service graph from settings."""
    dispatch = settings.dispatch
    if session_factory is None:
        session_factory = init_database(dispatch.db_path)

    registry = DriverRegistry(
        session_factory,
        staleness_window_seconds=dispatch.staleness_window_seconds,
        publisher=publisher,
    )
    matcher = DispatchMatcher(registry, metric=dispatch.distance_metric)
    relay = NotificationRelay(session_factory, publisher=publisher)
    lifecycle = TripLifecycle(
        session_factory,
        registry=registry,
        matcher=matcher,
        fare_calculator=FareCalculator(settings.fare),
        relay=relay,
    )
    payment_service = PaymentService(
        session_factory,
        lifecycle=lifecycle,
        relay=relay,
        momo_client=momo_client or MoMoClient(settings.payment),
    )
    offer_sweeper = OfferTimeoutSweeper(
        lifecycle,
        registry,
        offer_timeout_seconds=dispatch.offer_timeout_seconds,
        search_timeout_seconds=dispatch.search_timeout_seconds,
        interval_seconds=dispatch.sweep_interval_seconds,
    )
    retention_sweeper = NotificationRetentionSweeper(
        relay, retention_hours=dispatch.notification_retention_hours
    )
    return Services(
        session_factory=session_factory,
        registry=registry,
        lifecycle=lifecycle,
        relay=relay,
        payment_service=payment_service,
        offer_sweeper=offer_sweeper,
        retention_sweeper=retention_sweeper,
        publisher=publisher,
    )


def build_app(services: Services) -> FastAPI:
    return create_app(
        session_factory=services.session_factory,
        registry=services.registry,
        lifecycle=services.lifecycle,
        relay=services.relay,
        payment_service=services.payment_service,
        publisher=services.publisher,
        offer_sweeper=services.offer_sweeper,
        retention_sweeper=services.retention_sweeper,
    )


def main() -> None:
    """Main entry point - initializes and runs the dispatch service."""
    settings = get_settings()

    # LOG_FORMAT env var takes precedence, then settings.dispatch.log_format
    log_format = os.environ.get("LOG_FORMAT") or settings.dispatch.log_format
    setup_logging(
        level=settings.dispatch.log_level,
        json_output=log_format == "json",
        environment=os.environ.get("ENVIRONMENT", "development"),
    )

    # Initialize OTel SDK before creating app (providers must exist for auto-instrumentation)
    init_otel_sdk()

    logger.info("Starting dispatch service...")

    publisher = create_redis_publisher(settings)
    if publisher:
        logger.info("Redis publisher configured")

    services = build_services(settings, publisher=publisher)
    app = build_app(services)

    port = int(os.environ.get("PORT", "8000"))
    logger.info(f"Starting dispatch service on port {port}")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
