"""FastAPI application factory for the dispatch service."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.responses import Response

from api.auth import verify_api_key
from api.errors import register_exception_handlers
from api.middleware.correlation import CorrelationIdMiddleware
from api.middleware.security_headers import SecurityHeadersMiddleware
from api.models.health import DetailedHealthResponse, ServiceHealth
from api.rate_limit import limiter, rate_limit_exceeded_handler
from api.routes import drivers, notifications, trips
from metrics.prometheus_exporter import generate_prometheus_metrics
from settings import get_settings

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

    from matching.driver_registry import DriverRegistry
    from matching.offer_timeout import OfferTimeoutSweeper
    from notifications.relay import NotificationRelay
    from notifications.retention import NotificationRetentionSweeper
    from payments.payment_service import PaymentService
    from redis_client.publisher import RedisPublisher
    from trips.trip_lifecycle import TripLifecycle


def create_app(
    session_factory: sessionmaker[Any],
    registry: DriverRegistry,
    lifecycle: TripLifecycle,
    relay: NotificationRelay,
    payment_service: PaymentService,
    publisher: RedisPublisher | None = None,
    offer_sweeper: OfferTimeoutSweeper | None = None,
    retention_sweeper: NotificationRetentionSweeper | None = None,
) -> FastAPI:
    """Create FastAPI application with injected dependencies.

    Args:
        session_factory: SQLAlchemy session factory (used by health checks)
        registry: DriverRegistry for driver endpoints
        lifecycle: TripLifecycle for trip endpoints
        relay: NotificationRelay for notification endpoints
        payment_service: PaymentService for trip payment
        publisher: Redis publisher (optional, used by health checks)
        offer_sweeper: Background offer timeout sweeper (optional)
        retention_sweeper: Background notification retention sweeper (optional)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        """Start the background sweeps; on shutdown stop them and close clients."""
        if offer_sweeper:
            await offer_sweeper.start()
        if retention_sweeper:
            await retention_sweeper.start()
        yield
        if retention_sweeper:
            await retention_sweeper.stop()
        if offer_sweeper:
            await offer_sweeper.stop()
        payment_service.close()
        if publisher:
            publisher.close()

    app = FastAPI(
        title="Trip Dispatch API",
        version="1.0.0",
        description="Ride dispatch, trip lifecycle, notifications and payment",
        lifespan=lifespan,
    )

    # Auto-instrument FastAPI (generates traces for all HTTP requests)
    FastAPIInstrumentor.instrument_app(app)

    # Add rate limiter state and exception handler
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    register_exception_handlers(app)

    # Set core dependencies immediately (not in lifespan) so they're available for testing
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.lifecycle = lifecycle
    app.state.relay = relay
    app.state.payment_service = payment_service
    app.state.publisher = publisher

    settings = get_settings()
    origins = settings.cors.origins.split(",")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(drivers.router, prefix="/drivers", tags=["drivers"])
    app.include_router(trips.router, tags=["trips"])
    app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring (unauthenticated for infrastructure)."""
        return {"status": "healthy"}

    def _determine_status(
        latency_ms: float | None,
        threshold_degraded: float = 100,
        threshold_unhealthy: float = 500,
    ) -> Literal["healthy", "degraded", "unhealthy"]:
        """Determine service status based on latency thresholds."""
        if latency_ms is None:
            return "unhealthy"
        if latency_ms < threshold_degraded:
            return "healthy"
        if latency_ms < threshold_unhealthy:
            return "degraded"
        return "unhealthy"

    @app.get(
        "/health/detailed",
        response_model=DetailedHealthResponse,
        dependencies=[Depends(verify_api_key)],
    )
    def detailed_health_check() -> DetailedHealthResponse:
        """Detailed health check for the database and Redis."""

        def check_database() -> ServiceHealth:
            try:
                start = time.perf_counter()
                with app.state.session_factory() as session:
                    session.execute(text("SELECT 1"))
                latency_ms = (time.perf_counter() - start) * 1000
                return ServiceHealth(
                    status=_determine_status(latency_ms),
                    latency_ms=round(latency_ms, 2),
                    message="Connected",
                )
            except Exception as e:
                return ServiceHealth(
                    status="unhealthy",
                    latency_ms=None,
                    message=f"Connection failed: {str(e)[:50]}",
                )

        def check_redis() -> ServiceHealth:
            redis_publisher = app.state.publisher
            if redis_publisher is None:
                return ServiceHealth(status="degraded", message="Publisher not configured")
            start = time.perf_counter()
            if not redis_publisher.ping():
                return ServiceHealth(status="unhealthy", message="Connection failed")
            latency_ms = (time.perf_counter() - start) * 1000
            return ServiceHealth(
                status=_determine_status(latency_ms),
                latency_ms=round(latency_ms, 2),
                message="Connected",
            )

        database = check_database()
        redis_health = check_redis()
        statuses = {database.status, redis_health.status}
        overall: Literal["healthy", "degraded", "unhealthy"]
        if database.status == "unhealthy":
            overall = "unhealthy"
        elif statuses == {"healthy"}:
            overall = "healthy"
        else:
            overall = "degraded"

        return DetailedHealthResponse(
            overall_status=overall,
            database=database,
            redis=redis_health,
            timestamp=datetime.now(UTC).isoformat(),
        )

    @app.get("/metrics/prometheus", dependencies=[Depends(verify_api_key)])
    def prometheus_metrics() -> Response:
        """Prometheus exposition of dispatch counters, gauges and latencies."""
        return Response(
            content=generate_prometheus_metrics(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app
