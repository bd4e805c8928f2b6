"""Health check models for service monitoring."""

from typing import Literal

from pydantic import BaseModel


class ServiceHealth(BaseModel):
    """Health status for a single dependency."""

    status: Literal["healthy", "degraded", "unhealthy"]
    latency_ms: float | None = None
    message: str | None = None


class DetailedHealthResponse(BaseModel):
    """Detailed health check response for the service's dependencies."""

    overall_status: Literal["healthy", "degraded", "unhealthy"]
    database: ServiceHealth
    redis: ServiceHealth
    timestamp: str
