"""Rate limiting configuration using slowapi."""

from opentelemetry import metrics
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

meter = metrics.get_meter("dispatch")

rate_limit_hits = meter.create_counter(
    name="api_rate_limit_hits_total",
    description="Total API requests rejected by rate limiting",
    unit="1",
)


def get_api_key_or_ip(request: Request) -> str:
    """Rate limit by API key if present, otherwise by IP.

    Each client app (identified by its API key) gets its own quota. Falls
    back to the IP address for unauthenticated requests.
    """
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"key:{api_key}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=get_api_key_or_ip)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom 429 handler with a Retry-After header.

    Builds the response manually instead of using slowapi's default handler
    because headers_enabled=True is incompatible with FastAPI's decorator
    approach (causes 500 on success responses without SlowAPIMiddleware).
    """
    rate_limit_hits.add(
        1,
        {"endpoint": request.url.path, "method": request.method},
    )

    retry_after = "60"
    view_rate_limit = getattr(request.state, "view_rate_limit", None)
    if view_rate_limit:
        window_map = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}
        for unit, seconds in window_map.items():
            if unit in str(view_rate_limit):
                retry_after = str(seconds)
                break

    response = JSONResponse(
        status_code=429,
        content={"error": str(exc.detail)},
    )
    response.headers["retry-after"] = retry_after
    return response
