"""Request correlation middleware."""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from core.correlation import with_correlation

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Scope every request to a correlation id.

    The caller's X-Request-ID is reused when present, otherwise a new id is
    generated. Log records and Redis publish spans emitted while handling the
    request carry it, and the response echoes it back.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER, "")[:MAX_REQUEST_ID_LENGTH]
        if not request_id:
            request_id = uuid.uuid4().hex

        with with_correlation(request_id):
            response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
