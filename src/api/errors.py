"""Map the service exception hierarchy onto HTTP responses."""

import logging

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import JSONResponse

from core.exceptions import (
    ConfigurationError,
    ConflictError,
    DispatchError,
    InvalidTransitionError,
    NoDriverAvailableError,
    NotFoundError,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases.
STATUS_CODES: list[tuple[type[DispatchError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (NoDriverAvailableError, 503),
    (ConfigurationError, 500),
    (TransientError, 502),
]


def status_code_for(exc: DispatchError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": exc.message,
            "context": exc.details,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DispatchError, dispatch_error_handler)  # type: ignore[arg-type]
