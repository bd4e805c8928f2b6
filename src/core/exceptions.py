"""Standardized exception hierarchy for the dispatch service."""

from typing import Any


class DispatchError(Exception):
    """Base exception for all dispatch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(DispatchError):
    """Errors that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Network-related transient errors (timeout, connection refused)."""

    pass


class ServiceUnavailableError(TransientError):
    """External service temporarily unavailable (5xx responses)."""

    pass


class UpstreamFailureError(TransientError):
    """A collaborator (payment gateway, notification channel) failed the request."""

    pass


class PermanentError(DispatchError):
    """Errors that will not succeed on retry."""

    pass


class ValidationError(PermanentError):
    """Invalid input or data format."""

    pass


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    pass


class NoDriverAvailableError(PermanentError):
    """No eligible driver is near the pickup point."""

    pass


class InvalidTransitionError(PermanentError):
    """Requested trip transition is not an edge of the lifecycle graph."""

    pass


class ConflictError(PermanentError):
    """Atomic precondition failed because the record changed concurrently."""

    pass


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    pass
