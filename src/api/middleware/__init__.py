from api.middleware.correlation import CorrelationIdMiddleware
from api.middleware.security_headers import SecurityHeadersMiddleware

__all__ = ["CorrelationIdMiddleware", "SecurityHeadersMiddleware"]
