"""
Error taxonomy shared by the services.

Each error carries the HTTP status it maps to; main.py renders them as
``{"detail": message}`` like FastAPI's own HTTPException.
"""
from typing import Optional


class ServiceError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    default_message = "Invalid request"


class AuthError(ServiceError):
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Conflict"


class PayloadTooLargeError(ServiceError):
    status_code = 413
    default_message = "Payload too large"


class RateLimitError(ServiceError):
    status_code = 429
    default_message = "Too many attempts"


class UpstreamError(ServiceError):
    status_code = 502
    default_message = "Upstream service failed"


class NotConfiguredError(ServiceError):
    status_code = 501
    default_message = "Not configured"
