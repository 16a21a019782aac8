"""
Application Exceptions

Typed errors raised by the service layer. The API layer converts every
AppError into a JSON error envelope with the error's HTTP status, so the
message is user-facing and must stay actionable.
"""

from typing import Optional


class AppError(Exception):
    """
    Base exception for all domain errors.

    Attributes:
        message: Human readable message surfaced to the caller
        code: Stable machine readable error code
        status_code: HTTP status used by the API layer
        details: Extra context for logs and API responses
    """

    status_code: int = 500
    default_code: str = "APP_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to the API error envelope."""
        return {
            "success": False,
            "message": self.message,
            "error": {"code": self.code, "message": self.message},
        }


class BadRequestError(AppError):
    """Malformed input or a failed business precondition (e.g. free group)."""

    status_code = 400
    default_code = "BAD_REQUEST"


class ForbiddenError(AppError):
    """Caller does not own the resource."""

    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_code = "RESOURCE_NOT_FOUND"


class ConflictError(AppError):
    """Duplicate active subscription, full group, or a terminal enrollment."""

    status_code = 409
    default_code = "CONFLICT"


class SignatureInvalidError(AppError):
    """Webhook authenticity check failed. Raised before any domain logic runs."""

    status_code = 400
    default_code = "SIGNATURE_INVALID"


class InternalError(AppError):
    """Unexpected failure, including payment gateway transport errors."""

    status_code = 500
    default_code = "INTERNAL_ERROR"
