"""
Tenantry exception hierarchy.

All domain failures inherit from AppError. Each subclass carries the HTTP
status it maps to at the route boundary, so services raise by kind and
never by message text.
"""

from typing import Any, Optional

from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base exception for all Tenantry errors."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self, extra: Optional[dict[str, Any]] = None) -> JSONResponse:
        """Render as the standard ``{"success": false, "error": ...}`` envelope."""
        body: dict[str, Any] = {"success": False, "error": self.message}
        if extra:
            body.update(extra)
        return JSONResponse(body, status_code=self.status_code)


class ValidationFailed(AppError):
    """Raised when a request payload is malformed."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class InvariantViolation(AppError):
    """Raised when a mutation would break a cross-record invariant."""

    status_code = 400
    code = "invariant_violation"
    default_message = "Operation would violate an invariant"


class LastOwnerError(InvariantViolation):
    """Raised when removing a member would leave an organization with no owner."""

    code = "last_owner"
    default_message = "Cannot remove the last owner"


class Unauthorized(AppError):
    """Raised when a request carries no valid session."""

    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class InvalidCredentials(Unauthorized):
    """Raised for an unknown email or a wrong password, indistinguishably."""

    code = "invalid_credentials"
    default_message = "Invalid credentials"


class Forbidden(AppError):
    """Raised when the caller is authenticated but lacks the required role."""

    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(AppError):
    """Raised when a directly addressed resource does not exist."""

    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(AppError):
    """Raised on a uniqueness conflict such as a duplicate email."""

    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class RateLimited(AppError):
    """Raised when a client exceeds its request budget."""

    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests"


class InternalError(AppError):
    """Raised for unexpected failures; the message is safe to show callers."""
