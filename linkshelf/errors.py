"""Application error hierarchy.

Every error raised by the enrichment subsystem derives from `AppError`, which
knows its HTTP status, a stable machine-readable code and a message that is
safe to show to end users. The FastAPI app renders any `AppError` through
`AppError.to_response()`.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for application errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def user_message(self) -> str:
        return self.message

    def to_response(self) -> dict[str, Any]:
        return {
            "error": self.user_message(),
            "code": self.error_code,
            "status": self.status_code,
        }


class ValidationError(AppError):
    """User-provided input failed validation. Never retried."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.detail = message


class UnauthorizedError(AppError):
    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    """A resource does not exist (or does not belong to the caller)."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier

    def user_message(self) -> str:
        return f"{self.resource[:1].upper()}{self.resource[1:]} not found."


class ExternalServiceError(AppError):
    """A third-party server or API failed."""

    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    def user_message(self) -> str:
        return f"External service error: {self.message}"


class RateLimitedError(ExternalServiceError):
    """GitHub API quota exhausted (403 with x-ratelimit-remaining: 0)."""

    error_code = "RATE_LIMITED"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or "GitHub API rate limit exceeded. Please try again later or set GITHUB_TOKEN environment variable.",
            status=403,
        )


class InternalError(AppError):
    """Programmer error or unexpected condition."""

    def user_message(self) -> str:
        return "An internal error occurred. Please try again later."


class DatabaseError(InternalError):
    error_code = "DATABASE_ERROR"

    def user_message(self) -> str:
        return "A database error occurred. Please try again later."
