"""
Error taxonomy shared by the coursework services and the web adapter.

Why:
    Services must signal *what* went wrong without knowing about HTTP. Each
    class also derives from the builtin exception the rest of the codebase
    already handles (``ValueError`` for bad input, ``LookupError`` for missing
    rows, ...), so callers that only know the builtin keep working.

Usage:
    Every error carries a short machine ``detail`` code (e.g. ``not_owner``).
    The web layer maps the class to a status code and echoes only the code,
    never internal messages.
"""
from __future__ import annotations


class CourseworkError(Exception):
    """Base class; ``detail`` is a stable, client-safe code."""

    def __init__(self, detail: str, *, resource: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.resource = resource


class ValidationError(CourseworkError, ValueError):
    """Missing or malformed input. Raised before any side effect."""


class AuthenticationError(CourseworkError, PermissionError):
    """No valid session for the caller."""


class AuthorizationError(CourseworkError, PermissionError):
    """Authenticated, but lacking role or ownership for the resource."""


class NotFoundError(CourseworkError, LookupError):
    """Referenced resource does not exist."""


class ConflictError(CourseworkError, ValueError):
    """Write rejected because of the current resource state."""


class PayloadTooLargeError(CourseworkError, ValueError):
    """Request payload exceeds a storage limit."""


class DependencyError(CourseworkError, RuntimeError):
    """Object store or database operation failed."""


class RateLimitError(CourseworkError):
    """Too many requests from one client within the window."""

    def __init__(self, detail: str = "rate_limited", *, retry_after: int = 60) -> None:
        super().__init__(detail)
        self.retry_after = int(retry_after)


__all__ = [
    "CourseworkError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "PayloadTooLargeError",
    "DependencyError",
    "RateLimitError",
]
