"""
Map coursework errors to JSON responses.

Every error response is private and uncacheable. Bodies carry only the generic
code plus the short machine ``detail``; resource ids stay in the server log.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi.responses import JSONResponse

from coursework.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    CourseworkError,
    DependencyError,
    NotFoundError,
    PayloadTooLargeError,
    RateLimitError,
    ValidationError,
)

logger = logging.getLogger("campusboard.web")

_STATUS = [
    (ValidationError, 400, "bad_request"),
    (AuthenticationError, 401, "unauthenticated"),
    (AuthorizationError, 403, "forbidden"),
    (NotFoundError, 404, "not_found"),
    (ConflictError, 409, "conflict"),
    (PayloadTooLargeError, 413, "payload_too_large"),
    (RateLimitError, 429, "rate_limited"),
    (DependencyError, 500, "internal_error"),
]


def private_response(body: dict, *, status_code: int, headers: Optional[dict] = None) -> JSONResponse:
    merged = {"Cache-Control": "private, no-store"}
    if headers:
        merged.update(headers)
    return JSONResponse(body, status_code=status_code, headers=merged)


def error_response(exc: CourseworkError, *, operation: str) -> JSONResponse:
    for cls, status, code in _STATUS:
        if isinstance(exc, cls):
            break
    else:
        status, code = 500, "internal_error"
    log = logger.error if status >= 500 else logger.info
    log("%s failed: %s %s resource=%s", operation, code, exc.detail, exc.resource or "-")
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    body = {"error": code}
    if status < 500 and exc.detail and exc.detail != code:
        body["detail"] = exc.detail
    return private_response(body, status_code=status, headers=headers)


__all__ = ["error_response", "private_response"]
