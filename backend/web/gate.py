"""
Request classification helpers for the access gate middleware.

Pure functions: the middleware in ``main`` owns the order of checks (rate
limit, session, e-mail domain, admin role) and the responses.
"""
from __future__ import annotations

from typing import Mapping, Optional

PUBLIC_PATHS = frozenset(
    {
        "/",
        "/unauthorized",
        "/sign-in",
        "/sign-up",
        "/privacy-policy",
        "/terms-of-service",
        "/cookie-policy",
        "/health",
        "/favicon.ico",
    }
)
PUBLIC_PREFIXES = ("/static/", "/auth/")


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def is_api_path(path: str) -> bool:
    return path == "/api" or path.startswith("/api/")


def is_admin_path(path: str) -> bool:
    for root in ("/admin", "/api/admin"):
        if path == root or path.startswith(f"{root}/"):
            return True
    return False


def client_ip(headers: Mapping[str, str], peer: Optional[str]) -> str:
    """First X-Forwarded-For entry, then X-Real-IP, then the socket peer."""
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return peer or "unknown"


def email_allowed(email: Optional[str], suffix: str) -> bool:
    """A missing e-mail never matches."""
    if not email:
        return False
    return email.strip().lower().endswith(suffix.lower())


__all__ = ["PUBLIC_PATHS", "client_ip", "email_allowed", "is_admin_path", "is_api_path", "is_public_path"]
