"""
Session cookie policy shared by the auth routes.

The helper is pure: it takes the environment name and returns cookie flags,
so the sign-in and sign-out routes cannot drift apart.
"""

from __future__ import annotations


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    SameSite=Lax keeps the cookie on top-level navigations back from the
    identity provider; Strict would drop it on that redirect.
    """
    return {"secure": True, "samesite": "lax", "httponly": True}


__all__ = ["cookie_opts"]
