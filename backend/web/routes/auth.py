"""
Session bootstrap and sign-out routes.

Why:
    Sign-in itself happens in the identity provider's hosted widget. The
    browser then posts the provider's short-lived session token here; after
    verification the app keeps its own opaque server-side session and the
    token is discarded.

Notes:
    - ``/auth/`` paths are public in the access gate.
    - The session store lives in ``main``; it is imported inside the handlers
      so tests that swap ``main.SESSION_STORE`` are honored.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from auth_utils import cookie_opts
from config import load_settings
from coursework.errors import AuthenticationError, ValidationError
from errors import error_response, private_response
from identity_access.tokens import (
    IDTokenVerificationError,
    TokenVerifierConfig,
    identity_from_claims,
    verify_session_token,
)
from security_events import SECURITY_MONITOR

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("campusboard.web.auth")

# Absolute in-app paths only: no scheme, host, double slash or traversal.
INAPP_PATH_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_INAPP_REDIRECT_LEN = 256


class SessionIn(BaseModel):
    token: Optional[str] = None


def _is_inapp_path(value: Optional[str]) -> bool:
    """True only for absolute in-app paths such as /courses/1 (no query, scheme or traversal)."""
    if not value or not isinstance(value, str):
        return False
    if len(value) > MAX_INAPP_REDIRECT_LEN:
        return False
    return bool(INAPP_PATH_PATTERN.match(value))


def _verifier_config() -> TokenVerifierConfig:
    settings = load_settings()
    return TokenVerifierConfig(
        issuer=settings.idp_issuer,
        jwks_url=settings.idp_jwks_url,
        audience=settings.idp_audience,
        authorized_parties=settings.idp_authorized_parties,
    )


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def _ensure_directory_row(sub: str, email: Optional[str]) -> None:
    """Create the user row on first sign-in; the role lookup works without it."""
    from routes.users import _get_directory

    try:
        _get_directory().ensure_user(sub, email)
    except Exception as exc:
        logger.warning("User row sync failed for %s: %s", sub, exc.__class__.__name__)


@auth_router.post("/auth/session")
async def create_session(request: Request, payload: Optional[SessionIn] = None):
    """Exchange a verified provider session token for an app session cookie.

    Behavior:
        - Token from ``Authorization: Bearer`` or JSON ``{"token": ...}``.
        - 200 with ``{sub, email, name}`` and ``Set-Cookie`` on success.
        - 400 ``missing_token``; 401 ``invalid_token`` when verification fails.
        The e-mail domain is not checked here; the gate enforces it on every
        request and sends outsiders to ``/unauthorized``.
    Permissions:
        Public.
    """
    import main  # late import; shares the session store with the gate

    token = _bearer_token(request) or (payload.token.strip() if payload and payload.token else None)
    if not token:
        return error_response(ValidationError("missing_token"), operation="create_session")
    try:
        claims = verify_session_token(token=token, cfg=_verifier_config())
    except IDTokenVerificationError as exc:
        logger.warning("Session token verification failed: %s", exc.code)
        SECURITY_MONITOR.record("token_rejected", exc.code, "warn", "auth", path=request.url.path)
        return error_response(AuthenticationError("invalid_token"), operation="create_session")

    sub, email, name = identity_from_claims(claims)
    _ensure_directory_row(sub, email)
    settings = load_settings()
    rec = main.SESSION_STORE.create(sub=sub, email=email, name=name, ttl_seconds=settings.session_ttl_seconds)
    logger.info("Session created for %s", sub)

    resp = private_response({"sub": rec.sub, "email": rec.email, "name": rec.name}, status_code=200)
    opts = cookie_opts(settings.environment)
    resp.set_cookie(
        key=main.SESSION_COOKIE_NAME,
        value=rec.session_id,
        httponly=opts["httponly"],
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=rec.ttl_seconds,
    )
    return resp


@auth_router.get("/auth/logout")
async def logout(request: Request, redirect: Optional[str] = None):
    """Delete the server-side session, expire the cookie and redirect.

    Only absolute in-app paths are accepted for ``redirect``; anything else
    falls back to ``/sign-in``.
    """
    import main

    sid = request.cookies.get(main.SESSION_COOKIE_NAME)
    if sid:
        try:
            main.SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)

    target = redirect if _is_inapp_path(redirect) else "/sign-in"
    resp = RedirectResponse(url=target, status_code=302)
    resp.headers["Cache-Control"] = "private, no-store"
    opts = cookie_opts(load_settings().environment)
    resp.set_cookie(
        key=main.SESSION_COOKIE_NAME,
        value="",
        httponly=opts["httponly"],
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )
    return resp


__all__ = ["auth_router"]
