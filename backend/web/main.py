"""CampusBoard web application: access gate, security headers and API routers."""
from __future__ import annotations

import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via CAMPUSBOARD_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("CAMPUSBOARD_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv
    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass

import config as _cfg

# Fail fast on insecure production configuration.
_cfg.ensure_secure_config_on_startup()

from coursework.errors import AuthenticationError, AuthorizationError, CourseworkError, RateLimitError
from errors import error_response
from gate import client_ip, email_allowed, is_admin_path, is_api_path, is_public_path
from identity_access.stores import SessionStore
from rate_limit import RateLimiter, build_rate_limiter
from security_events import SECURITY_MONITOR

logger = logging.getLogger("campusboard.web")
SESSION_COOKIE_NAME = "campusboard_session"

app = FastAPI(title="CampusBoard", description="Course resources and presentation groups", version="0.1.0")

from routes.auth import auth_router
from routes.coursework import coursework_router
from routes.downloads import downloads_router
from routes.operations import operations_router
from routes.pages import pages_router
from routes.users import resolve_caller_role, users_router
from storage_wiring import wire_supabase_adapter_if_configured as _wire_storage

# Wire early so routes receive the adapter before the first request; upload
# routes retry lazily when Supabase was not reachable yet.
_wire_storage()


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


if (not _under_pytest()) and _cfg.load_settings().sessions_backend == "db":
    try:
        from identity_access.stores_db import DBSessionStore
        SESSION_STORE = DBSessionStore()
    except (ImportError, RuntimeError) as exc:
        logger.warning("DB session store unavailable (%s); using in-memory sessions", exc.__class__.__name__)
        SESSION_STORE = SessionStore()
else:
    SESSION_STORE = SessionStore()


def _build_rate_limiter() -> RateLimiter:
    settings = _cfg.load_settings()
    return build_rate_limiter(
        backend=settings.rate_limit_backend,
        redis_url=settings.redis_url,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


RATE_LIMITER = _build_rate_limiter()


# --- Access Gate ----------------------------------------------------------------

def _deny(request: Request, exc: CourseworkError, *, page_target: str):
    """JSON error for ``/api/`` paths, a redirect for pages."""
    path = request.url.path
    if is_api_path(path):
        return error_response(exc, operation=f"access_gate {request.method} {path}")
    return RedirectResponse(url=page_target, status_code=302)


@app.middleware("http")
async def access_gate(request: Request, call_next):
    """Rate limit, authenticate, enforce the e-mail domain and admin routes.

    Order matters: the rate limit applies to every ``/api/`` request before
    any session work; public pages skip the remaining checks.
    """
    path = request.url.path
    settings = _cfg.load_settings()

    if is_api_path(path):
        ip = client_ip(request.headers, request.client.host if request.client else None)
        try:
            decision = await RATE_LIMITER.hit(ip)
        except Exception as exc:
            logger.warning("Rate limiter unavailable: %s", exc.__class__.__name__)
            decision = None
        if decision is not None and not decision.allowed:
            SECURITY_MONITOR.record(
                "rate_limit_exceeded", f"{decision.count} requests in window", "warn", "gate", ip=ip, path=path
            )
            return error_response(
                RateLimitError(retry_after=decision.retry_after), operation=f"access_gate {request.method} {path}"
            )

    if is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)
    if not rec:
        return _deny(request, AuthenticationError("unauthenticated"), page_target="/sign-in")

    if not email_allowed(rec.email, settings.allowed_email_suffix):
        SECURITY_MONITOR.record("email_domain_rejected", "session e-mail outside allowed domain", "warn", "gate",
                                user_id=rec.sub, path=path)
        return _deny(request, AuthorizationError("email_domain", resource=f"user:{rec.sub}"),
                     page_target="/unauthorized")

    role = resolve_caller_role(rec.sub, rec.email)
    if is_admin_path(path) and not role.allowed:
        if role.error:
            SECURITY_MONITOR.record("admin_check_failed", role.error, "error", "gate", user_id=rec.sub, path=path)
        return _deny(request, AuthorizationError("forbidden", resource=f"user:{rec.sub}"), page_target="/dashboard")

    # Minimal, read-only user context for downstream handlers.
    request.state.user = {"sub": rec.sub, "email": rec.email, "name": rec.name, "role": role.role}
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if _cfg.load_settings().environment in ("prod", "production"):
        csp = (
            "default-src 'self'; script-src 'self'; style-src 'self'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self'; frame-ancestors 'none'"
        )
    else:
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self'; frame-ancestors 'none'"
        )
    # Routes may set a stricter CSP themselves (e.g. nonce-based download page).
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(pages_router)
app.include_router(auth_router)
app.include_router(operations_router)
app.include_router(users_router)
app.include_router(coursework_router)
app.include_router(downloads_router)
