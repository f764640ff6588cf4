"""Operations endpoints: composite health and liveness."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from config import load_settings
from health import HealthReporter
from security_events import SECURITY_MONITOR

operations_router = APIRouter(tags=["Operations"])
logger = logging.getLogger("campusboard.web.operations")

_NO_STORE = {"Cache-Control": "no-store, max-age=0"}
_REPORTER: Optional[HealthReporter] = None
_DEFAULT_REPORTER: Optional[HealthReporter] = None


def _default_probe():
    """Ping the coursework repository (a ``select 1`` for the DB repo)."""
    from routes.coursework import _get_repo

    repo = _get_repo()
    ping = getattr(repo, "ping", None)
    if ping is None:
        raise RuntimeError("repository_has_no_ping")
    ping()


def _get_reporter() -> HealthReporter:
    """The injected reporter, else one built from settings and kept for reuse."""
    global _DEFAULT_REPORTER
    if _REPORTER is not None:
        return _REPORTER
    if _DEFAULT_REPORTER is None:
        settings = load_settings()
        _DEFAULT_REPORTER = HealthReporter(
            _default_probe,
            SECURITY_MONITOR,
            required_env=settings.required_env_vars,
            timeout_seconds=settings.health_db_timeout_seconds,
            slow_ms=settings.health_db_slow_ms,
            version=settings.app_version,
        )
    return _DEFAULT_REPORTER


def set_reporter(reporter: Optional[HealthReporter]) -> None:
    """Allow tests to inject a reporter (None restores the default)."""
    global _REPORTER, _DEFAULT_REPORTER
    _REPORTER = reporter
    _DEFAULT_REPORTER = None


@operations_router.get("/health")
async def health(request: Request):
    """Composite health; 503 when unhealthy, 200 otherwise. Public."""
    report = await _get_reporter().report()
    status_code = 503 if report.status == "unhealthy" else 200
    if report.status != "healthy":
        logger.warning("Health is %s", report.status)
    return JSONResponse(report.to_dict(), status_code=status_code, headers=_NO_STORE)


@operations_router.head("/health")
async def health_head(request: Request):
    """Liveness only: bare 200/503 from the database probe."""
    alive = await _get_reporter().is_alive()
    return Response(status_code=200 if alive else 503, headers=_NO_STORE)
