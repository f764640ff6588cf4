"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and give every test a fresh,
in-memory application state (repositories, directory, limiter, monitor).
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

# Tests never talk to real backing services.
for _var in ("DATABASE_URL", "COURSEWORK_DATABASE_URL", "SUPABASE_URL", "REDIS_URL", "CAMPUSBOARD_ENV", "IDP_ISSUER"):
    os.environ.pop(_var, None)
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_app_state(monkeypatch: pytest.MonkeyPatch):
    """Swap every module-level singleton for a fresh in-memory instance."""
    for var in ("ALLOWED_EMAIL_SUFFIX", "RATE_LIMIT_MAX_REQUESTS", "RATE_LIMIT_WINDOW_SECONDS", "REQUIRED_ENV_VARS"):
        monkeypatch.delenv(var, raising=False)

    import main  # type: ignore
    import routes.coursework as coursework  # type: ignore
    import routes.downloads as downloads  # type: ignore
    import routes.operations as operations  # type: ignore
    import routes.users as users  # type: ignore
    from coursework.repo_memory import InMemoryCourseworkRepo
    from coursework.storage import NullStorageAdapter
    from downloads import DownloadTokenRegistry  # type: ignore
    from identity_access.directory import InMemoryUserDirectory
    from identity_access.stores import SessionStore
    from rate_limit import RateLimiter  # type: ignore
    from security_events import SECURITY_MONITOR  # type: ignore

    coursework.set_repo(InMemoryCourseworkRepo())
    coursework.set_storage_adapter(NullStorageAdapter())
    users.set_directory(InMemoryUserDirectory())
    downloads.set_registry(DownloadTokenRegistry())
    operations.set_reporter(None)
    monkeypatch.setattr(main, "SESSION_STORE", SessionStore())
    monkeypatch.setattr(main, "RATE_LIMITER", RateLimiter())
    SECURITY_MONITOR.clear()
    yield
    SECURITY_MONITOR.clear()
