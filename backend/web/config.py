"""
Configuration and startup security checks for CampusBoard.

Why: Values are read from the environment at call time so tests can
monkeypatch them per test. ``ensure_secure_config_on_startup`` aborts
production starts with obviously insecure settings; development stays
permissive.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Tuple


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


DEFAULT_REQUIRED_ENV_VARS = ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "DATABASE_URL")


@dataclass(frozen=True)
class Settings:
    environment: str
    allowed_email_suffix: str
    rate_limit_max_requests: int
    rate_limit_window_seconds: int
    rate_limit_backend: str
    redis_url: Optional[str]
    health_db_timeout_seconds: float
    health_db_slow_ms: int
    app_version: str
    required_env_vars: List[str]
    storage_bucket: str
    sessions_backend: str
    session_ttl_seconds: int
    idp_issuer: str
    idp_jwks_url: str
    idp_audience: Optional[str]
    idp_authorized_parties: Tuple[str, ...]


def load_settings() -> Settings:
    required_raw = (os.getenv("REQUIRED_ENV_VARS") or "").strip()
    required = [v.strip() for v in required_raw.split(",") if v.strip()] if required_raw else list(DEFAULT_REQUIRED_ENV_VARS)
    suffix = (os.getenv("ALLOWED_EMAIL_SUFFIX") or "@epu.edu.iq").strip().lower()
    if not suffix.startswith("@"):
        suffix = f"@{suffix}"
    return Settings(
        environment=(os.getenv("CAMPUSBOARD_ENV") or "dev").strip().lower(),
        allowed_email_suffix=suffix,
        rate_limit_max_requests=_int_env("RATE_LIMIT_MAX_REQUESTS", 60),
        rate_limit_window_seconds=_int_env("RATE_LIMIT_WINDOW_SECONDS", 60),
        rate_limit_backend=(os.getenv("RATE_LIMIT_BACKEND") or "memory").strip().lower(),
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        health_db_timeout_seconds=_float_env("HEALTH_DB_TIMEOUT_SECONDS", 2.0),
        health_db_slow_ms=_int_env("HEALTH_DB_SLOW_MS", 500),
        app_version=(os.getenv("APP_VERSION") or "0.1.0").strip(),
        required_env_vars=required,
        storage_bucket=(os.getenv("SUPABASE_STORAGE_BUCKET") or "course-files").strip(),
        sessions_backend=(os.getenv("SESSIONS_BACKEND") or "memory").strip().lower(),
        session_ttl_seconds=_int_env("SESSION_TTL_SECONDS", 3600),
        idp_issuer=(os.getenv("IDP_ISSUER") or "").strip().rstrip("/"),
        idp_jwks_url=(os.getenv("IDP_JWKS_URL") or "").strip(),
        idp_audience=(os.getenv("IDP_AUDIENCE") or "").strip() or None,
        idp_authorized_parties=tuple(
            p.strip().rstrip("/") for p in (os.getenv("IDP_AUTHORIZED_PARTIES") or "").split(",") if p.strip()
        ),
    )


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - Supabase service role key must be set and not a dummy placeholder.
    - DATABASE_URL must be set and must not disable TLS.
    - The rate limiter must use Redis so limits hold across instances.
    - The identity provider issuer must be an https URL.
    """
    env = os.getenv("CAMPUSBOARD_ENV", "dev")
    if not _is_prod_like(env):
        return

    srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    dsn = os.getenv("DATABASE_URL", "")
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is unset in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    backend = (os.getenv("RATE_LIMIT_BACKEND") or "memory").strip().lower()
    if backend != "redis" or not (os.getenv("REDIS_URL") or "").strip():
        raise SystemExit(
            "Refusing to start: RATE_LIMIT_BACKEND=redis with REDIS_URL is required in production."
        )

    issuer = (os.getenv("IDP_ISSUER") or "").strip()
    if not issuer.startswith("https://"):
        raise SystemExit("Refusing to start: IDP_ISSUER must be an https URL in production.")


__all__ = ["Settings", "ensure_secure_config_on_startup", "load_settings"]
