"""
Wire the Supabase storage adapter when configured.

Why:
    App startup may happen before Supabase is reachable, leaving the Null
    adapter in place. The helper is idempotent and is called at startup and
    again lazily from upload routes.

Security:
    Requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY. Only server-side
    adapters are created; no secrets reach clients.
"""
from __future__ import annotations

import logging
import os

from config import load_settings

logger = logging.getLogger("campusboard.web")


def wire_supabase_adapter_if_configured() -> bool:
    """Inject a Supabase adapter into the upload routes.

    Returns True when wiring succeeds and False when not configured or on
    error (the Null adapter stays in place). Safe to call repeatedly.
    """
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        return False
    try:
        from supabase import create_client

        from coursework.storage_supabase import SupabaseStorageAdapter
        from routes import coursework as _coursework

        bucket = load_settings().storage_bucket
        client = create_client(url, key)
        _coursework.set_storage_adapter(SupabaseStorageAdapter(client, bucket=bucket))
        logger.info("Storage adapter wired: Supabase")
        return True
    except Exception as exc:
        logger.warning("Storage wiring skipped due to error: %s: %s", exc.__class__.__name__, str(exc))
        return False


__all__ = ["wire_supabase_adapter_if_configured"]
