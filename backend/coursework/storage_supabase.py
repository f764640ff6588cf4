"""
Supabase-backed object store for course and presentation files.

This adapter implements ObjectStoreProtocol using a provided Supabase client.
It is duck-typed to avoid a hard dependency during testing. The client is
expected to expose `.storage.from_(bucket)` (or `.from_(bucket)` for a bare
storage3 client) which returns an object offering:

- upload(path, body, options) -> Any
- get_public_url(path) -> str | { publicUrl | publicURL | public_url }
- remove([path]) -> Any

Security:
- The caller must ensure the client is initialized with the Service Role key.
- Only URLs that resolve to an object inside the configured bucket are ever
  deleted; everything else is reported as foreign by `owns_url`.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
import os
from urllib.parse import unquote, urlparse as _urlparse

from .storage import ObjectStoreProtocol


class SupabaseStorageAdapter(ObjectStoreProtocol):
    """Object store using a supabase client for Storage operations."""

    def __init__(self, client: Any, *, bucket: str = "course-files"):
        # Duck-typed supabase client, e.g., from `supabase import create_client(...)`.
        self._client = client
        self._bucket_name = bucket

    # --- Helpers -----------------------------------------------------------------

    def _bucket(self) -> Any:
        """Return a bucket proxy from either supabase client or storage3 client."""
        c = self._client
        try:
            storage = getattr(c, "storage", None)
            if storage is not None and hasattr(storage, "from_"):
                return storage.from_(self._bucket_name)
            if hasattr(c, "from_"):
                return c.from_(self._bucket_name)  # type: ignore[attr-defined]
        except Exception:
            pass
        raise RuntimeError("invalid_supabase_client")

    @staticmethod
    def _first_key(d: Dict[str, Any], *keys: str) -> Any:
        for k in keys:
            if k in d and d[k] is not None:
                return d[k]
        return None

    def _normalize_key(self, key: str) -> str:
        # Supabase Storage expects paths relative to the bucket
        norm_key = key.lstrip("/")
        prefix = f"{self._bucket_name}/"
        if norm_key.startswith(prefix):
            norm_key = norm_key[len(prefix):]
        return norm_key

    def _key_from_url(self, url: str) -> Optional[str]:
        """Extract the bucket-relative key from a storage URL, or None if foreign."""
        try:
            parsed = _urlparse(url or "")
        except Exception:
            return None
        if not parsed.scheme or not parsed.netloc:
            return None
        base = (os.getenv("SUPABASE_URL") or "").strip()
        if base:
            base_host = (_urlparse(base).hostname or "").lower()
            if base_host and (parsed.hostname or "").lower() != base_host:
                return None
        path = parsed.path or ""
        for marker in ("/object/public/", "/object/sign/", "/object/authenticated/"):
            needle = f"{marker}{self._bucket_name}/"
            if needle in path:
                key = unquote(path.split(needle, 1)[1])
                return key or None
        return None

    # --- Protocol methods --------------------------------------------------------

    def put_object(self, *, key: str, body: bytes, content_type: str) -> str:
        """Upload a binary object and return its public URL.

        Behavior:
            - Normalizes the key to be bucket-relative.
            - Passes content-type via options to be compatible across client versions
              (supports both "content-type" and "contentType" keys).

        Raises:
            Propagates client exceptions; RuntimeError when no URL can be derived.
        """
        b = self._bucket()
        norm_key = self._normalize_key(key)
        opts = {"content-type": content_type, "contentType": content_type}
        b.upload(norm_key, body, opts)
        res = b.get_public_url(norm_key)
        url = None
        if isinstance(res, str):
            url = res
        elif isinstance(res, dict):
            url = self._first_key(res, "publicUrl", "publicURL", "public_url")
            data = res.get("data") if "data" in res else None
            if url is None and isinstance(data, dict):
                url = self._first_key(data, "publicUrl", "publicURL", "public_url")
        if not url:
            raise RuntimeError("failed_to_resolve_public_url")
        # Some client versions append a bare "?" to public URLs.
        return str(url).rstrip("?")

    def delete_object(self, *, url: str) -> None:
        key = self._key_from_url(url)
        if key is None:
            raise ValueError("foreign_url")
        self._bucket().remove([key])

    def owns_url(self, url: str) -> bool:
        return self._key_from_url(url) is not None


__all__ = ["SupabaseStorageAdapter"]
