"""Object store interface for course and presentation files."""
from __future__ import annotations

from typing import Protocol


class ObjectStoreProtocol(Protocol):
    """Protocol describing the blob store behind uploaded files.

    URLs are the durable handle: ``put_object`` returns the URL persisted in the
    database, ``delete_object`` takes that same URL back. ``owns_url`` tells
    callers whether a URL points into this store at all, so references to
    third-party hosts are never handed to ``delete_object``.
    """

    def put_object(self, *, key: str, body: bytes, content_type: str) -> str: ...

    def delete_object(self, *, url: str) -> None: ...

    def owns_url(self, url: str) -> bool: ...


class NullStorageAdapter:
    """Fallback adapter that signals the storage backend is not configured."""

    def put_object(self, *, key: str, body: bytes, content_type: str) -> str:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def delete_object(self, *, url: str) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def owns_url(self, url: str) -> bool:
        return False


__all__ = ["ObjectStoreProtocol", "NullStorageAdapter"]
