"""
Short-lived, single-use download tokens.

A client registers ``{url, filename}`` and receives a token; redeeming the
token once renders a page that starts the download. Tokens expire after five
minutes and are removed on first redemption.
"""
from __future__ import annotations

import json
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from coursework.errors import NotFoundError, PayloadTooLargeError, ValidationError

MAX_PAYLOAD_BYTES = 4000
TOKEN_TTL_SECONDS = 300
# Expired entries are kept this long so redemption can report "expired" instead of "unknown".
_EXPIRED_GRACE_SECONDS = 3600


class TokenExpiredError(NotFoundError):
    """Token existed but its lifetime elapsed."""


@dataclass(frozen=True)
class DownloadTarget:
    url: str
    filename: str
    expires_at: float


class DownloadTokenRegistry:
    def __init__(
        self,
        *,
        ttl_seconds: int = TOKEN_TTL_SECONDS,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: Dict[str, DownloadTarget] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._max_payload = max_payload_bytes
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, url: Optional[str], filename: Optional[str] = None) -> str:
        target_url = (url or "").strip()
        if not target_url:
            raise ValidationError("missing_url")
        name = (filename or "").strip() or "download"
        expires_at = self._clock() + self._ttl
        payload = json.dumps({"url": target_url, "filename": name, "expiry": int(expires_at * 1000)})
        if len(payload.encode("utf-8")) > self._max_payload:
            raise PayloadTooLargeError("payload_too_large")
        token = secrets.token_hex(16)
        with self._lock:
            self._sweep_locked()
            self._entries[token] = DownloadTarget(url=target_url, filename=name, expires_at=expires_at)
        return token

    def redeem(self, token: Optional[str]) -> DownloadTarget:
        """Remove and return the target; raises NotFoundError or TokenExpiredError."""
        if not token:
            raise ValidationError("missing_token")
        with self._lock:
            target = self._entries.pop(token, None)
        if target is None:
            raise NotFoundError("token_not_found")
        if target.expires_at < self._clock():
            raise TokenExpiredError("token_expired")
        return target

    def _sweep_locked(self) -> None:
        cutoff = self._clock() - _EXPIRED_GRACE_SECONDS
        stale = [t for t, target in self._entries.items() if target.expires_at < cutoff]
        for t in stale:
            del self._entries[t]


__all__ = [
    "DownloadTarget",
    "DownloadTokenRegistry",
    "MAX_PAYLOAD_BYTES",
    "TOKEN_TTL_SECONDS",
    "TokenExpiredError",
]
