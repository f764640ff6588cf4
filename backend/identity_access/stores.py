"""
In-memory session store for development and tests.

The cookie carries only an opaque session id; identity (sub, e-mail, name)
stays server-side. The access gate reads sessions on every request, so access
is guarded by a lock. For production, ``SESSIONS_BACKEND=db`` selects
``DBSessionStore``.
"""
from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    email: Optional[str]
    name: str
    expires_at: Optional[int] = None
    ttl_seconds: int = 3600

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at < now


class SessionStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._data: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def create(self, *, sub: str, email: Optional[str], name: str, ttl_seconds: int = 3600) -> SessionRecord:
        rec = SessionRecord(
            session_id=secrets.token_urlsafe(24),
            sub=sub,
            email=(email or "").strip().lower() or None,
            name=name,
            expires_at=self._now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            self._data[rec.session_id] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Return the live session or None; an expired session is dropped on read."""
        with self._lock:
            rec = self._data.get(session_id)
            if rec is not None and rec.is_expired(self._now()):
                del self._data[session_id]
                return None
        return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)

    def purge_expired(self) -> int:
        now = self._now()
        with self._lock:
            stale = [sid for sid, rec in self._data.items() if rec.is_expired(now)]
            for sid in stale:
                del self._data[sid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._data)


__all__ = ["SessionRecord", "SessionStore"]
