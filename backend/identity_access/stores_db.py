"""
Database-backed SessionStore for production use (Postgres/Supabase).

Why: In-memory sessions are not durable and do not scale across instances.
This store persists sessions in Postgres while keeping the cookie opaque.

Security:
- Intended for a service-role connection string; application roles must not
  read the sessions table.
- Only the opaque ``session_id`` is set in the cookie.

Note: Imported only when enabled via ``SESSIONS_BACKEND=db``.
"""
from __future__ import annotations

from typing import Optional
import os
import re
import time

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from identity_access.stores import SessionRecord

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Use a service role in Supabase.
    table:
        Table name, optionally schema-qualified. Defaults to ``public.app_sessions``.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or os.getenv("SESSION_DATABASE_URL") or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        # The table name is interpolated into SQL; only plain identifiers pass.
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def create(self, *, sub: str, email: Optional[str], name: str, ttl_seconds: int = 3600) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into {self._table} (session_id, sub, email, name, expires_at) "
                    f"values (gen_random_uuid()::text, %s, %s, %s, to_timestamp(%s)) returning session_id",
                    (sub, email, name, expires_at),
                )
                row = cur.fetchone()
        sid = str(row[0]) if row else ""
        return SessionRecord(
            session_id=sid, sub=sub, email=email, name=name, expires_at=expires_at, ttl_seconds=ttl_seconds
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select session_id, sub, email, name, extract(epoch from expires_at)::bigint "
                    f"from {self._table} where session_id = %s and expires_at > now()",
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return SessionRecord(
            session_id=row[0],
            sub=row[1],
            email=row[2],
            name=row[3],
            expires_at=int(row[4]) if row[4] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from {self._table} where session_id = %s", (session_id,))
