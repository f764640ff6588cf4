"""
Postgres-backed user directory.

Security:
- The display name is written with ``where display_name is null`` so the
  Unset -> Set transition happens at most once, even for concurrent requests.
- A unique index on ``lower(display_name)`` reports taken names.

Note: Selected in web routes only when psycopg and a DSN are available.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False
else:  # pragma: no cover - import errors handled above
    try:
        from psycopg.errors import UniqueViolation  # type: ignore
    except Exception:  # pragma: no cover - fallback when errors module unavailable
        UniqueViolation = None  # type: ignore

from coursework.errors import ConflictError, NotFoundError, ValidationError
from identity_access.domain import normalize_role

_USER_COLUMNS_SQL = "id, email, role, display_name, semester"


def _row_to_user(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "email": row[1],
        "role": row[2],
        "display_name": row[3],
        "semester": int(row[4]) if row[4] is not None else None,
    }


class DBUserDirectory:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBUserDirectory")
        self._dsn = dsn or os.getenv("DATABASE_URL") or ""
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBUserDirectory")

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Tuple]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

    def ensure_user(self, user_id: str, email: Optional[str]) -> Dict[str, Any]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "insert into public.users (id, email) values (%s, %s) on conflict (id) do nothing",
                    (user_id, (email or "").strip().lower()),
                )
                cur.execute(f"select {_USER_COLUMNS_SQL} from public.users where id = %s", (user_id,))
                row = cur.fetchone()
                conn.commit()
        return _row_to_user(row)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self._fetch_one(f"select {_USER_COLUMNS_SQL} from public.users where id = %s", (user_id,))
        return _row_to_user(row) if row else None

    def get_role_by_id(self, user_id: str) -> Optional[str]:
        row = self._fetch_one("select role from public.users where id = %s", (user_id,))
        return row[0] if row else None

    def get_role_by_email(self, email: str) -> Optional[str]:
        row = self._fetch_one(
            "select role from public.users where lower(email) = %s limit 1",
            ((email or "").strip().lower(),),
        )
        return row[0] if row else None

    def set_display_name_once(self, user_id: str, name: str) -> Dict[str, Any]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        update public.users set display_name = %s
                        where id = %s and display_name is null
                        returning {_USER_COLUMNS_SQL}
                        """,
                        (name, user_id),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except Exception as exc:
            if UniqueViolation is not None and isinstance(exc, UniqueViolation):
                raise ConflictError("display_name_taken", resource=f"user:{user_id}") from exc
            raise
        if row:
            return _row_to_user(row)
        if self.get_user(user_id) is None:
            raise NotFoundError("user_not_found", resource=f"user:{user_id}")
        raise ConflictError("display_name_locked", resource=f"user:{user_id}")

    def set_role(self, user_id: str, role: str) -> Dict[str, Any]:
        canonical = normalize_role(role)
        if canonical is None:
            raise ValidationError("invalid_role")
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"update public.users set role = %s where id = %s returning {_USER_COLUMNS_SQL}",
                    (canonical, user_id),
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            raise NotFoundError("user_not_found", resource=f"user:{user_id}")
        return _row_to_user(row)

    def list_users(self, *, semester: Optional[int] = None) -> List[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                if semester is None:
                    cur.execute(f"select {_USER_COLUMNS_SQL} from public.users order by email")
                else:
                    cur.execute(
                        f"select {_USER_COLUMNS_SQL} from public.users where semester = %s order by email",
                        (int(semester),),
                    )
                rows = cur.fetchall() or []
        return [_row_to_user(r) for r in rows]


__all__ = ["DBUserDirectory"]
