"""
Postgres-backed repository for courses, course files and presentation groups.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Returns plain dicts so services and web adapters stay ORM-free.
- Batch member replacement runs in a single transaction (all-or-nothing).
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from coursework.errors import NotFoundError


def _dsn() -> str:
    dsn = os.getenv("COURSEWORK_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not dsn:
        raise RuntimeError("Database DSN unavailable for DBCourseworkRepo")
    return dsn


_TS = "to_char({col} at time zone 'utc', 'YYYY-MM-DD\"T\"HH24:MI:SS\"+00:00\"')"

_FILE_COLUMNS_SQL = f"""
    id::text,
    course_id::text,
    section_id::text,
    title,
    url,
    uploaded_by,
    {_TS.format(col="created_at")}
"""

_MEMBER_COLUMNS_SQL = "id, group_id::text, name, email, user_id, is_creator"


def _file_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": row[0],
        "course_id": row[1],
        "section_id": row[2],
        "title": row[3],
        "url": row[4],
        "uploaded_by": row[5],
        "created_at": row[6],
    }


def _member_row_to_dict(row: Tuple) -> Dict[str, Any]:
    return {
        "id": int(row[0]),
        "group_id": row[1],
        "name": row[2],
        "email": row[3],
        "user_id": row[4],
        "is_creator": bool(row[5]),
    }


class DBCourseworkRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBCourseworkRepo")
        self._dsn = dsn or _dsn()

    # --- Health ------------------------------------------------------------------
    def ping(self) -> None:
        with psycopg.connect(self._dsn, connect_timeout=2) as conn:
            with conn.cursor() as cur:
                cur.execute("select 1")
                cur.fetchone()

    # --- Courses -----------------------------------------------------------------
    def get_course(self, course_id: str) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select id::text, title, owner_id, semester, file_url, file_name
                    from public.courses
                    where id::text = %s
                    """,
                    (course_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return {
            "id": row[0],
            "title": row[1],
            "owner_id": row[2],
            "semester": int(row[3]) if row[3] is not None else None,
            "file_url": row[4],
            "file_name": row[5],
        }

    def get_course_file_ref(self, course_id: str) -> Optional[Dict[str, Any]]:
        course = self.get_course(course_id)
        if not course or not course.get("file_url"):
            return None
        return {"url": course["file_url"], "name": course["file_name"]}

    def update_course_file_ref(self, course_id: str, *, url: str, name: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "update public.courses set file_url = %s, file_name = %s, updated_at = now() where id::text = %s",
                    (url, name, course_id),
                )
                updated = cur.rowcount
                conn.commit()
        return bool(updated)

    def section_exists(self, course_id: str, section_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select 1 from public.course_sections where id::text = %s and course_id::text = %s",
                    (section_id, course_id),
                )
                return cur.fetchone() is not None

    def create_course_file(
        self, course_id: str, section_id: str, *, title: str, url: str, uploaded_by: str
    ) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.course_files (course_id, section_id, title, url, uploaded_by)
                    values (%s, %s, %s, %s, %s)
                    returning {_FILE_COLUMNS_SQL}
                    """,
                    (course_id, section_id, title, url, uploaded_by),
                )
                row = cur.fetchone()
                conn.commit()
        return _file_row_to_dict(row) if row else None

    def get_course_file(self, file_id: str) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_FILE_COLUMNS_SQL} from public.course_files where id::text = %s",
                    (file_id,),
                )
                row = cur.fetchone()
        return _file_row_to_dict(row) if row else None

    def delete_course_file(self, file_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.course_files where id::text = %s", (file_id,))
                deleted = cur.rowcount
                conn.commit()
        return bool(deleted)

    def list_course_files(self, course_id: str) -> List[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_FILE_COLUMNS_SQL}
                    from public.course_files
                    where course_id::text = %s
                    order by created_at, id
                    """,
                    (course_id,),
                )
                rows = cur.fetchall() or []
        return [_file_row_to_dict(r) for r in rows]

    # --- Presentation groups -----------------------------------------------------
    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select id::text, title, created_by, max_members, course_id::text, file_url, file_name
                    from public.presentation_groups
                    where id::text = %s
                    """,
                    (group_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return {
            "id": row[0],
            "title": row[1],
            "created_by": row[2],
            "max_members": int(row[3]),
            "course_id": row[4],
            "file_url": row[5],
            "file_name": row[6],
        }

    def get_group_member(self, group_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_MEMBER_COLUMNS_SQL}
                    from public.group_members
                    where group_id::text = %s and user_id = %s
                    limit 1
                    """,
                    (group_id, user_id),
                )
                row = cur.fetchone()
        return _member_row_to_dict(row) if row else None

    def get_member(self, group_id: str, member_id: int) -> Optional[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_MEMBER_COLUMNS_SQL} from public.group_members where group_id::text = %s and id = %s",
                    (group_id, int(member_id)),
                )
                row = cur.fetchone()
        return _member_row_to_dict(row) if row else None

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_MEMBER_COLUMNS_SQL} from public.group_members where group_id::text = %s order by id",
                    (group_id,),
                )
                rows = cur.fetchall() or []
        return [_member_row_to_dict(r) for r in rows]

    def get_group_file_ref(self, group_id: str) -> Optional[Dict[str, Any]]:
        group = self.get_group(group_id)
        if not group or not group.get("file_url"):
            return None
        return {"url": group["file_url"], "name": group["file_name"]}

    def update_group_file_ref(self, group_id: str, *, url: str, name: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "update public.presentation_groups set file_url = %s, file_name = %s where id::text = %s",
                    (url, name, group_id),
                )
                updated = cur.rowcount
                conn.commit()
        return bool(updated)

    def replace_group_members(self, group_id: str, *, members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace all non-creator members; rolls back entirely on any error."""
        keep_ids = [int(m["id"]) for m in members if m.get("id") is not None]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select id from public.group_members
                    where group_id::text = %s and not is_creator
                    for update
                    """,
                    (group_id,),
                )
                existing = {int(r[0]) for r in (cur.fetchall() or [])}
                unknown = [mid for mid in keep_ids if mid not in existing]
                if unknown:
                    conn.rollback()
                    raise NotFoundError("member_not_found", resource=f"member:{unknown[0]}")
                cur.execute(
                    """
                    delete from public.group_members
                    where group_id::text = %s and not is_creator and not (id = any(%s))
                    """,
                    (group_id, keep_ids),
                )
                for item in members:
                    if item.get("id") is not None:
                        cur.execute(
                            "update public.group_members set name = %s, email = %s where id = %s",
                            (item["name"], item.get("email"), int(item["id"])),
                        )
                    else:
                        cur.execute(
                            """
                            insert into public.group_members (group_id, name, email, is_creator)
                            values (%s, %s, %s, false)
                            """,
                            (group_id, item["name"], item.get("email")),
                        )
                cur.execute(
                    f"""
                    select {_MEMBER_COLUMNS_SQL} from public.group_members
                    where group_id::text = %s and not is_creator
                    order by id
                    """,
                    (group_id,),
                )
                rows = cur.fetchall() or []
                conn.commit()
        return [_member_row_to_dict(r) for r in rows]

    def delete_member_if_exists(self, group_id: str, member_id: int) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    delete from public.group_members
                    where group_id::text = %s and id = %s and not is_creator
                    """,
                    (group_id, int(member_id)),
                )
                deleted = cur.rowcount
                conn.commit()
        return bool(deleted)
