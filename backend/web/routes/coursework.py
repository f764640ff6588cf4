"""
Course file and presentation group API routes.

Why:
    Thin adapter over ``UploadCoordinator`` and ``MembersService``: parse the
    request, build the caller from the gate's ``request.state.user`` and map
    service errors to JSON responses.

Notes:
    - Authentication, e-mail domain and rate limiting are enforced by the gate
      middleware; ownership and role checks live in the services.
    - Persistence prefers the Postgres repo when psycopg and a DSN are
      available and falls back to the in-memory repo otherwise. Tests call
      ``set_repo`` / ``set_storage_adapter`` to isolate state.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from coursework.errors import AuthenticationError, CourseworkError, PayloadTooLargeError, ValidationError
from coursework.repo_memory import InMemoryCourseworkRepo
from coursework.services.members import MembersService
from coursework.services.uploads import Caller, ExternalLink, FileUpload, UploadCoordinator, UploadSettings
from coursework.storage import NullStorageAdapter, ObjectStoreProtocol
from errors import error_response, private_response
from routes.users import viewer_semester

coursework_router = APIRouter(tags=["Coursework"])
logger = logging.getLogger("campusboard.web.coursework")

try:
    from coursework.repo_db import DBCourseworkRepo  # type: ignore
    _DB_REPO_IMPORT_ERROR = None
except Exception as exc:  # pragma: no cover - optional dependency
    DBCourseworkRepo = None  # type: ignore
    _DB_REPO_IMPORT_ERROR = exc


def _build_default_repo():
    """Prefer the DB-backed repo; fall back to in-memory if unavailable."""
    if DBCourseworkRepo is None:
        if _DB_REPO_IMPORT_ERROR:
            logger.warning("Coursework repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return InMemoryCourseworkRepo()
    try:
        return DBCourseworkRepo()
    except Exception as exc:
        logger.warning("Coursework repo unavailable (%s); using in-memory fallback", exc)
        return InMemoryCourseworkRepo()


_REPO = None
UPLOAD_SETTINGS = UploadSettings()
STORAGE_ADAPTER: ObjectStoreProtocol = NullStorageAdapter()


def _get_repo():
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:
    """Allow tests to swap the coursework repository implementation."""
    global _REPO
    _REPO = repo


def set_storage_adapter(adapter: ObjectStoreProtocol) -> None:
    """Allow tests (and storage wiring) to provide the object store."""
    global STORAGE_ADAPTER
    STORAGE_ADAPTER = adapter


def _get_storage() -> ObjectStoreProtocol:
    if isinstance(STORAGE_ADAPTER, NullStorageAdapter):
        # Supabase may not have been reachable at startup; try again lazily.
        try:
            from storage_wiring import wire_supabase_adapter_if_configured

            wire_supabase_adapter_if_configured()
        except Exception as exc:  # pragma: no cover - logged inside wiring
            logger.warning("Lazy storage wiring failed: %s", exc.__class__.__name__)
    return STORAGE_ADAPTER


def _get_uploads() -> UploadCoordinator:
    return UploadCoordinator(_get_repo(), _get_storage(), settings=UPLOAD_SETTINGS)


def _get_members() -> MembersService:
    return MembersService(_get_repo())


def _caller(request: Request) -> Optional[Caller]:
    user = getattr(request.state, "user", None)
    if not user or not user.get("sub"):
        return None
    return Caller(sub=str(user["sub"]), role=str(user.get("role") or "member"), email=user.get("email"))


def _unauthenticated(operation: str):
    return error_response(AuthenticationError("unauthenticated"), operation=operation)


async def _read_submission(request: Request) -> Tuple[Optional[FileUpload], Optional[ExternalLink], Optional[str]]:
    """Parse a multipart (``file`` or ``driveUrl``/``fileName``) or JSON submission."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > UPLOAD_SETTINGS.max_size_bytes + 64 * 1024:
        raise PayloadTooLargeError("size_exceeded")
    ctype = (request.headers.get("content-type") or "").lower()
    if ctype.startswith("application/json"):
        try:
            data = await request.json()
        except Exception:
            raise ValidationError("invalid_json")
        if not isinstance(data, dict):
            raise ValidationError("invalid_json")
        drive_url, file_name, title = data.get("driveUrl"), data.get("fileName"), data.get("title")
        upload = None
    else:
        try:
            form = await request.form()
        except Exception:
            raise ValidationError("invalid_form")
        upload = None
        item = form.get("file")
        if item is not None and hasattr(item, "read"):
            body = await item.read()
            upload = FileUpload(
                filename=getattr(item, "filename", "") or "",
                body=body,
                content_type=getattr(item, "content_type", None) or "application/octet-stream",
            )
        drive_url, file_name, title = form.get("driveUrl"), form.get("fileName"), form.get("title")
    link = None
    if isinstance(drive_url, str) and drive_url.strip():
        link = ExternalLink(url=drive_url, name=file_name if isinstance(file_name, str) else "")
    return upload, link, title if isinstance(title, str) else None


# --- Courses -------------------------------------------------------------------

@coursework_router.post("/api/courses/{course_id}/file")
async def replace_course_file(request: Request, course_id: str):
    """Replace the single current file of a course.

    Behavior:
        - 200 with ``{url, name}`` on success
        - 400 missing/invalid input, 413 over the size limit
        - 403 unless the caller is an admin/owner AND owns the course
        - 404 unknown course, 500 storage or database failure

    Permissions:
        Elevated role and course ownership.
    """
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("replace_course_file")
    try:
        upload, link, _ = await _read_submission(request)
        result = _get_uploads().replace_course_file(course_id, caller, upload=upload, link=link)
    except CourseworkError as exc:
        return error_response(exc, operation=f"replace_course_file course={course_id}")
    return private_response(result, status_code=200)


@coursework_router.post("/api/courses/{course_id}/sections/{section_id}/files")
async def add_section_file(request: Request, course_id: str, section_id: str):
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("add_section_file")
    try:
        upload, link, title = await _read_submission(request)
        record = _get_uploads().add_section_file(
            course_id, section_id, caller, upload=upload, link=link, title=title
        )
    except CourseworkError as exc:
        return error_response(exc, operation=f"add_section_file course={course_id} section={section_id}")
    return private_response(record, status_code=201)


@coursework_router.delete("/api/courses/files/{file_id}")
async def delete_course_file(request: Request, file_id: str):
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("delete_course_file")
    try:
        _get_uploads().delete_course_file(file_id, caller)
    except CourseworkError as exc:
        return error_response(exc, operation=f"delete_course_file file={file_id}")
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


@coursework_router.get("/api/courses/{course_id}/files")
async def list_course_files(request: Request, course_id: str):
    """List a course's files for the caller's semester.

    403 for other semesters; 500 when the semester cannot be resolved.
    """
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("list_course_files")
    try:
        viewer = Caller(sub=caller.sub, role=caller.role, email=caller.email, semester=viewer_semester(caller.sub))
        items = _get_uploads().list_course_files(course_id, viewer)
    except CourseworkError as exc:
        return error_response(exc, operation=f"list_course_files course={course_id}")
    return private_response({"items": items}, status_code=200)


# --- Presentation groups ------------------------------------------------------

class MemberIn(BaseModel):
    id: Optional[int] = None
    name: str = Field(default="", max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)


class MembersReplace(BaseModel):
    members: List[MemberIn] = Field(default_factory=list)


@coursework_router.post("/api/presentation-groups/{group_id}/file")
async def replace_group_file(request: Request, group_id: str):
    """Replace a presentation group's file. Only the group creator may upload."""
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("replace_group_file")
    try:
        upload, link, _ = await _read_submission(request)
        result = _get_uploads().replace_group_file(group_id, caller, upload=upload, link=link)
    except CourseworkError as exc:
        return error_response(exc, operation=f"replace_group_file group={group_id}")
    return private_response(result, status_code=200)


@coursework_router.get("/api/presentation-groups/{group_id}/members")
async def list_group_members(request: Request, group_id: str):
    """Members of a group, creator first (group members only)."""
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("list_group_members")
    try:
        members = _get_members().list_members(group_id, caller.sub)
    except CourseworkError as exc:
        return error_response(exc, operation=f"list_group_members group={group_id}")
    return private_response({"members": members}, status_code=200)


@coursework_router.put("/api/presentation-groups/{group_id}/members")
async def replace_group_members(request: Request, group_id: str, payload: MembersReplace):
    """Replace all non-creator members in one all-or-nothing step (creator only)."""
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("replace_group_members")
    try:
        members = _get_members().save_members(
            group_id, caller.sub, [m.model_dump() for m in payload.members]
        )
    except CourseworkError as exc:
        return error_response(exc, operation=f"replace_group_members group={group_id}")
    return private_response({"members": members}, status_code=200)


@coursework_router.delete("/api/presentation-groups/{group_id}/members/{member_id}")
async def remove_group_member(request: Request, group_id: str, member_id: int):
    """Ensure a member is absent; repeated calls also return 204."""
    caller = _caller(request)
    if caller is None:
        return _unauthenticated("remove_group_member")
    try:
        _get_members().ensure_member_absent(group_id, member_id, caller.sub)
    except CourseworkError as exc:
        return error_response(exc, operation=f"remove_group_member group={group_id} member={member_id}")
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


__all__ = ["coursework_router", "set_repo", "set_storage_adapter"]
