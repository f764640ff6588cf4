"""
Users API routes: current identity, display name and role management.

Why:
    The directory (user table) is shared by the access gate (role checks) and
    these endpoints. It is abstracted behind ``_get_directory`` so tests can
    swap in ``InMemoryUserDirectory`` via ``set_directory``.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from coursework.errors import (
    AuthenticationError,
    AuthorizationError,
    CourseworkError,
    DependencyError,
    ValidationError,
)
from errors import error_response, private_response
from identity_access.directory import InMemoryUserDirectory
from identity_access.domain import ALLOWED_ROLES, normalize_role
from identity_access.profile import validate_display_name
from identity_access.roles import RoleDecision, check_admin

users_router = APIRouter(tags=["Users"])
logger = logging.getLogger("campusboard.web.users")

try:
    from identity_access.directory_db import DBUserDirectory  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    DBUserDirectory = None  # type: ignore


def _build_default_directory():
    if DBUserDirectory is None:
        return InMemoryUserDirectory()
    try:
        return DBUserDirectory()
    except Exception as exc:
        logger.warning("User directory unavailable (%s); using in-memory fallback", exc)
        return InMemoryUserDirectory()


_DIRECTORY = None


def _get_directory():
    global _DIRECTORY
    if _DIRECTORY is None:
        _DIRECTORY = _build_default_directory()
    return _DIRECTORY


def set_directory(directory) -> None:
    """Allow tests to swap the user directory implementation."""
    global _DIRECTORY
    _DIRECTORY = directory


def resolve_caller_role(sub: Optional[str], email: Optional[str]) -> RoleDecision:
    """Role decision for the gate; lookup errors deny (see ``check_admin``)."""
    return check_admin(_get_directory(), sub, email)


def viewer_semester(sub: str) -> Optional[int]:
    """The caller's semester for semester-gated reads.

    A failed lookup raises ``DependencyError`` so the check fails closed.
    """
    user = _directory_call(lambda d: d.get_user(sub), resource=f"user:{sub}", detail="semester_check_failed")
    value = (user or {}).get("semester")
    return int(value) if value is not None else None


def _directory_call(call, *, resource: str, detail: str = "database_read_failed"):
    """Run ``call(directory)``; infrastructure failures become ``DependencyError``."""
    try:
        return call(_get_directory())
    except CourseworkError:
        raise
    except Exception as exc:
        logger.error("Directory access for %s failed: %s", resource, exc.__class__.__name__)
        raise DependencyError(detail, resource=resource) from exc


class DisplayNameIn(BaseModel):
    display_name: str = Field(..., alias="displayName")

    model_config = {"populate_by_name": True}


class RoleIn(BaseModel):
    role: str


def _public_user(rec: dict) -> dict:
    return {
        "id": rec.get("id"),
        "email": rec.get("email"),
        "role": normalize_role(rec.get("role")) or "member",
        "displayName": rec.get("display_name"),
        "semester": rec.get("semester"),
    }


@users_router.get("/api/me")
async def get_me(request: Request):
    """Return the current identity with its resolved role."""
    user = getattr(request.state, "user", None)
    if not user:
        return error_response(AuthenticationError("unauthenticated"), operation="me")
    profile = None
    try:
        profile = _get_directory().get_user(user["sub"])
    except Exception as exc:
        logger.warning("Profile lookup failed: %s", exc.__class__.__name__)
    return private_response(
        {
            "sub": user["sub"],
            "email": user.get("email"),
            "name": user.get("name"),
            "role": user.get("role") or "member",
            "displayName": (profile or {}).get("display_name"),
            "semester": (profile or {}).get("semester"),
        },
        status_code=200,
    )


@users_router.post("/api/me/display-name")
async def set_display_name(request: Request, payload: DisplayNameIn):
    """Set the caller's display name once.

    Behavior:
        - 200 with the updated profile
        - 400 invalid name (3-32 chars of letters, digits, underscore)
        - 409 ``display_name_locked`` when already set, ``display_name_taken`` when in use
    """
    user = getattr(request.state, "user", None)
    if not user:
        return error_response(AuthenticationError("unauthenticated"), operation="set_display_name")
    sub = user["sub"]
    try:
        name = validate_display_name(payload.display_name)
        _directory_call(
            lambda d: d.ensure_user(sub, user.get("email")), resource=f"user:{sub}", detail="database_update_failed"
        )
        rec = _directory_call(
            lambda d: d.set_display_name_once(sub, name), resource=f"user:{sub}", detail="database_update_failed"
        )
    except CourseworkError as exc:
        return error_response(exc, operation="set_display_name")
    return private_response(_public_user(rec), status_code=200)


@users_router.get("/api/admin/users")
async def list_users(request: Request):
    """List users; admins see their own semester, owners see everyone.

    Permissions:
        The gate already restricts ``/api/admin`` to admin/owner. An admin
        without a semester sees nobody; a failed semester lookup is a 500.
    """
    user = getattr(request.state, "user", None) or {}
    role = user.get("role")
    semester = None
    try:
        if role != "owner":
            semester = viewer_semester(str(user.get("sub") or ""))
            if semester is None:
                return private_response({"items": []}, status_code=200)
        items = _directory_call(lambda d: d.list_users(semester=semester), resource="users")
    except CourseworkError as exc:
        return error_response(exc, operation="list_users")
    return private_response({"items": [_public_user(u) for u in items]}, status_code=200)


@users_router.patch("/api/admin/users/{user_id}/role")
async def change_role(request: Request, user_id: str, payload: RoleIn):
    """Change a user's role (owner only; owners cannot change their own role)."""
    user = getattr(request.state, "user", None) or {}
    try:
        if user.get("role") != "owner":
            raise AuthorizationError("owner_required", resource=f"user:{user_id}")
        if str(user.get("sub")) == user_id:
            raise AuthorizationError("cannot_change_own_role", resource=f"user:{user_id}")
        role = (payload.role or "").strip().lower()
        if role not in ALLOWED_ROLES:
            raise ValidationError("invalid_role")
        rec = _directory_call(
            lambda d: d.set_role(user_id, role), resource=f"user:{user_id}", detail="database_update_failed"
        )
    except CourseworkError as exc:
        return error_response(exc, operation=f"change_role user={user_id}")
    logger.info("Role of %s changed to %s by %s", user_id, rec.get("role"), user.get("sub"))
    return private_response(_public_user(rec), status_code=200)


__all__ = ["resolve_caller_role", "set_directory", "users_router", "viewer_semester"]
