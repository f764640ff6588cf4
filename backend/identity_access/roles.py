"""
Identity resolver: map an authenticated identity to an internal role.

Why:
    User rows were historically keyed by e-mail and later by the identity
    provider's opaque id. Both keys may disagree for the same person, so the
    resolver consults both and lets an elevated role win. The id lookup is
    authoritative when it already yields an elevated role.

Security:
    ``check_admin`` is the only entry point the access gate uses. It never
    raises; any lookup error becomes a denied decision (fail closed).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from identity_access.domain import DEFAULT_ROLE, ELEVATED_ROLES, normalize_role

logger = logging.getLogger("campusboard.identity_access")


class UserDirectoryProtocol(Protocol):
    def get_role_by_id(self, user_id: str) -> Optional[str]: ...

    def get_role_by_email(self, email: str) -> Optional[str]: ...


def resolve_role(directory: UserDirectoryProtocol, user_id: Optional[str], email: Optional[str]) -> str:
    """Return ``member``, ``admin`` or ``owner`` for the given identity.

    Lookup errors propagate; callers that gate access use ``check_admin``.
    """
    by_id = normalize_role(directory.get_role_by_id(user_id)) if user_id else None
    if by_id in ELEVATED_ROLES:
        return by_id
    by_email = normalize_role(directory.get_role_by_email(email.strip().lower())) if email else None
    if by_email in ELEVATED_ROLES:
        return by_email
    return by_id or by_email or DEFAULT_ROLE


@dataclass(frozen=True)
class RoleDecision:
    """Outcome of an admin check. ``error`` is set when the lookup failed."""

    role: str
    allowed: bool
    error: Optional[str] = None


def check_admin(directory: UserDirectoryProtocol, user_id: Optional[str], email: Optional[str]) -> RoleDecision:
    try:
        role = resolve_role(directory, user_id, email)
    except Exception as exc:
        logger.warning("Role lookup failed; denying access: %s", exc.__class__.__name__)
        return RoleDecision(role=DEFAULT_ROLE, allowed=False, error=exc.__class__.__name__)
    return RoleDecision(role=role, allowed=role in ELEVATED_ROLES)


__all__ = ["RoleDecision", "UserDirectoryProtocol", "check_admin", "resolve_role"]
