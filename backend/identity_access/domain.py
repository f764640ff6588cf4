"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between the resolver and web layer.
- Legacy rows may still carry ``student``; it is read as ``member``.
"""

from __future__ import annotations

from typing import Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"member", "admin", "owner"})
ELEVATED_ROLES = frozenset({"admin", "owner"})
DEFAULT_ROLE = "member"

_LEGACY_ROLES = {"student": "member"}


def normalize_role(value: Optional[str]) -> Optional[str]:
    """Return the canonical role name or None when the value is not a known role."""
    if not isinstance(value, str):
        return None
    role = value.strip().lower()
    role = _LEGACY_ROLES.get(role, role)
    return role if role in ALLOWED_ROLES else None


def is_elevated(value: Optional[str]) -> bool:
    return normalize_role(value) in ELEVATED_ROLES


__all__ = ["ALLOWED_ROLES", "DEFAULT_ROLE", "ELEVATED_ROLES", "is_elevated", "normalize_role"]
