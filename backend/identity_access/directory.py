"""
In-memory user directory for tests and offline development.

Why:
    The identity resolver, display-name flow and role management all read the
    same user table. This adapter implements that table in process memory with
    the same contract as ``DBUserDirectory``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from coursework.errors import ConflictError, NotFoundError, ValidationError
from identity_access.domain import DEFAULT_ROLE, normalize_role


@dataclass
class UserRecord:
    id: str
    email: str
    role: str = DEFAULT_ROLE
    display_name: Optional[str] = None
    semester: Optional[int] = None


class InMemoryUserDirectory:
    def __init__(self) -> None:
        self.users: Dict[str, UserRecord] = {}

    def add_user(
        self,
        user_id: str,
        email: str,
        *,
        role: str = DEFAULT_ROLE,
        display_name: Optional[str] = None,
        semester: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Insert or overwrite a user row (seeding helper).

        The role is stored as given so legacy values can be exercised.
        """
        rec = UserRecord(
            id=user_id,
            email=(email or "").strip().lower(),
            role=role,
            display_name=display_name,
            semester=semester,
        )
        self.users[user_id] = rec
        return asdict(rec)

    def ensure_user(self, user_id: str, email: Optional[str]) -> Dict[str, Any]:
        rec = self.users.get(user_id)
        if rec is None:
            rec = UserRecord(id=user_id, email=(email or "").strip().lower())
            self.users[user_id] = rec
        return asdict(rec)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        rec = self.users.get(user_id)
        return asdict(rec) if rec else None

    def get_role_by_id(self, user_id: str) -> Optional[str]:
        rec = self.users.get(user_id)
        return rec.role if rec else None

    def get_role_by_email(self, email: str) -> Optional[str]:
        needle = (email or "").strip().lower()
        for rec in self.users.values():
            if rec.email == needle:
                return rec.role
        return None

    def set_display_name_once(self, user_id: str, name: str) -> Dict[str, Any]:
        rec = self.users.get(user_id)
        if rec is None:
            raise NotFoundError("user_not_found", resource=f"user:{user_id}")
        if rec.display_name is not None:
            raise ConflictError("display_name_locked", resource=f"user:{user_id}")
        lowered = name.lower()
        for other in self.users.values():
            if other.id != user_id and (other.display_name or "").lower() == lowered:
                raise ConflictError("display_name_taken", resource=f"user:{user_id}")
        rec.display_name = name
        return asdict(rec)

    def set_role(self, user_id: str, role: str) -> Dict[str, Any]:
        canonical = normalize_role(role)
        if canonical is None:
            raise ValidationError("invalid_role")
        rec = self.users.get(user_id)
        if rec is None:
            raise NotFoundError("user_not_found", resource=f"user:{user_id}")
        rec.role = canonical
        return asdict(rec)

    def list_users(self, *, semester: Optional[int] = None) -> List[Dict[str, Any]]:
        """List users ordered by email; ``semester`` narrows the result when set."""
        items = [
            asdict(rec)
            for rec in self.users.values()
            if semester is None or rec.semester == semester
        ]
        items.sort(key=lambda u: u["email"])
        return items


__all__ = ["InMemoryUserDirectory", "UserRecord"]
