"""Presentation group membership: draft editing, batch save and idempotent removal."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from coursework.errors import (
    AuthorizationError,
    ConflictError,
    CourseworkError,
    DependencyError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger("campusboard.members")


class MembersRepoProtocol(Protocol):
    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]: ...

    def get_group_member(self, group_id: str, user_id: str) -> Optional[Dict[str, Any]]: ...

    def get_member(self, group_id: str, member_id: int) -> Optional[Dict[str, Any]]: ...

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]: ...

    def replace_group_members(
        self, group_id: str, *, members: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]: ...

    def delete_member_if_exists(self, group_id: str, member_id: int) -> bool: ...


@dataclass
class MemberDraft:
    """A member as edited before saving; ``id`` is None until persisted."""

    name: str = ""
    id: Optional[int] = None
    email: Optional[str] = None


def _coerce(value: Union[MemberDraft, Dict[str, Any]]) -> MemberDraft:
    if isinstance(value, MemberDraft):
        return value
    raw_id = value.get("id")
    member_id: Optional[int]
    if raw_id is None or raw_id == "":
        member_id = None
    else:
        try:
            member_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValidationError("invalid_member_id")
        if member_id <= 0:
            raise ValidationError("invalid_member_id")
    email = value.get("email")
    return MemberDraft(
        name=str(value.get("name") or ""),
        id=member_id,
        email=str(email).strip() or None if email is not None else None,
    )


def reconcile_members(members: Iterable[Union[MemberDraft, Dict[str, Any]]]) -> Dict[int, MemberDraft]:
    """Key drafts by member id; unsaved drafts get synthetic keys -1, -2, ...

    A persisted id submitted twice collapses into one entry and the last
    submission wins. Insertion order of first appearance is kept.
    """
    reconciled: Dict[int, MemberDraft] = {}
    next_synthetic = -1
    for raw in members:
        draft = _coerce(raw)
        if draft.id is None:
            reconciled[next_synthetic] = draft
            next_synthetic -= 1
        else:
            reconciled[draft.id] = draft
    return reconciled


def _require_names(members: Iterable[MemberDraft]) -> None:
    for draft in members:
        if not draft.name.strip():
            raise ValidationError("member_name_required")


@dataclass
class MembershipEditor:
    """In-progress edit of a group's non-creator members.

    The creator occupies one seat, so adding is allowed only while
    ``len(members) + 1`` stays strictly below ``max_members``.
    """

    max_members: int
    members: Dict[int, MemberDraft] = field(default_factory=dict)
    _next_synthetic: int = -1

    @classmethod
    def from_members(
        cls, max_members: int, members: Iterable[Union[MemberDraft, Dict[str, Any]]]
    ) -> "MembershipEditor":
        reconciled = reconcile_members(members)
        lowest = min((k for k in reconciled if k < 0), default=0)
        return cls(max_members=max_members, members=reconciled, _next_synthetic=lowest - 1)

    def can_add(self) -> bool:
        return len(self.members) + 1 < self.max_members

    def add_member(self, name: str = "", email: Optional[str] = None) -> int:
        if not self.can_add():
            raise ValidationError(f"capacity_exceeded: at most {self.max_members} members including the creator")
        key = self._next_synthetic
        self._next_synthetic -= 1
        self.members[key] = MemberDraft(name=name, email=email)
        return key

    def update_member(self, key: int, *, name: Optional[str] = None, email: Optional[str] = None) -> None:
        draft = self.members.get(key)
        if draft is None:
            raise NotFoundError("member_not_found", resource=f"member:{key}")
        if name is not None:
            draft.name = name
        if email is not None:
            draft.email = email

    def remove_member(self, key: int) -> None:
        self.members.pop(key, None)

    def validate(self) -> List[MemberDraft]:
        """Return drafts ready for submission or raise ValidationError."""
        drafts = list(self.members.values())
        _require_names(drafts)
        if len(drafts) + 1 > self.max_members:
            raise ValidationError("capacity_exceeded")
        return drafts


@dataclass
class MembersService:
    """Server-side membership use cases; only the group creator may change members."""

    repo: MembersRepoProtocol

    def _read(self, resource: str, read: Callable[[], Any]) -> Any:
        try:
            return read()
        except CourseworkError:
            raise
        except Exception as exc:
            logger.error("Reading %s failed: %s", resource, exc.__class__.__name__)
            raise DependencyError("database_read_failed", resource=resource) from exc

    def _require_group(self, group_id: str) -> Dict[str, Any]:
        group = self._read(f"group:{group_id}", lambda: self.repo.get_group(group_id))
        if group is None:
            raise NotFoundError("group_not_found", resource=f"group:{group_id}")
        return group

    def _require_creator(self, group_id: str, caller_sub: str) -> Dict[str, Any]:
        group = self._require_group(group_id)
        member = self._read(f"group:{group_id}", lambda: self.repo.get_group_member(group_id, caller_sub))
        if not member or not member.get("is_creator"):
            raise AuthorizationError("not_creator", resource=f"group:{group_id}")
        return group

    def list_members(self, group_id: str, caller_sub: str) -> List[Dict[str, Any]]:
        """Members of a group, creator first; visible to the group's own members."""
        self._require_group(group_id)
        if not self._read(f"group:{group_id}", lambda: self.repo.get_group_member(group_id, caller_sub)):
            raise AuthorizationError("not_member", resource=f"group:{group_id}")
        members = self._read(f"group:{group_id}", lambda: self.repo.list_group_members(group_id))
        return sorted(members, key=lambda m: not m.get("is_creator"))

    def save_members(
        self, group_id: str, caller_sub: str, members: Iterable[Union[MemberDraft, Dict[str, Any]]]
    ) -> List[Dict[str, Any]]:
        """Replace all non-creator members in one step."""
        reconciled = reconcile_members(members)
        drafts = list(reconciled.values())
        _require_names(drafts)
        group = self._require_creator(group_id, caller_sub)
        max_members = int(group.get("max_members") or 0)
        if max_members and len(drafts) + 1 > max_members:
            raise ValidationError("capacity_exceeded")
        payload = [
            {"id": d.id, "name": d.name.strip(), "email": d.email}
            for d in drafts
        ]
        try:
            return self.repo.replace_group_members(group_id, members=payload)
        except CourseworkError:
            raise
        except Exception as exc:
            logger.error("Saving members of group %s failed: %s", group_id, exc.__class__.__name__)
            raise DependencyError("database_update_failed", resource=f"group:{group_id}") from exc

    def ensure_member_absent(self, group_id: str, member_id: int, caller_sub: str) -> bool:
        """Delete a member if present. Returns False when it was already gone."""
        self._require_creator(group_id, caller_sub)
        existing = self._read(f"member:{member_id}", lambda: self.repo.get_member(group_id, member_id))
        if existing is None:
            return False
        if existing.get("is_creator"):
            raise ConflictError("cannot_remove_creator", resource=f"member:{member_id}")
        try:
            removed = self.repo.delete_member_if_exists(group_id, member_id)
        except Exception as exc:
            logger.error("Removing member %s of group %s failed: %s", member_id, group_id, exc.__class__.__name__)
            raise DependencyError("database_update_failed", resource=f"member:{member_id}") from exc
        if removed:
            logger.info("Member %s removed from group %s", member_id, group_id)
        return bool(removed)


__all__ = [
    "MemberDraft",
    "MembersRepoProtocol",
    "MembersService",
    "MembershipEditor",
    "reconcile_members",
]
