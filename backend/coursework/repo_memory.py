"""In-memory coursework repository for tests and offline development."""
from __future__ import annotations

import itertools
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from coursework.errors import NotFoundError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CourseData:
    id: str
    title: str
    owner_id: str
    semester: Optional[int] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None


@dataclass
class SectionData:
    id: str
    course_id: str
    title: str


@dataclass
class CourseFileData:
    id: str
    course_id: str
    section_id: str
    title: str
    url: str
    uploaded_by: str
    created_at: str


@dataclass
class GroupData:
    id: str
    title: str
    created_by: str
    max_members: int
    course_id: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None


@dataclass
class MemberData:
    id: int
    group_id: str
    name: str
    email: Optional[str] = None
    user_id: Optional[str] = None
    is_creator: bool = False


@dataclass
class InMemoryCourseworkRepo:
    courses: Dict[str, CourseData] = field(default_factory=dict)
    sections: Dict[str, SectionData] = field(default_factory=dict)
    files: Dict[str, CourseFileData] = field(default_factory=dict)
    groups: Dict[str, GroupData] = field(default_factory=dict)
    members: Dict[int, MemberData] = field(default_factory=dict)
    _member_ids: Any = field(default_factory=lambda: itertools.count(1))

    # --- Seeding ----------------------------------------------------------------

    def create_course(
        self, *, title: str, owner_id: str, semester: Optional[int] = None, course_id: Optional[str] = None
    ) -> Dict[str, Any]:
        course = CourseData(id=course_id or str(uuid4()), title=title, owner_id=owner_id, semester=semester)
        self.courses[course.id] = course
        return asdict(course)

    def create_section(self, course_id: str, *, title: str, section_id: Optional[str] = None) -> Dict[str, Any]:
        if course_id not in self.courses:
            raise NotFoundError("course_not_found", resource=f"course:{course_id}")
        section = SectionData(id=section_id or str(uuid4()), course_id=course_id, title=title)
        self.sections[section.id] = section
        return asdict(section)

    def create_group(
        self,
        *,
        title: str,
        creator_id: str,
        creator_name: str,
        max_members: int,
        course_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        group = GroupData(
            id=group_id or str(uuid4()),
            title=title,
            created_by=creator_id,
            max_members=int(max_members),
            course_id=course_id,
        )
        self.groups[group.id] = group
        creator = MemberData(
            id=next(self._member_ids),
            group_id=group.id,
            name=creator_name,
            user_id=creator_id,
            is_creator=True,
        )
        self.members[creator.id] = creator
        return asdict(group)

    # --- Courses ----------------------------------------------------------------

    def get_course(self, course_id: str) -> Optional[Dict[str, Any]]:
        course = self.courses.get(course_id)
        return asdict(course) if course else None

    def get_course_file_ref(self, course_id: str) -> Optional[Dict[str, Any]]:
        course = self.courses.get(course_id)
        if not course or not course.file_url:
            return None
        return {"url": course.file_url, "name": course.file_name}

    def update_course_file_ref(self, course_id: str, *, url: str, name: str) -> bool:
        course = self.courses.get(course_id)
        if not course:
            return False
        course.file_url = url
        course.file_name = name
        return True

    def section_exists(self, course_id: str, section_id: str) -> bool:
        section = self.sections.get(section_id)
        return bool(section and section.course_id == course_id)

    def create_course_file(
        self, course_id: str, section_id: str, *, title: str, url: str, uploaded_by: str
    ) -> Optional[Dict[str, Any]]:
        record = CourseFileData(
            id=str(uuid4()),
            course_id=course_id,
            section_id=section_id,
            title=title,
            url=url,
            uploaded_by=uploaded_by,
            created_at=_now(),
        )
        self.files[record.id] = record
        return asdict(record)

    def get_course_file(self, file_id: str) -> Optional[Dict[str, Any]]:
        record = self.files.get(file_id)
        return asdict(record) if record else None

    def delete_course_file(self, file_id: str) -> bool:
        return self.files.pop(file_id, None) is not None

    def list_course_files(self, course_id: str) -> List[Dict[str, Any]]:
        items = [asdict(f) for f in self.files.values() if f.course_id == course_id]
        items.sort(key=lambda f: f["created_at"])
        return items

    # --- Presentation groups ----------------------------------------------------

    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        group = self.groups.get(group_id)
        return asdict(group) if group else None

    def get_group_member(self, group_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        for member in self.members.values():
            if member.group_id == group_id and member.user_id == user_id:
                return asdict(member)
        return None

    def get_member(self, group_id: str, member_id: int) -> Optional[Dict[str, Any]]:
        member = self.members.get(int(member_id))
        if member is None or member.group_id != group_id:
            return None
        return asdict(member)

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        return [asdict(m) for m in self.members.values() if m.group_id == group_id]

    def get_group_file_ref(self, group_id: str) -> Optional[Dict[str, Any]]:
        group = self.groups.get(group_id)
        if not group or not group.file_url:
            return None
        return {"url": group.file_url, "name": group.file_name}

    def update_group_file_ref(self, group_id: str, *, url: str, name: str) -> bool:
        group = self.groups.get(group_id)
        if not group:
            return False
        group.file_url = url
        group.file_name = name
        return True

    def replace_group_members(self, group_id: str, *, members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        current = {
            m.id: m for m in self.members.values() if m.group_id == group_id and not m.is_creator
        }
        for item in members:
            if item.get("id") is not None and int(item["id"]) not in current:
                raise NotFoundError("member_not_found", resource=f"member:{item['id']}")
        # Validation passed; apply the whole batch.
        for member_id in current:
            self.members.pop(member_id, None)
        for item in members:
            kept = current.get(int(item["id"])) if item.get("id") is not None else None
            member = MemberData(
                id=kept.id if kept else next(self._member_ids),
                group_id=group_id,
                name=item["name"],
                email=item.get("email"),
                user_id=kept.user_id if kept else None,
            )
            self.members[member.id] = member
        return [asdict(m) for m in self.members.values() if m.group_id == group_id and not m.is_creator]

    def delete_member_if_exists(self, group_id: str, member_id: int) -> bool:
        member = self.members.get(int(member_id))
        if member is None or member.group_id != group_id or member.is_creator:
            return False
        del self.members[member.id]
        return True

    def ping(self) -> None:
        return None
