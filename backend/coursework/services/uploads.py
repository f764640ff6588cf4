"""Resource upload coordinator: keep a single current file per course or group.

Replacing a file touches two systems that cannot share a transaction: the
object store holding the blob and the database row pointing at it. The
coordinator runs the steps in a fixed order:

1. validate input and authorize the caller (no side effects before this)
2. read the existing reference
3. delete the old blob if this store owns it (failure is only logged)
4. upload the new blob
5. point the database row at the new URL
6. if step 5 fails, delete the blob from step 4 again (best effort)

A new blob never outlives a failed reference update unless step 6 fails too,
which is logged as an orphan. An upload failure after step 3 leaves the row
pointing at the deleted old blob; the next successful replace repairs it.
Concurrent replaces of the same resource are not serialized; the last write
to the reference wins.
"""
from __future__ import annotations

import logging
import os
import re
import time
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import urlparse

from coursework.errors import (
    AuthorizationError,
    CourseworkError,
    DependencyError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from coursework.storage import ObjectStoreProtocol
from identity_access.domain import is_elevated

logger = logging.getLogger("campusboard.uploads")


class UploadsRepoProtocol(Protocol):
    """Repository contract expected by the upload coordinator."""

    def get_course(self, course_id: str) -> Optional[Dict[str, Any]]: ...

    def get_course_file_ref(self, course_id: str) -> Optional[Dict[str, Any]]: ...

    def update_course_file_ref(self, course_id: str, *, url: str, name: str) -> bool: ...

    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]: ...

    def get_group_member(self, group_id: str, user_id: str) -> Optional[Dict[str, Any]]: ...

    def get_group_file_ref(self, group_id: str) -> Optional[Dict[str, Any]]: ...

    def update_group_file_ref(self, group_id: str, *, url: str, name: str) -> bool: ...

    def section_exists(self, course_id: str, section_id: str) -> bool: ...

    def create_course_file(
        self, course_id: str, section_id: str, *, title: str, url: str, uploaded_by: str
    ) -> Optional[Dict[str, Any]]: ...

    def get_course_file(self, file_id: str) -> Optional[Dict[str, Any]]: ...

    def delete_course_file(self, file_id: str) -> bool: ...

    def list_course_files(self, course_id: str) -> List[Dict[str, Any]]: ...


@dataclass(frozen=True)
class Caller:
    """Authenticated identity as resolved by the access gate."""

    sub: str
    role: str = "member"
    email: Optional[str] = None
    semester: Optional[int] = None


@dataclass(frozen=True)
class FileUpload:
    filename: str
    body: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class ExternalLink:
    """A third-party URL (e.g. Google Drive) stored as a reference only."""

    url: str
    name: str


@dataclass
class UploadSettings:
    """Limits and naming for uploaded files."""

    max_size_bytes: int = 10 * 1024 * 1024
    external_hosts: Tuple[str, ...] = ("drive.google.com", "docs.google.com")
    course_prefix: str = "courses"
    presentation_prefix: str = "presentations"


_SANITIZE_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")


def _sanitize_filename(filename: str) -> Optional[str]:
    if not filename:
        return None
    base = os.path.basename(filename.strip())
    if not base:
        return None
    root, ext = os.path.splitext(base)
    normalized = unicodedata.normalize("NFKD", root)
    ascii_root = normalized.encode("ascii", "ignore").decode("ascii")
    sanitized_root = _SANITIZE_PATTERN.sub("-", ascii_root).strip("-_.")
    if not sanitized_root:
        sanitized_root = "file"
    sanitized_root = sanitized_root[:64]
    clean_ext = "".join(ch for ch in ext.lower() if ch.isalnum() or ch == ".")
    if clean_ext and not clean_ext.startswith("."):
        clean_ext = f".{clean_ext}"
    return f"{sanitized_root}{clean_ext}" if clean_ext else sanitized_root


def _sanitize_segment(value: str, *, fallback: str) -> str:
    normalized = unicodedata.normalize("NFKD", str(value or ""))
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    sanitized = _SANITIZE_PATTERN.sub("-", ascii_value).strip("-_.")
    return sanitized or fallback


def _validate_payload(
    upload: Optional[FileUpload], link: Optional[ExternalLink], settings: UploadSettings
) -> None:
    """Reject malformed submissions before anything is read or written."""
    if upload is not None and link is not None:
        raise ValidationError("file_and_link")
    if link is not None:
        if not (link.url or "").strip() or not (link.name or "").strip():
            raise ValidationError("missing_link_or_name")
        parsed = urlparse(link.url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("invalid_link")
        return
    if upload is None:
        raise ValidationError("missing_file")
    if not _sanitize_filename(upload.filename):
        raise ValidationError("invalid_filename")
    if not upload.body:
        raise ValidationError("empty_file")
    if len(upload.body) > settings.max_size_bytes:
        raise PayloadTooLargeError("size_exceeded")


@dataclass
class UploadCoordinator:
    """Course and presentation-group file use cases, independent of web adapters."""

    repo: UploadsRepoProtocol
    storage: ObjectStoreProtocol
    settings: UploadSettings = field(default_factory=UploadSettings)
    clock: Callable[[], float] = time.time

    # --- Course current file ----------------------------------------------------

    def replace_course_file(
        self,
        course_id: str,
        caller: Caller,
        *,
        upload: Optional[FileUpload] = None,
        link: Optional[ExternalLink] = None,
    ) -> Dict[str, str]:
        _validate_payload(upload, link, self.settings)
        self._authorize_course_owner(course_id, caller)
        return self._replace_current_file(
            resource=f"course:{course_id}",
            key_prefix=f"{self.settings.course_prefix}/{_sanitize_segment(course_id, fallback='course')}",
            upload=upload,
            link=link,
            fetch_ref=lambda: self.repo.get_course_file_ref(course_id),
            write_ref=lambda url, name: self.repo.update_course_file_ref(course_id, url=url, name=name),
        )

    # --- Presentation group file ------------------------------------------------

    def replace_group_file(
        self,
        group_id: str,
        caller: Caller,
        *,
        upload: Optional[FileUpload] = None,
        link: Optional[ExternalLink] = None,
    ) -> Dict[str, str]:
        _validate_payload(upload, link, self.settings)
        resource = f"group:{group_id}"
        if self._read(resource, lambda: self.repo.get_group(group_id)) is None:
            raise NotFoundError("group_not_found", resource=resource)
        member = self._read(resource, lambda: self.repo.get_group_member(group_id, caller.sub))
        if not member or not member.get("is_creator"):
            raise AuthorizationError("not_creator", resource=f"group:{group_id}")
        return self._replace_current_file(
            resource=f"group:{group_id}",
            key_prefix=f"{self.settings.presentation_prefix}/{_sanitize_segment(group_id, fallback='group')}",
            upload=upload,
            link=link,
            fetch_ref=lambda: self.repo.get_group_file_ref(group_id),
            write_ref=lambda url, name: self.repo.update_group_file_ref(group_id, url=url, name=name),
        )

    # --- Course section files ---------------------------------------------------

    def add_section_file(
        self,
        course_id: str,
        section_id: str,
        caller: Caller,
        *,
        upload: Optional[FileUpload] = None,
        link: Optional[ExternalLink] = None,
        title: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store an additional file in a course section (no replace semantics)."""
        _validate_payload(upload, link, self.settings)
        self._authorize_course_owner(course_id, caller)
        resource = f"course:{course_id}/section:{section_id}"
        if not self._read(resource, lambda: self.repo.section_exists(course_id, section_id)):
            raise NotFoundError("section_not_found", resource=f"section:{section_id}")
        if upload is not None:
            prefix = (
                f"{self.settings.course_prefix}/{_sanitize_segment(course_id, fallback='course')}"
                f"/{_sanitize_segment(section_id, fallback='section')}"
            )
            url, name, uploaded = self._upload(resource, prefix, upload), upload.filename.strip(), True
        elif link is not None:
            url, name, uploaded = link.url.strip(), link.name.strip(), False
        else:
            raise ValidationError("missing_file")
        normalized_title = (title or "").strip() or name
        try:
            record = self.repo.create_course_file(
                course_id, section_id, title=normalized_title, url=url, uploaded_by=caller.sub
            )
        except Exception as exc:
            logger.error("Course file insert failed for %s: %s", resource, exc.__class__.__name__)
            record = None
        if not record:
            if uploaded:
                self._compensate(resource, url)
            raise DependencyError("database_update_failed", resource=resource)
        return record

    def delete_course_file(self, file_id: str, caller: Caller) -> None:
        """Remove a course file row, then garbage-collect its blob if owned."""
        record = self._read(f"course_file:{file_id}", lambda: self.repo.get_course_file(file_id))
        if record is None:
            raise NotFoundError("file_not_found", resource=f"course_file:{file_id}")
        self._authorize_course_owner(str(record.get("course_id")), caller)
        try:
            deleted = self.repo.delete_course_file(file_id)
        except Exception as exc:
            logger.error("Course file delete failed for %s: %s", file_id, exc.__class__.__name__)
            raise DependencyError("database_update_failed", resource=f"course_file:{file_id}") from exc
        if not deleted:
            raise NotFoundError("file_not_found", resource=f"course_file:{file_id}")
        self._discard_blob(f"course_file:{file_id}", record.get("url"))

    def list_course_files(self, course_id: str, viewer: Caller) -> List[Dict[str, Any]]:
        """List a course's files; semester-specific courses are hidden from other semesters."""
        resource = f"course:{course_id}"
        course = self._read(resource, lambda: self.repo.get_course(course_id))
        if course is None:
            raise NotFoundError("course_not_found", resource=resource)
        course_semester = course.get("semester")
        if course_semester is not None and viewer.semester is not None:
            if int(course_semester) != int(viewer.semester):
                raise AuthorizationError("semester_mismatch", resource=resource)
        return self._read(resource, lambda: self.repo.list_course_files(course_id))

    # --- Internals --------------------------------------------------------------

    def is_external(self, url: Optional[str]) -> bool:
        """True for references this store must never delete."""
        if not url:
            return True
        host = (urlparse(url).hostname or "").lower()
        if any(host == h or host.endswith(f".{h}") for h in self.settings.external_hosts):
            return True
        try:
            return not self.storage.owns_url(url)
        except Exception:
            return True

    def _read(self, resource: str, read: Callable[[], Any]) -> Any:
        """Run a repository read; infrastructure failures become ``database_read_failed``."""
        try:
            return read()
        except CourseworkError:
            raise
        except Exception as exc:
            logger.error("Reading %s failed: %s", resource, exc.__class__.__name__)
            raise DependencyError("database_read_failed", resource=resource) from exc

    def _authorize_course_owner(self, course_id: str, caller: Caller) -> Dict[str, Any]:
        course = self._read(f"course:{course_id}", lambda: self.repo.get_course(course_id))
        if course is None:
            raise NotFoundError("course_not_found", resource=f"course:{course_id}")
        if not is_elevated(caller.role):
            raise AuthorizationError("admin_required", resource=f"course:{course_id}")
        if str(course.get("owner_id") or "") != caller.sub:
            raise AuthorizationError("not_owner", resource=f"course:{course_id}")
        return course

    def _replace_current_file(
        self,
        *,
        resource: str,
        key_prefix: str,
        upload: Optional[FileUpload],
        link: Optional[ExternalLink],
        fetch_ref: Callable[[], Optional[Dict[str, Any]]],
        write_ref: Callable[[str, str], bool],
    ) -> Dict[str, str]:
        existing = self._read(resource, fetch_ref)
        if existing:
            self._discard_blob(resource, existing.get("url"))

        if upload is not None:
            url, name, uploaded = self._upload(resource, key_prefix, upload), upload.filename.strip(), True
        elif link is not None:
            url, name, uploaded = link.url.strip(), link.name.strip(), False
        else:
            raise ValidationError("missing_file")

        try:
            ok = write_ref(url, name)
        except Exception as exc:
            logger.error("Updating file reference of %s failed: %s", resource, exc.__class__.__name__)
            ok = False
        if not ok:
            if uploaded:
                self._compensate(resource, url)
            raise DependencyError("database_update_failed", resource=resource)
        logger.info("Current file of %s replaced", resource)
        return {"url": url, "name": name}

    def _upload(self, resource: str, key_prefix: str, upload: FileUpload) -> str:
        sanitized = _sanitize_filename(upload.filename) or "file"
        key = f"{key_prefix}/{int(self.clock() * 1000)}-{sanitized}"
        try:
            url = self.storage.put_object(
                key=key, body=upload.body, content_type=upload.content_type or "application/octet-stream"
            )
        except Exception as exc:
            logger.error("Upload for %s failed: %s", resource, exc.__class__.__name__)
            raise DependencyError("upload_failed", resource=resource) from exc
        if not url:
            raise DependencyError("upload_failed", resource=resource)
        return url

    def _discard_blob(self, resource: str, url: Optional[str]) -> None:
        """Delete a superseded blob; stale blobs are acceptable, so never raise."""
        if self.is_external(url):
            return
        try:
            self.storage.delete_object(url=str(url))
        except Exception as exc:
            logger.warning("Deleting previous file of %s failed: %s", resource, exc.__class__.__name__)

    def _compensate(self, resource: str, url: str) -> None:
        try:
            self.storage.delete_object(url=url)
        except Exception as exc:
            logger.error(
                "Cleanup of uploaded file for %s failed; blob orphaned: %s", resource, exc.__class__.__name__
            )
        else:
            logger.warning("Removed uploaded file for %s after database error", resource)


__all__ = [
    "Caller",
    "ExternalLink",
    "FileUpload",
    "UploadCoordinator",
    "UploadSettings",
    "UploadsRepoProtocol",
]
