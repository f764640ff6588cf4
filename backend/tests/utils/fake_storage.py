"""In-memory object store and repository doubles for coursework tests."""
from __future__ import annotations

from typing import Dict, List

from coursework.repo_memory import InMemoryCourseworkRepo

BASE_URL = "https://files.test/storage/v1/object/public/course-files/"


class FakeObjectStore:
    """Records every call; only URLs under ``BASE_URL`` count as owned."""

    def __init__(self, *, fail_put: bool = False, fail_delete: bool = False) -> None:
        self.objects: Dict[str, bytes] = {}
        self.puts: List[str] = []
        self.deletes: List[str] = []
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    def put_object(self, *, key: str, body: bytes, content_type: str) -> str:
        if self.fail_put:
            raise RuntimeError("object store unavailable")
        url = f"{BASE_URL}{key}"
        self.objects[url] = body
        self.puts.append(key)
        return url

    def delete_object(self, *, url: str) -> None:
        self.deletes.append(url)
        if self.fail_delete:
            raise RuntimeError("object store unavailable")
        self.objects.pop(url, None)

    def owns_url(self, url: str) -> bool:
        return url.startswith(BASE_URL)

    @property
    def mutations(self) -> int:
        return len(self.puts) + len(self.deletes)


class RefUpdateFailsRepo(InMemoryCourseworkRepo):
    """Reference updates and inserts fail after the blob was stored."""

    def __init__(self, *, raise_error: bool = True) -> None:
        super().__init__()
        self.raise_error = raise_error

    def _fail(self):
        if self.raise_error:
            raise RuntimeError("database unavailable")
        return False

    def update_course_file_ref(self, course_id, *, url, name):
        return self._fail()

    def update_group_file_ref(self, group_id, *, url, name):
        return self._fail()

    def create_course_file(self, course_id, section_id, *, title, url, uploaded_by):
        if self.raise_error:
            raise RuntimeError("database unavailable")
        return None
