"""SupabaseStorageAdapter against a duck-typed client double."""
from __future__ import annotations

import pytest

from coursework.storage_supabase import SupabaseStorageAdapter

PUBLIC = "https://proj.supabase.co/storage/v1/object/public/course-files/"


class _Bucket:
    def __init__(self, public_url_result):
        self.uploads = []
        self.removed = []
        self._public_url_result = public_url_result

    def upload(self, path, body, options):
        self.uploads.append((path, body, options))

    def get_public_url(self, path):
        result = self._public_url_result
        return result(path) if callable(result) else result

    def remove(self, paths):
        self.removed.extend(paths)


class _Storage:
    def __init__(self, bucket):
        self.bucket = bucket
        self.names = []

    def from_(self, name):
        self.names.append(name)
        return self.bucket


class _Client:
    def __init__(self, bucket):
        self.storage = _Storage(bucket)


@pytest.fixture(autouse=True)
def _supabase_url(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")


def test_put_object_uploads_relative_key_and_returns_public_url():
    bucket = _Bucket(lambda path: f"{PUBLIC}{path}?")
    client = _Client(bucket)
    adapter = SupabaseStorageAdapter(client)

    url = adapter.put_object(key="/course-files/courses/C1/1-a.pdf", body=b"x", content_type="application/pdf")

    assert url == f"{PUBLIC}courses/C1/1-a.pdf"
    path, body, options = bucket.uploads[0]
    assert path == "courses/C1/1-a.pdf"
    assert options["content-type"] == "application/pdf"
    assert client.storage.names == ["course-files"]


@pytest.mark.parametrize(
    "result",
    [
        {"publicUrl": f"{PUBLIC}k"},
        {"publicURL": f"{PUBLIC}k"},
        {"data": {"public_url": f"{PUBLIC}k"}},
    ],
)
def test_public_url_shapes_are_understood(result):
    adapter = SupabaseStorageAdapter(_Client(_Bucket(result)))
    assert adapter.put_object(key="k", body=b"x", content_type="text/plain") == f"{PUBLIC}k"


def test_missing_public_url_raises():
    adapter = SupabaseStorageAdapter(_Client(_Bucket({"data": {}})))
    with pytest.raises(RuntimeError):
        adapter.put_object(key="k", body=b"x", content_type="text/plain")


def test_delete_removes_owned_key_only():
    bucket = _Bucket(None)
    adapter = SupabaseStorageAdapter(_Client(bucket))

    adapter.delete_object(url=f"{PUBLIC}courses/C1/1-a%20b.pdf")
    assert bucket.removed == ["courses/C1/1-a b.pdf"]

    with pytest.raises(ValueError):
        adapter.delete_object(url="https://drive.google.com/file/d/abc/view")
    assert bucket.removed == ["courses/C1/1-a b.pdf"]


@pytest.mark.parametrize(
    "url, owned",
    [
        (f"{PUBLIC}courses/C1/a.pdf", True),
        ("https://proj.supabase.co/storage/v1/object/sign/course-files/a.pdf?token=t", True),
        ("https://proj.supabase.co/storage/v1/object/public/other-bucket/a.pdf", False),
        ("https://evil.example/storage/v1/object/public/course-files/a.pdf", False),
        ("https://docs.google.com/document/d/abc/edit", False),
        ("not a url", False),
        ("", False),
    ],
)
def test_owns_url(url, owned):
    adapter = SupabaseStorageAdapter(_Client(_Bucket(None)))
    assert adapter.owns_url(url) is owned


def test_invalid_client_is_reported():
    adapter = SupabaseStorageAdapter(object())
    with pytest.raises(RuntimeError):
        adapter.put_object(key="k", body=b"x", content_type="text/plain")
