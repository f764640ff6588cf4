"""Coursework HTTP routes: uploads, section files and presentation group members."""
from __future__ import annotations

import pytest

from utils.app_client import app_client, directory
from utils.fake_storage import BASE_URL, FakeObjectStore

pytestmark = pytest.mark.anyio

ADMIN = {"sub": "admin-1", "email": "admin@epu.edu.iq"}
CREATOR = {"sub": "creator-1", "email": "creator@epu.edu.iq"}


def _wire():
    import routes.coursework as coursework  # type: ignore

    store = FakeObjectStore()
    coursework.set_storage_adapter(store)
    return coursework._get_repo(), store


async def test_admin_uploads_course_file_via_multipart():
    repo, store = _wire()
    directory().add_user("admin-1", ADMIN["email"], role="admin", semester=3)
    repo.create_course(title="Algorithms", owner_id="admin-1", semester=3, course_id="C1")

    async with app_client(**ADMIN) as client:
        resp = await client.post(
            "/api/courses/C1/file",
            files={"file": ("syllabus.pdf", b"%PDF-1.7", "application/pdf")},
        )
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "syllabus.pdf"
    assert body["url"].startswith(f"{BASE_URL}courses/C1/")
    assert resp.headers["cache-control"] == "private, no-store"
    assert repo.get_course("C1")["file_url"] == body["url"]


async def test_drive_link_submission_as_json():
    repo, store = _wire()
    directory().add_user("admin-1", ADMIN["email"], role="admin")
    repo.create_course(title="Algorithms", owner_id="admin-1", course_id="C1")

    async with app_client(**ADMIN) as client:
        resp = await client.post(
            "/api/courses/C1/file",
            json={"driveUrl": "https://drive.google.com/file/d/abc/view", "fileName": "Week 1"},
        )
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://drive.google.com/file/d/abc/view", "name": "Week 1"}
    assert store.puts == []


async def test_member_cannot_upload_course_file():
    repo, store = _wire()
    repo.create_course(title="Algorithms", owner_id="admin-1", course_id="C1")
    async with app_client(**ADMIN) as client:
        resp = await client.post("/api/courses/C1/file", files={"file": ("a.pdf", b"x", "application/pdf")})
    assert resp.status_code == 403
    assert resp.json() == {"error": "forbidden", "detail": "admin_required"}
    assert store.mutations == 0


async def test_empty_submission_is_400_and_unknown_course_404():
    repo, _ = _wire()
    directory().add_user("admin-1", ADMIN["email"], role="admin")
    repo.create_course(title="Algorithms", owner_id="admin-1", course_id="C1")
    async with app_client(**ADMIN) as client:
        empty = await client.post("/api/courses/C1/file", json={})
        missing = await client.post("/api/courses/nope/file", json={"driveUrl": "https://a.b/c", "fileName": "c"})
    assert empty.status_code == 400
    assert empty.json()["detail"] == "missing_file"
    assert missing.status_code == 404


async def test_storage_failure_hides_details():
    import routes.coursework as coursework  # type: ignore

    repo = coursework._get_repo()
    coursework.set_storage_adapter(FakeObjectStore(fail_put=True))
    directory().add_user("admin-1", ADMIN["email"], role="admin")
    repo.create_course(title="Algorithms", owner_id="admin-1", course_id="C1")
    async with app_client(**ADMIN) as client:
        resp = await client.post("/api/courses/C1/file", files={"file": ("a.pdf", b"x", "application/pdf")})
    assert resp.status_code == 500
    assert resp.json() == {"error": "internal_error"}


async def test_oversized_upload_is_413(monkeypatch):
    import routes.coursework as coursework  # type: ignore
    from coursework.services.uploads import UploadSettings

    repo, store = _wire()
    monkeypatch.setattr(coursework, "UPLOAD_SETTINGS", UploadSettings(max_size_bytes=8))
    directory().add_user("admin-1", ADMIN["email"], role="admin")
    repo.create_course(title="Algorithms", owner_id="admin-1", course_id="C1")
    async with app_client(**ADMIN) as client:
        resp = await client.post("/api/courses/C1/file", files={"file": ("a.bin", b"x" * 9, "application/pdf")})
    assert resp.status_code == 413
    assert store.mutations == 0


async def test_section_file_lifecycle_and_semester_gating():
    repo, store = _wire()
    d = directory()
    d.add_user("admin-1", ADMIN["email"], role="admin", semester=3)
    d.add_user("s3", "s3@epu.edu.iq", semester=3)
    d.add_user("s5", "s5@epu.edu.iq", semester=5)
    repo.create_course(title="Algorithms", owner_id="admin-1", semester=3, course_id="C1")
    repo.create_section("C1", title="Week 1", section_id="S1")

    async with app_client(**ADMIN) as client:
        created = await client.post(
            "/api/courses/C1/sections/S1/files",
            files={"file": ("w1.pdf", b"x", "application/pdf")},
            data={"title": "Week 1 slides"},
        )
    assert created.status_code == 201
    file_id = created.json()["id"]

    async with app_client(sub="s3", email="s3@epu.edu.iq") as client:
        same = await client.get("/api/courses/C1/files")
    async with app_client(sub="s5", email="s5@epu.edu.iq") as client:
        other = await client.get("/api/courses/C1/files")
    assert [i["title"] for i in same.json()["items"]] == ["Week 1 slides"]
    assert other.status_code == 403

    async with app_client(**ADMIN) as client:
        deleted = await client.delete(f"/api/courses/files/{file_id}")
        again = await client.delete(f"/api/courses/files/{file_id}")
    assert deleted.status_code == 204
    assert again.status_code == 404
    assert store.objects == {}


# --- Presentation groups ------------------------------------------------------

def _seed_group(max_members=4):
    repo, store = _wire()
    repo.create_group(title="Team A", creator_id="creator-1", creator_name="Creator", max_members=max_members,
                      group_id="G1")
    return repo, store


async def test_creator_replaces_members_then_removes_one_idempotently():
    repo, _ = _seed_group()
    async with app_client(**CREATOR) as client:
        saved = await client.put(
            "/api/presentation-groups/G1/members",
            json={"members": [{"name": "Ali"}, {"name": "Sara", "email": "sara@epu.edu.iq"}]},
        )
        assert saved.status_code == 200
        members = saved.json()["members"]
        ali = next(m for m in members if m["name"] == "Ali")

        first = await client.delete(f"/api/presentation-groups/G1/members/{ali['id']}")
        second = await client.delete(f"/api/presentation-groups/G1/members/{ali['id']}")
    assert (first.status_code, second.status_code) == (204, 204)
    assert sorted(m["name"] for m in repo.list_group_members("G1")) == ["Creator", "Sara"]


async def test_members_over_capacity_and_non_creator_are_rejected():
    repo, _ = _seed_group(max_members=2)
    async with app_client(**CREATOR) as client:
        over = await client.put(
            "/api/presentation-groups/G1/members", json={"members": [{"name": "A"}, {"name": "B"}]}
        )
    async with app_client(sub="intruder", email="x@epu.edu.iq") as client:
        foreign = await client.put("/api/presentation-groups/G1/members", json={"members": [{"name": "A"}]})
    assert over.status_code == 400
    assert foreign.status_code == 403
    assert len(repo.list_group_members("G1")) == 1


async def test_creator_cannot_be_removed():
    repo, _ = _seed_group()
    creator = repo.get_group_member("G1", "creator-1")
    async with app_client(**CREATOR) as client:
        resp = await client.delete(f"/api/presentation-groups/G1/members/{creator['id']}")
    assert resp.status_code == 409
    assert resp.json()["detail"] == "cannot_remove_creator"


async def test_group_file_upload_requires_creator():
    repo, store = _seed_group()
    async with app_client(sub="intruder", email="x@epu.edu.iq") as client:
        denied = await client.post(
            "/api/presentation-groups/G1/file", files={"file": ("deck.pptx", b"x", "application/octet-stream")}
        )
    async with app_client(**CREATOR) as client:
        ok = await client.post(
            "/api/presentation-groups/G1/file", files={"file": ("deck.pptx", b"x", "application/octet-stream")}
        )
    assert denied.status_code == 403
    assert ok.status_code == 200
    assert repo.get_group("G1")["file_name"] == "deck.pptx"
    assert len(store.puts) == 1


async def test_uploads_without_storage_configured_fail_cleanly():
    import routes.coursework as coursework  # type: ignore

    repo = coursework._get_repo()
    repo.create_group(title="Team A", creator_id="creator-1", creator_name="Creator", max_members=4, group_id="G1")
    async with app_client(**CREATOR) as client:
        resp = await client.post(
            "/api/presentation-groups/G1/file", files={"file": ("deck.pptx", b"x", "application/octet-stream")}
        )
    assert resp.status_code == 500
    assert repo.get_group("G1")["file_url"] is None


async def test_group_members_are_listed_creator_first_for_members_only():
    repo, _ = _seed_group()
    async with app_client(**CREATOR) as client:
        await client.put(
            "/api/presentation-groups/G1/members",
            json={"members": [{"name": "Ali"}, {"name": "Sara", "email": "sara@epu.edu.iq"}]},
        )
        listed = await client.get("/api/presentation-groups/G1/members")
        missing = await client.get("/api/presentation-groups/nope/members")
    async with app_client(sub="intruder", email="x@epu.edu.iq") as client:
        foreign = await client.get("/api/presentation-groups/G1/members")
    assert listed.status_code == 200
    assert [m["name"] for m in listed.json()["members"]][0] == "Creator"
    assert len(listed.json()["members"]) == 3
    assert missing.status_code == 404
    assert foreign.status_code == 403
    assert foreign.json() == {"error": "forbidden", "detail": "not_member"}


# --- Infrastructure failures --------------------------------------------------

def _boom(*args, **kwargs):
    raise RuntimeError("connection refused to db.internal:5432")


async def test_semester_lookup_failure_denies_course_files(monkeypatch):
    repo, _ = _wire()
    d = directory()
    d.add_user("s3", "s3@epu.edu.iq", semester=3)
    repo.create_course(title="Algorithms", owner_id="admin-1", semester=3, course_id="C1")
    repo.create_section("C1", title="Week 1", section_id="S1")
    monkeypatch.setattr(d, "get_user", _boom)

    async with app_client(sub="s3", email="s3@epu.edu.iq") as client:
        resp = await client.get("/api/courses/C1/files")
    assert resp.status_code == 500
    assert resp.json() == {"error": "internal_error"}
    assert resp.headers["cache-control"] == "private, no-store"
    assert "items" not in resp.json()


async def test_repository_read_failure_is_a_json_500(monkeypatch):
    repo, store = _wire()
    directory().add_user("admin-1", ADMIN["email"], role="admin")
    repo.create_course(title="Algorithms", owner_id="admin-1", course_id="C1")
    monkeypatch.setattr(repo, "get_course", _boom)

    async with app_client(**ADMIN) as client:
        upload = await client.post("/api/courses/C1/file", files={"file": ("a.pdf", b"x", "application/pdf")})
        listing = await client.get("/api/courses/C1/files")
    for resp in (upload, listing):
        assert resp.status_code == 500
        assert resp.json() == {"error": "internal_error"}
        assert "db.internal" not in resp.text
    assert store.mutations == 0


async def test_group_read_failure_is_a_json_500(monkeypatch):
    repo, store = _seed_group()
    monkeypatch.setattr(repo, "get_group", _boom)
    async with app_client(**CREATOR) as client:
        members = await client.put("/api/presentation-groups/G1/members", json={"members": [{"name": "A"}]})
        listed = await client.get("/api/presentation-groups/G1/members")
        upload = await client.post(
            "/api/presentation-groups/G1/file", files={"file": ("deck.pptx", b"x", "application/octet-stream")}
        )
    assert [r.status_code for r in (members, listed, upload)] == [500, 500, 500]
    assert all(r.json() == {"error": "internal_error"} for r in (members, listed, upload))
    assert store.mutations == 0
