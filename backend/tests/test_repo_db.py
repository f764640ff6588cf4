"""DBCourseworkRepo transaction and rowcount handling with a scripted connection."""
from __future__ import annotations

import pytest

from coursework import repo_db
from coursework.errors import NotFoundError
from coursework.repo_db import DBCourseworkRepo
from utils.fake_psycopg import ScriptedConnection, install_scripted_psycopg


def _repo(monkeypatch, *results, rowcount=1):
    conn = install_scripted_psycopg(monkeypatch, repo_db, ScriptedConnection(results, rowcount=rowcount))
    return DBCourseworkRepo(dsn="postgresql://fake"), conn


def test_replace_members_rolls_back_on_unknown_id(monkeypatch):
    repo, conn = _repo(monkeypatch, [(11,), (12,)])
    with pytest.raises(NotFoundError):
        repo.replace_group_members("G1", members=[{"id": 11, "name": "A"}, {"id": 99, "name": "Ghost"}])
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert len(conn.statements) == 1
    assert "for update" in conn.statements[0][0]


def test_replace_members_deletes_updates_and_inserts_in_one_commit(monkeypatch):
    final_rows = [(11, "G1", "Ali Hassan", None, None, False), (13, "G1", "Sara", "s@epu.edu.iq", None, False)]
    repo, conn = _repo(monkeypatch, [(11,), (12,)], None, None, None, final_rows)

    saved = repo.replace_group_members(
        "G1", members=[{"id": 11, "name": "Ali Hassan"}, {"name": "Sara", "email": "s@epu.edu.iq"}]
    )

    kinds = [sql.split()[0] for sql, _ in conn.statements]
    assert kinds == ["select", "delete", "update", "insert", "select"]
    assert conn.statements[1][1] == ("G1", [11])
    assert conn.commits == 1
    assert [m["name"] for m in saved] == ["Ali Hassan", "Sara"]
    assert all(m["is_creator"] is False for m in saved)


@pytest.mark.parametrize("rowcount, expected", [(1, True), (0, False)])
def test_reference_update_reports_rowcount(monkeypatch, rowcount, expected):
    repo, conn = _repo(monkeypatch, rowcount=rowcount)
    assert repo.update_course_file_ref("C1", url="https://x/y", name="y") is expected
    assert conn.commits == 1


def test_course_row_mapping(monkeypatch):
    repo, _ = _repo(monkeypatch, ("C1", "Algorithms", "admin-1", 3, None, None))
    assert repo.get_course("C1") == {
        "id": "C1",
        "title": "Algorithms",
        "owner_id": "admin-1",
        "semester": 3,
        "file_url": None,
        "file_name": None,
    }
    assert repo.get_course_file_ref("C1") is None


def test_delete_member_never_touches_creator(monkeypatch):
    repo, conn = _repo(monkeypatch, rowcount=0)
    assert repo.delete_member_if_exists("G1", 1) is False
    assert "not is_creator" in conn.statements[0][0]


def test_missing_dsn_is_a_runtime_error(monkeypatch):
    monkeypatch.setattr(repo_db, "HAVE_PSYCOPG", True, raising=False)
    monkeypatch.delenv("COURSEWORK_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        DBCourseworkRepo()
