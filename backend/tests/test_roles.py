"""Identity resolver: id/email precedence, normalization and fail-closed checks."""
from __future__ import annotations

import pytest

from identity_access.domain import normalize_role
from identity_access.roles import check_admin, resolve_role


class _Directory:
    def __init__(self, by_id=None, by_email=None):
        self.by_id = dict(by_id or {})
        self.by_email = dict(by_email or {})
        self.calls: list[tuple[str, str]] = []

    def get_role_by_id(self, user_id):
        self.calls.append(("id", user_id))
        return self.by_id.get(user_id)

    def get_role_by_email(self, email):
        self.calls.append(("email", email))
        return self.by_email.get(email)


class _BrokenDirectory:
    def get_role_by_id(self, user_id):
        raise ConnectionError("db down")

    def get_role_by_email(self, email):
        raise ConnectionError("db down")


def test_elevated_id_role_short_circuits_email_lookup():
    directory = _Directory(by_id={"u1": "admin"}, by_email={"a@epu.edu.iq": "owner"})
    assert resolve_role(directory, "u1", "a@epu.edu.iq") == "admin"
    assert directory.calls == [("id", "u1")]


def test_elevated_email_role_wins_over_member_id_role():
    directory = _Directory(by_id={"u1": "member"}, by_email={"a@epu.edu.iq": "owner"})
    assert resolve_role(directory, "u1", "A@EPU.edu.iq ") == "owner"


@pytest.mark.parametrize(
    "by_id, by_email, expected",
    [
        ({}, {}, "member"),
        ({"u1": "student"}, {}, "member"),
        ({}, {"a@epu.edu.iq": "Admin"}, "admin"),
        ({"u1": "unknown"}, {}, "member"),
    ],
)
def test_role_defaults_and_normalization(by_id, by_email, expected):
    assert resolve_role(_Directory(by_id, by_email), "u1", "a@epu.edu.iq") == expected


def test_resolve_role_is_deterministic_and_read_only():
    directory = _Directory(by_id={"u1": "member"}, by_email={"a@epu.edu.iq": "admin"})
    snapshot = (dict(directory.by_id), dict(directory.by_email))
    first = resolve_role(directory, "u1", "a@epu.edu.iq")
    second = resolve_role(directory, "u1", "a@epu.edu.iq")
    assert first == second == "admin"
    assert (directory.by_id, directory.by_email) == snapshot


def test_missing_identity_keys_resolve_to_member_without_lookups():
    directory = _Directory()
    assert resolve_role(directory, None, None) == "member"
    assert directory.calls == []


def test_check_admin_allows_elevated_roles_only():
    directory = _Directory(by_id={"a": "admin", "o": "owner", "m": "member"})
    assert check_admin(directory, "a", None).allowed
    assert check_admin(directory, "o", None).allowed
    decision = check_admin(directory, "m", None)
    assert not decision.allowed
    assert decision.error is None


def test_check_admin_denies_on_lookup_error():
    decision = check_admin(_BrokenDirectory(), "u1", "a@epu.edu.iq")
    assert decision.allowed is False
    assert decision.role == "member"
    assert decision.error == "ConnectionError"


def test_normalize_role_rejects_unknown_values():
    assert normalize_role(" OWNER ") == "owner"
    assert normalize_role("teacher") is None
    assert normalize_role(None) is None
