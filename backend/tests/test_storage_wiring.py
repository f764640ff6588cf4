"""Supabase adapter wiring into the upload routes."""
from __future__ import annotations

import sys
import types

import routes.coursework as coursework  # type: ignore
from coursework.storage import NullStorageAdapter
from coursework.storage_supabase import SupabaseStorageAdapter
from storage_wiring import wire_supabase_adapter_if_configured  # type: ignore


def _install_fake_supabase(monkeypatch, *, fail=False):
    calls = []

    def create_client(url, key):
        calls.append((url, key))
        if fail:
            raise ConnectionError("supabase unreachable")
        return types.SimpleNamespace(storage=types.SimpleNamespace(from_=lambda name: None))

    monkeypatch.setitem(sys.modules, "supabase", types.SimpleNamespace(create_client=create_client))
    return calls


def test_not_configured_keeps_null_adapter(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    calls = _install_fake_supabase(monkeypatch)

    assert wire_supabase_adapter_if_configured() is False
    assert calls == []
    assert isinstance(coursework.STORAGE_ADAPTER, NullStorageAdapter)


def test_configured_wires_supabase_adapter_with_bucket(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role")
    monkeypatch.setenv("SUPABASE_STORAGE_BUCKET", "uploads")
    calls = _install_fake_supabase(monkeypatch)

    assert wire_supabase_adapter_if_configured() is True
    assert calls == [("https://proj.supabase.co", "service-role")]
    assert isinstance(coursework.STORAGE_ADAPTER, SupabaseStorageAdapter)
    assert coursework.STORAGE_ADAPTER._bucket_name == "uploads"


def test_client_errors_leave_null_adapter(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role")
    _install_fake_supabase(monkeypatch, fail=True)

    assert wire_supabase_adapter_if_configured() is False
    assert isinstance(coursework.STORAGE_ADAPTER, NullStorageAdapter)


def test_upload_route_wires_lazily(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role")
    _install_fake_supabase(monkeypatch)

    assert isinstance(coursework._get_storage(), SupabaseStorageAdapter)
