"""
Backend selection for the identity and session stores.
"""
from __future__ import annotations

import pytest

import identity_wiring  # type: ignore
from identity_access.stores import FileSessionStore, InMemoryIdentityStore, InMemorySessionStore


def test_pytest_always_gets_memory_stores(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SESSIONS_BACKEND", "file")
    monkeypatch.setenv("IDENTITY_BACKEND", "supabase")
    assert isinstance(identity_wiring.build_identity_store(), InMemoryIdentityStore)
    assert isinstance(identity_wiring.build_session_store(), InMemorySessionStore)


def test_file_backend_outside_pytest(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setattr(identity_wiring, "_under_pytest", lambda: False)
    monkeypatch.setenv("SESSIONS_BACKEND", "file")
    monkeypatch.setenv("SESSION_FILE_PATH", str(tmp_path / "sessions.json"))
    store = identity_wiring.build_session_store()
    assert isinstance(store, FileSessionStore)
    store.write("sid", {"id": "1", "name": "A", "role": "owner", "permissions": {}})
    assert (tmp_path / "sessions.json").exists()


def test_supabase_client_errors_are_raised(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(identity_wiring, "_under_pytest", lambda: False)
    monkeypatch.setenv("IDENTITY_BACKEND", "supabase")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    with pytest.raises(RuntimeError):
        identity_wiring.build_identity_store()


def test_memory_identity_backend_outside_pytest(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(identity_wiring, "_under_pytest", lambda: False)
    monkeypatch.setenv("IDENTITY_BACKEND", "memory")
    assert isinstance(identity_wiring.build_identity_store(), InMemoryIdentityStore)
