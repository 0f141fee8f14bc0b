"""
Store ports and local adapters: identity backing store and session store.

Why: The resolver never talks to storage. The service and the session manager
depend on the two small protocols below so tests (and local development) can
run against in-memory fakes while production uses Supabase/Postgres.

Security: Session payloads hold a serialized principal only (no passwords).
Cookies carry an opaque session id; the payload stays server-side.
"""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple
import json
import os
import secrets
import tempfile
import threading
import time

from .domain import OwnerCredential, StaffRecord, StoreFailure


class IdentityStoreProtocol(Protocol):
    """Remote record store holding the owner credential and staff records.

    Every method raises `StoreFailure` when the collaborator fails.
    """

    def fetch_owner_credential(self) -> Optional[OwnerCredential]: ...

    def save_owner_credential(self, cred: OwnerCredential) -> None: ...

    def fetch_all_staff(self) -> List[StaffRecord]: ...

    def save_staff_record(self, record: StaffRecord) -> None: ...

    def delete_staff_record(self, phone: str) -> None: ...


class SessionStoreProtocol(Protocol):
    """Durable key-value storage for serialized principals."""

    def read(self, session_id: str) -> Optional[Dict[str, Any]]: ...

    def write(self, session_id: str, payload: Dict[str, Any]) -> None: ...

    def clear(self, session_id: str) -> None: ...


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


class InMemoryIdentityStore:
    """Process-local identity store for development and tests."""

    def __init__(self, owner: Optional[OwnerCredential] = None, staff: Optional[List[StaffRecord]] = None):
        self._owner = owner
        self._staff: Dict[str, StaffRecord] = {rec.phone: rec for rec in (staff or [])}

    def fetch_owner_credential(self) -> Optional[OwnerCredential]:
        return self._owner

    def save_owner_credential(self, cred: OwnerCredential) -> None:
        self._owner = replace(cred)

    def fetch_all_staff(self) -> List[StaffRecord]:
        return list(self._staff.values())

    def save_staff_record(self, record: StaffRecord) -> None:
        self._staff[record.phone] = record

    def delete_staff_record(self, phone: str) -> None:
        self._staff.pop(phone, None)


DEFAULT_SESSION_TTL_SECONDS = 30 * 24 * 3600


def _now() -> int:
    return int(time.time())


def session_ttl_from_env() -> int:
    """Session lifetime from SESSION_TTL_SECONDS; 30 days when unset or not a positive int."""
    raw = (os.getenv("SESSION_TTL_SECONDS") or "").strip()
    try:
        value = int(raw) if raw else DEFAULT_SESSION_TTL_SECONDS
    except ValueError:
        return DEFAULT_SESSION_TTL_SECONDS
    return value if value > 0 else DEFAULT_SESSION_TTL_SECONDS


class InMemorySessionStore:
    """Session store kept in process memory.

    Payloads are kept JSON-encoded so reads behave like a real durable store
    (callers always get a fresh dict, never a shared reference). Each write
    stamps an expiry; an expired record reads as absent and is dropped.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else session_ttl_from_env()
        self._data: Dict[str, Tuple[int, str]] = {}

    def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._data.get(session_id)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= _now():
            self._data.pop(session_id, None)
            return None
        return json.loads(raw)

    def write(self, session_id: str, payload: Dict[str, Any]) -> None:
        self._data[session_id] = (_now() + self.ttl_seconds, json.dumps(payload))

    def clear(self, session_id: str) -> None:
        self._data.pop(session_id, None)


def _live_payload(entry: Any, now: int) -> Optional[Dict[str, Any]]:
    if not isinstance(entry, dict):
        return None
    expires_at = entry.get("expires_at")
    payload = entry.get("payload")
    if not isinstance(expires_at, int) or expires_at <= now or not isinstance(payload, dict):
        return None
    return payload


class FileSessionStore:
    """JSON-file session store for single-host deployments.

    Behavior:
        - One JSON object maps session ids to `{"payload", "expires_at"}`
          entries (expiry in epoch seconds).
        - Expired or malformed entries read as absent. A read that finds one
          drops it, and every write prunes them all.
        - Writes go to a temp file in the same directory and are swapped in
          with `os.replace`, so a crash never leaves a half-written file.
        - An unreadable file raises `StoreFailure("read_session")`.
    """

    def __init__(self, path: str | os.PathLike[str], ttl_seconds: Optional[int] = None):
        self._path = Path(path)
        self._lock = threading.Lock()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else session_ttl_from_env()

    def _load(self, operation: str) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StoreFailure(operation, exc.__class__.__name__) from exc
        if not isinstance(data, dict):
            raise StoreFailure(operation, "not_an_object")
        return data

    def _dump(self, data: Dict[str, Any], operation: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".tmp_sessions_", suffix=".json", dir=str(self._path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, ensure_ascii=False, sort_keys=True)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, self._path)
            finally:
                if os.path.exists(tmp):
                    os.remove(tmp)
        except OSError as exc:
            raise StoreFailure(operation, exc.__class__.__name__) from exc

    def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._load("read_session")
            if session_id not in data:
                return None
            payload = _live_payload(data[session_id], _now())
            if payload is None:
                del data[session_id]
                self._dump(data, "read_session")
        return payload

    def write(self, session_id: str, payload: Dict[str, Any]) -> None:
        now = _now()
        with self._lock:
            data = self._load("write_session")
            live = {sid: entry for sid, entry in data.items() if _live_payload(entry, now) is not None}
            live[session_id] = {"payload": payload, "expires_at": now + self.ttl_seconds}
            self._dump(live, "write_session")

    def clear(self, session_id: str) -> None:
        with self._lock:
            data = self._load("clear_session")
            if data.pop(session_id, None) is not None:
                self._dump(data, "clear_session")


__all__ = [
    "DEFAULT_SESSION_TTL_SECONDS",
    "FileSessionStore",
    "IdentityStoreProtocol",
    "InMemoryIdentityStore",
    "InMemorySessionStore",
    "SessionStoreProtocol",
    "new_session_id",
    "session_ttl_from_env",
]
