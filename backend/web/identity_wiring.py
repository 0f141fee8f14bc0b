"""
Shared helpers for wiring the identity and session stores.

Why:
    The app decides once, at import time, which collaborators back the
    identity directory (Supabase or in-memory) and the session store (memory,
    JSON file or Postgres). Keeping the decision here lets tests and the
    operator CLI reuse it.

Security:
    Requires SUPABASE_SERVICE_ROLE_KEY and SUPABASE_URL for the Supabase path.
    The helpers only wire server-side adapters; no secrets reach clients.
"""
from __future__ import annotations

import logging
import sys

try:
    from .config import identity_backend, session_file_path, sessions_backend
except ImportError:
    from config import identity_backend, session_file_path, sessions_backend  # type: ignore

from identity_access.stores import FileSessionStore, InMemoryIdentityStore, InMemorySessionStore


logger = logging.getLogger("taihub.web")


def _under_pytest() -> bool:
    return "pytest" in sys.modules


def build_identity_store():
    """Return the identity backing store for the configured backend.

    Behavior:
        - `supabase`: a `SupabaseIdentityStore` created from the environment.
          Client creation errors are logged and raised; the app must not fall
          back silently to an empty in-memory directory in that case.
        - anything else (and always under pytest): `InMemoryIdentityStore`.
    """
    if _under_pytest() or identity_backend() != "supabase":
        return InMemoryIdentityStore()
    from identity_access.stores_supabase import SupabaseIdentityStore

    try:
        store = SupabaseIdentityStore.from_env()
    except Exception as exc:
        logger.error("Supabase identity store unavailable: %s", exc.__class__.__name__)
        raise
    logger.info("Identity store wired to Supabase")
    return store


def build_session_store():
    """Return the session store for SESSIONS_BACKEND (memory under pytest)."""
    backend = sessions_backend()
    if _under_pytest() or backend == "memory":
        return InMemorySessionStore()
    if backend == "file":
        return FileSessionStore(session_file_path())
    from identity_access.stores_db import DBSessionStore

    return DBSessionStore()
