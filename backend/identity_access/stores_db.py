"""
Database-backed session store for production use (Postgres/Supabase).

Why: In-memory sessions do not survive a restart and do not scale across
instances. This store persists the serialized principal in Postgres while
the cookie stays an opaque id.

Security:
- Intended to be used with a service role connection string; anon clients must
  not access the `app_sessions` table. RLS is enabled; service role bypasses RLS.
- The payload is the principal snapshot only (id, name, role, permissions).

Note: This module uses psycopg3. It is imported only when enabled via
`SESSIONS_BACKEND=db`. Tests use the in-memory store or a fake driver.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
import os
import re
import time

import psycopg
from psycopg.types.json import Json

from .domain import StoreFailure
from .stores import DEFAULT_SESSION_TTL_SECONDS as DEFAULT_TTL_SECONDS, session_ttl_from_env


_TABLE_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$')


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Use a service role in Supabase.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    ttl_seconds:
        Row lifetime refreshed on every write. Defaults to SESSION_TTL_SECONDS
        or 30 days.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions", ttl_seconds: int | None = None) -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        # Table names are interpolated into SQL; only plain identifiers pass.
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else session_ttl_from_env()

    def write(self, session_id: str, payload: Dict[str, Any]) -> None:
        expires_at = _now() + self.ttl_seconds
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"insert into {self._table} (session_id, principal, expires_at) "
                        f"values (%s, %s, to_timestamp(%s)) "
                        f"on conflict (session_id) do update set principal = excluded.principal, expires_at = excluded.expires_at",
                        (session_id, Json(payload), expires_at),
                    )
        except psycopg.Error as exc:
            raise StoreFailure("write_session", exc.__class__.__name__) from exc

    def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"select principal from {self._table} where session_id = %s and expires_at > now()",
                        (session_id,),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise StoreFailure("read_session", exc.__class__.__name__) from exc
        if not row:
            return None
        return row[0] if isinstance(row[0], dict) else None

    def clear(self, session_id: str) -> None:
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(f"delete from {self._table} where session_id = %s", (session_id,))
        except psycopg.Error as exc:
            raise StoreFailure("clear_session", exc.__class__.__name__) from exc


__all__ = ["DBSessionStore", "DEFAULT_TTL_SECONDS"]
