"""
Configuration and startup security checks for TaiHub.

Why: The identity tables hold plaintext credentials, so an accidental insecure
deployment is costly. This module provides a single guard that enforces
minimal production safety constraints without burdening local development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import logging
import os

from identity_access.stores import session_ttl_from_env


logger = logging.getLogger("taihub.web.config")

SESSION_BACKENDS = frozenset({"memory", "file", "db"})
IDENTITY_BACKENDS = frozenset({"memory", "supabase"})
DEFAULT_IDENTITY_REFRESH_SECONDS = 60.0


def current_environment() -> str:
    return (os.getenv("TAIHUB_ENV", "dev") or "dev").strip().lower()


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def identity_backend() -> str:
    """Configured identity backend; Supabase when credentials are present."""
    raw = (os.getenv("IDENTITY_BACKEND") or "").strip().lower()
    if raw:
        return raw
    if (os.getenv("SUPABASE_URL") or "").strip() and (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip():
        return "supabase"
    return "memory"


def sessions_backend() -> str:
    return (os.getenv("SESSIONS_BACKEND", "memory") or "memory").strip().lower()


def session_file_path() -> str:
    return (os.getenv("SESSION_FILE_PATH") or ".taihub/sessions.json").strip()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Backend names must be known values (all environments).
    - Identity data must come from Supabase with a real Service Role key.
    - SUPABASE_URL must use https.
    - Sessions must be durable (`db` or `file`), never `memory`.
    - DATABASE_URL must not explicitly disable TLS when sessions live in Postgres.
    """
    ident = identity_backend()
    if ident not in IDENTITY_BACKENDS:
        raise SystemExit(f"Refusing to start: unknown IDENTITY_BACKEND '{ident}'.")
    sessions = sessions_backend()
    if sessions not in SESSION_BACKENDS:
        raise SystemExit(f"Refusing to start: unknown SESSIONS_BACKEND '{sessions}'.")

    env = current_environment()
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Identity store
    if ident != "supabase":
        raise SystemExit("Refusing to start: IDENTITY_BACKEND must be 'supabase' in production.")
    srole = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )
    url = (os.getenv("SUPABASE_URL") or "").strip().lower()
    if not url.startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")

    # 2) Sessions must survive restarts
    if sessions == "memory":
        raise SystemExit("Refusing to start: SESSIONS_BACKEND=memory loses sessions on restart; use 'db' or 'file'.")

    # 3) Postgres TLS: basic guard to avoid explicit disable
    if sessions == "db" and "sslmode=disable" in os.getenv("DATABASE_URL", ""):
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    logger.warning("Owner and staff passwords are stored and compared in plaintext; restrict access to the identity tables.")


def session_ttl_seconds() -> int:
    """Lifetime of a login in seconds; the cookie max_age and every session store share it."""
    return session_ttl_from_env()


def identity_refresh_seconds() -> float:
    """How long a loaded identity directory is trusted before it is re-read.

    IDENTITY_REFRESH_SECONDS, default 60. Changes made by another instance or
    by the operator CLI become visible to this process within that interval.
    """
    raw = (os.getenv("IDENTITY_REFRESH_SECONDS") or "").strip()
    try:
        value = float(raw) if raw else DEFAULT_IDENTITY_REFRESH_SECONDS
    except ValueError:
        return DEFAULT_IDENTITY_REFRESH_SECONDS
    return value if value >= 0 else DEFAULT_IDENTITY_REFRESH_SECONDS
