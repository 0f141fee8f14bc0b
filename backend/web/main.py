"TaiHub identity & access service"
from __future__ import annotations

import asyncio
import logging
import os
import sys as _sys

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from identity_access.domain import ANONYMOUS
from identity_access.service import IdentityAccessService
from identity_access.session import SessionManager

try:
    from . import config as _cfg
    from .auth_utils import SESSION_COOKIE_NAME
    from .identity_wiring import build_identity_store, build_session_store
except ImportError:
    import config as _cfg  # type: ignore
    from auth_utils import SESSION_COOKIE_NAME  # type: ignore
    from identity_wiring import build_identity_store, build_session_store  # type: ignore

# Ensure both import styles reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("web.main", _sys.modules[__name__])
elif __name__ in ("web.main", "backend.web.main"):
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via TAIHUB_ENABLE_DOTENV (default true outside pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("TAIHUB_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


logger = logging.getLogger("taihub.web")

app = FastAPI(title="TaiHub", description="Identity & access for the TaiHub community portal", version="0.1.0")


def configure(*, identity: IdentityAccessService | None = None, session_store=None) -> None:
    """(Re)bind the identity service and session store used by every request.

    Called once at import with the configured backends; tests call it again
    with in-memory fakes.
    """
    app.state.identity = identity if identity is not None else IdentityAccessService(
        build_identity_store(), refresh_seconds=_cfg.identity_refresh_seconds()
    )
    app.state.session_store = session_store if session_store is not None else build_session_store()
    logger.info(
        "Identity wiring: store=%s sessions=%s",
        type(app.state.identity.store).__name__,
        type(app.state.session_store).__name__,
    )


configure()

try:
    from .routes.auth import auth_router
    from .routes.portal import portal_router
    from .routes.security import private_error, private_json
    from .routes.staff import staff_router
except ImportError:
    from routes.auth import auth_router  # type: ignore  # noqa: E402
    from routes.portal import portal_router  # type: ignore  # noqa: E402
    from routes.security import private_error, private_json  # type: ignore  # noqa: E402
    from routes.staff import staff_router  # type: ignore  # noqa: E402

# --- Identity Middleware ---------------------------------------------------------


def _is_public_path(path: str) -> bool:
    return path.startswith("/static/") or path in ("/health", "/favicon.ico")


@app.middleware("http")
async def identity_gate(request: Request, call_next):
    """Resolve the caller's principal and gate the app on the identity state.

    Behavior:
        - Public paths pass untouched.
        - The identity directory is loaded lazily; while the backing store is
          unreachable every gated request gets 503 `store_unreachable`.
        - While no owner exists every request except `/auth/setup` gets 409
          `setup_required`.
        - Otherwise the session cookie is resolved through a SessionManager and
          `request.state.principal` is set (ANONYMOUS without a session).
    """
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    identity: IdentityAccessService = request.app.state.identity
    await asyncio.to_thread(identity.ensure_loaded)
    if identity.is_unreachable:
        return private_error("store_unreachable", status_code=503)
    if identity.setup_required and path != "/auth/setup":
        return private_error("setup_required", status_code=409)

    sid = request.cookies.get(SESSION_COOKIE_NAME) or ""
    manager = SessionManager(identity, request.app.state.session_store, sid)
    await manager.start()
    request.state.session = manager
    request.state.principal = manager.principal or ANONYMOUS
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routers -------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(staff_router)
app.include_router(portal_router)


@app.get("/health")
async def health_check():
    # Liveness only; identity state is reported by /auth/setup.
    return private_json({"status": "healthy"})
