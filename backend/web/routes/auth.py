"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep setup, login and logout in a dedicated router; `main.py` only wires
    the identity service and the session middleware.

Notes:
    - The middleware has already resolved `request.state.session` (a
      `SessionManager`) and `request.state.principal` for every gated path.
    - Login rotates the session id: the new principal is written under a
      fresh id and the previous record, if any, is cleared.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel

from identity_access.domain import AlreadyInitialized, AuthFailure, OwnerCredential, Principal, StoreFailure
from identity_access.resolver import PHONE_SUFFIX_DIGITS, login_copy, normalize_phone, permission_matrix, visible_tabs
from identity_access.service import MIN_PASSWORD_LENGTH, IdentityAccessService
from identity_access.session import SessionManager, SessionState
from identity_access.stores import new_session_id

from .security import PRIVATE_NO_STORE, csrf_guard, private_error, private_json

try:
    from ..auth_utils import expired_cookie_kwargs, session_cookie_kwargs
    from ..config import current_environment, session_ttl_seconds
except ImportError:
    from auth_utils import expired_cookie_kwargs, session_cookie_kwargs  # type: ignore
    from config import current_environment, session_ttl_seconds  # type: ignore


auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("taihub.web.auth")

INVALID_CREDENTIALS_DETAIL = "Invalid Credentials. Please check phone and password."


class SetupPayload(BaseModel):
    phone: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginPayload(BaseModel):
    phone: Optional[str] = None
    password: Optional[str] = None
    intent: Optional[str] = None


def owner_view(cred: OwnerCredential) -> dict:
    """Owner credential as returned to the owner; the password never leaves the server."""
    return {"phone": cred.phone, "name": cred.name, "created_at": cred.created_at}


def principal_view(principal: Principal) -> dict:
    return {
        "id": principal.id,
        "name": principal.name,
        "role": principal.role,
        "permissions": principal.permissions.to_dict(),
    }


def _identity(request: Request) -> IdentityAccessService:
    return request.app.state.identity


@auth_router.get("/auth/setup")
async def setup_status(request: Request):
    return private_json({"setup_required": _identity(request).setup_required})


@auth_router.post("/auth/setup")
async def setup_owner(request: Request, payload: SetupPayload):
    """One-time creation of the owner credential.

    Responses:
        201 owner view, 409 `already_initialized`, 400 validation code,
        503 `store_unavailable` when the backing store rejects the write.
    """
    if (resp := csrf_guard(request)) is not None:
        return resp
    try:
        cred = await asyncio.to_thread(
            _identity(request).initialize_owner,
            payload.phone or "",
            payload.password or "",
            payload.name or "",
        )
    except AlreadyInitialized as exc:
        return private_error(exc.code, status_code=409)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except StoreFailure as exc:
        logger.warning("Owner setup failed (%s)", exc.operation)
        return private_error("store_unavailable", status_code=503)
    return private_json({"owner": owner_view(cred)}, status_code=201)


@auth_router.get("/auth/login")
async def login_surface(intent: Optional[str] = None):
    return private_json(login_copy(intent))


@auth_router.post("/auth/login")
async def login(request: Request, payload: LoginPayload):
    """Authenticate by phone and password and issue a fresh session cookie.

    Short inputs are rejected with 400 before any lookup; everything else
    that does not match yields the same 401 `invalid_credentials`.
    """
    if (resp := csrf_guard(request)) is not None:
        return resp
    if len(normalize_phone(payload.phone)) < PHONE_SUFFIX_DIGITS:
        return private_error("bad_request", status_code=400, detail="invalid_phone")
    if not payload.password or len(payload.password) < MIN_PASSWORD_LENGTH:
        return private_error("bad_request", status_code=400, detail="invalid_password")

    current: SessionManager = request.state.session
    rotated = SessionManager(_identity(request), request.app.state.session_store, new_session_id())
    await rotated.start(fresh=True)
    try:
        result = await rotated.login(payload.phone or "", payload.password)
    except StoreFailure as exc:
        logger.warning("Session write failed (%s)", exc.operation)
        return private_error("store_unavailable", status_code=503)
    if isinstance(result, AuthFailure):
        return private_error(result.value, status_code=401, detail=INVALID_CREDENTIALS_DETAIL)

    if current.state == SessionState.AUTHENTICATED:
        try:
            await current.logout()
        except StoreFailure as exc:
            # The old record stays orphaned; the client only holds the new id.
            logger.warning("Clearing previous session failed (%s)", exc.operation)

    response = private_json({"principal": principal_view(result)})
    response.set_cookie(
        **session_cookie_kwargs(current_environment(), rotated.session_id, max_age=session_ttl_seconds())
    )
    return response


@auth_router.post("/auth/logout")
async def logout(request: Request):
    """Clear the session record and the cookie. Logging out twice is harmless."""
    if (resp := csrf_guard(request)) is not None:
        return resp
    manager: SessionManager = request.state.session
    if manager.session_id:
        try:
            await manager.logout()
        except StoreFailure as exc:
            logger.warning("Session clear failed (%s)", exc.operation)
            return private_error("store_unavailable", status_code=503)
    response = Response(status_code=204, headers=dict(PRIVATE_NO_STORE))
    response.set_cookie(**expired_cookie_kwargs(current_environment()))
    return response


@auth_router.get("/api/me")
async def get_me(request: Request):
    principal: Principal = request.state.principal
    return private_json(
        {
            "principal": principal_view(principal),
            "authenticated": principal.is_authenticated,
            "permissions": permission_matrix(principal),
            "tabs": visible_tabs(principal),
        }
    )
