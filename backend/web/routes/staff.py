"""
Owner administration routes: staff directory and owner credential rotation.

Every endpoint here is owner-only. Anonymous callers get 401, staff get 403.
Passwords are accepted on write but never returned.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel

from identity_access.domain import NotAuthorized, PermissionSet, Principal, StaffRecord, StoreFailure
from identity_access.resolver import normalize_phone
from identity_access.service import IdentityAccessService

from .auth import owner_view
from .security import PRIVATE_NO_STORE, csrf_guard, private_error, private_json


staff_router = APIRouter(tags=["Staff"])
logger = logging.getLogger("taihub.web.staff")


class StaffPayload(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None
    # Validated by PermissionSet.from_mapping so non-booleans are rejected, not coerced.
    permissions: Optional[Dict[str, Any]] = None


class OwnerCredentialsPayload(BaseModel):
    phone: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


def staff_view(record: StaffRecord) -> dict:
    return {"phone": record.phone, "name": record.name, "permissions": record.permissions.to_dict()}


def _identity(request: Request) -> IdentityAccessService:
    return request.app.state.identity


def _owner_gate(request: Request):
    """Return an error response unless the caller is the owner."""
    principal: Principal = request.state.principal
    if not principal.is_authenticated:
        return private_error("unauthenticated", status_code=401)
    if not principal.is_owner:
        return private_error("forbidden", status_code=403)
    return None


def _store_error(exc: StoreFailure):
    logger.warning("Identity store write failed (%s)", exc.operation)
    return private_error("store_unavailable", status_code=503)


@staff_router.get("/api/staff")
async def list_staff(request: Request):
    if (resp := _owner_gate(request)) is not None:
        return resp
    records = _identity(request).list_staff(request.state.principal)
    return private_json({"staff": [staff_view(r) for r in sorted(records, key=lambda r: r.phone)]})


@staff_router.put("/api/staff/{phone}")
async def upsert_staff(request: Request, phone: str, payload: StaffPayload):
    """Create or replace a staff record keyed by phone.

    Responses: 201 when created, 200 when updated, 400 with a validation code.
    Omitting `password` on update keeps the stored one.
    """
    if (resp := _owner_gate(request)) is not None:
        return resp
    if (resp := csrf_guard(request)) is not None:
        return resp
    identity = _identity(request)
    try:
        permissions = PermissionSet.from_mapping(payload.permissions)
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    existed = normalize_phone(phone) in identity.directory.staff
    try:
        record = await asyncio.to_thread(
            lambda: identity.upsert_staff(
                request.state.principal,
                phone=phone,
                name=payload.name or "",
                permissions=permissions,
                password=payload.password,
            )
        )
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except NotAuthorized as exc:
        return private_error(exc.code, status_code=403)
    except StoreFailure as exc:
        return _store_error(exc)
    return private_json({"staff": staff_view(record)}, status_code=200 if existed else 201)


@staff_router.delete("/api/staff/{phone}")
async def delete_staff(request: Request, phone: str):
    if (resp := _owner_gate(request)) is not None:
        return resp
    if (resp := csrf_guard(request)) is not None:
        return resp
    try:
        await asyncio.to_thread(_identity(request).remove_staff, request.state.principal, phone)
    except NotAuthorized as exc:
        return private_error(exc.code, status_code=403)
    except StoreFailure as exc:
        return _store_error(exc)
    return Response(status_code=204, headers=dict(PRIVATE_NO_STORE))


@staff_router.put("/api/owner/credentials")
async def rotate_owner_credentials(request: Request, payload: OwnerCredentialsPayload):
    """Replace the owner's phone and password; the name is kept unless given."""
    if (resp := _owner_gate(request)) is not None:
        return resp
    if (resp := csrf_guard(request)) is not None:
        return resp
    try:
        cred = await asyncio.to_thread(
            _identity(request).rotate_owner_credential,
            request.state.principal,
            payload.phone or "",
            payload.password or "",
            payload.name,
        )
    except ValueError as exc:
        return private_error("bad_request", status_code=400, detail=str(exc))
    except NotAuthorized as exc:
        return private_error(exc.code, status_code=403)
    except StoreFailure as exc:
        return _store_error(exc)
    return private_json({"owner": owner_view(cred)})
