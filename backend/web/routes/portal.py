"""
Navigation gating routes: per-domain permission checks and the admin portal.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from identity_access.domain import Principal
from identity_access.resolver import admin_sections, can_mutate, can_view, manageable_content_types, visible_tabs

from .security import private_error, private_json


portal_router = APIRouter(tags=["Portal"])


@portal_router.get("/api/permissions/{domain}")
async def domain_permissions(request: Request, domain: str):
    principal: Principal = request.state.principal
    try:
        view = can_view(principal, domain)
        mutate = can_mutate(principal, domain)
    except ValueError:
        return private_error("not_found", status_code=404, detail="unknown_domain")
    return private_json({"domain": domain, "can_view": view, "can_mutate": mutate})


@portal_router.get("/api/portal")
async def portal(request: Request):
    """Admin portal layout for the signed-in owner or staff member."""
    principal: Principal = request.state.principal
    if not principal.is_authenticated:
        return private_error("unauthenticated", status_code=401)
    return private_json(
        {
            "role": principal.role,
            "sections": admin_sections(principal),
            "content_types": manageable_content_types(principal),
            "tabs": visible_tabs(principal),
        }
    )
