"""
Shared web security helpers for routes: response headers and CSRF checks.

Keeping a single implementation avoids drift between the auth, staff and
portal routers.
"""
from __future__ import annotations

import os
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse


PRIVATE_NO_STORE = {"Cache-Control": "private, no-store"}


def private_json(payload, *, status_code: int = 200) -> JSONResponse:
    """JSON response that proxies and browsers must not cache."""
    return JSONResponse(content=payload, status_code=status_code, headers=dict(PRIVATE_NO_STORE))


def private_error(code: str, *, status_code: int, detail: str | None = None) -> JSONResponse:
    body = {"error": code}
    if detail:
        body["detail"] = detail
    return private_json(body, status_code=status_code)


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    return scheme, p.hostname.lower(), int(p.port or _default_port(scheme))


def _server_origin(request: Request) -> tuple[str, str, int]:
    """Origin the server is reachable at; X-Forwarded-* only with TAIHUB_TRUST_PROXY=true."""
    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port or _default_port(scheme))
    if (os.getenv("TAIHUB_TRUST_PROXY", "false") or "").lower() != "true":
        return scheme, host, port
    xf_proto = (request.headers.get("x-forwarded-proto") or "").split(",")[0].strip().lower()
    xf_host = (request.headers.get("x-forwarded-host") or "").split(",")[0].strip()
    if xf_proto:
        scheme = xf_proto
        port = _default_port(scheme)
    if xf_host:
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            host = host_only.lower()
            port = int(port_str) if port_str.isdigit() else _default_port(scheme)
        else:
            host = xf_host.lower()
    return scheme, host, port


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow, so non-browser clients keep working.
    """
    candidate = request.headers.get("origin") or request.headers.get("referer")
    if not candidate:
        return True
    try:
        return _parse_origin(candidate) == _server_origin(request)
    except ValueError:
        return False


def csrf_guard(request: Request) -> JSONResponse | None:
    if not is_same_origin(request):
        return private_error("forbidden", status_code=403, detail="csrf_violation")
    return None


__all__ = ["PRIVATE_NO_STORE", "csrf_guard", "is_same_origin", "private_error", "private_json"]
