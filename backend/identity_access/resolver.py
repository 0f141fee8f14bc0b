"""
Identity & permission resolver (pure functions, no I/O).

Why:
    Login matching and permission checks are the only decisions the portal
    makes about who may do what. Keeping them free of storage and framework
    concerns lets tests pin the behavior down exactly.

Behavior:
    - Phone numbers are compared on their last ten digits after stripping
      every non-digit character, so "+91 90000 00001" matches "9000000001".
    - The owner is checked before any staff record. A staff phone that shares
      its last ten digits with the owner's therefore resolves to the owner
      whenever the owner password is supplied.
    - Passwords are stored and compared as plaintext strings. The comparison
      is constant-time but otherwise exact.
"""

from __future__ import annotations

import re
import secrets
from typing import Iterable, Optional, Union

from .domain import (
    CONTENT_DOMAINS,
    CONTENT_TYPE_DOMAINS,
    PUBLIC_DOMAINS,
    AuthFailure,
    OwnerCredential,
    PermissionSet,
    Principal,
    ROLE_OWNER,
    ROLE_STAFF,
    StaffRecord,
    require_domain,
)

PHONE_SUFFIX_DIGITS = 10
DASHBOARD_TAB = "dashboard"
PUBLIC_TABS = ("dictionary", "library", "gallery", "videos", "songs")

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: object) -> str:
    """Return only the digits of `raw` ("" for non-strings)."""
    if not isinstance(raw, str):
        return ""
    return _NON_DIGITS.sub("", raw)


def phone_suffix(raw: object) -> str:
    return normalize_phone(raw)[-PHONE_SUFFIX_DIGITS:]


def _same_phone(stored: str, candidate_suffix: str) -> bool:
    return bool(candidate_suffix) and phone_suffix(stored) == candidate_suffix


def _password_matches(stored: Optional[str], given: object) -> bool:
    if not isinstance(stored, str) or not stored or not isinstance(given, str):
        return False
    return secrets.compare_digest(stored.encode("utf-8"), given.encode("utf-8"))


def authenticate(
    phone_input: str,
    password_input: str,
    owner: Optional[OwnerCredential],
    staff: Iterable[StaffRecord],
) -> Union[Principal, AuthFailure]:
    """Resolve login credentials into a principal.

    Returns an owner or staff `Principal` on success and
    `AuthFailure.INVALID_CREDENTIALS` otherwise. Never raises for unknown
    phones, wrong passwords, an absent owner or an empty staff list.
    """
    clean = normalize_phone(phone_input)
    suffix = clean[-PHONE_SUFFIX_DIGITS:]
    if not suffix:
        return AuthFailure.INVALID_CREDENTIALS

    if owner is not None and _same_phone(owner.phone, suffix) and _password_matches(owner.password, password_input):
        return Principal(id=clean, name=owner.name, role=ROLE_OWNER, permissions=PermissionSet.all())

    # First phone match wins; its password decides.
    match = next((rec for rec in staff if _same_phone(rec.phone, suffix)), None)
    if match is not None and _password_matches(match.password, password_input):
        return Principal(id=clean, name=match.name, role=ROLE_STAFF, permissions=match.permissions)
    return AuthFailure.INVALID_CREDENTIALS


def has_capability(principal: Optional[Principal], domain: str) -> bool:
    require_domain(domain)
    if principal is None:
        return False
    if principal.role == ROLE_OWNER:
        return True
    if principal.role == ROLE_STAFF:
        return principal.permissions.allows(domain)
    return False


def can_view(principal: Optional[Principal], domain: str) -> bool:
    """Public listings are viewable by anyone; the rest needs the capability."""
    if require_domain(domain) in PUBLIC_DOMAINS:
        return True
    return has_capability(principal, domain)


def can_mutate(principal: Optional[Principal], domain: str) -> bool:
    return has_capability(principal, domain)


def is_setup_required(owner: Optional[OwnerCredential]) -> bool:
    return owner is None


def visible_tabs(principal: Optional[Principal]) -> list[str]:
    """Navigation tabs for the portal header.

    Staff only see the content tabs they may manage, plus the dashboard.
    """
    if principal is None or not principal.is_authenticated:
        return list(PUBLIC_TABS)
    if principal.is_owner:
        return [*PUBLIC_TABS, DASHBOARD_TAB]
    return [tab for tab in PUBLIC_TABS if principal.permissions.allows(tab)] + [DASHBOARD_TAB]


def manageable_content_types(principal: Optional[Principal]) -> list[str]:
    return [ctype for ctype, domain in CONTENT_TYPE_DOMAINS.items() if has_capability(principal, domain)]


def admin_sections(principal: Optional[Principal]) -> list[str]:
    if principal is None or not principal.is_authenticated:
        return []
    if principal.is_owner:
        return ["overview", "content", "staff", "security"]
    return ["overview", "content"]


def permission_matrix(principal: Optional[Principal]) -> dict[str, dict[str, bool]]:
    return {
        domain: {"can_view": can_view(principal, domain), "can_mutate": can_mutate(principal, domain)}
        for domain in CONTENT_DOMAINS
    }


_LOGIN_COPY = {
    "developer": {
        "title": "Lead Developer",
        "subtitle": "Authorized root access required",
        "footer": "TaiHub Root System",
    },
    "staff": {
        "title": "Staff Portal",
        "subtitle": "Enter your staff credentials to manage the platform",
        "footer": "Verified Secure Login",
    },
}


def login_copy(intent: Optional[str]) -> dict[str, str]:
    """Login surface copy. Intent is cosmetic: authentication ignores it."""
    key = intent if intent in _LOGIN_COPY else "developer"
    return {"intent": key, **_LOGIN_COPY[key]}


__all__ = [
    "DASHBOARD_TAB",
    "PHONE_SUFFIX_DIGITS",
    "admin_sections",
    "authenticate",
    "can_mutate",
    "can_view",
    "has_capability",
    "is_setup_required",
    "login_copy",
    "manageable_content_types",
    "normalize_phone",
    "permission_matrix",
    "phone_suffix",
    "visible_tabs",
]
