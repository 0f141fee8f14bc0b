"""
Identity domain types: roles, content domains, permission sets and principals.

Why:
- Centralize the role and domain vocabulary so the resolver, the session
  layer and the web adapter cannot drift apart.
- Replace ad-hoc `permissions[key]` lookups with an explicit record that is
  validated once, at construction.

Security:
- Passwords live only on `OwnerCredential` and `StaffRecord`. A `Principal`
  never carries one, so it is safe to persist in the session store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional


ROLE_OWNER = "owner"
ROLE_STAFF = "staff"
ROLE_ANONYMOUS = "anonymous"

ALLOWED_ROLES = frozenset({ROLE_OWNER, ROLE_STAFF, ROLE_ANONYMOUS})

# Order matters: it is the order tabs and permission toggles are presented in.
CONTENT_DOMAINS = ("dictionary", "library", "gallery", "songs", "videos", "exams")

# Listings anyone may browse, signed in or not.
PUBLIC_DOMAINS = frozenset({"dictionary", "library", "gallery", "songs", "videos"})

# Admin panel vocabulary mapped onto the permission that gates it.
CONTENT_TYPE_DOMAINS = {
    "words": "dictionary",
    "books": "library",
    "photos": "gallery",
    "songs": "songs",
    "videos": "videos",
}


class AuthFailure(str, Enum):
    """Negative results of identity operations (returned, not raised)."""

    INVALID_CREDENTIALS = "invalid_credentials"
    ALREADY_INITIALIZED = "already_initialized"


class AlreadyInitialized(Exception):
    """Raised when an owner credential exists and initialization is attempted again."""

    failure = AuthFailure.ALREADY_INITIALIZED

    def __init__(self) -> None:
        super().__init__(self.failure.value)
        self.code = self.failure.value


class NotAuthorized(Exception):
    """Raised when a principal lacks the role an operation requires."""

    def __init__(self, code: str = "forbidden"):
        super().__init__(code)
        self.code = code


class StoreFailure(Exception):
    """A backing-store or session-store operation failed.

    `operation` names the failing call (e.g. "fetch_all_staff") so callers and
    logs can tell the collaborators apart without inspecting the cause.
    """

    def __init__(self, operation: str, detail: str | None = None):
        super().__init__(f"{operation}: {detail}" if detail else operation)
        self.operation = operation
        self.detail = detail


def require_domain(domain: str) -> str:
    if domain not in CONTENT_DOMAINS:
        raise ValueError("unknown_domain")
    return domain


@dataclass(frozen=True)
class PermissionSet:
    dictionary: bool = False
    library: bool = False
    gallery: bool = False
    songs: bool = False
    videos: bool = False
    exams: bool = False

    def __post_init__(self) -> None:
        for f in fields(self):
            if not isinstance(getattr(self, f.name), bool):
                raise ValueError("invalid_permission_value")

    @classmethod
    def all(cls) -> "PermissionSet":
        return cls(**{name: True for name in CONTENT_DOMAINS})

    @classmethod
    def none(cls) -> "PermissionSet":
        return cls()

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PermissionSet":
        """Build a permission set from a stored JSON object.

        Behavior:
            - `None` yields an empty set (no capabilities).
            - Missing keys default to False.
            - Unknown keys or non-boolean values raise `ValueError`.
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("invalid_permissions")
        unknown = set(data) - set(CONTENT_DOMAINS)
        if unknown:
            raise ValueError("unknown_permission_key")
        return cls(**{k: data[k] for k in CONTENT_DOMAINS if k in data})

    def allows(self, domain: str) -> bool:
        return bool(getattr(self, require_domain(domain)))

    def to_dict(self) -> dict[str, bool]:
        return {name: getattr(self, name) for name in CONTENT_DOMAINS}


@dataclass(frozen=True)
class Principal:
    """The resolved identity of the current actor."""

    id: str
    name: str
    role: str
    permissions: PermissionSet = field(default_factory=PermissionSet)

    def __post_init__(self) -> None:
        if self.role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")

    @property
    def is_owner(self) -> bool:
        return self.role == ROLE_OWNER

    @property
    def is_staff(self) -> bool:
        return self.role == ROLE_STAFF

    @property
    def is_authenticated(self) -> bool:
        return self.role != ROLE_ANONYMOUS


ANONYMOUS = Principal(id="", name="", role=ROLE_ANONYMOUS)


@dataclass(frozen=True)
class OwnerCredential:
    phone: str
    password: str
    name: str
    created_at: Optional[int] = None

    def with_credentials(self, *, phone: str, password: str, name: Optional[str] = None) -> "OwnerCredential":
        return replace(self, phone=phone, password=password, name=name if name else self.name)


@dataclass(frozen=True)
class StaffRecord:
    phone: str
    name: str
    password: str
    permissions: PermissionSet = field(default_factory=PermissionSet)


__all__ = [
    "ALLOWED_ROLES",
    "ANONYMOUS",
    "AlreadyInitialized",
    "AuthFailure",
    "CONTENT_DOMAINS",
    "CONTENT_TYPE_DOMAINS",
    "NotAuthorized",
    "OwnerCredential",
    "PUBLIC_DOMAINS",
    "PermissionSet",
    "Principal",
    "ROLE_ANONYMOUS",
    "ROLE_OWNER",
    "ROLE_STAFF",
    "StaffRecord",
    "StoreFailure",
    "require_domain",
]
