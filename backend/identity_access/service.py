"""Identity access service layer (owner/staff administration and login).

Why:
    The resolver is pure; something has to own the loaded owner credential and
    staff list, keep them in sync with the backing store, and enforce that only
    the owner administers accounts. This module is that boundary, so web
    adapters stay thin and the use cases can be unit-tested without FastAPI.

Behavior:
    - `load()` bulk-fetches owner and staff. A failure leaves the directory
      empty (so setup is reported as required) but records
      `LoadStatus.UNREACHABLE`, which callers must surface distinctly.
    - Writes go to the backing store first; the in-memory directory only
      changes once the store accepted the write.
    - With `refresh_seconds` set, `ensure_loaded()` re-reads the store once
      the loaded directory is older than that, so accounts changed elsewhere
      (another instance, the operator CLI) take effect without a restart.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .domain import (
    AlreadyInitialized,
    AuthFailure,
    NotAuthorized,
    OwnerCredential,
    PermissionSet,
    Principal,
    StaffRecord,
    StoreFailure,
)
from .resolver import PHONE_SUFFIX_DIGITS, authenticate, is_setup_required, normalize_phone, phone_suffix
from .stores import IdentityStoreProtocol


logger = logging.getLogger("taihub.identity_access")

MIN_PASSWORD_LENGTH = 4


class LoadStatus(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADED = "loaded"
    UNREACHABLE = "unreachable"


@dataclass
class IdentityDirectory:
    """Explicit identity context: the owner credential and staff by phone."""

    owner: Optional[OwnerCredential] = None
    staff: Dict[str, StaffRecord] = field(default_factory=dict)

    def staff_list(self) -> List[StaffRecord]:
        return list(self.staff.values())


def _normalize_account_phone(value: object) -> str:
    """Owner and staff phones are stored as exactly 10 digits."""
    phone = normalize_phone(value)
    if len(phone) != PHONE_SUFFIX_DIGITS:
        raise ValueError("invalid_phone")
    return phone


def _normalize_password(value: object) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError("invalid_password")
    return value


def _normalize_name(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("invalid_name")
    return value.strip()


def _now_millis() -> int:
    return int(time.time() * 1000)


class IdentityAccessService:
    """Use cases over the owner credential and staff directory."""

    def __init__(
        self,
        store: IdentityStoreProtocol,
        directory: Optional[IdentityDirectory] = None,
        refresh_seconds: Optional[float] = None,
    ):
        """`refresh_seconds` bounds how long a loaded directory is trusted;
        None keeps it until the process restarts."""
        self._store = store
        self.directory = directory or IdentityDirectory()
        self.status = LoadStatus.NOT_LOADED
        self.refresh_seconds = refresh_seconds
        self._loaded_at = 0.0

    @property
    def store(self) -> IdentityStoreProtocol:
        return self._store

    # --- Loading ---------------------------------------------------------------

    def load(self) -> LoadStatus:
        """Fetch owner and staff from the backing store.

        Never raises: a `StoreFailure` is logged and turns into an empty
        directory with status UNREACHABLE.
        """
        try:
            owner, staff = self._fetch()
        except StoreFailure as exc:
            logger.warning("Identity load failed (%s); backing store unreachable", exc.operation)
            self.directory = IdentityDirectory()
            self.status = LoadStatus.UNREACHABLE
            return self.status
        self._apply(owner, staff)
        logger.info("Identity directory loaded (owner=%s, staff=%d)", owner is not None, len(self.directory.staff))
        return self.status

    def ensure_loaded(self) -> LoadStatus:
        """Load once, retry while the store is unreachable, and re-read a
        loaded directory once it is older than `refresh_seconds`.

        A failed refresh keeps the directory that is already loaded; the next
        call tries again.
        """
        if self.status != LoadStatus.LOADED:
            return self.load()
        if self.refresh_seconds is None or time.monotonic() - self._loaded_at < self.refresh_seconds:
            return self.status
        try:
            owner, staff = self._fetch()
        except StoreFailure as exc:
            logger.warning("Identity refresh failed (%s); keeping the loaded directory", exc.operation)
            return self.status
        self._apply(owner, staff)
        logger.debug("Identity directory refreshed (owner=%s, staff=%d)", owner is not None, len(self.directory.staff))
        return self.status

    def _fetch(self) -> Tuple[Optional[OwnerCredential], List[StaffRecord]]:
        return self._store.fetch_owner_credential(), self._store.fetch_all_staff()

    def _apply(self, owner: Optional[OwnerCredential], staff: List[StaffRecord]) -> None:
        by_phone: Dict[str, StaffRecord] = {}
        suffixes = set()
        for rec in staff:
            key = normalize_phone(rec.phone)
            suffix = phone_suffix(rec.phone)
            if key in by_phone or suffix in suffixes:
                # Login matches on the last 10 digits, so only the first such record can sign in.
                logger.warning("Staff records share the phone suffix ***%s; ignoring the later one", suffix[-4:])
                continue
            by_phone[key] = rec
            suffixes.add(suffix)
        self.directory = IdentityDirectory(owner=owner, staff=by_phone)
        self.status = LoadStatus.LOADED
        self._loaded_at = time.monotonic()

    @property
    def is_loaded(self) -> bool:
        return self.status == LoadStatus.LOADED

    @property
    def is_unreachable(self) -> bool:
        return self.status == LoadStatus.UNREACHABLE

    @property
    def setup_required(self) -> bool:
        return is_setup_required(self.directory.owner)

    # --- Authentication -------------------------------------------------------

    def authenticate(self, phone: str, password: str) -> Union[Principal, AuthFailure]:
        return authenticate(phone, password, self.directory.owner, self.directory.staff_list())

    # --- Owner ------------------------------------------------------------------

    def initialize_owner(self, phone: str, password: str, name: str) -> OwnerCredential:
        """Create the owner credential exactly once.

        Raises:
            AlreadyInitialized: an owner exists locally or in the backing store.
            ValueError: invalid_phone / invalid_password / invalid_name.
            StoreFailure: the backing store rejected the read or write.
        """
        if self.directory.owner is not None:
            raise AlreadyInitialized()
        cred = OwnerCredential(
            phone=_normalize_account_phone(phone),
            password=_normalize_password(password),
            name=_normalize_name(name),
            created_at=_now_millis(),
        )
        # A failed bulk load looks like "no owner"; ask the store again before writing.
        existing = self._store.fetch_owner_credential()
        if existing is not None:
            self.directory.owner = existing
            raise AlreadyInitialized()
        self._store.save_owner_credential(cred)
        self.directory.owner = cred
        logger.info("Owner credential initialized")
        return cred

    def rotate_owner_credential(
        self,
        actor: Principal,
        new_phone: str,
        new_password: str,
        name: Optional[str] = None,
    ) -> OwnerCredential:
        _require_owner(actor)
        current = self.directory.owner
        if current is None:
            raise NotAuthorized("setup_required")
        updated = current.with_credentials(
            phone=_normalize_account_phone(new_phone),
            password=_normalize_password(new_password),
            name=_normalize_name(name) if name is not None else None,
        )
        self._store.save_owner_credential(updated)
        self.directory.owner = updated
        logger.info("Owner credential rotated")
        return updated

    # --- Staff ------------------------------------------------------------------

    def list_staff(self, actor: Principal) -> List[StaffRecord]:
        _require_owner(actor)
        return self.directory.staff_list()

    def upsert_staff(
        self,
        actor: Principal,
        *,
        phone: str,
        name: str,
        permissions: PermissionSet,
        password: Optional[str] = None,
    ) -> StaffRecord:
        """Insert or replace the staff record keyed by phone.

        Omitting the password keeps the stored one; a new record needs one.
        """
        _require_owner(actor)
        key = _normalize_account_phone(phone)
        existing = self.directory.staff.get(key)
        if password is None and existing is not None:
            secret = existing.password
        else:
            secret = _normalize_password(password)
        record = StaffRecord(phone=existing.phone if existing else key, name=_normalize_name(name), password=secret, permissions=permissions)
        self._store.save_staff_record(record)
        self.directory.staff[key] = record
        logger.info("Staff record %s", "updated" if existing else "created")
        return record

    def remove_staff(self, actor: Principal, phone: str) -> None:
        _require_owner(actor)
        key = normalize_phone(phone)
        existing = self.directory.staff.get(key)
        if existing is None:
            return
        self._store.delete_staff_record(existing.phone)
        self.directory.staff.pop(key, None)
        logger.info("Staff record removed")


def _require_owner(actor: Optional[Principal]) -> None:
    if actor is None or not actor.is_owner:
        raise NotAuthorized()


__all__ = [
    "IdentityAccessService",
    "IdentityDirectory",
    "LoadStatus",
    "MIN_PASSWORD_LENGTH",
]
