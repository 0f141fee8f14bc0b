"""
Session lifecycle: persist the active principal and mediate login/logout.

Why:
    A signed-in owner or staff member must survive process restarts, and a
    corrupted session record must never take the portal down. This module
    owns the small state machine that decides which principal is active for a
    session slot.

States:
    UNINITIALIZED -> CHECKING            start()
    CHECKING      -> UNAUTHENTICATED     no usable persisted session
    CHECKING      -> AUTHENTICATED       persisted session parsed into a Principal
    UNAUTHENTICATED -> AUTHENTICATED     login() succeeded
    AUTHENTICATED -> AUTHENTICATED       re-login replaces the principal
    AUTHENTICATED -> UNAUTHENTICATED     logout()

Security:
    The stored principal is a snapshot taken at login. Permission changes made
    by the owner afterwards apply from the staff member's next login.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .domain import (
    AuthFailure,
    PermissionSet,
    Principal,
    ROLE_OWNER,
    ROLE_STAFF,
    StoreFailure,
)
from .service import IdentityAccessService
from .stores import SessionStoreProtocol


logger = logging.getLogger("taihub.identity_access.session")


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CHECKING = "checking"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


_TRANSITIONS = {
    SessionState.UNINITIALIZED: frozenset({SessionState.CHECKING}),
    SessionState.CHECKING: frozenset({SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATED}),
    SessionState.UNAUTHENTICATED: frozenset({SessionState.AUTHENTICATED}),
    SessionState.AUTHENTICATED: frozenset({SessionState.AUTHENTICATED, SessionState.UNAUTHENTICATED}),
}


class InvalidTransition(Exception):
    def __init__(self, current: SessionState, target: SessionState):
        super().__init__(f"{current.value} -> {target.value}")
        self.current = current
        self.target = target


def principal_to_payload(principal: Principal) -> dict[str, Any]:
    return {
        "id": principal.id,
        "name": principal.name,
        "role": principal.role,
        "permissions": principal.permissions.to_dict(),
    }


def principal_from_payload(payload: object) -> Optional[Principal]:
    """Rebuild a principal from a session record; None when malformed.

    Only owner and staff principals are ever persisted, so any other role is
    treated as malformed as well.
    """
    if not isinstance(payload, Mapping):
        return None
    pid = payload.get("id")
    name = payload.get("name")
    role = payload.get("role")
    if not isinstance(pid, str) or not pid or not isinstance(name, str):
        return None
    if role not in (ROLE_OWNER, ROLE_STAFF):
        return None
    try:
        permissions = PermissionSet.from_mapping(payload.get("permissions"))
    except ValueError:
        return None
    if role == ROLE_OWNER:
        permissions = PermissionSet.all()
    return Principal(id=pid, name=name, role=role, permissions=permissions)


class SessionManager:
    """State machine for one session slot bound to `session_id`."""

    def __init__(self, identity: IdentityAccessService, store: SessionStoreProtocol, session_id: str):
        self._identity = identity
        self._store = store
        self.session_id = session_id
        self.state = SessionState.UNINITIALIZED
        self.principal: Optional[Principal] = None

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target

    async def start(self, *, fresh: bool = False) -> SessionState:
        """Wait for the identity load, then rehydrate the persisted principal.

        `fresh=True` marks a session id that was just generated; nothing can
        be stored under it yet, so the store is not read.
        """
        self._transition(SessionState.CHECKING)
        await asyncio.to_thread(self._identity.ensure_loaded)
        payload = None
        if self.session_id and not fresh:
            try:
                payload = await asyncio.to_thread(self._store.read, self.session_id)
            except StoreFailure as exc:
                logger.warning("Session read failed (%s); continuing unauthenticated", exc.operation)
        principal = principal_from_payload(payload) if payload is not None else None
        if payload is not None and principal is None:
            logger.warning("Discarding malformed session record")
        if principal is None:
            self._transition(SessionState.UNAUTHENTICATED)
        else:
            self.principal = principal
            self._transition(SessionState.AUTHENTICATED)
        return self.state

    async def login(self, phone: str, password: str) -> Union[Principal, AuthFailure]:
        """Authenticate and persist the principal.

        Before `start()` has finished the directory may still be empty, so the
        attempt is reported as invalid credentials instead of being evaluated.

        Raises:
            StoreFailure: the session could not be written (state unchanged).
        """
        if self.state not in (SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATED):
            return AuthFailure.INVALID_CREDENTIALS
        result = self._identity.authenticate(phone, password)
        if isinstance(result, AuthFailure):
            logger.info("Login rejected")
            return result
        await asyncio.to_thread(self._store.write, self.session_id, principal_to_payload(result))
        self._transition(SessionState.AUTHENTICATED)
        self.principal = result
        logger.info("Login succeeded (role=%s)", result.role)
        return result

    async def logout(self) -> SessionState:
        """Clear the session record. Logging out twice is harmless.

        Raises:
            StoreFailure: the record could not be cleared (state unchanged).
        """
        await asyncio.to_thread(self._store.clear, self.session_id)
        if self.state == SessionState.AUTHENTICATED:
            self._transition(SessionState.UNAUTHENTICATED)
        self.principal = None
        return self.state


__all__ = [
    "InvalidTransition",
    "SessionManager",
    "SessionState",
    "principal_from_payload",
    "principal_to_payload",
]
