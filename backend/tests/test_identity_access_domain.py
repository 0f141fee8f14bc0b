"""
Domain value objects: permission sets and principals.

PermissionSet is the only place permission keys are interpreted, so the
construction rules (unknown keys, non-booleans, missing keys) are pinned here.
"""
from __future__ import annotations

import pytest

from identity_access.domain import (
    ANONYMOUS,
    CONTENT_DOMAINS,
    AlreadyInitialized,
    AuthFailure,
    OwnerCredential,
    PermissionSet,
    Principal,
    StoreFailure,
)


def test_permission_set_defaults_missing_keys_to_false():
    perms = PermissionSet.from_mapping({"dictionary": True})
    assert perms.dictionary is True
    assert perms.to_dict() == {
        "dictionary": True,
        "library": False,
        "gallery": False,
        "songs": False,
        "videos": False,
        "exams": False,
    }


def test_permission_set_none_is_empty():
    assert PermissionSet.from_mapping(None) == PermissionSet.none()


@pytest.mark.parametrize(
    "data, code",
    [
        ({"dictionary": True, "comments": True}, "unknown_permission_key"),
        ({"library": "yes"}, "invalid_permission_value"),
        ({"exams": 1}, "invalid_permission_value"),
        (["dictionary"], "invalid_permissions"),
    ],
)
def test_permission_set_rejects_invalid_input(data, code):
    with pytest.raises(ValueError) as exc:
        PermissionSet.from_mapping(data)
    assert str(exc.value) == code


def test_permission_set_all_grants_every_domain():
    perms = PermissionSet.all()
    assert all(perms.allows(d) for d in CONTENT_DOMAINS)


def test_permission_set_allows_rejects_unknown_domain():
    with pytest.raises(ValueError):
        PermissionSet.all().allows("comments")


def test_principal_role_is_validated():
    with pytest.raises(ValueError):
        Principal(id="1", name="x", role="admin")


def test_anonymous_principal_flags():
    assert not ANONYMOUS.is_authenticated
    assert not ANONYMOUS.is_owner
    assert ANONYMOUS.permissions == PermissionSet.none()


def test_owner_credential_rotation_keeps_name_unless_given():
    cred = OwnerCredential(phone="9000000001", password="root1234", name="Admin", created_at=1)
    rotated = cred.with_credentials(phone="9000000009", password="newpass")
    assert (rotated.phone, rotated.password, rotated.name, rotated.created_at) == ("9000000009", "newpass", "Admin", 1)
    renamed = cred.with_credentials(phone="9000000001", password="root1234", name="Root")
    assert renamed.name == "Root"


def test_error_types_carry_codes():
    assert AlreadyInitialized().failure is AuthFailure.ALREADY_INITIALIZED
    assert AlreadyInitialized().code == "already_initialized"
    err = StoreFailure("fetch_all_staff", "ConnectError")
    assert err.operation == "fetch_all_staff"
    assert "ConnectError" in str(err)
