"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a fresh in-memory identity directory and session store.
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

# Keep import-time config guards in dev mode regardless of the caller's shell.
for _var in ("TAIHUB_ENV", "IDENTITY_BACKEND", "SESSIONS_BACKEND", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"):
    os.environ.pop(_var, None)

from identity_access.domain import OwnerCredential, PermissionSet, StaffRecord  # noqa: E402
from identity_access.service import IdentityAccessService  # noqa: E402
from identity_access.stores import InMemoryIdentityStore, InMemorySessionStore  # noqa: E402


OWNER_PHONE = "9000000001"
OWNER_PASSWORD = "root1234"
STAFF_PHONE = "8000000002"
STAFF_PASSWORD = "pass"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that may leak across tests."""
    for var in (
        "TAIHUB_ENV",
        "TAIHUB_TRUST_PROXY",
        "IDENTITY_BACKEND",
        "SESSIONS_BACKEND",
        "SESSION_TTL_SECONDS",
        "IDENTITY_REFRESH_SECONDS",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def owner_credential() -> OwnerCredential:
    return OwnerCredential(phone=OWNER_PHONE, password=OWNER_PASSWORD, name="Admin", created_at=1700000000000)


@pytest.fixture
def staff_record() -> StaffRecord:
    return StaffRecord(
        phone=STAFF_PHONE,
        name="Asha",
        password=STAFF_PASSWORD,
        permissions=PermissionSet(dictionary=True, library=False),
    )


@pytest.fixture
def seeded_store(owner_credential: OwnerCredential, staff_record: StaffRecord) -> InMemoryIdentityStore:
    return InMemoryIdentityStore(owner=owner_credential, staff=[staff_record])


@pytest.fixture
def app_main():
    """The web app module with a fresh, empty in-memory wiring.

    Tests that need seeded data call `app_main.configure(...)` again.
    """
    import main  # type: ignore

    main.configure(identity=IdentityAccessService(InMemoryIdentityStore()), session_store=InMemorySessionStore())
    yield main
    main.configure(identity=IdentityAccessService(InMemoryIdentityStore()), session_store=InMemorySessionStore())


@pytest.fixture
def seeded_main(app_main, seeded_store: InMemoryIdentityStore):
    app_main.configure(identity=IdentityAccessService(seeded_store), session_store=InMemorySessionStore())
    return app_main
