"""
Auth API contract: one-time setup, login/logout and the current principal.

All requests go through the real middleware stack with in-memory stores.
"""
from __future__ import annotations

import httpx
import pytest
from click.testing import CliRunner
from httpx import ASGITransport

from identity_access import stores
from identity_access.domain import StoreFailure
from identity_access.service import IdentityAccessService
from identity_access.stores import InMemoryIdentityStore, InMemorySessionStore
from tools.identity_admin import cli


pytestmark = pytest.mark.anyio("asyncio")


def _client(main) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="https://test")


class _UnreachableStore(InMemoryIdentityStore):
    def fetch_owner_credential(self):
        raise StoreFailure("fetch_owner_credential", "ConnectError")


async def test_health_is_public(app_main):
    async with _client(app_main) as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


async def test_setup_flow_creates_owner_once(app_main):
    async with _client(app_main) as client:
        status = await client.get("/auth/setup")
        assert status.json() == {"setup_required": True}
        assert status.headers["Cache-Control"] == "private, no-store"

        blocked = await client.get("/api/me")
        assert blocked.status_code == 409
        assert blocked.json()["error"] == "setup_required"
        assert (await client.post("/auth/login", json={"phone": "9000000001", "password": "root1234"})).status_code == 409

        created = await client.post("/auth/setup", json={"phone": "9000000001", "password": "root1234", "name": "Admin"})
        assert created.status_code == 201
        body = created.json()["owner"]
        assert body["phone"] == "9000000001"
        assert "password" not in body

        again = await client.post("/auth/setup", json={"phone": "9000000002", "password": "other123", "name": "Other"})
        assert again.status_code == 409
        assert again.json()["error"] == "already_initialized"

        assert (await client.get("/auth/setup")).json() == {"setup_required": False}


async def test_setup_validation_errors_are_400(app_main):
    async with _client(app_main) as client:
        resp = await client.post("/auth/setup", json={"phone": "123", "password": "root1234", "name": "Admin"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "bad_request", "detail": "invalid_phone"}


async def test_unreachable_store_is_503_not_setup(app_main):
    app_main.configure(identity=IdentityAccessService(_UnreachableStore()), session_store=InMemorySessionStore())
    async with _client(app_main) as client:
        resp = await client.get("/auth/setup")
        assert resp.status_code == 503
        assert resp.json()["error"] == "store_unreachable"
        assert (await client.post("/auth/setup", json={"phone": "9000000001", "password": "root1234", "name": "A"})).status_code == 503
        assert (await client.get("/health")).status_code == 200


async def test_owner_login_sets_cookie_and_me_reports_owner(seeded_main):
    async with _client(seeded_main) as client:
        resp = await client.post("/auth/login", json={"phone": "+91 9000000001", "password": "root1234"})
        assert resp.status_code == 200
        assert resp.json()["principal"]["role"] == "owner"
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith("taihub_session=")
        assert "HttpOnly" in set_cookie
        assert "Secure" in set_cookie
        assert "samesite=lax" in set_cookie.lower()

        me = await client.get("/api/me")
    assert me.status_code == 200
    data = me.json()
    assert data["authenticated"] is True
    assert data["principal"]["name"] == "Admin"
    assert data["permissions"]["exams"] == {"can_view": True, "can_mutate": True}
    assert data["tabs"][-1] == "dashboard"


async def test_staff_login_carries_permission_snapshot(seeded_main):
    async with _client(seeded_main) as client:
        await client.post("/auth/login", json={"phone": "8000000002", "password": "pass"})
        me = (await client.get("/api/me")).json()
    assert me["principal"]["role"] == "staff"
    assert me["permissions"]["dictionary"]["can_mutate"] is True
    assert me["permissions"]["library"] == {"can_view": True, "can_mutate": False}
    assert me["tabs"] == ["dictionary", "dashboard"]


async def test_invalid_credentials_are_generic_401(seeded_main):
    async with _client(seeded_main) as client:
        wrong_pw = await client.post("/auth/login", json={"phone": "8000000002", "password": "wrong"})
        unknown = await client.post("/auth/login", json={"phone": "1234567890", "password": "wrong"})
    assert wrong_pw.status_code == unknown.status_code == 401
    assert wrong_pw.json() == unknown.json()
    assert wrong_pw.json()["error"] == "invalid_credentials"
    assert "set-cookie" not in wrong_pw.headers


@pytest.mark.parametrize(
    "payload, detail",
    [
        ({"phone": "12345", "password": "root1234"}, "invalid_phone"),
        ({"phone": "9000000001", "password": "abc"}, "invalid_password"),
        ({}, "invalid_phone"),
    ],
)
async def test_login_input_validation(seeded_main, payload, detail):
    async with _client(seeded_main) as client:
        resp = await client.post("/auth/login", json=payload)
    assert resp.status_code == 400
    assert resp.json()["detail"] == detail


async def test_anonymous_me(seeded_main):
    async with _client(seeded_main) as client:
        me = (await client.get("/api/me")).json()
    assert me["authenticated"] is False
    assert me["principal"]["role"] == "anonymous"
    assert me["permissions"]["exams"] == {"can_view": False, "can_mutate": False}
    assert me["tabs"] == ["dictionary", "library", "gallery", "videos", "songs"]


async def test_relogin_rotates_session_id(seeded_main):
    async with _client(seeded_main) as client:
        first = await client.post("/auth/login", json={"phone": "8000000002", "password": "pass"})
        old_sid = first.cookies.get("taihub_session")
        second = await client.post("/auth/login", json={"phone": "9000000001", "password": "root1234"})
        new_sid = second.cookies.get("taihub_session")
        assert old_sid and new_sid and old_sid != new_sid
        assert seeded_main.app.state.session_store.read(old_sid) is None
        assert (await client.get("/api/me")).json()["principal"]["role"] == "owner"


async def test_logout_clears_session_and_cookie(seeded_main):
    async with _client(seeded_main) as client:
        login = await client.post("/auth/login", json={"phone": "9000000001", "password": "root1234"})
        sid = login.cookies.get("taihub_session")
        out = await client.post("/auth/logout")
        assert out.status_code == 204
        assert "taihub_session=" in out.headers["set-cookie"]
        assert "max-age=0" in out.headers["set-cookie"].lower()
        assert seeded_main.app.state.session_store.read(sid) is None

        # Even when the browser replays the old cookie, the record is gone.
        me = (await client.get("/api/me", headers={"Cookie": f"taihub_session={sid}"})).json()
        assert me["authenticated"] is False

        assert (await client.post("/auth/logout")).status_code == 204


async def test_session_survives_app_rewire(seeded_main, seeded_store):
    sessions = InMemorySessionStore()
    seeded_main.configure(identity=IdentityAccessService(seeded_store), session_store=sessions)
    async with _client(seeded_main) as client:
        login = await client.post("/auth/login", json={"phone": "8000000002", "password": "pass"})
        sid = login.cookies.get("taihub_session")

    # Simulate a restart: new identity service, same durable session store.
    seeded_main.configure(identity=IdentityAccessService(seeded_store), session_store=sessions)
    async with _client(seeded_main) as client:
        me = (await client.get("/api/me", headers={"Cookie": f"taihub_session={sid}"})).json()
    assert me["principal"]["role"] == "staff"


async def test_cross_origin_login_is_rejected(seeded_main):
    async with _client(seeded_main) as client:
        resp = await client.post(
            "/auth/login",
            json={"phone": "9000000001", "password": "root1234"},
            headers={"Origin": "https://evil.example"},
        )
    assert resp.status_code == 403
    assert resp.json() == {"error": "forbidden", "detail": "csrf_violation"}


async def test_same_origin_login_is_accepted(seeded_main):
    async with _client(seeded_main) as client:
        resp = await client.post(
            "/auth/login",
            json={"phone": "9000000001", "password": "root1234"},
            headers={"Origin": "https://test"},
        )
    assert resp.status_code == 200


async def test_login_copy_by_intent(seeded_main):
    async with _client(seeded_main) as client:
        staff = (await client.get("/auth/login", params={"intent": "staff"})).json()
        default = (await client.get("/auth/login")).json()
    assert staff["title"] == "Staff Portal"
    assert default["intent"] == "developer"


async def test_session_stops_working_after_ttl(seeded_main, seeded_store, monkeypatch: pytest.MonkeyPatch):
    seeded_main.configure(identity=IdentityAccessService(seeded_store), session_store=InMemorySessionStore(ttl_seconds=60))
    async with _client(seeded_main) as client:
        login = await client.post("/auth/login", json={"phone": "8000000002", "password": "pass"})
        sid = login.cookies.get("taihub_session")

    later = stores._now() + 120
    monkeypatch.setattr(stores, "_now", lambda: later)
    async with _client(seeded_main) as client:
        me = (await client.get("/api/me", headers={"Cookie": f"taihub_session={sid}"})).json()
    assert me["authenticated"] is False


async def test_cookie_max_age_matches_session_ttl(seeded_main, seeded_store, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SESSION_TTL_SECONDS", "900")
    sessions = InMemorySessionStore()
    seeded_main.configure(identity=IdentityAccessService(seeded_store), session_store=sessions)
    async with _client(seeded_main) as client:
        resp = await client.post("/auth/login", json={"phone": "9000000001", "password": "root1234"})
    assert sessions.ttl_seconds == 900
    assert "max-age=900" in resp.headers["set-cookie"].lower()


class _CountingSessionStore(InMemorySessionStore):
    def __init__(self):
        super().__init__()
        self.reads = 0

    def read(self, session_id):
        self.reads += 1
        return super().read(session_id)


async def test_login_does_not_read_the_new_session_id(seeded_main, seeded_store):
    sessions = _CountingSessionStore()
    seeded_main.configure(identity=IdentityAccessService(seeded_store), session_store=sessions)
    async with _client(seeded_main) as client:
        resp = await client.post("/auth/login", json={"phone": "9000000001", "password": "root1234"})
    assert resp.status_code == 200
    assert sessions.reads == 0


async def test_staff_removed_by_cli_cannot_log_in_on_running_server(seeded_main, seeded_store):
    seeded_main.configure(identity=IdentityAccessService(seeded_store, refresh_seconds=0), session_store=InMemorySessionStore())
    async with _client(seeded_main) as client:
        first = await client.post("/auth/login", json={"phone": "8000000002", "password": "pass"})
        assert first.status_code == 200

        removed = CliRunner().invoke(cli, ["remove-staff", "8000000002"], obj={"service": IdentityAccessService(seeded_store)})
        assert removed.exit_code == 0

        again = await client.post("/auth/login", json={"phone": "8000000002", "password": "pass"})
    assert again.status_code == 401
