"""End-to-end tests for the account gateway HTTP surface."""

from __future__ import annotations

from pathlib import Path

import anyio
import pytest
from fastapi.testclient import TestClient

from gateway.config import GatewaySettings, RateLimitPolicy
from gateway.errors import AuthError, StoreError
from gateway.models import RATE_LIMITS_TABLE, USERS_TABLE
from gateway.service import build_collaborators, create_app

CORS_ORIGIN = "*"
CORS_HEADERS = "authorization, x-client-info, apikey, content-type"


def _settings(tmp_path: Path, **overrides) -> GatewaySettings:
    values = {"database_path": tmp_path / "gateway.sqlite3"}
    values.update(overrides)
    return GatewaySettings(**values)


def _client(tmp_path: Path, store, identity, clock, **overrides) -> TestClient:
    app = create_app(_settings(tmp_path, **overrides), store=store, identity=identity, clock=clock)
    return TestClient(app)


def _assert_cors(response) -> None:
    assert response.headers["access-control-allow-origin"] == CORS_ORIGIN
    assert response.headers["access-control-allow-headers"] == CORS_HEADERS


def _seed_user(store, user_id: str = "u1", email: str = "a@b.com") -> None:
    store.tables[USERS_TABLE][user_id] = {
        "id": user_id,
        "email": email,
        "created_at": "2024-01-01T00:00:00+00:00",
        "password_hash": "never-returned",
    }


# ----------------------------------------------------------------------
# Routing
# ----------------------------------------------------------------------
@pytest.mark.parametrize("path", ["/api/user/register", "/api/user/details", "/anything/else"])
def test_options_short_circuits(tmp_path, memory_store, fake_identity, clock, path) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.options(path)

    assert response.status_code == 200
    assert response.content == b""
    _assert_cors(response)
    assert memory_store.calls == []
    assert fake_identity.calls == []


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("GET", "/api/user/register"),
        ("POST", "/api/user/details"),
        ("PATCH", "/api/user/update"),
        ("GET", "/api/user/details/"),
        ("GET", "/"),
        ("POST", "/api/user/unknown"),
        ("TRACE", "/api/user/register"),
        ("PROPFIND", "/anything"),
        ("PATCH", "/api/user/delete"),
    ],
)
def test_unmatched_routes_return_not_found(tmp_path, memory_store, fake_identity, clock, method, path) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request(method, path)

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
    assert response.headers["content-type"] == "application/json"
    _assert_cors(response)


# ----------------------------------------------------------------------
# Register
# ----------------------------------------------------------------------
def test_register_success(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post(
            "/api/user/register",
            json={"email": "a@b.com", "password": "abcdefgh"},
            headers={"x-forwarded-for": "1.2.3.4"},
        )

    assert response.status_code == 200, response.text
    assert response.json()["user"]["id"] == "u1"
    _assert_cors(response)
    assert memory_store.tables[RATE_LIMITS_TABLE]["1.2.3.4"]["count"] == 1


@pytest.mark.parametrize(
    "payload",
    [{}, {"email": "a@b.com"}, {"password": "abcdefgh"}, {"email": "", "password": "abcdefgh"}],
)
def test_register_requires_fields(tmp_path, memory_store, fake_identity, clock, payload) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json=payload)

    assert response.status_code == 400
    assert response.json() == {"error": "Email and password are required"}
    assert fake_identity.calls == []


@pytest.mark.parametrize("password", ["abcdefgh", "short"])
def test_register_rejects_malformed_email(tmp_path, memory_store, fake_identity, clock, password) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json={"email": "not-an-email", "password": password})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid email format"}
    assert fake_identity.calls == []


@pytest.mark.parametrize("email", ["a@b.com", "someone@example.org"])
def test_register_rejects_short_password(tmp_path, memory_store, fake_identity, clock, email) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json={"email": email, "password": "1234567"})

    assert response.status_code == 400
    assert response.json() == {"error": "Password does not meet complexity requirements"}


def test_register_surfaces_provider_error(tmp_path, memory_store, fake_identity, clock) -> None:
    fake_identity.error = AuthError("User already registered", status_code=422)

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json={"email": "a@b.com", "password": "abcdefgh"})

    assert response.status_code == 400
    assert response.json() == {"error": "User already registered"}


def test_register_without_user_payload_is_not_found(tmp_path, memory_store, fake_identity, clock) -> None:
    fake_identity.created_user = None

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json={"email": "a@b.com", "password": "abcdefgh"})

    assert response.status_code == 404
    assert response.json() == {"error": "No user data available"}


def test_register_invalid_json_body(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post(
            "/api/user/register",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}


def test_twenty_first_registration_is_rate_limited(tmp_path, memory_store, fake_identity, clock) -> None:
    headers = {"x-forwarded-for": "1.2.3.4"}
    payload = {"email": "a@b.com", "password": "abcdefgh"}

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        for _ in range(20):
            ok = client.post("/api/user/register", json=payload, headers=headers)
            assert ok.status_code == 200
            clock.advance(1000)

        limited = client.post("/api/user/register", json=payload, headers=headers)
        other_client = client.post("/api/user/register", json=payload, headers={"x-forwarded-for": "5.6.7.8"})

        clock.advance(5 * 60 * 1000)
        after_window = client.post("/api/user/register", json=payload, headers=headers)

    assert limited.status_code == 429
    assert limited.json() == {"error": "Too many requests, please try again later"}
    _assert_cors(limited)
    assert other_client.status_code == 200
    assert after_window.status_code == 200
    assert memory_store.tables[RATE_LIMITS_TABLE]["1.2.3.4"]["count"] == 1
    assert len([call for call in fake_identity.calls if call[0] == "create_account"]) == 22


def test_relaxed_policy_is_configurable(tmp_path, memory_store, fake_identity, clock) -> None:
    policy = RateLimitPolicy(window_ms=15 * 60 * 1000, max_requests=2)
    payload = {"email": "a@b.com", "password": "abcdefgh"}

    with _client(tmp_path, memory_store, fake_identity, clock, rate_limit=policy) as client:
        statuses = [client.post("/api/user/register", json=payload).status_code for _ in range(3)]
        clock.advance(10 * 60 * 1000)
        still_limited = client.post("/api/user/register", json=payload)

    assert statuses == [200, 200, 429]
    assert still_limited.status_code == 429
    # Without forwarding headers every caller shares the "unknown" bucket.
    assert "unknown" in memory_store.tables[RATE_LIMITS_TABLE]


def test_register_proceeds_when_rate_limit_store_fails(tmp_path, memory_store, fake_identity, clock) -> None:
    memory_store.get_error = StoreError("relation \"rate_limits\" does not exist", code="42P01")

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json={"email": "a@b.com", "password": "abcdefgh"})

    assert response.status_code == 200


def test_unexpected_error_becomes_internal_error(tmp_path, memory_store, fake_identity, clock) -> None:
    async def explode(email: str, password: str):
        raise RuntimeError("boom")

    fake_identity.create_account = explode

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.post("/api/user/register", json={"email": "a@b.com", "password": "abcdefgh"})

    assert response.status_code == 500
    assert response.json() == {"error": "boom"}
    _assert_cors(response)


def test_slow_collaborator_hits_request_deadline(tmp_path, memory_store, fake_identity, clock) -> None:
    async def slow(user_id: str) -> None:
        await anyio.sleep(5)

    fake_identity.delete_account = slow

    with _client(tmp_path, memory_store, fake_identity, clock, request_timeout=0.05) as client:
        response = client.request("DELETE", "/api/user/delete", json={"user_id": "u1"})

    assert response.status_code == 500
    assert response.json() == {"error": "Request timed out"}


# ----------------------------------------------------------------------
# GetDetails
# ----------------------------------------------------------------------
def test_get_details_requires_user_id(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("GET", "/api/user/details", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "User ID is required"}


def test_get_details_unknown_user(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("GET", "/api/user/details", json={"user_id": "missing"})

    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_get_details_projects_public_fields(tmp_path, memory_store, fake_identity, clock) -> None:
    _seed_user(memory_store)

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("GET", "/api/user/details", json={"user_id": "u1"})
        by_query = client.get("/api/user/details", params={"user_id": "u1"})

    assert response.status_code == 200
    assert response.json() == {
        "user": {"id": "u1", "email": "a@b.com", "createdAt": "2024-01-01T00:00:00+00:00"}
    }
    assert by_query.json() == response.json()


def test_get_details_store_error(tmp_path, memory_store, fake_identity, clock) -> None:
    memory_store.get_error = StoreError("permission denied for table users", code="42501")

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("GET", "/api/user/details", json={"user_id": "u1"})

    assert response.status_code == 400
    assert response.json() == {"error": "permission denied for table users"}


# ----------------------------------------------------------------------
# UpdateDetails
# ----------------------------------------------------------------------
def test_update_without_changes_echoes_id(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put("/api/user/update", json={"user_id": "u1"})

    assert response.status_code == 200
    assert response.json() == {"user": {"id": "u1"}}
    assert fake_identity.calls == []
    assert memory_store.calls == []


def test_update_requires_user_id(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put("/api/user/update", json={"email": "new@b.com"})

    assert response.status_code == 400
    assert response.json() == {"error": "User ID is required"}


def test_update_email(tmp_path, memory_store, fake_identity, clock) -> None:
    _seed_user(memory_store)

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put("/api/user/update", json={"user_id": "u1", "email": "new@b.com"})

    assert response.status_code == 200
    assert response.json() == {
        "user": {"id": "u1", "email": "new@b.com", "createdAt": "2024-01-01T00:00:00+00:00"}
    }
    assert fake_identity.calls == []


def test_update_rejects_invalid_email_before_any_call(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put(
            "/api/user/update",
            json={"user_id": "u1", "email": "broken", "password": "abcdefgh"},
        )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid email format"}
    assert fake_identity.calls == []


def test_update_password_only(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put("/api/user/update", json={"user_id": "u1", "password": "abcdefgh"})
        too_short = client.put("/api/user/update", json={"user_id": "u1", "password": "abc"})

    assert response.status_code == 200
    assert response.json() == {"user": {"id": "u1"}}
    assert fake_identity.calls == [("update_password", ("u1",))]
    assert too_short.status_code == 400
    assert too_short.json() == {"error": "Password does not meet complexity requirements"}


def test_update_password_provider_error(tmp_path, memory_store, fake_identity, clock) -> None:
    fake_identity.error = AuthError("User not found", status_code=404)

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put("/api/user/update", json={"user_id": "u1", "password": "abcdefgh"})

    assert response.status_code == 400
    assert response.json() == {"error": "User not found"}


def test_update_email_for_missing_row_is_store_error(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.put("/api/user/update", json={"user_id": "ghost", "email": "new@b.com"})

    assert response.status_code == 400
    assert response.json() == {"error": "The result contains 0 rows"}


# ----------------------------------------------------------------------
# DeleteAccount
# ----------------------------------------------------------------------
def test_delete_account(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("DELETE", "/api/user/delete", json={"user_id": "u1"})

    assert response.status_code == 200
    assert response.json() == {"message": "User account deleted successfully"}
    assert fake_identity.calls == [("delete_account", ("u1",))]


def test_delete_account_requires_user_id(tmp_path, memory_store, fake_identity, clock) -> None:
    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("DELETE", "/api/user/delete")

    assert response.status_code == 400
    assert response.json() == {"error": "User ID is required"}


def test_delete_account_provider_error(tmp_path, memory_store, fake_identity, clock) -> None:
    fake_identity.error = AuthError("User not found", status_code=404)

    with _client(tmp_path, memory_store, fake_identity, clock) as client:
        response = client.request("DELETE", "/api/user/delete", json={"user_id": "nobody"})

    assert response.status_code == 400
    assert response.json() == {"error": "User not found"}


# ----------------------------------------------------------------------
# SQLite backend wired end to end
# ----------------------------------------------------------------------
def test_account_lifecycle_on_sqlite_backend(tmp_path, clock) -> None:
    app = create_app(_settings(tmp_path), clock=clock)

    with TestClient(app) as client:
        created = client.post(
            "/api/user/register",
            json={"email": "Life@Cycle.com", "password": "abcdefgh"},
            headers={"x-forwarded-for": "9.9.9.9"},
        )
        assert created.status_code == 200, created.text
        user_id = created.json()["user"]["id"]

        duplicate = client.post(
            "/api/user/register",
            json={"email": "life@cycle.com", "password": "abcdefgh"},
            headers={"x-forwarded-for": "9.9.9.9"},
        )
        assert duplicate.status_code == 400
        assert duplicate.json() == {"error": "User already registered"}

        details = client.request("GET", "/api/user/details", json={"user_id": user_id})
        assert details.status_code == 200
        assert set(details.json()["user"]) == {"id", "email", "createdAt"}
        assert details.json()["user"]["email"] == "life@cycle.com"

        updated = client.put(
            "/api/user/update",
            json={"user_id": user_id, "email": "moved@cycle.com", "password": "newpassword"},
        )
        assert updated.status_code == 200
        assert updated.json()["user"]["email"] == "moved@cycle.com"

        deleted = client.request("DELETE", "/api/user/delete", json={"user_id": user_id})
        assert deleted.status_code == 200

        gone = client.request("GET", "/api/user/details", json={"user_id": user_id})
        assert gone.status_code == 404

    database = app.state.context.store.database
    assert database.fetch_row(RATE_LIMITS_TABLE, "9.9.9.9", ("count",)) == {"count": 2}


def test_supabase_collaborators_require_credentials() -> None:
    settings = GatewaySettings(
        backend="supabase",
        supabase_url="https://project.supabase.co",
        supabase_anon_key="anon",
    )
    object.__setattr__(settings, "supabase_anon_key", None)

    with pytest.raises(ValueError, match="Supabase URL or Key is missing"):
        build_collaborators(settings)
