"""
tests/test_integration_routes.py -- Integration tests for the CRM connection endpoints.

Covers:
  - GET  /api/auth/oauth-callback: every redirect outcome
  - GET  /api/auth/integration-status: auth required, connected / missing / expired
  - POST /api/auth/integration-disconnect: removes the record, idempotent
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

from auth.errors import ProviderError
from auth.models import OAuthConnection
from auth.oauth import encode_state


def _signup(client) -> str:
    """Register a user through the API (session cookie kept by the client)."""
    resp = client.post(
        "/api/auth/register",
        json={"name": "Ana", "email": "ana@example.com", "password": "secret123", "confirmPassword": "secret123"},
    )
    assert resp.status_code == 201
    return resp.json()["data"]["id"]


def _redirect(resp, settings) -> dict[str, str]:
    """Assert a 302 to the frontend dashboard and return its query params."""
    assert resp.status_code == 302
    location = urlsplit(resp.headers["location"])
    frontend = urlsplit(settings.frontend_url)
    assert (location.scheme, location.netloc) == (frontend.scheme, frontend.netloc)
    assert location.path == settings.oauth_redirect_path
    return {k: v[0] for k, v in parse_qs(location.query).items()}


def _callback(client, **params):
    return client.get("/api/auth/oauth-callback", params=params)


def _seed_connection(store, user_id, expires_at):
    store.replace_oauth_connection(
        user_id,
        OAuthConnection(
            access_token="A",
            refresh_token="R",
            expires_at=expires_at,
            location_id="loc1",
            company_id="comp1",
        ),
    )


# ---------------------------------------------------------------------------
# oauth-callback
# ---------------------------------------------------------------------------


def test_callback_success(api_client):
    client, c = api_client
    user_id = _signup(client)

    resp = _callback(client, code="c", locationId="loc1", companyId="comp1", state=encode_state(user_id))

    assert _redirect(resp, c.settings) == {"connected": "true", "provider": c.settings.crm_provider_name}
    conn = c.store.get_by_id(user_id).oauth_connection
    assert conn.access_token == "A"
    assert conn.refresh_token == "R"
    assert conn.location_id == "loc1"
    assert conn.company_id == "comp1"
    assert c.provider.exchange_calls == ["c"]


def test_callback_needs_no_session(api_client):
    """The provider redirects the browser here; the state names the user."""
    client, c = api_client
    user_id = _signup(client)
    client.cookies.clear()

    resp = _callback(client, code="c", state=encode_state(user_id))
    assert _redirect(resp, c.settings)["connected"] == "true"


def test_callback_without_code(api_client):
    client, c = api_client
    user_id = _signup(client)

    resp = _callback(client, state=encode_state(user_id))

    assert _redirect(resp, c.settings) == {"error": "no_code"}
    assert c.provider.exchange_calls == []


def test_callback_token_exchange_failure(api_client):
    client, c = api_client
    user_id = _signup(client)
    c.provider.exchange_error = ProviderError("invalid_grant: Code expired")

    resp = _callback(client, code="c", state=encode_state(user_id))

    params = _redirect(resp, c.settings)
    assert params["error"] == "token_exchange"
    assert "Code expired" in params["message"]
    assert c.store.get_by_id(user_id).oauth_connection is None


def test_callback_invalid_state(api_client):
    client, c = api_client
    resp = _callback(client, code="c", state="%%%not-base64")
    assert _redirect(resp, c.settings) == {"error": "invalid_state"}


def test_callback_missing_state(api_client):
    client, c = api_client
    resp = _callback(client, code="c")
    assert _redirect(resp, c.settings) == {"error": "invalid_state"}


def test_callback_unknown_user(api_client):
    client, c = api_client
    resp = _callback(client, code="c", state=encode_state("ghost"))
    assert _redirect(resp, c.settings) == {"error": "user_not_found"}


def test_callback_unexpected_error(api_client):
    client, c = api_client
    user_id = _signup(client)
    c.provider.exchange_error = RuntimeError("boom")

    resp = _callback(client, code="c", state=encode_state(user_id))

    assert _redirect(resp, c.settings) == {"error": "server_error", "message": "boom"}


# ---------------------------------------------------------------------------
# integration-status
# ---------------------------------------------------------------------------


def test_status_requires_auth(api_client):
    client, _ = api_client
    resp = client.get("/api/auth/integration-status")
    assert resp.status_code == 401


def test_status_without_connection(api_client):
    client, _ = api_client
    _signup(client)

    resp = client.get("/api/auth/integration-status")

    assert resp.status_code == 200
    assert resp.json() == {"connected": False}


def test_status_connected(api_client):
    client, c = api_client
    user_id = _signup(client)
    _seed_connection(c.store, user_id, datetime.now(timezone.utc) + timedelta(hours=1))

    resp = client.get("/api/auth/integration-status")

    assert resp.json() == {"connected": True, "isExpired": False, "locationId": "loc1", "companyId": "comp1"}


def test_status_expired_connection(api_client):
    client, c = api_client
    user_id = _signup(client)
    _seed_connection(c.store, user_id, datetime.now(timezone.utc) - timedelta(minutes=1))

    resp = client.get("/api/auth/integration-status")

    assert resp.json()["connected"] is True
    assert resp.json()["isExpired"] is True
    assert c.provider.refresh_calls == []


def test_status_after_callback(api_client):
    client, c = api_client
    user_id = _signup(client)
    _callback(client, code="c", locationId="loc9", state=encode_state(user_id))

    body = client.get("/api/auth/integration-status").json()
    assert body["connected"] is True
    assert body["isExpired"] is False
    assert body["locationId"] == "loc9"


# ---------------------------------------------------------------------------
# integration-disconnect
# ---------------------------------------------------------------------------


def test_disconnect_requires_auth(api_client):
    client, _ = api_client
    assert client.post("/api/auth/integration-disconnect").status_code == 401


def test_disconnect_removes_connection(api_client):
    client, c = api_client
    user_id = _signup(client)
    _seed_connection(c.store, user_id, datetime.now(timezone.utc) + timedelta(hours=1))

    resp = client.post("/api/auth/integration-disconnect")

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Connection removed successfully."}
    assert c.store.get_by_id(user_id).oauth_connection is None
    assert client.get("/api/auth/integration-status").json() == {"connected": False}


def test_disconnect_without_connection(api_client):
    client, _ = api_client
    _signup(client)
    assert client.post("/api/auth/integration-disconnect").status_code == 200
    assert client.post("/api/auth/integration-disconnect").status_code == 200


def test_callback_with_unusable_expires_in(api_client):
    client, c = api_client
    user_id = _signup(client)
    c.provider.exchange_response = {"access_token": "A", "refresh_token": "R", "expires_in": "3600s"}

    resp = _callback(client, code="c", state=encode_state(user_id))

    params = _redirect(resp, c.settings)
    assert params["error"] == "token_exchange"
    assert "expires_in" in params["message"]
    assert c.store.get_by_id(user_id).oauth_connection is None
