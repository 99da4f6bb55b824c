"""
Unit tests for oauth/endpoints.py - OAuth 2.0 facade
====================================================

Tests cover:
- Discovery metadata, JWKS and client config
- Simulated dynamic client registration
- Authorization redirect to HeadHunter with state-key indirection
- HeadHunter callback relay (single-use state)
- Token exchange and refresh proxied to HeadHunter
"""

import base64
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from conftest import CLIENT_ID, CLIENT_SECRET, GOOD_CODE, REDIRECT_URI, make_settings
from main import create_app

CALLER_REDIRECT = "http://localhost:9999/cb"


def _authorize(client, **params):
    query = {"client_id": CLIENT_ID, "redirect_uri": CALLER_REDIRECT}
    query.update(params)
    return client.get("/oauth/authorize", params=query)


def _upstream_state(response) -> str:
    location = urlsplit(response.headers["location"])
    return parse_qs(location.query)["state"][0]


@pytest.fixture
def unconfigured_client(hh_client):
    settings = make_settings(HH_CLIENT_ID="", HH_CLIENT_SECRET="")
    with TestClient(create_app(settings, hh_client=hh_client), follow_redirects=False) as client:
        yield client


# =============================================================================
# Discovery
# =============================================================================


class TestDiscovery:
    def test_protected_resource_metadata(self, client):
        data = client.get("/.well-known/oauth-protected-resource").json()
        assert data["resource"] == "http://localhost:3000"
        assert data["authorization_servers"] == ["http://localhost:3000"]
        assert data["jwks_uri"] == "http://localhost:3000/.well-known/jwks.json"
        assert data["bearer_methods_supported"] == ["header"]

    def test_authorization_server_metadata(self, client):
        data = client.get("/.well-known/oauth-authorization-server").json()
        assert data["issuer"] == "http://localhost:3000"
        assert data["authorization_endpoint"] == "http://localhost:3000/oauth/authorize"
        assert data["token_endpoint"] == "http://localhost:3000/oauth/token"
        assert data["registration_endpoint"] == "http://localhost:3000/oauth/register"
        assert data["code_challenge_methods_supported"] == ["S256"]
        assert "authorization_code" in data["grant_types_supported"]

    def test_server_url_override(self, hh_client):
        settings = make_settings(SERVER_URL="https://mcp.example.com/")
        with TestClient(create_app(settings, hh_client=hh_client)) as client:
            data = client.get("/.well-known/oauth-authorization-server").json()
        assert data["issuer"] == "https://mcp.example.com"

    def test_jwks_is_empty(self, client):
        assert client.get("/.well-known/jwks.json").json() == {"keys": []}

    def test_client_config(self, client):
        data = client.get("/.well-known/oauth-client-config").json()
        assert data["client_id"] == CLIENT_ID
        assert data["redirect_uri"] == REDIRECT_URI
        assert data["code_challenge_method"] == "S256"

    def test_client_config_not_configured(self, unconfigured_client):
        response = unconfigured_client.get("/.well-known/oauth-client-config")
        assert response.status_code == 503
        assert response.json()["error"] == "oauth_not_configured"


# =============================================================================
# Dynamic Client Registration
# =============================================================================


class TestRegistration:
    def test_returns_configured_client_id_and_echoes_redirects(self, client):
        response = client.post(
            "/oauth/register",
            json={"client_name": "test", "redirect_uris": [CALLER_REDIRECT]},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["client_id"] == CLIENT_ID
        assert data["redirect_uris"] == [CALLER_REDIRECT]
        assert data["grant_types"] == ["authorization_code"]
        assert data["response_types"] == ["code"]
        assert data["token_endpoint_auth_method"] == "client_secret_basic"
        assert isinstance(data["client_id_issued_at"], int)

    def test_same_client_id_for_every_registration(self, client):
        ids = set()
        for i in range(3):
            uris = [f"http://localhost:{9000 + i}/cb", f"myapp{i}://oauth"]
            data = client.post("/oauth/register", json={"client_name": f"c{i}", "redirect_uris": uris}).json()
            assert data["redirect_uris"] == uris
            ids.add(data["client_id"])
        assert ids == {CLIENT_ID}

    def test_echoes_optional_metadata(self, client):
        data = client.post("/oauth/register", json={
            "client_name": "test",
            "redirect_uris": [CALLER_REDIRECT],
            "grant_types": ["authorization_code", "refresh_token"],
            "scope": "openid",
        }).json()
        assert data["grant_types"] == ["authorization_code", "refresh_token"]
        assert data["scope"] == "openid"

    @pytest.mark.parametrize("client_name", [None, "", "   ", 42])
    def test_invalid_client_name(self, client, client_name):
        body = {"redirect_uris": [CALLER_REDIRECT]}
        if client_name is not None:
            body["client_name"] = client_name
        response = client.post("/oauth/register", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_client_metadata"

    @pytest.mark.parametrize("redirect_uris", [None, [], "http://localhost/cb"])
    def test_invalid_redirect_uris(self, client, redirect_uris):
        body = {"client_name": "test"}
        if redirect_uris is not None:
            body["redirect_uris"] = redirect_uris
        response = client.post("/oauth/register", json=body)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_redirect_uri"

    def test_malformed_body(self, client):
        response = client.post("/oauth/register", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_not_configured(self, unconfigured_client):
        response = unconfigured_client.post(
            "/oauth/register",
            json={"client_name": "test", "redirect_uris": [CALLER_REDIRECT]},
        )
        assert response.status_code == 503
        assert response.json()["error"] == "oauth_not_configured"


# =============================================================================
# Authorization + Callback
# =============================================================================


class TestAuthorize:
    def test_redirects_to_headhunter_with_own_client(self, client, app):
        response = _authorize(client, state="abc", code_challenge="challenge")
        assert response.status_code == 302

        location = urlsplit(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == "https://hh.test/oauth/authorize"
        query = parse_qs(location.query)
        assert query["client_id"] == [CLIENT_ID]
        assert query["response_type"] == ["code"]
        assert query["redirect_uri"] == [REDIRECT_URI]
        assert query["state"][0] != "abc"
        assert "code_challenge" not in query

        pending = app.state.pending_authorizations.get(query["state"][0])
        assert pending.original_redirect_uri == CALLER_REDIRECT
        assert pending.original_state == "abc"
        assert pending.code_challenge == "challenge"
        assert pending.code_challenge_method == "S256"

    def test_state_keys_are_unique(self, client):
        states = {_upstream_state(_authorize(client, state="abc")) for _ in range(5)}
        assert len(states) == 5

    @pytest.mark.parametrize("params", [
        {"redirect_uri": CALLER_REDIRECT},
        {"client_id": CLIENT_ID},
        {},
    ])
    def test_missing_parameters_leave_no_pending_state(self, client, app, params):
        response = client.get("/oauth/authorize", params=params)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert len(app.state.pending_authorizations) == 0

    def test_unsupported_response_type(self, client, app):
        response = _authorize(client, response_type="token")
        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_response_type"
        assert len(app.state.pending_authorizations) == 0

    def test_not_configured(self, unconfigured_client):
        response = _authorize(unconfigured_client)
        assert response.status_code == 503


class TestCallback:
    def test_round_trip_with_state(self, client):
        state_key = _upstream_state(_authorize(client, state="abc"))
        response = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
        assert response.status_code == 302
        assert response.headers["location"] == "http://localhost:9999/cb?code=XYZ&state=abc"

    def test_round_trip_without_state(self, client):
        state_key = _upstream_state(_authorize(client))
        response = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
        assert response.headers["location"] == "http://localhost:9999/cb?code=XYZ"

    def test_keeps_query_of_original_redirect(self, client):
        state_key = _upstream_state(_authorize(client, redirect_uri="http://localhost:9999/cb?tenant=7"))
        response = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
        assert response.headers["location"] == "http://localhost:9999/cb?tenant=7&code=XYZ"

    def test_state_is_single_use(self, client, app):
        state_key = _upstream_state(_authorize(client, state="abc"))
        first = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
        assert first.status_code == 302
        assert state_key not in app.state.pending_authorizations

        second = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
        assert second.status_code == 400
        assert second.json()["error"] == "invalid_state"

    def test_unknown_state(self, client):
        response = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": "auth_nope"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"

    def test_expired_state(self, client, app):
        state_key = _upstream_state(_authorize(client))
        app.state.pending_authorizations.get(state_key).created_at -= 3600
        response = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
        assert response.json()["error"] == "invalid_state"

    def test_missing_code(self, client):
        state_key = _upstream_state(_authorize(client))
        response = client.get("/oauth/callback/debug", params={"state": state_key})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_upstream_error_is_json(self, client, app):
        state_key = _upstream_state(_authorize(client))
        response = client.get("/oauth/callback/debug", params={
            "error": "access_denied",
            "error_description": "user declined",
            "state": state_key,
        })
        assert response.status_code == 400
        assert response.json() == {"error": "access_denied", "error_description": "user declined"}
        assert state_key not in app.state.pending_authorizations


# =============================================================================
# Token endpoint
# =============================================================================


def _token_form(**overrides):
    form = {
        "grant_type": "authorization_code",
        "client_id": CLIENT_ID,
        "code": GOOD_CODE,
        "redirect_uri": CALLER_REDIRECT,
    }
    form.update(overrides)
    return {k: v for k, v in form.items() if v is not None}


class TestToken:
    def test_exchange_uses_fixed_redirect_uri(self, client, fake_hh):
        response = client.post("/oauth/token", data=_token_form(redirect_uri="http://evil.example/cb"))
        assert response.status_code == 200

        sent = fake_hh.token_requests()[-1]
        assert sent["redirect_uri"] == REDIRECT_URI
        assert sent["client_id"] == CLIENT_ID
        assert sent["client_secret"] == CLIENT_SECRET
        assert sent["code"] == GOOD_CODE
        assert "code_verifier" not in sent

    def test_issuer_is_overridden(self, client):
        data = client.post("/oauth/token", data=_token_form()).json()
        assert data["access_token"] == "good-token"
        assert data["refresh_token"] == "good-refresh"
        assert data["issuer"] == "http://localhost:3000"

    def test_forwards_code_verifier(self, client, fake_hh):
        client.post("/oauth/token", data=_token_form(code_verifier="verifier-123"))
        assert fake_hh.token_requests()[-1]["code_verifier"] == "verifier-123"

    def test_accepts_json_body(self, client):
        response = client.post("/oauth/token", json=_token_form())
        assert response.status_code == 200
        assert response.json()["access_token"] == "good-token"

    def test_client_id_from_basic_auth(self, client):
        basic = base64.b64encode(f"{CLIENT_ID}:whatever".encode()).decode()
        response = client.post(
            "/oauth/token",
            data=_token_form(client_id=None),
            headers={"Authorization": f"Basic {basic}"},
        )
        assert response.status_code == 200

    @pytest.mark.parametrize("overrides", [
        {"grant_type": "password"},
        {"grant_type": None},
        {"client_id": None},
        {"code": None},
        {"redirect_uri": None},
    ])
    def test_invalid_request(self, client, fake_hh, overrides):
        response = client.post("/oauth/token", data=_token_form(**overrides))
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert fake_hh.token_requests() == []

    def test_upstream_rejection_is_invalid_grant(self, client):
        response = client.post("/oauth/token", data=_token_form(code="bad-code"))
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_upstream_unreachable_is_server_error(self, client, fake_hh):
        fake_hh.unreachable = True
        response = client.post("/oauth/token", data=_token_form())
        assert response.status_code == 500
        assert response.json()["error"] == "server_error"

    def test_refresh_grant(self, client, fake_hh):
        response = client.post("/oauth/token", data={
            "grant_type": "refresh_token",
            "refresh_token": "good-refresh",
        })
        assert response.status_code == 200
        assert response.json()["access_token"] == "new-token"
        assert response.json()["issuer"] == "http://localhost:3000"
        assert fake_hh.token_requests()[-1]["grant_type"] == "refresh_token"

    def test_refresh_grant_rejected(self, client):
        response = client.post("/oauth/token", data={
            "grant_type": "refresh_token",
            "refresh_token": "stale",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_not_configured(self, unconfigured_client, fake_hh):
        response = unconfigured_client.post("/oauth/token", data=_token_form())
        assert response.status_code == 503
        assert response.json()["error"] == "oauth_not_configured"
        assert fake_hh.token_requests() == []


# =============================================================================
# End-to-end
# =============================================================================


def test_register_authorize_callback_token_flow(client):
    registration = client.post(
        "/oauth/register",
        json={"client_name": "test", "redirect_uris": [CALLER_REDIRECT]},
    ).json()
    assert registration["client_id"] == CLIENT_ID

    authorize = client.get("/oauth/authorize", params={
        "client_id": registration["client_id"],
        "redirect_uri": CALLER_REDIRECT,
        "state": "abc",
    })
    assert authorize.status_code == 302
    state_key = _upstream_state(authorize)
    assert state_key != "abc"

    callback = client.get("/oauth/callback/debug", params={"code": "XYZ", "state": state_key})
    assert callback.status_code == 302
    assert callback.headers["location"] == "http://localhost:9999/cb?code=XYZ&state=abc"

    tokens = client.post("/oauth/token", data=_token_form(client_id=registration["client_id"])).json()
    assert tokens["access_token"] == "good-token"
