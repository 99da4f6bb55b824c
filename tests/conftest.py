"""
Pytest configuration and shared fixtures.

HeadHunter is simulated by FakeHeadHunter behind httpx.MockTransport, so no
test touches the network. Every test gets a fresh application (fresh stores).
"""

from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from hh_client import HHClient
from main import create_app

CLIENT_ID = "HH-CLIENT-ID"
CLIENT_SECRET = "HH-CLIENT-SECRET"
REDIRECT_URI = "http://localhost:3000/oauth/callback/debug"
GOOD_TOKEN = "good-token"
GOOD_CODE = "XYZ"

MCP_HEADERS = {
    "Authorization": f"Bearer {GOOD_TOKEN}",
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}


class FakeHeadHunter:
    """Simulated HeadHunter API recording every request it receives."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.users = {GOOD_TOKEN: {"id": "42", "email": "user@example.com"}}
        self.codes = {GOOD_CODE}
        self.refresh_tokens = {"good-refresh"}
        self.unreachable = False

    def token_requests(self) -> list[dict]:
        return [
            dict(parse_qsl(r.content.decode()))
            for r in self.requests
            if r.url.path == "/token"
        ]

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/token":
            return self._token(dict(parse_qsl(request.content.decode())))

        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if path == "/me":
            if token in self.users:
                return httpx.Response(200, json=self.users[token])
            return httpx.Response(403, json={"description": "Forbidden", "errors": [{"type": "oauth"}]})

        if path.startswith("/vacancies/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "name": "Python developer"})
        if path == "/vacancies":
            return httpx.Response(200, json={"items": [], "found": 0, "params": dict(request.url.params)})
        if path == "/negotiations" and request.method == "POST":
            return httpx.Response(201, content=b"")
        return httpx.Response(404, json={"description": "Not Found"})

    def _token(self, form: dict) -> httpx.Response:
        if form.get("client_id") != CLIENT_ID or form.get("client_secret") != CLIENT_SECRET:
            return httpx.Response(400, json={"error": "invalid_client"})
        if form.get("grant_type") == "authorization_code" and form.get("code") in self.codes:
            return httpx.Response(200, json={
                "access_token": GOOD_TOKEN,
                "token_type": "bearer",
                "expires_in": 1209599,
                "refresh_token": "good-refresh",
                "issuer": "https://hh.ru",
            })
        if form.get("grant_type") == "refresh_token" and form.get("refresh_token") in self.refresh_tokens:
            return httpx.Response(200, json={
                "access_token": "new-token",
                "token_type": "bearer",
                "expires_in": 1209599,
                "refresh_token": "new-refresh",
            })
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "code not found"})


def make_settings(**overrides) -> Settings:
    data = {
        "HOST": "localhost",
        "PORT": "3000",
        "HH_CLIENT_ID": CLIENT_ID,
        "HH_CLIENT_SECRET": CLIENT_SECRET,
        "HH_REDIRECT_URI": REDIRECT_URI,
        "HH_USER_AGENT": "hh-mcp-tests/1.0 (tests@example.com)",
        "HH_API_URL": "https://api.hh.test",
        "HH_AUTHORIZE_URL": "https://hh.test/oauth/authorize",
    }
    data.update(overrides)
    return Settings(data)


@pytest.fixture
def fake_hh():
    return FakeHeadHunter()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def hh_client(settings, fake_hh):
    return HHClient(settings, transport=httpx.MockTransport(fake_hh.handler))


@pytest.fixture
def app(settings, hh_client):
    return create_app(settings, hh_client=hh_client)


@pytest.fixture
def client(app):
    """Test client with the application lifespan running."""
    with TestClient(app, follow_redirects=False) as client:
        yield client


def jsonrpc(method, params=None, request_id=1):
    """Helper to build a JSON-RPC 2.0 request dict."""
    req = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        req["params"] = params
    return req


def initialize_request(request_id=1):
    return jsonrpc(
        "initialize",
        {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "test", "version": "1.0"},
        },
        request_id=request_id,
    )
