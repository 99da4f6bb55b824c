"""OAuth 2.0 facade endpoints for MCP clients.

HeadHunter supports neither dynamic client registration nor arbitrary
redirect URIs: one application is registered there with one fixed redirect
URI. This module presents a standard authorization server to MCP clients and
delegates to that single HeadHunter application:
- Discovery metadata (/.well-known/*)
- Simulated client registration (/oauth/register)
- Authorization redirect (/oauth/authorize) and HeadHunter callback
- Token endpoint (/oauth/token)
"""

import base64
import binascii
import logging
import time
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from config import CALLBACK_PATH
from hh_client import UpstreamError, UpstreamRejected
from logging_config import mask

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])


def oauth_error(error: str, description: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": error, "error_description": description}, status_code=status_code)


def not_configured(description: str) -> JSONResponse:
    return oauth_error("oauth_not_configured", description, status_code=503)


def with_query(url: str, params: dict) -> str:
    """Set query parameters on a URL, keeping any it already carries."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


# ============== OAuth 2.0 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(request: Request):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    server_url = request.app.state.settings.server_url
    return {
        "resource": server_url,
        "authorization_servers": [server_url],
        "jwks_uri": f"{server_url}/.well-known/jwks.json",
        "bearer_methods_supported": ["header"],
    }


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(request: Request):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    HeadHunter does not publish this document, so the facade publishes its
    own, naming itself as the authorization server.
    """
    server_url = request.app.state.settings.server_url
    return {
        "issuer": server_url,
        "authorization_endpoint": f"{server_url}/oauth/authorize",
        "token_endpoint": f"{server_url}/oauth/token",
        "registration_endpoint": f"{server_url}/oauth/register",
        "jwks_uri": f"{server_url}/.well-known/jwks.json",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic"],
        "code_challenge_methods_supported": ["S256"],
        "scopes_supported": [],
    }


@router.get("/.well-known/jwks.json")
async def jwks():
    """Empty key set: tokens are opaque HeadHunter tokens, never signed here."""
    return {"keys": []}


@router.get("/.well-known/oauth-client-config")
async def oauth_client_config(request: Request):
    """Client descriptor for debugging tools such as MCP Inspector."""
    settings = request.app.state.settings
    if not settings.client_id:
        return not_configured("OAuth client ID not configured. Set HH_CLIENT_ID environment variable.")

    return {
        "client_id": settings.client_id,
        "authorization_endpoint": f"{settings.server_url}/oauth/authorize",
        "token_endpoint": f"{settings.server_url}/oauth/token",
        "scope": "",
        "response_type": "code",
        "redirect_uri": settings.redirect_uri,
        "code_challenge_method": "S256",
    }


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request):
    """Simulated Dynamic Client Registration (RFC 7591).

    Every caller receives the one HeadHunter client id this server is
    configured with. Any redirect URI is accepted: the facade owns the only
    redirect URI HeadHunter knows about and relays codes onwards itself.
    """
    try:
        data = await request.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        return oauth_error("invalid_request", "Invalid client registration request")

    client_name = data.get("client_name")
    redirect_uris = data.get("redirect_uris")

    if not isinstance(client_name, str) or not client_name.strip():
        return oauth_error("invalid_client_metadata", "client_name is required")

    if not isinstance(redirect_uris, list) or not redirect_uris:
        return oauth_error("invalid_redirect_uri", "redirect_uris is required and must be a non-empty array")

    settings = request.app.state.settings
    if not settings.client_id:
        return not_configured(
            "OAuth client credentials not configured. "
            "Set HH_CLIENT_ID and HH_CLIENT_SECRET environment variables."
        )

    logger.info(f'[OAUTH] DCR facade: accepting redirect_uris {redirect_uris} for "{client_name}"')

    return {
        "client_id": settings.client_id,
        "client_name": client_name,
        "grant_types": data.get("grant_types", ["authorization_code"]),
        "response_types": data.get("response_types", ["code"]),
        "redirect_uris": redirect_uris,
        "scope": data.get("scope", ""),
        "token_endpoint_auth_method": "client_secret_basic",
        "client_id_issued_at": int(time.time()),
    }


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    request: Request,
    client_id: str = "",
    redirect_uri: str = "",
    response_type: str = "code",
    state: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "S256",
):
    """Authorization endpoint - stash the caller's request and go to HeadHunter.

    HeadHunter sees our client id, our redirect URI and a fresh state key;
    the caller's redirect URI, state and PKCE parameters stay here until the
    callback comes back.
    """
    if not client_id or not redirect_uri:
        return oauth_error("invalid_request", "client_id and redirect_uri are required")

    if response_type != "code":
        return oauth_error("unsupported_response_type", "Only response_type=code is supported")

    settings = request.app.state.settings
    if not settings.client_id:
        return not_configured("OAuth client ID not configured. Set HH_CLIENT_ID environment variable.")

    pending = request.app.state.pending_authorizations.create(
        redirect_uri=redirect_uri,
        client_id=client_id,
        state=state or None,
        code_challenge=code_challenge or None,
        code_challenge_method=code_challenge_method or "S256",
    )

    hh_auth_url = request.app.state.hh_client.build_authorize_url(pending.state_key)
    logger.info(f"[OAUTH] Facade authorize: redirecting to HeadHunter with state={pending.state_key}")
    return RedirectResponse(url=hh_auth_url, status_code=302)


@router.get(CALLBACK_PATH)
async def oauth_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: str = "",
    error_description: str = "",
):
    """HeadHunter redirects here; relay the code to the original caller."""
    pending_authorizations = request.app.state.pending_authorizations

    if error:
        logger.error(f"[OAUTH] HeadHunter authorization error: {error} - {error_description}")
        if state:
            pending_authorizations.discard(state)
        return oauth_error(error, error_description)

    if not code or not state:
        return oauth_error("invalid_request", "Missing authorization code or state parameter")

    pending = pending_authorizations.pop(state)
    if pending is None:
        logger.error(f"[OAUTH] No pending authorization for state: {state}")
        return oauth_error("invalid_state", "Invalid or expired authorization request")

    params = {"code": code}
    if pending.original_state:
        params["state"] = pending.original_state
    callback_url = with_query(pending.original_redirect_uri, params)

    logger.info(f"[OAUTH] Facade callback: redirecting to original client {pending.original_redirect_uri}")
    return RedirectResponse(url=callback_url, status_code=302)


# ============== Token Endpoint ==============

def _basic_client_id(request: Request) -> str:
    """client_id from an HTTP Basic Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return ""
    try:
        decoded = base64.b64decode(auth_header[6:]).decode()
    except (binascii.Error, UnicodeDecodeError):
        return ""
    return decoded.split(":", 1)[0]


async def _read_token_request(request: Request) -> dict:
    """Token requests arrive form-encoded; JSON is accepted as well."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        data = await request.json()
        return data if isinstance(data, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.post("/oauth/token")
async def token(request: Request):
    """OAuth 2.0 Token Endpoint - exchange with HeadHunter using our credentials."""
    try:
        data = await _read_token_request(request)
    except ValueError:
        return oauth_error("invalid_request", "Invalid token request parameters")

    grant_type = data.get("grant_type")
    client_id = data.get("client_id") or _basic_client_id(request)
    settings = request.app.state.settings
    hh_client = request.app.state.hh_client

    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")

    if grant_type == "refresh_token":
        refresh_token = data.get("refresh_token")
        if not refresh_token:
            return oauth_error("invalid_request", "refresh_token is required")
        if not settings.oauth_configured:
            return not_configured("OAuth client credentials not configured.")
        try:
            token_data = await hh_client.refresh(refresh_token)
        except UpstreamRejected as e:
            logger.error(f"[TOKEN] HeadHunter refresh failed: {e.status_code} {e.description}")
            return oauth_error("invalid_grant", "Refresh token is invalid or expired")
        except UpstreamError as e:
            logger.error(f"[TOKEN] Token refresh error: {e}")
            return oauth_error("server_error", "Internal server error during token refresh", status_code=500)
        return {**token_data, "issuer": settings.server_url}

    code = data.get("code")
    # redirect_uri must be present but is not forwarded; HeadHunter only
    # accepts the one registered for our client.
    if grant_type != "authorization_code" or not client_id or not code or not data.get("redirect_uri"):
        return oauth_error("invalid_request", "Invalid token request parameters")

    if not settings.oauth_configured:
        return not_configured("OAuth client credentials not configured.")

    logger.info(f"[TOKEN] Exchanging code {mask(code)} with HeadHunter, redirect_uri={settings.redirect_uri}")
    try:
        token_data = await hh_client.exchange_code(code, data.get("code_verifier") or None)
    except UpstreamRejected as e:
        logger.error(f"[TOKEN] HeadHunter token exchange failed: {e.status_code} {e.description}")
        return oauth_error("invalid_grant", "Authorization code is invalid or expired")
    except UpstreamError as e:
        logger.error(f"[TOKEN] Token exchange error: {e}")
        return oauth_error("server_error", "Internal server error during token exchange", status_code=500)

    logger.info("[TOKEN] Exchanged code for HeadHunter access token")
    return {**token_data, "issuer": settings.server_url}
