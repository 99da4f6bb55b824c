"""OAuth middleware for the MCP endpoint.

Validates Bearer tokens against HeadHunter before any session handling.
The resolved HeadHunter user is attached to request.state.user.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from hh_client import UpstreamError
from oauth.validator import InvalidTokenError, validate_token

logger = logging.getLogger(__name__)


def challenge_header(server_url: str, error: str = None) -> str:
    """WWW-Authenticate value pointing at our protected resource metadata (RFC 9728)."""
    value = (
        f'Bearer realm="MCP Server", '
        f'resource_metadata="{server_url}/.well-known/oauth-protected-resource"'
    )
    if error:
        value += f', error="{error}"'
    return value


def unauthorized_response(server_url: str, error_description: str, error: str = None) -> JSONResponse:
    """Return 401 with a WWW-Authenticate challenge."""
    return JSONResponse(
        {"error": error or "unauthorized", "error_description": error_description},
        status_code=401,
        headers={"WWW-Authenticate": challenge_header(server_url, error)},
    )


def extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    # Auth scheme names are case-insensitive (RFC 6750)
    if auth_header[:7].lower() != "bearer ":
        return ""
    return auth_header[7:].strip()


class MCPOAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate HeadHunter Bearer tokens for the /mcp endpoint."""

    async def dispatch(self, request: Request, call_next):
        settings = request.app.state.settings
        server_url = settings.server_url

        token = extract_bearer_token(request)
        if not token:
            logger.info("[AUTH] Request rejected: no Bearer token")
            return unauthorized_response(server_url, "Authorization required")

        try:
            user_info = await validate_token(request.app.state.hh_client, token)
        except InvalidTokenError:
            logger.info("[AUTH] Request rejected: invalid or expired token")
            return unauthorized_response(server_url, "Invalid or expired token", error="invalid_token")
        except UpstreamError as e:
            logger.error(f"[AUTH] Token validation error: {e}")
            return JSONResponse(
                {"error": "server_error", "error_description": "Token validation failed"},
                status_code=500,
            )

        request.state.user = user_info
        return await call_next(request)
