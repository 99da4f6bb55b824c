"""HeadHunter API client.

Every upstream call made by the server goes through HHClient:
- authorization URL construction (/oauth/authorize on hh.ru)
- authorization code and refresh token exchange (/token)
- bearer token identity lookup (/me)
- pass-through API requests made by MCP tools
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from config import Settings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """HeadHunter could not be reached or returned something unusable."""


class UpstreamRejected(Exception):
    """HeadHunter answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        super().__init__(f"HeadHunter responded {status_code}: {self.description}")

    @property
    def description(self) -> str:
        if isinstance(self.body, dict):
            return str(
                self.body.get("error_description")
                or self.body.get("description")
                or self.body.get("error")
                or self.body
            )
        return str(self.body or "")


def _clean_params(params: Optional[dict]) -> dict:
    """Drop unset values and render booleans the way the API expects."""
    cleaned = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HHClient:
    """Async client for the HeadHunter OAuth and REST API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=httpx.Timeout(settings.timeout),
            headers={
                "Accept": "application/json",
                "User-Agent": settings.user_agent,
                "HH-User-Agent": settings.user_agent,
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_authorize_url(self, state: str) -> str:
        """Upstream authorize URL for our fixed client id and redirect URI."""
        params = {
            "client_id": self.settings.client_id or "",
            "response_type": "code",
            "redirect_uri": self.settings.redirect_uri,
            "state": state,
        }
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"[HH] {method} {path} timed out after {self.settings.timeout}s")
            raise UpstreamError(f"HeadHunter request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"[HH] {method} {path} failed: {e}")
            raise UpstreamError(f"HeadHunter request failed: {e}") from e

    async def _token_request(self, form: dict) -> dict:
        response = await self._send(
            "POST",
            "/token",
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        body = _decode(response)
        if response.is_error:
            raise UpstreamRejected(response.status_code, body)
        if not isinstance(body, dict):
            raise UpstreamError("HeadHunter token endpoint returned a non-JSON body")
        return body

    async def exchange_code(self, code: str, code_verifier: str = None) -> dict:
        """Exchange an authorization code using the static client credentials.

        The redirect_uri is always our own fixed one: HeadHunter only knows
        that URI for this client.
        """
        form = {
            "grant_type": "authorization_code",
            "client_id": self.settings.client_id or "",
            "client_secret": self.settings.client_secret or "",
            "code": code,
            "redirect_uri": self.settings.redirect_uri,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier
        return await self._token_request(form)

    async def refresh(self, refresh_token: str) -> dict:
        form = {
            "grant_type": "refresh_token",
            "client_id": self.settings.client_id or "",
            "client_secret": self.settings.client_secret or "",
            "refresh_token": refresh_token,
        }
        return await self._token_request(form)

    async def get_me(self, token: str) -> dict:
        """Resolve the user behind a bearer token."""
        response = await self._send("GET", "/me", headers={"Authorization": f"Bearer {token}"})
        body = _decode(response)
        if response.is_error:
            raise UpstreamRejected(response.status_code, body)
        return body if isinstance(body, dict) else {}

    async def request(
        self,
        method: str,
        path: str,
        token: str = None,
        params: dict = None,
        json: Any = None,
        data: dict = None,
    ) -> Any:
        """Perform an API request on behalf of the caller.

        `data` is sent form-encoded, `json` as a JSON body.
        """
        headers = {"Authorization": f"Bearer {token}"} if token else None
        response = await self._send(
            method,
            path,
            params=_clean_params(params),
            json=json,
            data=_clean_params(data) or None,
            headers=headers,
        )
        body = _decode(response)
        if response.is_error:
            raise UpstreamRejected(response.status_code, body)
        return body
