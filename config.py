"""Settings management for hh-mcp-server."""
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


CALLBACK_PATH = "/oauth/callback/debug"


class Settings:
    """Configuration container built from environment variables."""

    def __init__(self, data: Mapping[str, str] = None):
        self.data = dict(data or {})

    def _get(self, key: str, default: str = "") -> str:
        value = self.data.get(key)
        return value if value else default

    def _get_float(self, key: str, default: float) -> float:
        value = self.data.get(key)
        try:
            return float(value) if value else default
        except ValueError:
            raise ValueError(f"{key} must be a number, got {value!r}")

    @property
    def host(self) -> str:
        return self._get("HOST", "localhost")

    @property
    def port(self) -> int:
        return int(self._get("PORT", "3000"))

    @property
    def server_url(self) -> str:
        """Public base URL, used in metadata and as the token issuer."""
        url = self._get("SERVER_URL") or f"http://{self.host}:{self.port}"
        return url.rstrip("/")

    @property
    def client_id(self) -> Optional[str]:
        return self.data.get("HH_CLIENT_ID") or None

    @property
    def client_secret(self) -> Optional[str]:
        return self.data.get("HH_CLIENT_SECRET") or None

    @property
    def redirect_uri(self) -> str:
        """Fixed redirect URI registered with HeadHunter for our client."""
        return self._get("HH_REDIRECT_URI", f"{self.server_url}{CALLBACK_PATH}")

    @property
    def user_agent(self) -> str:
        return self._get("HH_USER_AGENT", "hh-mcp-server/1.0")

    @property
    def api_url(self) -> str:
        return self._get("HH_API_URL", "https://api.hh.ru").rstrip("/")

    @property
    def authorize_url(self) -> str:
        return self._get("HH_AUTHORIZE_URL", "https://hh.ru/oauth/authorize")

    @property
    def timeout(self) -> float:
        return self._get_float("HH_TIMEOUT", 30.0)

    @property
    def pending_auth_ttl(self) -> float:
        return self._get_float("PENDING_AUTH_TTL", 600.0)

    @property
    def session_idle_ttl(self) -> float:
        return self._get_float("SESSION_IDLE_TTL", 3600.0)

    @property
    def sweep_interval(self) -> float:
        return self._get_float("SWEEP_INTERVAL", 60.0)

    @property
    def heartbeat_interval(self) -> float:
        return self._get_float("HEARTBEAT_INTERVAL", 30.0)

    @property
    def log_level(self) -> str:
        return self._get("LOG_LEVEL", "INFO").upper()

    @property
    def log_format(self) -> str:
        return self._get("LOG_FORMAT", "plain").lower()

    @property
    def oauth_configured(self) -> bool:
        """Check if static HeadHunter client credentials are present."""
        return bool(self.client_id and self.client_secret)


def load_settings() -> Settings:
    """Load settings from the environment (and .env, if present)."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)
    return Settings(os.environ)
