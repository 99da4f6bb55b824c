"""Bearer token validation against HeadHunter.

Tokens are opaque HeadHunter access tokens. They are validated by asking
HeadHunter who they belong to (GET /me) on every request; nothing is cached.
"""

import logging

from hh_client import HHClient, UpstreamRejected

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """HeadHunter did not accept the bearer token."""


async def validate_token(hh_client: HHClient, token: str) -> dict:
    """Resolve a bearer token to the HeadHunter user it belongs to.

    Raises:
        InvalidTokenError: HeadHunter answered with a non-2xx status.
        UpstreamError: HeadHunter could not be reached.
    """
    try:
        user_info = await hh_client.get_me(token)
    except UpstreamRejected as e:
        logger.debug(f"[AUTH] Token validation failed: {e.status_code}")
        raise InvalidTokenError(e.description) from e

    logger.debug(f"[AUTH] Authenticated user: {user_info.get('email') or user_info.get('id')}")
    return user_info
