"""In-memory stores for the OAuth facade and MCP sessions.

Two independent registries:
- PendingAuthorizationStore: authorize requests waiting for the HeadHunter
  callback, keyed by the state key we send upstream (single use)
- SessionStore: live MCP sessions, keyed by Mcp-Session-Id

Nothing here is persisted; a restart forgets every flow and session.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import anyio

logger = logging.getLogger(__name__)


# ============== Pending Authorizations ==============

@dataclass
class PendingAuthorization:
    state_key: str
    original_redirect_uri: str
    client_id: str
    original_state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: str = "S256"
    created_at: float = field(default_factory=time.time)


class PendingAuthorizationStore:
    """Authorize requests awaiting the upstream redirect."""

    def __init__(self, ttl: float = 600.0):
        self.ttl = ttl
        self._entries: dict[str, PendingAuthorization] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, state_key: str) -> bool:
        return state_key in self._entries

    def _expired(self, entry: PendingAuthorization, now: float = None) -> bool:
        now = time.time() if now is None else now
        return now - entry.created_at > self.ttl

    def create(
        self,
        redirect_uri: str,
        client_id: str,
        state: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: str = "S256",
    ) -> PendingAuthorization:
        state_key = f"auth_{uuid.uuid4()}"
        entry = PendingAuthorization(
            state_key=state_key,
            original_redirect_uri=redirect_uri,
            client_id=client_id,
            original_state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        self._entries[state_key] = entry
        return entry

    def get(self, state_key: str) -> Optional[PendingAuthorization]:
        entry = self._entries.get(state_key)
        if entry and self._expired(entry):
            del self._entries[state_key]
            return None
        return entry

    def pop(self, state_key: str) -> Optional[PendingAuthorization]:
        """Remove and return the entry; a state key resolves at most once."""
        entry = self._entries.pop(state_key, None)
        if entry and self._expired(entry):
            logger.info(f"[OAUTH] Pending authorization expired: {state_key}")
            return None
        return entry

    def discard(self, state_key: str) -> None:
        self._entries.pop(state_key, None)

    def sweep(self, now: float = None) -> int:
        """Evict entries older than the TTL. Returns the number evicted."""
        now = time.time() if now is None else now
        stale = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in stale:
            del self._entries[key]
        return len(stale)


# ============== MCP Sessions ==============

@dataclass
class McpSession:
    session_id: str
    transport: Any = None
    created_at: float = field(default_factory=time.time)
    last_access_at: float = field(default_factory=time.time)
    closed: anyio.Event = field(default_factory=anyio.Event)

    def touch(self) -> None:
        self.last_access_at = time.time()

    @property
    def is_closed(self) -> bool:
        return self.closed.is_set()


class SessionStore:
    """Live MCP sessions and the transports they own."""

    def __init__(self, idle_ttl: float = 3600.0):
        self.idle_ttl = idle_ttl
        self._sessions: dict[str, McpSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def ids(self) -> list[str]:
        return list(self._sessions)

    def new_session_id(self) -> str:
        while True:
            session_id = uuid.uuid4().hex
            if session_id not in self._sessions:
                return session_id

    def create(self, session_id: str = None, transport: Any = None) -> McpSession:
        session = McpSession(session_id=session_id or self.new_session_id(), transport=transport)
        self._sessions[session.session_id] = session
        logger.info(f"[SESSION] Created {session.session_id}")
        return session

    def get(self, session_id: Optional[str]) -> Optional[McpSession]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        """Close a session and its transport. Safe to call more than once."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        session.closed.set()
        transport = session.transport
        if transport is not None and not getattr(transport, "is_terminated", False):
            try:
                await transport.terminate()
            except Exception as e:
                logger.error(f"[SESSION] Error closing transport for {session_id}: {e}")
        logger.info(f"[SESSION] Closed {session_id}")
        return True

    async def close_all(self) -> None:
        for session_id in self.ids():
            logger.info(f"[SHUTDOWN] Closing transport for session {session_id}")
            await self.close(session_id)

    async def sweep(self, now: float = None) -> int:
        """Close sessions idle for longer than the TTL. Returns the number closed."""
        now = time.time() if now is None else now
        stale = [
            session_id for session_id, session in self._sessions.items()
            if now - session.last_access_at > self.idle_ttl
        ]
        for session_id in stale:
            logger.info(f"[SESSION] Idle session expired: {session_id}")
            await self.close(session_id)
        return len(stale)
