"""Streamable HTTP transport management for the /mcp endpoint.

Each MCP session owns one StreamableHTTPServerTransport and one server task
running the MCP protocol over it:
- POST with an initialize request and no live session starts a new one
- POST with a known Mcp-Session-Id is routed to that session's transport
- GET opens a push stream (connected event + periodic heartbeats)
- DELETE closes the session and its transport

Authentication happens before this app is reached (see oauth.middleware).
"""

import contextlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import anyio
from anyio.abc import TaskGroup
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.types import Message, Receive, Scope, Send

from oauth.stores import McpSession, SessionStore

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"

# JSON-RPC error codes
BAD_REQUEST = -32000
INTERNAL_ERROR = -32603


def jsonrpc_error(
    code: int,
    message: str,
    request_id: Any = None,
    data: Any = None,
    status_code: int = 400,
) -> JSONResponse:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return JSONResponse(
        {"jsonrpc": "2.0", "error": error, "id": request_id},
        status_code=status_code,
    )


def is_initialize_request(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("jsonrpc") == "2.0"
        and payload.get("method") == "initialize"
        and "id" in payload
    )


def format_sse(event: str, data: dict) -> str:
    return f"id: {int(time.time() * 1000)}\nevent: {event}\ndata: {json.dumps(data)}\n\n"


async def session_events(session: McpSession, heartbeat_interval: float) -> AsyncIterator[str]:
    """Push stream for one session: a connected event, then heartbeats.

    Ends when the session is closed. Cancellation (client disconnect) stops
    the heartbeat loop.
    """
    yield format_sse("connected", {"sessionId": session.session_id})
    try:
        while not session.is_closed:
            with anyio.move_on_after(heartbeat_interval):
                await session.closed.wait()
            if session.is_closed:
                break
            session.touch()
            yield format_sse("heartbeat", {"timestamp": datetime.now(timezone.utc).isoformat()})
    finally:
        logger.info(f"[MCP] Push stream ended for session {session.session_id}")


def _replay(body: bytes, receive: Receive) -> Receive:
    """A receive callable that yields an already-read body once."""
    sent = False

    async def replay_receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay_receive


class TransportManager:
    """ASGI app owning every MCP session transport."""

    def __init__(self, mcp_server: Server, sessions: SessionStore, heartbeat_interval: float = 30.0):
        self.mcp_server = mcp_server
        self.sessions = sessions
        self.heartbeat_interval = heartbeat_interval
        self._task_group: Optional[TaskGroup] = None

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[TaskGroup]:
        """Own the task group that session server tasks run in.

        On exit every live session is closed before the group is cancelled.
        """
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield tg
            finally:
                logger.info("[SHUTDOWN] Closing all MCP sessions")
                with anyio.CancelScope(shield=True):
                    await self.sessions.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        if request.method == "POST":
            await self.handle_post(scope, receive, send)
        elif request.method == "GET":
            await self.handle_stream(scope, receive, send)
        elif request.method == "DELETE":
            await self.handle_delete(scope, receive, send)
        else:
            response = JSONResponse({"error": "Method not allowed"}, status_code=405)
            await response(scope, receive, send)

    # ============== POST: JSON-RPC messages ==============

    async def handle_post(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        logger.info(f"[MCP] Request for session: {session_id}" if session_id else "[MCP] New MCP request")

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        payload = None
        try:
            session = self.sessions.get(session_id)
            if session is not None and session.transport is not None:
                session.touch()
                await session.transport.handle_request(scope, receive, tracking_send)
                return

            body = await request.body()
            try:
                payload = json.loads(body) if body else None
            except ValueError:
                payload = None

            # An unknown or closed session id never resumes: initialize starts afresh
            if is_initialize_request(payload):
                await self._start_session(scope, _replay(body, receive), tracking_send)
                return

            response = jsonrpc_error(BAD_REQUEST, "Bad Request: No valid session ID provided")
            await response(scope, receive, tracking_send)
        except Exception as e:
            logger.exception(f"[MCP] MCP request error: {e}")
            if not response_started:
                request_id = payload.get("id") if isinstance(payload, dict) else None
                response = jsonrpc_error(
                    INTERNAL_ERROR, "Internal error", request_id=request_id, data=str(e), status_code=500
                )
                await response(scope, receive, send)

    async def _start_session(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._task_group is None:
            raise RuntimeError("TransportManager is not running; use 'async with manager.run()'")

        # Drop a stale Mcp-Session-Id; the transport would refuse it as foreign
        scope = dict(scope)
        scope["headers"] = [
            (name, value) for name, value in scope.get("headers", [])
            if name.lower() != MCP_SESSION_ID_HEADER.encode()
        ]

        session_id = self.sessions.new_session_id()
        transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=True,
        )
        # Register before handling: the initialize response announces this id.
        self.sessions.create(session_id, transport=transport)
        logger.info(f"[MCP] Session initialized with ID: {session_id}")

        async def run_server(*, task_status=anyio.TASK_STATUS_IGNORED) -> None:
            async with transport.connect() as (read_stream, write_stream):
                task_status.started()
                try:
                    await self.mcp_server.run(
                        read_stream,
                        write_stream,
                        self.mcp_server.create_initialization_options(),
                    )
                except Exception as e:
                    logger.error(f"[MCP] Session {session_id} crashed: {e}")
                finally:
                    logger.info(f"[MCP] Transport closed for session {session_id}")
                    with anyio.CancelScope(shield=True):
                        await self.sessions.close(session_id)

        await self._task_group.start(run_server)
        try:
            await transport.handle_request(scope, receive, send)
        except Exception:
            with anyio.CancelScope(shield=True):
                await self.sessions.close(session_id)
            raise

    # ============== GET: push stream ==============

    async def handle_stream(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session = self.sessions.get(request.headers.get(MCP_SESSION_ID_HEADER))
        if session is None:
            session = self.sessions.create()
        session.touch()
        logger.info(f"[MCP] Push stream opened for session {session.session_id}")

        response = StreamingResponse(
            session_events(session, self.heartbeat_interval),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Mcp-Session-Id": session.session_id,
            },
        )
        try:
            await response(scope, receive, send)
        finally:
            # Stream gone (disconnect or session closed): the session goes with it
            with anyio.CancelScope(shield=True):
                await self.sessions.close(session.session_id)

    # ============== DELETE: terminate ==============

    async def handle_delete(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if session_id and await self.sessions.close(session_id):
            response = JSONResponse({"message": "Session terminated"})
        else:
            response = JSONResponse({"error": "Session not found"}, status_code=404)
        await response(scope, receive, send)
