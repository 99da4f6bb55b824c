"""HeadHunter MCP Server with an OAuth 2.0 facade.

It handles:
- MCP tools for the HeadHunter API via tools.py
- MCP protocol endpoint via Streamable HTTP (/mcp)
- OAuth facade for MCP clients in front of HeadHunter OAuth (oauth/)
- A stdio mode running the tools alone, for local MCP hosts

MCP clients authenticate through the facade and then call /mcp with the
HeadHunter access token they obtained.
"""
import argparse
import contextlib
import logging
from datetime import datetime, timezone

import anyio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, load_settings
from hh_client import HHClient
from logging_config import setup_logging
from oauth.endpoints import router as oauth_router
from oauth.middleware import MCPOAuthMiddleware
from oauth.stores import PendingAuthorizationStore, SessionStore
from tools import create_mcp_server
from transport import TransportManager

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


async def sweep_expired(app: FastAPI) -> None:
    """Periodically evict abandoned authorizations and idle sessions."""
    interval = app.state.settings.sweep_interval
    while True:
        await anyio.sleep(interval)
        evicted = app.state.pending_authorizations.sweep()
        closed = await app.state.sessions.sweep()
        if evicted or closed:
            logger.info(f"[SESSION] Sweep evicted {evicted} pending authorizations, closed {closed} sessions")


def create_app(settings: Settings, hh_client: HHClient = None) -> FastAPI:
    """Build the application with fresh stores.

    Args:
        settings: Server configuration
        hh_client: HeadHunter client; one is created from settings if omitted
    """
    hh_client = hh_client or HHClient(settings)
    sessions = SessionStore(idle_ttl=settings.session_idle_ttl)
    mcp = create_mcp_server(hh_client)
    transport_manager = TransportManager(
        mcp._mcp_server,
        sessions,
        heartbeat_interval=settings.heartbeat_interval,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[STARTUP] MCP Server (OAuth HTTP) starting on {settings.server_url}")
        logger.info(f"[STARTUP] OAuth configured: {settings.oauth_configured}")
        try:
            async with transport_manager.run() as task_group:
                task_group.start_soon(sweep_expired, app)
                yield
        finally:
            await hh_client.aclose()
            logger.info("[SHUTDOWN] Server shutdown complete")

    app = FastAPI(
        title="HeadHunter MCP Server",
        description="MCP server for the HeadHunter API with an OAuth 2.0 facade",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.hh_client = hh_client
    app.state.pending_authorizations = PendingAuthorizationStore(ttl=settings.pending_auth_ttl)
    app.state.sessions = sessions
    app.state.transport_manager = transport_manager
    app.state.mcp = mcp

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )

    app.include_router(oauth_router)

    # Bearer validation runs before any session handling
    app.add_route(
        "/mcp",
        MCPOAuthMiddleware(transport_manager),
        methods=["GET", "POST", "DELETE"],
        include_in_schema=False,
    )

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Liveness probe, no authentication."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
        }

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        server_url = settings.server_url
        return {
            "name": "HeadHunter MCP Server",
            "version": VERSION,
            "endpoints": {
                "streamable_http": "/mcp",
                "health": "/health",
            },
            "tools": len(await mcp.list_tools()),
            "oauth_configured": settings.oauth_configured,
            "oauth": {
                "protected_resource": f"{server_url}/.well-known/oauth-protected-resource",
                "authorization_server": f"{server_url}/.well-known/oauth-authorization-server",
            },
        }

    return app


async def serve_stdio(settings: Settings, hh_client: HHClient = None) -> None:
    """Run the tool server over stdin/stdout.

    There is no HTTP request and so no bearer token: tools call HeadHunter
    anonymously and only public methods succeed.
    """
    hh_client = hh_client or HHClient(settings)
    logger.info("[STARTUP] HeadHunter MCP Server started on stdio")
    try:
        await create_mcp_server(hh_client).run_stdio_async()
    finally:
        await hh_client.aclose()


def main(argv: list[str] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="hh-mcp-server",
        description="MCP server for the HeadHunter API",
    )
    parser.add_argument(
        "--transport",
        choices=["http", "stdio"],
        default="http",
        help="http: Streamable HTTP with the OAuth facade (default); stdio: tools only",
    )
    args = parser.parse_args(argv)

    settings = load_settings()
    # Logs go to stderr, stdout stays free for the stdio protocol
    setup_logging(settings.log_level, settings.log_format)

    if args.transport == "stdio":
        anyio.run(serve_stdio, settings)
        return

    import uvicorn

    app = create_app(settings)
    logger.info(f"[STARTUP] MCP endpoint: {settings.server_url}/mcp")
    logger.info(f"[STARTUP] OAuth metadata: {settings.server_url}/.well-known/oauth-protected-resource")
    # uvicorn turns SIGINT/SIGTERM into lifespan shutdown, which closes every session
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
