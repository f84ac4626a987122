"""The Starlette application serving the Streamable HTTP transport."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone

from mcp.server.lowlevel.server import Server as MCPServer
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from slack_mcp.server.auth import BearerTokenMiddleware
from slack_mcp.server.streamable_http_manager import StreamableHTTPSessionManager

MCP_PATH = "/mcp"
HEALTH_PATH = "/health"


class StreamableHTTPASGIApp:
    """
    ASGI application for Streamable HTTP server transport.
    """

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.session_manager.handle_request(scope, receive, send)


def create_app(
    server: MCPServer,
    auth_token: str | None,
    json_response: bool = False,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> Starlette:
    """Build the HTTP application.

    ``/mcp`` is served by the session manager behind bearer authorization.
    ``/health`` is unauthenticated and session-free. ``on_shutdown`` runs
    once the session manager has stopped.
    """
    session_manager = StreamableHTTPSessionManager(app=server, json_response=json_response)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": server.name,
                "version": server.version,
            }
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            async with session_manager.run():
                yield
        finally:
            if on_shutdown is not None:
                await on_shutdown()

    app = Starlette(
        routes=[
            Route(HEALTH_PATH, endpoint=health, methods=["GET"]),
            Route(
                MCP_PATH,
                endpoint=BearerTokenMiddleware(StreamableHTTPASGIApp(session_manager), auth_token),
            ),
        ],
        lifespan=lifespan,
    )
    app.state.session_manager = session_manager
    return app
