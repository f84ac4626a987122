"""StreamableHTTP Session Manager for the Slack MCP server."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator
from http import HTTPStatus
from typing import Any
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup, TaskStatus
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server.lowlevel.server import Server as MCPServer
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.server.transport_security import DEFAULT_MAX_REQUEST_BODY_SIZE, RequestBodyLimitMiddleware
from mcp.shared.message import SessionMessage
from mcp.types import INTERNAL_ERROR, INVALID_REQUEST, JSONRPCResponse, RequestId
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from slack_mcp.server.errors import SERVER_ERROR, jsonrpc_error_body

logger = logging.getLogger(__name__)


def _initialize_request_id(body: bytes) -> RequestId | None:
    """The id of the ``initialize`` request in ``body``, or None if it holds anything else."""
    try:
        raw_message: Any = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw_message, dict) or raw_message.get("method") != "initialize":
        return None
    request_id = raw_message.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, int | str):
        return None
    return request_id


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """A receive callable that hands out the already read ``body`` before deferring to ``receive``."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class StreamableHTTPSessionManager:
    """
    Manages StreamableHTTP sessions.

    This class owns the session table, mapping session ids to their transports,
    and the task group the per-session servers run in. It handles:

    1. Creating a transport and a server task for each ``initialize`` request
       that arrives without a session id
    2. Routing requests that carry a known session id to their transport
    3. Rejecting requests with unknown or missing session ids, and a second
       ``initialize`` on a session
    4. Dropping sessions from the table when they end

    A session is added to the table only once the server has answered its
    ``initialize`` request successfully, right before that answer is handed to
    the transport. It is removed exactly once, whether the client deleted it,
    its server task ended or the manager shut down.

    Important: Only one StreamableHTTPSessionManager instance should be created
    per application. The instance cannot be reused after its run() context has
    completed. If you need to restart the manager, create a new instance.

    Args:
        app: The MCP server instance
        json_response: Whether to use JSON responses instead of SSE streams
        max_request_body_size: Largest POST body accepted; larger ones get 413
    """

    def __init__(
        self,
        app: MCPServer[Any, Any],
        json_response: bool = False,
        max_request_body_size: int = DEFAULT_MAX_REQUEST_BODY_SIZE,
    ):
        self.app = app
        self.json_response = json_response
        self.max_request_body_size = max_request_body_size
        self.asgi_app = RequestBodyLimitMiddleware(self._handle_request, max_request_body_size)

        self._server_instances: dict[str, StreamableHTTPServerTransport] = {}

        # The task group will be set during lifespan
        self._task_group: TaskGroup | None = None
        # Thread-safe tracking of run() calls
        self._run_lock = anyio.Lock()
        self._has_started = False

    @property
    def session_ids(self) -> list[str]:
        """Ids of the sessions currently in the table."""
        return list(self._server_instances)

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the session manager with proper lifecycle management.

        This creates and manages the task group for all session operations.

        Important: This method can only be called once per instance.

        Use this in the lifespan context manager of your Starlette app:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "StreamableHTTPSessionManager .run() can only be called "
                    "once per instance. Create a new instance if you need to run again."
                )
            self._has_started = True

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                logger.info("StreamableHTTP session manager started")
                try:
                    yield  # Let the application run
                finally:
                    logger.info("StreamableHTTP session manager shutting down")
                    # Cancel task group to stop all spawned tasks
                    tg.cancel_scope.cancel()
        finally:
            # Session tasks have discarded their own entries by now.
            self._task_group = None
            self._server_instances.clear()

    async def handle_request(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """
        Process ASGI request with proper session handling and transport setup.

        Bodies over ``max_request_body_size`` are refused with 413 before any
        session is looked up. Unexpected errors are logged and, when no
        response has been started yet, answered with a JSON-RPC internal error.

        Args:
            scope: ASGI scope
            receive: ASGI receive function
            send: ASGI send function
        """
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.asgi_app(scope, receive, send_wrapper)
        except Exception:
            logger.exception("Error handling MCP request")
            if not response_started:
                response = JSONResponse(
                    jsonrpc_error_body(INTERNAL_ERROR, "Internal server error"),
                    status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
                )
                await response(scope, receive, send)

    async def _handle_request(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """
        Route the request to its session, or start a new session.

        Args:
            scope: ASGI scope
            receive: ASGI receive function
            send: ASGI send function
        """
        request = Request(scope, receive)
        request_mcp_session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if request_mcp_session_id:
            transport = self._server_instances.get(request_mcp_session_id)
            if transport is None:
                logger.debug("Rejecting request for unknown session %s", request_mcp_session_id)
                await self._send_bad_request(scope, receive, send, "Bad Request: No valid session ID provided")
                return

            if request.method == "POST":
                body = await request.body()
                if _initialize_request_id(body) is not None:
                    response = JSONResponse(
                        jsonrpc_error_body(INVALID_REQUEST, "Invalid Request: Server already initialized"),
                        status_code=HTTPStatus.BAD_REQUEST,
                        headers={MCP_SESSION_ID_HEADER: request_mcp_session_id},
                    )
                    await response(scope, receive, send)
                    return
                receive = _replay_body(body, receive)

            logger.debug("Session already exists, handling request directly")
            await transport.handle_request(scope, receive, send)
            if transport.is_terminated:
                # The client ended the session (DELETE): forget it now rather
                # than when its server task winds down.
                await self._discard_session(request_mcp_session_id, transport)
            return

        if request.method in ("GET", "DELETE"):
            await self._send_bad_request(scope, receive, send, "Invalid or missing session ID")
            return
        if request.method != "POST":
            await self._send_bad_request(scope, receive, send, "Bad Request: No valid session ID provided")
            return

        body = await request.body()
        initialize_request_id = _initialize_request_id(body)
        if initialize_request_id is None:
            await self._send_bad_request(scope, receive, send, "Bad Request: No valid session ID provided")
            return

        # New session case
        http_transport = StreamableHTTPServerTransport(
            mcp_session_id=uuid4().hex,
            is_json_response_enabled=self.json_response,
        )
        logger.debug(f"Created new transport with session ID: {http_transport.mcp_session_id}")
        receive = _replay_body(body, receive)
        await self._serve_opening_request(http_transport, initialize_request_id, scope, receive, send)

    async def _serve_opening_request(
        self,
        http_transport: StreamableHTTPServerTransport,
        initialize_request_id: RequestId,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Start the session's server task and let its transport answer the ``initialize`` request.

        If the handshake is refused, fails or is cancelled the session never
        made it into the table, and its transport is terminated again.
        """
        session_id = http_transport.mcp_session_id
        assert session_id is not None

        try:
            assert self._task_group is not None
            await self._task_group.start(self._run_session, http_transport, initialize_request_id)
            await http_transport.handle_request(scope, receive, send)
        finally:
            if session_id not in self._server_instances:
                logger.debug(f"Discarding uninitialized session {session_id}")
                await self._discard_session(session_id, http_transport)

    async def _run_session(
        self,
        http_transport: StreamableHTTPServerTransport,
        initialize_request_id: RequestId,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        """
        Background task that runs the MCP server for a transport.

        Whether the server finished, crashed or was cancelled, the session is
        discarded when this task ends.

        Args:
            http_transport: The transport to run the server for
            initialize_request_id: Id of the request that opens the session
            task_status: anyio task status for coordination with task group
        """
        session_id = http_transport.mcp_session_id
        assert session_id is not None

        try:
            async with http_transport.connect() as (read_stream, write_stream):
                server_write_stream, server_messages = anyio.create_memory_object_stream[SessionMessage](0)
                task_status.started()
                async with anyio.create_task_group() as tg:
                    tg.start_soon(
                        self._deliver_server_messages,
                        http_transport,
                        initialize_request_id,
                        server_messages,
                        write_stream,
                    )
                    try:
                        async with server_write_stream:
                            await self.app.run(
                                read_stream,
                                server_write_stream,
                                self.app.create_initialization_options(),
                            )
                    except Exception:
                        logger.exception(f"Session {session_id} crashed")
        finally:
            await self._discard_session(session_id, http_transport)

    async def _deliver_server_messages(
        self,
        http_transport: StreamableHTTPServerTransport,
        initialize_request_id: RequestId,
        server_messages: MemoryObjectReceiveStream[SessionMessage],
        write_stream: MemoryObjectSendStream[SessionMessage],
    ) -> None:
        """Pass the server's messages on to the transport.

        The successful answer to the opening ``initialize`` request puts the
        session in the table before the transport sees it.
        """
        session_id = http_transport.mcp_session_id
        assert session_id is not None
        registered = False

        async with server_messages:
            async for session_message in server_messages:
                message = session_message.message.root
                if not registered and isinstance(message, JSONRPCResponse) and message.id == initialize_request_id:
                    registered = True
                    if not http_transport.is_terminated:
                        self._server_instances[session_id] = http_transport
                        logger.info(f"Session initialized with ID: {session_id}")
                try:
                    await write_stream.send(session_message)
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    # Terminated transport: keep draining so the server can wind down.
                    logger.debug(f"Dropping message for closed session {session_id}")

    async def _discard_session(self, session_id: str, transport: StreamableHTTPServerTransport) -> None:
        """Stop tracking the session and make sure its transport refuses anything that still reaches it.

        The session is forgotten first, before any await, so its ID is unknown
        from the moment this is called. Only the call that actually removes the
        entry reports the session as closed.
        """
        if self._server_instances.pop(session_id, None) is not None:
            logger.info(f"Session closed: {session_id}")
        if not transport.is_terminated:
            with anyio.CancelScope(shield=True):
                await transport.terminate()

    async def _send_bad_request(self, scope: Scope, receive: Receive, send: Send, message: str) -> None:
        response = JSONResponse(
            jsonrpc_error_body(SERVER_ERROR, message),
            status_code=HTTPStatus.BAD_REQUEST,
        )
        await response(scope, receive, send)
