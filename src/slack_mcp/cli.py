"""Command line entry point: reads the settings and runs the chosen transport."""

from __future__ import annotations

import logging
import os
import signal
import sys
from io import TextIOWrapper
from types import FrameType
from typing import IO
from uuid import uuid4

import anyio
import anyio.to_thread
import click
import mcp.types as types
import uvicorn
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.shared.message import SessionMessage
from pydantic import ValidationError

from slack_mcp.server.app import create_app
from slack_mcp.server.slack import create_slack_server
from slack_mcp.settings import Settings
from slack_mcp.slack_client import SlackClient
from slack_mcp.utilities.logging import configure_logging

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGQUIT") if hasattr(signal, name)
)


class InterruptibleTextFile(anyio.AsyncFile[str]):
    """Async text file whose pending ``readline`` can be cut short.

    After :meth:`interrupt` every read returns ``""``, so readers see end of
    file. The blocked worker thread is abandoned rather than waited for.
    """

    def __init__(self, fp: IO[str]) -> None:
        super().__init__(fp)
        self._interrupted = False
        self._read_scope: anyio.CancelScope | None = None

    async def readline(self) -> str:
        if self._interrupted:
            return ""
        with anyio.CancelScope() as self._read_scope:
            return await anyio.to_thread.run_sync(self.wrapped.readline, abandon_on_cancel=True)
        return ""

    def interrupt(self) -> None:
        self._interrupted = True
        if self._read_scope is not None:
            self._read_scope.cancel()


class _PendingRequests:
    """Ids of the requests read from the client that have not been answered yet."""

    def __init__(self) -> None:
        self._ids: set[types.RequestId] = set()
        self._drained = anyio.Event()
        self._drained.set()

    def add(self, request_id: types.RequestId) -> None:
        if not self._ids:
            self._drained = anyio.Event()
        self._ids.add(request_id)

    def discard(self, request_id: types.RequestId) -> None:
        self._ids.discard(request_id)
        if not self._ids:
            self._drained.set()

    async def wait(self) -> None:
        await self._drained.wait()


async def run_stdio(
    server: Server,
    client: SlackClient,
    shutdown_timeout: float,
    stdin: InterruptibleTextFile | None = None,
    stdout: anyio.AsyncFile[str] | None = None,
) -> bool:
    """Serve one client over stdin/stdout until EOF or a shutdown signal.

    Requests are served one at a time: the next message is passed to the
    server only once the current request is answered. Once input ends, the
    request in progress is answered before the server stops. On a signal,
    reading stops at once and that request gets ``shutdown_timeout`` seconds
    before everything is cancelled. The Slack client is closed on the way out.

    Returns:
        True if a shutdown signal stopped the server.
    """
    if stdin is None:
        stdin = InterruptibleTextFile(TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace"))
    if stdout is None:
        stdout = anyio.wrap_file(TextIOWrapper(sys.stdout.buffer, encoding="utf-8"))

    stopped_by_signal = False
    pending = _PendingRequests()

    async with client, stdio_server(stdin, stdout) as (read_stream, write_stream):
        server_read_writer, server_read_stream = anyio.create_memory_object_stream[SessionMessage | Exception](0)
        server_write_stream, server_write_reader = anyio.create_memory_object_stream[SessionMessage](0)

        async with anyio.create_task_group() as tg:
            signal_watch = anyio.CancelScope()

            async def forward_input():
                async with server_read_writer:
                    async with read_stream:
                        async for message in read_stream:
                            request_id: types.RequestId | None = None
                            if isinstance(message, SessionMessage) and isinstance(
                                message.message.root, types.JSONRPCRequest
                            ):
                                request_id = message.message.root.id
                                pending.add(request_id)
                            await server_read_writer.send(message)
                            if request_id is not None:
                                # One request at a time. This also keeps the input open
                                # until it is answered, as the server drops unanswered
                                # requests once its input closes.
                                await pending.wait()

            async def forward_output():
                async with server_write_reader, write_stream:
                    async for session_message in server_write_reader:
                        await write_stream.send(session_message)
                        message = session_message.message.root
                        if isinstance(message, types.JSONRPCResponse | types.JSONRPCError):
                            pending.discard(message.id)
                signal_watch.cancel()

            async def watch_signals():
                nonlocal stopped_by_signal
                with signal_watch, anyio.open_signal_receiver(*SHUTDOWN_SIGNALS) as signals:
                    async for signum in signals:
                        logger.info("Received %s, shutting down", signal.Signals(signum).name)
                        stopped_by_signal = True
                        stdin.interrupt()
                        await anyio.sleep(shutdown_timeout)
                        logger.warning("Forcing shutdown after %s seconds", shutdown_timeout)
                        tg.cancel_scope.cancel()
                        return

            tg.start_soon(forward_input)
            tg.start_soon(forward_output)
            tg.start_soon(watch_signals)
            await server.run(server_read_stream, server_write_stream, server.create_initialization_options())

    return stopped_by_signal


def run_http(server: Server, client: SlackClient, settings: Settings, port: int, token: str, log_level: str) -> None:
    """Serve the Streamable HTTP transport until a shutdown signal."""
    app = create_app(server, token, json_response=settings.json_response, on_shutdown=client.aclose)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=port,
        log_level=log_level.lower(),
        timeout_graceful_shutdown=settings.shutdown_timeout,
    )
    uvicorn_server = uvicorn.Server(config)

    def handle_signal(signum: int, frame: FrameType | None) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        uvicorn_server.handle_exit(signum, frame)

    # uvicorn covers SIGINT and SIGTERM while serving and re-raises them once
    # stopped; these handlers keep that from killing the process afterwards.
    for sig in SHUTDOWN_SIGNALS:
        signal.signal(sig, handle_signal)

    logger.info(f"Slack MCP Server listening on http://{settings.host}:{port}/mcp")
    uvicorn_server.run()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--transport",
    type=click.Choice(["stdio", "http"]),
    default="stdio",
    show_default=True,
    help="Transport type",
)
@click.option(
    "--port",
    type=click.IntRange(1, 65535),
    default=3000,
    show_default=True,
    help="Port to listen on for the HTTP transport",
)
@click.option("--token", default=None, help="Bearer token for the HTTP transport, overrides AUTH_TOKEN")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level",
)
def cli(transport: str, port: int, token: str | None, log_level: str) -> int:
    """Run the Slack MCP server."""
    log_level = log_level.upper()
    configure_logging(log_level)  # type: ignore[arg-type]

    try:
        settings = Settings()
    except ValidationError as e:
        missing = ", ".join(str(error["loc"][0]) for error in e.errors())
        click.echo(f"Invalid or missing configuration: {missing}", err=True)
        click.echo("Please set SLACK_BOT_TOKEN and SLACK_TEAM_ID environment variables", err=True)
        raise SystemExit(1) from e

    client = SlackClient(settings.slack_bot_token, settings.slack_team_id, settings.channel_ids)
    server = create_slack_server(client)

    if transport == "http":
        auth_token = token or settings.auth_token
        if not auth_token:
            auth_token = str(uuid4())
            logger.warning(f"No auth token configured, generated one: {auth_token}")
            logger.warning(f"Use this token in the Authorization header: Bearer {auth_token}")
        run_http(server, client, settings, port, auth_token, log_level)
        return 0

    logger.info("Starting Slack MCP Server with stdio transport")
    if anyio.run(run_stdio, server, client, settings.shutdown_timeout):
        logger.info("Shutdown complete")
        logging.shutdown()
        # The worker thread still blocked on reading stdin can never be joined,
        # so leave without the interpreter's usual teardown.
        os._exit(0)
    return 0


def main() -> None:
    """Console script entry point. Usage errors exit with status 1."""
    try:
        exit_code = cli.main(standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(1)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    sys.exit(exit_code or 0)
