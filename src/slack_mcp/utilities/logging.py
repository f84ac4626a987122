"""Logging utilities for the Slack MCP server."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

# Namespace loggers for this package and for the MCP SDK it runs on.
# Only these are configured, never the root logger.
_LOGGER_NAMES = ("slack_mcp", "mcp")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure logging for the server.

    Log records go to stderr. On the stdio transport stdout carries the
    protocol, so nothing else may ever be written there.

    Args:
        level: The log level to use.
    """
    handler: RichHandler | None = None
    for name in _LOGGER_NAMES:
        namespace_logger = logging.getLogger(name)
        namespace_logger.setLevel(level)

        # Avoid adding duplicate handlers on repeated calls.
        if namespace_logger.handlers:
            continue

        if handler is None:
            handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True)
        namespace_logger.addHandler(handler)
