"""Static bearer-token authorization for the HTTP endpoints."""

import hmac
import json
import logging
from typing import Any

from starlette.datastructures import Headers
from starlette.types import Receive, Scope, Send

from slack_mcp.server.errors import SERVER_ERROR, jsonrpc_error_body

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class BearerTokenMiddleware:
    """Middleware that requires ``Authorization: Bearer <token>`` on every request.

    The scheme is matched exactly and case-sensitively and the token must equal
    the configured one byte for byte. With no token configured every request
    passes through.
    """

    def __init__(self, app: Any, token: str | None):
        self.app = app
        self.token = token

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.token:
            await self.app(scope, receive, send)
            return

        auth_header = Headers(scope=scope).get("authorization")
        if not auth_header or not auth_header.startswith(BEARER_PREFIX):
            await self._send_auth_error(send, "Unauthorized: Missing or invalid Authorization header")
            return

        provided = auth_header[len(BEARER_PREFIX) :]
        if not hmac.compare_digest(provided.encode(), self.token.encode()):
            logger.debug("Rejected request with invalid bearer token")
            await self._send_auth_error(send, "Unauthorized: Invalid token")
            return

        await self.app(scope, receive, send)

    async def _send_auth_error(self, send: Send, message: str) -> None:
        """Send a 401 response carrying a JSON-RPC error envelope."""
        body_bytes = json.dumps(jsonrpc_error_body(SERVER_ERROR, message)).encode()

        await send(
            {
                "type": "http.response.start",
                "status": 401,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body_bytes)).encode()),
                    (b"www-authenticate", b"Bearer"),
                ],
            }
        )

        await send(
            {
                "type": "http.response.body",
                "body": body_bytes,
            }
        )
