"""JSON-RPC error envelopes for HTTP rejections that happen outside a session."""

from typing import Any

from mcp.types import ErrorData

# Implementation-defined server error, used for session and authorization rejections.
SERVER_ERROR = -32000


def jsonrpc_error_body(code: int, message: str) -> dict[str, Any]:
    """Error envelope for a request that was rejected before reaching a session.

    The offending request was not (or could not be) parsed, so ``id`` is null.
    """
    error = ErrorData(code=code, message=message)
    return {"jsonrpc": "2.0", "error": error.model_dump(exclude_none=True), "id": None}
