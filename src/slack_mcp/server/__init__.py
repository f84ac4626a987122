from .app import create_app
from .slack import create_slack_server
from .streamable_http_manager import StreamableHTTPSessionManager

__all__: list[str] = [
    "create_app",
    "create_slack_server",
    "StreamableHTTPSessionManager",
]
