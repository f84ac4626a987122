"""A Model Context Protocol server exposing a Slack workspace as tools.

The server speaks MCP over stdio or over the Streamable HTTP transport and
forwards each tool call to the Slack Web API, returning Slack's JSON as is.

```
slack-mcp --transport http --port 3000 --token my-secret
```
"""

from .server.slack import SERVER_NAME, SERVER_VERSION, create_slack_server
from .slack_client import SlackClient

__all__ = ["SERVER_NAME", "SERVER_VERSION", "SlackClient", "create_slack_server"]
