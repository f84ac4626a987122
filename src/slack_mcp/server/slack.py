"""The Slack tool catalog.

`create_slack_server` registers one tool per Slack operation and binds the
low-level server's ``tools/list`` and ``tools/call`` handlers to that registry.
Tool output is Slack's response, serialized as JSON text and otherwise
untouched.
"""

from __future__ import annotations

import json
from typing import Any

import mcp.types as types
from mcp.server.lowlevel import Server
from pydantic import BaseModel, Field

from slack_mcp.server.tools import ToolManager
from slack_mcp.slack_client import MAX_PAGE_SIZE, SlackClient

SERVER_NAME = "Slack MCP Server"
SERVER_VERSION = "1.0.0"

_THREAD_TS_DESCRIPTION = (
    "The timestamp of the parent message in the format '1234567890.123456'. "
    "Timestamps in the format without the period can be converted by adding the period "
    "such that 6 numbers come after it."
)


class ListChannelsArgs(BaseModel):
    limit: int = Field(
        100,
        ge=1,
        le=MAX_PAGE_SIZE,
        description="Maximum number of channels to return (default 100, max 200)",
    )
    cursor: str | None = Field(None, description="Pagination cursor for next page of results")


class PostMessageArgs(BaseModel):
    channel_id: str = Field(description="The ID of the channel or user to post to")
    text: str = Field(description="The message text to post")


class ReplyToThreadArgs(BaseModel):
    channel_id: str = Field(description="The ID of the channel containing the thread")
    thread_ts: str = Field(description=_THREAD_TS_DESCRIPTION)
    text: str = Field(description="The reply text")


class AddReactionArgs(BaseModel):
    channel_id: str = Field(description="The ID of the channel containing the message")
    timestamp: str = Field(description="The timestamp of the message to react to")
    reaction: str = Field(description="The name of the emoji reaction (without ::)")


class GetChannelHistoryArgs(BaseModel):
    channel_id: str = Field(description="The ID of the channel")
    limit: int = Field(10, ge=1, description="Number of messages to retrieve (default 10)")


class GetThreadRepliesArgs(BaseModel):
    channel_id: str = Field(description="The ID of the channel containing the thread")
    thread_ts: str = Field(description=_THREAD_TS_DESCRIPTION)


class GetUsersArgs(BaseModel):
    cursor: str | None = Field(None, description="Pagination cursor for next page of results")
    limit: int = Field(
        100,
        ge=1,
        le=MAX_PAGE_SIZE,
        description="Maximum number of users to return (default 100, max 200)",
    )


class GetUserProfileArgs(BaseModel):
    user_id: str = Field(description="The ID of the user")


def register_slack_tools(tools: ToolManager, client: SlackClient) -> None:
    """Add the eight Slack tools to ``tools``, each bound to ``client``."""

    async def list_channels(limit: int, cursor: str | None) -> Any:
        return await client.get_channels(limit, cursor)

    async def post_message(channel_id: str, text: str) -> Any:
        return await client.post_message(channel_id, text)

    async def reply_to_thread(channel_id: str, thread_ts: str, text: str) -> Any:
        return await client.post_reply(channel_id, thread_ts, text)

    async def add_reaction(channel_id: str, timestamp: str, reaction: str) -> Any:
        return await client.add_reaction(channel_id, timestamp, reaction)

    async def get_channel_history(channel_id: str, limit: int) -> Any:
        return await client.get_channel_history(channel_id, limit)

    async def get_thread_replies(channel_id: str, thread_ts: str) -> Any:
        return await client.get_thread_replies(channel_id, thread_ts)

    async def get_users(cursor: str | None, limit: int) -> Any:
        return await client.get_users(limit, cursor)

    async def get_user_profile(user_id: str) -> Any:
        return await client.get_user_profile(user_id)

    tools.add_tool(
        list_channels,
        ListChannelsArgs,
        name="slack_list_channels",
        title="List Slack Channels",
        description="List public and private channels that the bot is a member of, "
        "or pre-defined channels in the workspace with pagination",
    )
    tools.add_tool(
        post_message,
        PostMessageArgs,
        name="slack_post_message",
        title="Post Slack Message",
        description="Post a new message to a Slack channel or direct message to user",
    )
    tools.add_tool(
        reply_to_thread,
        ReplyToThreadArgs,
        name="slack_reply_to_thread",
        title="Reply to Slack Thread",
        description="Reply to a specific message thread in Slack",
    )
    tools.add_tool(
        add_reaction,
        AddReactionArgs,
        name="slack_add_reaction",
        title="Add Slack Reaction",
        description="Add a reaction emoji to a message",
    )
    tools.add_tool(
        get_channel_history,
        GetChannelHistoryArgs,
        name="slack_get_channel_history",
        title="Get Slack Channel History",
        description="Get recent messages from a channel",
    )
    tools.add_tool(
        get_thread_replies,
        GetThreadRepliesArgs,
        name="slack_get_thread_replies",
        title="Get Slack Thread Replies",
        description="Get all replies in a message thread",
    )
    tools.add_tool(
        get_users,
        GetUsersArgs,
        name="slack_get_users",
        title="Get Slack Users",
        description="Get a list of all users in the workspace with their basic profile information",
    )
    tools.add_tool(
        get_user_profile,
        GetUserProfileArgs,
        name="slack_get_user_profile",
        title="Get Slack User Profile",
        description="Get detailed profile information for a specific user",
    )


def create_slack_server(client: SlackClient) -> Server:
    """Build the protocol server exposing the Slack tools.

    No I/O happens here; the client is only called when a tool runs.
    """
    server = Server(SERVER_NAME, version=SERVER_VERSION)
    tools = ToolManager()
    register_slack_tools(tools, client)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        return [tool.to_mcp_tool() for tool in tools.list_tools()]

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        # ToolError propagates and is reported by the server as an error result.
        payload = await tools.call_tool(name, arguments)
        # Non-ASCII characters stay as they are instead of becoming escapes.
        return [types.TextContent(type="text", text=json.dumps(payload, ensure_ascii=False))]

    return server
