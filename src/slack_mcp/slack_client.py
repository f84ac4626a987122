"""Thin async client for the Slack Web API.

Every method issues exactly one outbound request (the predefined channel list
path issues one per configured channel) and returns the decoded JSON body as
Slack sent it. Nothing is retried and nothing is validated: an ``"ok": false``
payload is a normal return value.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any

import httpx
from typing_extensions import Self

logger = logging.getLogger(__name__)

SLACK_API_BASE_URL = "https://slack.com/api/"

# Applies to connect, read, write and pool acquisition alike.
DEFAULT_TIMEOUT_SECONDS = 30.0

# Slack rejects list pages larger than this for the endpoints used here.
MAX_PAGE_SIZE = 200


class SlackClient:
    """Issues Slack Web API calls on behalf of the bot user.

    Args:
        bot_token: The bot's OAuth token (``xoxb-...``).
        team_id: Workspace id passed to the list endpoints.
        channel_ids: Optional predefined channel ids. When given,
            :meth:`get_channels` looks these channels up one by one instead
            of paging through ``conversations.list``.
        transport: Optional httpx transport for the underlying client, for
            example an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        bot_token: str,
        team_id: str,
        channel_ids: Sequence[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.team_id = team_id
        self.channel_ids = [channel_id.strip() for channel_id in channel_ids or [] if channel_id.strip()]
        self._http = httpx.AsyncClient(
            base_url=SLACK_API_BASE_URL,
            headers={
                "Authorization": f"Bearer {bot_token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(DEFAULT_TIMEOUT_SECONDS),
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, method: str, params: dict[str, str]) -> Any:
        logger.debug("GET %s %s", method, params)
        response = await self._http.get(method, params=params)
        return response.json()

    async def _post(self, method: str, payload: dict[str, str]) -> Any:
        logger.debug("POST %s", method)
        response = await self._http.post(method, json=payload)
        return response.json()

    async def get_channels(self, limit: int = 100, cursor: str | None = None) -> Any:
        """List channels.

        Without predefined channel ids this is a plain ``conversations.list``
        call. With them, each channel is fetched through ``conversations.info``
        and archived or failed lookups are left out. Both paths return the
        same envelope: ``ok``, ``channels`` and ``response_metadata.next_cursor``.
        """
        if not self.channel_ids:
            params = {
                "types": "public_channel,private_channel",
                "exclude_archived": "true",
                "limit": str(min(limit, MAX_PAGE_SIZE)),
                "team_id": self.team_id,
            }
            if cursor:
                params["cursor"] = cursor
            return await self._get("conversations.list", params)

        channels: list[Any] = []
        for channel_id in self.channel_ids:
            try:
                data = await self._get("conversations.info", {"channel": channel_id})
            except (httpx.HTTPError, ValueError) as exc:
                logger.debug("Skipping channel %s: %s", channel_id, exc)
                continue

            if not isinstance(data, dict):
                logger.debug("Skipping channel %s: unexpected response", channel_id)
                continue

            channel = data.get("channel")
            if data.get("ok") and isinstance(channel, dict) and not channel.get("is_archived"):
                channels.append(channel)
            else:
                logger.debug("Skipping channel %s: not available or archived", channel_id)

        return {
            "ok": True,
            "channels": channels,
            "response_metadata": {"next_cursor": ""},
        }

    async def post_message(self, channel_id: str, text: str) -> Any:
        return await self._post("chat.postMessage", {"channel": channel_id, "text": text})

    async def post_reply(self, channel_id: str, thread_ts: str, text: str) -> Any:
        return await self._post(
            "chat.postMessage",
            {"channel": channel_id, "thread_ts": thread_ts, "text": text},
        )

    async def add_reaction(self, channel_id: str, timestamp: str, reaction: str) -> Any:
        return await self._post(
            "reactions.add",
            {"channel": channel_id, "timestamp": timestamp, "name": reaction},
        )

    async def get_channel_history(self, channel_id: str, limit: int = 10) -> Any:
        return await self._get("conversations.history", {"channel": channel_id, "limit": str(limit)})

    async def get_thread_replies(self, channel_id: str, thread_ts: str) -> Any:
        return await self._get("conversations.replies", {"channel": channel_id, "ts": thread_ts})

    async def get_users(self, limit: int = 100, cursor: str | None = None) -> Any:
        params = {
            "limit": str(min(limit, MAX_PAGE_SIZE)),
            "team_id": self.team_id,
        }
        if cursor:
            params["cursor"] = cursor
        return await self._get("users.list", params)

    async def get_user_profile(self, user_id: str) -> Any:
        return await self._get("users.profile.get", {"user": user_id, "include_labels": "true"})
