"""Server settings, read from the environment and an optional ``.env`` file."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Slack MCP server settings.

    The Slack credentials and the auth token use their conventional variable
    names (``SLACK_BOT_TOKEN``, ``SLACK_TEAM_ID``, ``SLACK_CHANNEL_IDS``,
    ``AUTH_TOKEN``). Everything else is read with the ``SLACK_MCP_`` prefix,
    for example ``SLACK_MCP_HOST=127.0.0.1``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SLACK_MCP_",
        env_file=".env",
        populate_by_name=True,
        extra="ignore",
    )

    # Slack settings
    slack_bot_token: str = Field(validation_alias="SLACK_BOT_TOKEN", min_length=1)
    slack_team_id: str = Field(validation_alias="SLACK_TEAM_ID", min_length=1)
    slack_channel_ids: str | None = Field(None, validation_alias="SLACK_CHANNEL_IDS")
    """Comma separated channel ids. When set, only these channels are listed."""

    # HTTP settings
    auth_token: str | None = Field(None, validation_alias="AUTH_TOKEN")
    host: str = "0.0.0.0"
    json_response: bool = False
    shutdown_timeout: int = Field(5, gt=0)
    """Seconds to wait for in-flight work before shutdown is forced."""

    @field_validator("slack_channel_ids", "auth_token")
    @classmethod
    def _empty_as_unset(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def channel_ids(self) -> list[str]:
        if not self.slack_channel_ids:
            return []
        return [channel_id.strip() for channel_id in self.slack_channel_ids.split(",") if channel_id.strip()]
