from typing import Any, Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentlink.shared.logging import redact_sensitive_data


class Settings(BaseSettings):
    """agentlink settings.

    Every setting is read from the environment variable named in its alias
    (and from `.env`). For example, MCP_SERVER_URL=http://localhost:8080 sets
    mcp_server_url.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Tool server
    mcp_server_url: str = Field(validation_alias="MCP_SERVER_URL")
    request_timeout: float = Field(default=30.0, gt=0, validation_alias="MCP_REQUEST_TIMEOUT")
    """Seconds to wait for the reply to one protocol request."""
    session_timeout: float = Field(default=10.0, gt=0, validation_alias="MCP_SESSION_TIMEOUT")
    """Seconds to wait for the server's session announcement after connecting."""

    # Language model
    openai_api_key: SecretStr = Field(validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
    model: str = Field(default="gpt-4-turbo", validation_alias="OPENAI_MODEL")
    temperature: float = Field(default=0.7, ge=0, le=2, validation_alias="TEMPERATURE")
    max_tokens: int = Field(default=4000, gt=0, validation_alias="MAX_TOKENS")
    stream_timeout: int = Field(default=30000, gt=0, validation_alias="STREAM_TIMEOUT")
    """Milliseconds a streamed chat response may stay open."""

    # HTTP surface
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=3000, validation_alias="PORT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )

    # Conversations
    history_limit: int = Field(default=20, gt=0, validation_alias="HISTORY_LIMIT")

    def redacted(self) -> dict[str, Any]:
        """Settings as a dict that is safe to log."""
        data = self.model_dump(mode="json")
        return dict(redact_sensitive_data(data) or {})
