"""
Centralized configuration management using Pydantic Settings.

Configuration is loaded from environment variables with sensible defaults.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MCPServerConfig(BaseSettings):
    """HTTP transport configuration shared by every MCP server."""

    model_config = SettingsConfigDict(env_prefix="SAAS_MCP_", env_file=".env", extra="ignore")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5000, description="Listen port")
    json_response: bool = Field(
        default=False,
        description="Answer /mcp POSTs with plain JSON instead of an event stream",
    )
    credential_header: str = Field(
        default="x-auth-token",
        description="Request header carrying the per-request API credential",
    )
    sse_path: str = Field(default="/sse", description="Event-stream handshake endpoint")
    message_path: str = Field(default="/messages", description="Event-stream message endpoint")


class AttioConfig(BaseSettings):
    """Attio CRM API configuration."""

    model_config = SettingsConfigDict(env_prefix="ATTIO_", env_file=".env", extra="ignore")

    api_key: Optional[str] = Field(
        default=None,
        description="Process-wide API key; takes precedence over the request header",
    )
    base_url: str = Field(default="https://api.attio.com/v2", description="Attio REST API base URL")
    timeout: float = Field(default=30.0, description="Outbound request timeout in seconds")


class Settings(BaseSettings):
    """Application-wide settings."""

    model_config = SettingsConfigDict(
        env_prefix="SAAS_MCP_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Nested configs
    mcp: MCPServerConfig = Field(default_factory=MCPServerConfig)
    attio: AttioConfig = Field(default_factory=AttioConfig)


# Singleton settings instance
settings = Settings()
