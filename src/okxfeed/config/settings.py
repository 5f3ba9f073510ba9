"""
Configuration settings for the okxfeed market-data client.

Uses pydantic-settings for environment variable management with nested models
for the exchange endpoints, the streaming connection policy and logging.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_HEARTBEAT_GRACE,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    OKX_REST_BASE_URL,
    OKX_WS_BUSINESS_URL,
    OKX_WS_PUBLIC_URL,
)


class OKXSettings(BaseSettings):
    """Exchange endpoint configuration."""

    ws_public_url: str = Field(
        default=OKX_WS_PUBLIC_URL, description="WebSocket endpoint for public channels"
    )
    ws_business_url: str = Field(
        default=OKX_WS_BUSINESS_URL,
        description="WebSocket endpoint for business channels (index/mark-price candles)",
    )
    rest_base_url: str = Field(default=OKX_REST_BASE_URL, description="REST API base URL")
    rest_timeout: float = Field(default=30.0, description="REST request timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="OKX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("ws_public_url", "ws_business_url")
    @classmethod
    def _require_websocket_scheme(cls, value: str) -> str:
        if not value.startswith(("ws://", "wss://")):
            raise ValueError(f"WebSocket URL must use ws:// or wss://, got {value!r}")
        return value


class StreamSettings(BaseSettings):
    """Connection lifecycle policy for the streaming client."""

    max_reconnect_attempts: int = Field(
        default=DEFAULT_MAX_RECONNECT_ATTEMPTS,
        ge=0,
        description="Reconnect attempts before giving up",
    )
    reconnect_base_delay: float = Field(
        default=DEFAULT_RECONNECT_BASE_DELAY,
        ge=0,
        description="Delay before the first reconnect attempt, doubled per attempt",
    )
    reconnect_max_delay: float = Field(
        default=DEFAULT_RECONNECT_MAX_DELAY, ge=0, description="Upper bound for backoff delay"
    )
    heartbeat_interval: float = Field(
        default=DEFAULT_HEARTBEAT_INTERVAL,
        gt=0,
        description="Idle seconds before a ping is sent",
    )
    heartbeat_grace: float = Field(
        default=DEFAULT_HEARTBEAT_GRACE,
        ge=0,
        description="Seconds to wait for any frame after a ping before flagging staleness",
    )
    open_timeout: float = Field(default=10.0, gt=0, description="Socket open timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="STREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="pretty", description="Log renderer: json or pretty")
    file_path: Optional[str] = Field(
        default=None, description="Optional log file path"
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """
    Main settings class combining all configuration domains.

    Loads configuration from environment variables and .env file.
    """

    okx: OKXSettings = Field(default_factory=OKXSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Process-wide Settings instance
    """
    return Settings()
