"""
Configuration settings for the SSE Relay.

Settings are read from ``SSE_RELAY_*`` environment variables or a local
``.env`` file. The bus URL and the token secret have no defaults: the relay
refuses to start without them.
"""
import logging
from typing import List, Literal

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    SSE Relay configuration loaded from environment variables.
    """
    model_config = SettingsConfigDict(
        env_prefix="SSE_RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_name: str = "sse-relay"
    host: str = "0.0.0.0"
    port: int = 5687
    debug: bool = False
    cors_origins: List[str] = ["*"]

    # Bus settings (redis://, rediss://, unix://, nats://, tls://, memory://)
    bus_url: str = Field(..., min_length=1)
    nats_reconnect_time_wait: int = 2  # seconds
    nats_max_reconnect_attempts: int = -1  # -1 = infinite

    # Credential settings
    token_secret: str = Field(..., min_length=1)
    jwt_algorithms: List[str] = ["HS256", "HS384", "HS512"]
    identity_claim: str = "user_id"

    # Stream settings
    stream_topology: Literal["per_user", "broadcast"] = "per_user"
    user_channel_template: str = "events:user:{identity}"
    broadcast_channel: str = "events:broadcast"
    broadcast_retry_interval: float = Field(default=1.0, gt=0)
    stream_queue_size: int = Field(default=10, gt=0)
    stream_ping_interval: int = Field(default=15, gt=0)  # seconds


def load_settings() -> Settings:
    """Load settings, exiting the process if required values are missing."""
    try:
        return Settings()
    except ValidationError as e:
        logger.critical(f"Invalid SSE relay configuration: {e}")
        raise SystemExit(1) from e


# Global settings instance
settings = load_settings()
