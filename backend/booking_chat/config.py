from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime settings for the real-time chat service.

    Values are read from ``CHAT_*`` environment variables (or a local ``.env``).
    All durations are in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Booking Chat Realtime API"
    log_level: str = "INFO"
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Connections older than this are dropped by the reaper
    stale_connection_max_age: float = Field(default=300.0, gt=0)
    stale_reap_interval: float = Field(default=60.0, gt=0)

    keepalive_interval: float = Field(default=30.0, gt=0)
    stream_queue_size: int = Field(default=100, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()
