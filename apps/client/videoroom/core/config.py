"""Application configuration for the video room client."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    backend_url: str = Field(default="http://localhost:8000")
    livekit_url: str = Field(default="wss://viken.stream:7880")
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    remote_surface_count: int = Field(default=4, ge=1)
    local_video_discovery_attempts: int = Field(default=5, ge=1)
    local_video_discovery_interval_ms: int = Field(default=500, ge=0)

    mirror_local_video: bool = Field(default=True)
    mirror_remote_video: bool = Field(default=False)

    video_width: int = Field(default=1280, ge=16)
    video_height: int = Field(default=720, ge=16)

    notice_history_size: int = Field(default=50, ge=1)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        """Allow comma-separated env values for CORS origins."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
