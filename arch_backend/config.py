"""
Configuration and settings for The Arch backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the API service and scheduler."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )
    enable_manual_triggers: bool = Field(
        default=False, env="ENABLE_MANUAL_TRIGGERS"
    )

    # Real-time fan-out (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_channel_prefix: str = Field(
        default="arch:events", env="REDIS_CHANNEL_PREFIX"
    )

    # Expo push notifications
    push_enabled: bool = Field(default=True, env="PUSH_ENABLED")
    expo_push_url: str = Field(
        default="https://exp.host/--/api/v2/push/send", env="EXPO_PUSH_URL"
    )
    expo_access_token: Optional[str] = Field(default=None, env="EXPO_ACCESS_TOKEN")

    # S3-compatible media storage
    media_bucket: Optional[str] = Field(default=None, env="MEDIA_BUCKET")
    media_endpoint: Optional[str] = Field(default=None, env="MEDIA_ENDPOINT")
    media_region: Optional[str] = Field(default=None, env="MEDIA_REGION")
    aws_access_key_id: Optional[str] = Field(default=None, env="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Auth
    session_ttl_minutes: int = Field(
        default=60 * 24 * 30, env="SESSION_TTL_MINUTES"
    )

    # Scheduler (wall-clock times in scheduler_timezone)
    scheduler_timezone: str = Field(
        default="America/New_York", env="SCHEDULER_TIMEZONE"
    )
    question_send_time: str = Field(default="06:00", env="QUESTION_SEND_TIME")
    response_processing_time: str = Field(
        default="17:00", env="RESPONSE_PROCESSING_TIME"
    )
    reminder_time: str = Field(default="15:00", env="REMINDER_TIME")
    reminder_window_minutes: int = Field(default=180, env="REMINDER_WINDOW_MINUTES")
    cleanup_time: str = Field(default="03:00", env="CLEANUP_TIME")
    event_completion_grace_hours: int = Field(
        default=24, env="EVENT_COMPLETION_GRACE_HOURS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
