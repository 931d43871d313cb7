"""Configuration management for famtasks."""

from datetime import time

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Document store
    sqlite_db_path: str = Field(default="./famtasks.db", description="SQLite document store file path")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="development", description="Deployment environment reported to Logfire")

    # Redis Configuration (optional)
    redis_url: str | None = Field(
        default=None, description="Redis connection URL for shared scheduler state (e.g., redis://localhost:6379)"
    )

    # Reminder / escalation policy
    reminder_offset_minutes: int = Field(
        default=0, ge=0, description="Minutes before the due date at which the first reminder fires"
    )
    escalation_grace_minutes: int = Field(
        default=30, ge=1, description="Minutes after each missed reminder before escalating one level"
    )
    max_escalation_level: int = Field(default=3, ge=0, description="Highest escalation level a task can reach")
    quiet_hours_start: time | None = Field(
        default=None, description="Local time (default timezone) at which reminders stop firing, e.g. 21:00"
    )
    quiet_hours_end: time | None = Field(default=None, description="Local time at which reminders resume, e.g. 07:00")

    # Tick loop
    reminder_tick_seconds: int = Field(default=60, ge=1, description="Interval between reminder scheduler ticks")
    materialize_tick_seconds: int = Field(default=60, ge=1, description="Interval between recurrence ticks")
    scheduler_family_id: str | None = Field(
        default=None, description="Restrict the scheduling loop to a single family (default: all families)"
    )

    default_timezone: str = Field(default="UTC", description="IANA timezone used for recurring occurrence times")


# Application Constants
class Constants:
    """Application-wide constants."""

    # Recurrence
    DEFAULT_OCCURRENCE_HOUR: int = 8  # 8am when a pattern has no time of day
    UPCOMING_WINDOW_DAYS: int = 7

    # Reminder claims
    REMINDER_CLAIM_TTL_SECONDS: int = 86400 * 14  # Outlives any realistic escalation window
    REMINDER_STATE_TTL_SECONDS: int = 86400 * 2

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100
    TRACKER_TTL_SECONDS: int = 86400 * 7
    JOB_MAX_RETRIES: int = 3

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 500


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
