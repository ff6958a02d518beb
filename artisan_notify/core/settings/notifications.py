"""Notification engine settings: rate limits, retry, fallback, batching and retention."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_yaml_source

RateLimitBackend = Literal["memory", "redis"]


class NotificationSettings(BaseSettings):
    """Configuration for the notification delivery engine.

    Environment variables use NOTIFY_ prefix.
    Example: NOTIFY_RICH_RATE_LIMIT=40, NOTIFY_ENABLE_AUTO_FALLBACK=false
    """

    # Rate limiting (tokens per one-second window)
    rich_rate_limit: int = Field(
        default=80, ge=1, le=10_000, description="Rich channel sends per second",
    )
    plain_rate_limit: int = Field(
        default=100, ge=1, le=10_000, description="Plain channel sends per second",
    )
    daily_limit: int = Field(
        default=0,
        ge=0,
        description="Total sends per UTC day across channels (0 disables the daily quota)",
    )
    rate_limit_backend: RateLimitBackend = Field(
        default="memory",
        description="Where rate-limit counters live: memory (single process) or redis",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used when rate_limit_backend is redis",
    )
    redis_key_prefix: str = Field(
        default="notify:ratelimit",
        description="Key prefix for Redis rate-limit counters",
    )

    # Retry policy applied to each gateway call
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries per channel attempt")
    base_delay: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Initial backoff delay (seconds)",
    )
    max_delay: float = Field(
        default=30.0, ge=0.0, le=600.0, description="Backoff delay cap (seconds)",
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, le=10.0, description="Exponential backoff multiplier",
    )
    jitter: bool = Field(default=False, description="Randomize backoff delays")

    # Fallback
    max_fallback_attempts: int = Field(
        default=2, ge=0, le=10, description="Channel switches allowed per message",
    )
    enable_auto_fallback: bool = Field(
        default=True, description="Allow automatic channel fallback",
    )
    default_fallback_delay: float = Field(
        default=1.0, ge=0.0, le=300.0, description="Delay used by rules without an explicit delay",
    )
    rate_limit_fallback_delay: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="Delay before the first attempt on a new channel after a rate-limit failure",
    )
    fallback_rules: list[dict[str, Any]] = Field(
        default_factory=list,
        description=(
            "Extra fallback rules (JSON list); each replaces the built-in rule "
            "for the same code or category. "
            'Example: [{"code": "USER_BLOCKED", "should_fallback": false}]'
        ),
    )
    fallback_log_size: int = Field(
        default=1000, ge=10, le=100_000, description="Fallback decisions kept in memory",
    )

    # Templates
    templates_file: Path | None = Field(
        default=None,
        description=(
            "YAML file of message templates. When unset, rich templates are sent "
            "to the gateway without local checks and plain fallback needs message text"
        ),
    )

    # Batch dispatch and dead letters
    batch_max_size: int = Field(
        default=100, ge=1, le=1000, description="Notifications accepted per batch request",
    )
    batch_concurrency: int = Field(
        default=10, ge=1, le=100, description="Sends in flight at once during a batch",
    )
    dead_letter_size: int = Field(
        default=1000,
        ge=10,
        le=100_000,
        description="Terminally failed notifications kept for requeue",
    )

    # Tracking and retention
    orphan_buffer_size: int = Field(
        default=500, ge=10, le=100_000, description="Unmatched webhook events kept for diagnostics",
    )
    retention_seconds: int = Field(
        default=7 * 24 * 3600,
        ge=60,
        description="Age after which delivery records and fallback entries are pruned",
    )
    sweep_interval_seconds: float = Field(
        default=300.0, gt=0, description="Interval between retention sweeps",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> NotificationSettings:
        """Ensure the backoff cap is not below the initial delay."""
        if self.max_delay < self.base_delay:
            msg = "max_delay must be greater than or equal to base_delay"
            raise ValueError(msg)
        return self

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings,
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_yaml_source(settings_cls, "notifications"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @property
    def channel_capacities(self) -> dict[str, int]:
        """Per-channel bucket capacities keyed by channel name."""
        return {"rich": self.rich_rate_limit, "plain": self.plain_rate_limit}
