"""Messaging gateway connection settings.

The gateway exposes a single message endpoint that accepts both rich
(template) and plain (text) messages. Credentials are kept as ``SecretStr``
so they never end up in logs or ``config show`` output.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_yaml_source


class GatewaySettings(BaseSettings):
    """Configuration for the upstream messaging gateway.

    Environment variables use GATEWAY_ prefix.
    Example: GATEWAY_BASE_URL=https://api.gateway.example, GATEWAY_API_KEY=...
    """

    base_url: str = Field(
        default="https://api.gupshup.io/wa/api/v1",
        description="Base URL of the messaging gateway API",
    )
    message_path: str = Field(
        default="/msg",
        pattern=r"^/.*$",
        description="Path of the send-message endpoint",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Gateway API key, sent in the `apikey` header",
    )

    # Rich channel identity
    rich_source_number: str = Field(
        default="",
        description="Registered sender number for the rich channel",
    )
    rich_business_account: str = Field(
        default="",
        description="Business account / app name for the rich channel",
    )

    # Plain channel identity
    plain_sender_id: str = Field(
        default="ARTSN",
        min_length=1,
        max_length=11,
        description="Sender id used for plain text messages",
    )
    plain_route: str = Field(
        default="transactional",
        description="Gateway route for plain text messages",
    )

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Total timeout for a single gateway request (seconds)",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Connection timeout for a single gateway request (seconds)",
    )

    # Inbound status callbacks
    webhook_secret: SecretStr | None = Field(
        default=None,
        description="Shared secret for HMAC-SHA256 webhook signatures; None disables verification",
    )
    signature_tolerance_seconds: int = Field(
        default=300,
        ge=0,
        le=3600,
        description="Maximum accepted age of a signed webhook timestamp (0 disables the check)",
    )

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
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
            create_yaml_source(settings_cls, "gateway"),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @property
    def is_configured(self) -> bool:
        """Check whether credentials are present."""
        return self.api_key is not None and bool(self.api_key.get_secret_value())
