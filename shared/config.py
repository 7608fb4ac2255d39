"""
Shared configuration management for the metered proxy.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias="METER_ENV")
    log_level: str = Field(default="info", validation_alias="METER_LOG_LEVEL")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="METER_REDIS_URL")

    # Listen address
    host: str = Field(default="0.0.0.0", validation_alias="METER_HOST")
    port: int = Field(default=8000, validation_alias="METER_PORT")


class ProxyConfig(BaseConfig):
    """Configuration for the metered completion proxy."""

    service_name: str = "proxy"

    # Upstream completion API (required, startup fails without them)
    upstream_url: str = Field(validation_alias=AliasChoices("METER_UPSTREAM_URL", "OPENAI_URL"))
    upstream_api_key: str = Field(validation_alias=AliasChoices("METER_UPSTREAM_API_KEY", "OPENAI_KEY"))
    upstream_timeout_seconds: float = Field(default=10.0, validation_alias="METER_UPSTREAM_TIMEOUT_SECONDS")

    # Fixed completion payload fields
    completion_model: str = Field(default="gpt-3.5-turbo", validation_alias="METER_COMPLETION_MODEL")
    completion_temperature: float = Field(default=1.0, validation_alias="METER_COMPLETION_TEMPERATURE")
    completion_max_tokens: int = Field(default=100, validation_alias="METER_COMPLETION_MAX_TOKENS")

    # Balance policy
    allow_negative_balance: bool = Field(default=True, validation_alias="METER_ALLOW_NEGATIVE_BALANCE")

    # Render error envelopes with 200 for clients of the original wire format
    legacy_error_status: bool = Field(default=False, validation_alias="METER_LEGACY_ERROR_STATUS")


def get_config(**overrides) -> ProxyConfig:
    """Get configuration for the proxy service.

    Raises ``pydantic.ValidationError`` when a required setting is missing.
    """
    return ProxyConfig(**overrides)


def redact(value: Optional[str]) -> str:
    """Mask a secret for log output, keeping a short prefix."""
    if not value:
        return ""
    if len(value) <= 8:
        return f"{value[:2]}***"
    return f"{value[:4]}..."
