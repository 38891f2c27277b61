"""
Configuration management for the task market service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_jws_path: str
    timeout_seconds: int


class PlatformConfig(BaseModel):
    """Platform agent configuration for admin actions and payout signing."""

    model_config = ConfigDict(extra="forbid")
    agent_id: str
    private_key_path: str | None = None


class PaymentGatewayConfig(BaseModel):
    """Payment gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    checkout_path: str
    agent_id: str
    timeout_seconds: int


class PayoutGatewayConfig(BaseModel):
    """Payout gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    payout_path: str
    timeout_seconds: int


class NotificationsConfig(BaseModel):
    """Notification service connection and throttling configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    send_path: str
    timeout_seconds: int
    progress_throttle_seconds: int = Field(ge=0)


class FeesConfig(BaseModel):
    """Fee schedule applied to checkouts and payouts."""

    model_config = ConfigDict(extra="forbid")
    service_fee: Decimal = Field(ge=0)
    default_platform_fee_percent: Decimal = Field(ge=0, le=100)
    currency: str


class PaymentsConfig(BaseModel):
    """Checkout and reconciliation behaviour."""

    model_config = ConfigDict(extra="forbid")
    checkout_on_accept: bool
    reconcile_backoff_seconds: list[float]
    return_url_template: str
    cancel_url_template: str


class StreamsConfig(BaseModel):
    """Bid stream (server-sent events) configuration."""

    model_config = ConfigDict(extra="forbid")
    max_queue_size: int = Field(gt=0)
    keepalive_interval_seconds: float = Field(gt=0)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class LimitsConfig(BaseModel):
    """Text field length limits."""

    model_config = ConfigDict(extra="forbid")
    max_title_length: int
    max_description_length: int
    max_message_length: int
    max_comment_length: int
    max_image_url_length: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    platform: PlatformConfig
    payment_gateway: PaymentGatewayConfig
    payout_gateway: PayoutGatewayConfig
    notifications: NotificationsConfig
    fees: FeesConfig
    payments: PaymentsConfig
    streams: StreamsConfig
    request: RequestConfig
    limits: LimitsConfig


def get_config_path() -> Path:
    """Determine configuration file path from CONFIG_PATH or the working directory."""
    configured = os.environ.get("CONFIG_PATH")
    if configured:
        return Path(configured)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and validate settings from the YAML config file.

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the file does not contain a YAML mapping
        pydantic.ValidationError: If any section is missing or malformed
    """
    config_path = get_config_path()
    with config_path.open(encoding="utf-8") as config_file:
        raw = yaml.safe_load(config_file)
    if not isinstance(raw, dict):
        msg = f"Configuration file {config_path} must contain a mapping"
        raise ValueError(msg)
    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Drop cached settings so the next call reloads from disk."""
    get_settings.cache_clear()
