"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the linking protocol and
the webhook reconciler share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class StripeSettings(BaseSettings):
    """Configuration required for interacting with the Stripe API."""

    model_config = SettingsConfigDict(env_prefix="STRIPE_")

    secret_key: str
    webhook_secret: str
    price_id: Optional[str] = Field(
        None,
        description="Subscription price used when sending users to Stripe Checkout.",
    )
    request_timeout_seconds: float = Field(
        10.0,
        gt=0,
        description="Upper bound for any single Stripe API round-trip.",
    )
    webhook_tolerance_seconds: int = Field(
        300,
        description="Maximum accepted age of a signed webhook delivery.",
    )


class CheckoutSettings(BaseSettings):
    """Redirect targets for the hosted Stripe Checkout page."""

    model_config = SettingsConfigDict(env_prefix="CHECKOUT_")

    success_url: Optional[AnyHttpUrl] = None
    cancel_url: Optional[AnyHttpUrl] = None


class LinkSettings(BaseSettings):
    """Token lifetimes and grace periods for the linking flow."""

    model_config = SettingsConfigDict(env_prefix="LINK_")

    handshake_ttl_seconds: int = Field(1800, gt=0)
    verification_ttl_seconds: int = Field(3600, gt=0)
    initial_grace_hours: int = Field(
        48,
        ge=0,
        description="Time allowed between first contact and completed linking.",
    )
    payment_failed_grace_hours: int = Field(
        24,
        ge=0,
        description="Time allowed between a failed payment and access revocation.",
    )


class AWSSettings(BaseSettings):
    """Settings for AWS services used by the platform."""

    model_config = SettingsConfigDict(env_prefix="AWS_")

    region: str = "us-east-1"


class EmailSettings(BaseSettings):
    """Outbound email configuration. Delivery is disabled without a sender."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_")

    sender: Optional[str] = Field(
        None,
        description="Verified SES identity used as the From address.",
    )
    subject: str = "Confirm your subscription link"


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    public_base_url: AnyHttpUrl = Field(
        ...,
        description="Externally reachable base URL used when building link URLs.",
    )
    database_path: str = Field(
        "data/gatekeeper.db",
        description="SQLite database holding accounts and link tokens.",
    )
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    checkout: CheckoutSettings = Field(default_factory=CheckoutSettings)
    link: LinkSettings = Field(default_factory=LinkSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def base_url(self) -> str:
        """Public base URL without a trailing slash."""
        return str(self.public_base_url).rstrip("/")


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "AWSSettings",
    "CheckoutSettings",
    "EmailSettings",
    "LinkSettings",
    "StripeSettings",
    "get_settings",
]
