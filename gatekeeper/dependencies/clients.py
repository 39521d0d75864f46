"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

import logging
from functools import lru_cache

from botocore.exceptions import BotoCoreError

from gatekeeper.clients import (
    SESMailer,
    SQLiteAccountStore,
    SQLiteTokenStore,
    StripeBillingClient,
)
from gatekeeper.dependencies.config import get_app_settings
from gatekeeper.services import (
    DeadlinePolicy,
    LinkingService,
    LinkNotifier,
    WebhookReconciler,
)

logger = logging.getLogger(__name__)


def _settings():
    return get_app_settings()


@lru_cache()
def get_account_store() -> SQLiteAccountStore:
    """Provide the shared account state store."""
    return SQLiteAccountStore(_settings().database_path)


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    """Provide the shared link token store."""
    return SQLiteTokenStore(_settings().database_path)


@lru_cache()
def get_billing_client() -> StripeBillingClient:
    """Create a singleton Stripe client."""
    settings = _settings()
    return StripeBillingClient(settings.stripe, settings.checkout)


@lru_cache()
def get_mailer() -> SESMailer | None:
    """Provide an SES mailer when a sender identity is configured."""
    settings = _settings()
    if not settings.email.sender:
        return None
    try:
        return SESMailer(settings.aws, settings.email)
    except BotoCoreError as exc:
        logger.warning("SES client unavailable; verification email disabled: %s", exc)
        return None


@lru_cache()
def get_deadline_policy() -> DeadlinePolicy:
    """Provide grace periods derived from configuration."""
    return DeadlinePolicy.from_settings(_settings().link)


def get_link_notifier() -> LinkNotifier:
    """Build the best-effort email notifier."""
    return LinkNotifier(get_mailer(), _settings().email)


def get_linking_service() -> LinkingService:
    """Build the account-linking protocol service."""
    settings = _settings()
    return LinkingService(
        accounts=get_account_store(),
        tokens=get_token_store(),
        billing=get_billing_client(),
        notifier=get_link_notifier(),
        policy=get_deadline_policy(),
        settings=settings.link,
        base_url=settings.base_url,
    )


def get_webhook_reconciler() -> WebhookReconciler:
    """Build the webhook reconciler."""
    return WebhookReconciler(
        accounts=get_account_store(),
        policy=get_deadline_policy(),
    )


__all__ = [
    "get_account_store",
    "get_billing_client",
    "get_deadline_policy",
    "get_link_notifier",
    "get_linking_service",
    "get_mailer",
    "get_token_store",
    "get_webhook_reconciler",
]
