"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_account_store,
    get_billing_client,
    get_deadline_policy,
    get_link_notifier,
    get_linking_service,
    get_mailer,
    get_token_store,
    get_webhook_reconciler,
)
from .config import get_app_settings

__all__ = [
    "get_account_store",
    "get_app_settings",
    "get_billing_client",
    "get_deadline_policy",
    "get_link_notifier",
    "get_linking_service",
    "get_mailer",
    "get_token_store",
    "get_webhook_reconciler",
]
