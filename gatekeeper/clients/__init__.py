"""Expose constructed client wrappers."""

from .account_store import SQLiteAccountStore
from .ses_mailer import SESMailer
from .stripe_billing import StripeBillingClient
from .token_store import SQLiteTokenStore

__all__ = [
    "SESMailer",
    "SQLiteAccountStore",
    "SQLiteTokenStore",
    "StripeBillingClient",
]
