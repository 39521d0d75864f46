"""Public schema exports."""

from .billing_events import (
    BillingEvent,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionEnded,
    parse_billing_event,
)
from .linking import LinkStartRequest, LinkStartResponse, VerifyOutcome, VerifyResult

__all__ = [
    "BillingEvent",
    "CheckoutCompleted",
    "LinkStartRequest",
    "LinkStartResponse",
    "PaymentFailed",
    "PaymentSucceeded",
    "SubscriptionEnded",
    "VerifyOutcome",
    "VerifyResult",
    "parse_billing_event",
]
