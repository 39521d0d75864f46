"""
Typed views of the Stripe webhook events the reconciler acts on.

Raw events are loosely-typed JSON; each handled ``type`` is parsed into its own
model so downstream code never digs through ``data.object`` again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel

from gatekeeper.core.errors import InvalidInputError
from gatekeeper.utils.time import from_unix

logger = logging.getLogger(__name__)


class _BillingEventBase(BaseModel):
    event_id: str
    billing_ref: str
    occurred_at: datetime


class PaymentFailed(_BillingEventBase):
    type: Literal["invoice.payment_failed"] = "invoice.payment_failed"


class PaymentSucceeded(_BillingEventBase):
    type: Literal["invoice.payment_succeeded"] = "invoice.payment_succeeded"


class SubscriptionEnded(_BillingEventBase):
    type: Literal["customer.subscription.deleted"] = "customer.subscription.deleted"
    ended_at: Optional[datetime] = None


class CheckoutCompleted(_BillingEventBase):
    type: Literal["checkout.session.completed"] = "checkout.session.completed"
    external_id: Optional[str] = None


BillingEvent = Union[PaymentFailed, PaymentSucceeded, SubscriptionEnded, CheckoutCompleted]


def _customer_id(obj: Dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    return customer or None


def _subscription_end(obj: Dict[str, Any]) -> Optional[datetime]:
    """Provider-reported end of service for a deleted subscription."""
    candidates = [obj.get("ended_at"), obj.get("current_period_end")]
    # Newer API versions report the billing period per subscription item.
    items = (obj.get("items") or {}).get("data") or []
    candidates.extend(item.get("current_period_end") for item in items)
    candidates.append(obj.get("canceled_at"))
    for value in candidates:
        if value:
            return from_unix(value)
    return None


def parse_billing_event(event: Dict[str, Any]) -> Optional[BillingEvent]:
    """Return the typed event, or ``None`` for events this service ignores."""
    event_type = event.get("type")
    event_id = event.get("id") or "unknown"
    obj = (event.get("data") or {}).get("object") or {}
    created = event.get("created")
    if not event_type or not isinstance(obj, dict):
        raise InvalidInputError("Webhook event is missing its type or object.")
    if event_type not in {
        "invoice.payment_failed",
        "invoice.payment_succeeded",
        "customer.subscription.deleted",
        "checkout.session.completed",
    }:
        return None
    if not isinstance(created, (int, float)):
        raise InvalidInputError("Webhook event is missing its creation time.")

    billing_ref = _customer_id(obj)
    if not billing_ref:
        logger.info("Ignoring %s event %s without a customer", event_type, event_id)
        return None

    common = {
        "event_id": event_id,
        "billing_ref": billing_ref,
        "occurred_at": from_unix(created),
    }
    if event_type == "invoice.payment_failed":
        return PaymentFailed(**common)
    if event_type == "invoice.payment_succeeded":
        return PaymentSucceeded(**common)
    if event_type == "customer.subscription.deleted":
        return SubscriptionEnded(ended_at=_subscription_end(obj), **common)

    if obj.get("mode") not in (None, "subscription"):
        logger.info("Ignoring %s checkout session %s", obj.get("mode"), event_id)
        return None
    metadata = obj.get("metadata") or {}
    external_id = (
        metadata.get("external_id")
        or metadata.get("discord_id")
        or obj.get("client_reference_id")
    )
    return CheckoutCompleted(external_id=external_id or None, **common)


__all__ = [
    "BillingEvent",
    "CheckoutCompleted",
    "PaymentFailed",
    "PaymentSucceeded",
    "SubscriptionEnded",
    "parse_billing_event",
]
