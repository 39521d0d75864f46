"""
Apply Stripe webhook events to account state.

Events arrive without ordering guarantees relative to each other or to the
linking flow. Each transition writes values derived only from the event
itself, so a redelivered event leaves the record exactly as it was.
"""

from __future__ import annotations

import logging
from typing import Optional

from gatekeeper.clients import SQLiteAccountStore
from gatekeeper.models.accounts import AccountRecord
from gatekeeper.schemas import (
    BillingEvent,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionEnded,
)
from gatekeeper.services.deadline_policy import DeadlinePolicy, Transition

logger = logging.getLogger(__name__)


class WebhookReconciler:
    """Transitions account records keyed by billing reference."""

    def __init__(self, *, accounts: SQLiteAccountStore, policy: DeadlinePolicy) -> None:
        self._accounts = accounts
        self._policy = policy

    def apply(self, event: BillingEvent) -> Optional[AccountRecord]:
        """Apply one verified event; returns the updated record, if any.

        Events for customers no identity has linked yet are accepted and
        ignored.
        """
        if isinstance(event, PaymentFailed):
            deadline = self._policy.deadline_for(Transition.PAYMENT_FAILED, event.occurred_at)
            record = self._accounts.mark_payment_failed(
                event.billing_ref, deadline=deadline, occurred_at=event.occurred_at
            )
        elif isinstance(event, SubscriptionEnded):
            deadline = self._policy.deadline_for(
                Transition.SUBSCRIPTION_ENDED,
                event.occurred_at,
                provider_deadline=event.ended_at,
            )
            record = self._accounts.mark_subscription_ended(
                event.billing_ref, deadline=deadline, occurred_at=event.occurred_at
            )
        elif isinstance(event, PaymentSucceeded):
            record = self._accounts.restore_active(
                event.billing_ref, occurred_at=event.occurred_at
            )
        elif isinstance(event, CheckoutCompleted):
            record = self._apply_checkout(event)
        else:
            raise TypeError(f"Unsupported billing event: {type(event).__name__}")

        if record is None:
            logger.info(
                "No linked account for %s event %s; ignoring",
                event.type,
                event.event_id,
            )
        else:
            logger.info(
                "Applied %s to %s: status=%s deadline=%s",
                event.type,
                record.external_id,
                record.status.value,
                record.deadline.isoformat() if record.deadline else None,
            )
        return record

    def _apply_checkout(self, event: CheckoutCompleted) -> Optional[AccountRecord]:
        # Activation is keyed on the identity carried by the session, never on
        # the customer id alone.
        if not event.external_id:
            return None
        return self._accounts.activate(event.external_id, event.billing_ref)


__all__ = ["WebhookReconciler"]
