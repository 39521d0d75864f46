"""
Stripe client wrapper for customer lookup, checkout and webhook verification.

Every API call goes through an httpx transport with a bounded timeout and no
SDK-level retries; callers decide whether to start over.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from gatekeeper.core.config import CheckoutSettings, StripeSettings
from gatekeeper.core.errors import (
    BillingProviderError,
    ConfigurationError,
    InvalidInputError,
    SignatureInvalidError,
)

logger = logging.getLogger(__name__)


class StripeBillingClient:
    """Thin async facade over the parts of Stripe this service consumes."""

    def __init__(
        self,
        settings: StripeSettings,
        checkout_settings: CheckoutSettings,
        *,
        client: stripe.StripeClient | None = None,
    ) -> None:
        self._settings = settings
        self._checkout = checkout_settings
        self._client = client or stripe.StripeClient(
            settings.secret_key,
            http_client=stripe.HTTPXClient(timeout=settings.request_timeout_seconds),
            max_network_retries=0,
        )

    async def find_customer_ids(self, email: str) -> List[str]:
        """Return ids of all customers registered under ``email``.

        Stripe's email filter is an exact, case-sensitive match, so the address
        is looked up both as typed and lowercased.
        """
        customer_ids: List[str] = []
        for candidate in dict.fromkeys((email, email.lower())):
            try:
                customers = await self._client.customers.list_async(
                    params={"email": candidate, "limit": 10}
                )
            except stripe.StripeError as exc:
                logger.error("Stripe customer lookup failed: %s", exc)
                raise BillingProviderError("Customer lookup failed.") from exc
            customer_ids.extend(
                customer.id for customer in customers.data if customer.id not in customer_ids
            )
        return customer_ids

    async def has_active_subscription(self, customer_id: str) -> bool:
        try:
            subscriptions = await self._client.subscriptions.list_async(
                params={"customer": customer_id, "status": "active", "limit": 1}
            )
        except stripe.StripeError as exc:
            logger.error(
                "Stripe subscription lookup failed for %s: %s", customer_id, exc
            )
            raise BillingProviderError("Subscription lookup failed.") from exc
        return bool(subscriptions.data)

    @property
    def checkout_configured(self) -> bool:
        return bool(
            self._settings.price_id
            and self._checkout.success_url
            and self._checkout.cancel_url
        )

    async def create_checkout_session(self, *, external_id: str) -> str:
        """Start a subscription checkout that reports ``external_id`` back via webhook."""
        if not self.checkout_configured:
            raise ConfigurationError("Stripe Checkout is not configured.")

        try:
            session = await self._client.checkout.sessions.create_async(
                params={
                    "mode": "subscription",
                    "line_items": [{"price": self._settings.price_id, "quantity": 1}],
                    "success_url": str(self._checkout.success_url),
                    "cancel_url": str(self._checkout.cancel_url),
                    "client_reference_id": external_id,
                    "metadata": {"external_id": external_id},
                    "subscription_data": {"metadata": {"external_id": external_id}},
                }
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session creation failed: %s", exc)
            raise BillingProviderError("Checkout session creation failed.") from exc

        if not session.url:
            raise BillingProviderError("Stripe returned a checkout session without a URL.")
        return session.url

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Authenticate a webhook delivery and only then parse its body."""
        if not signature:
            raise SignatureInvalidError("Missing Stripe-Signature header.")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalidError("Webhook body is not valid UTF-8.") from exc

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self._settings.webhook_secret,
                self._settings.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalidError("Invalid Stripe signature.") from exc

        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            raise InvalidInputError("Webhook body is not valid JSON.") from exc
        if not isinstance(event, dict):
            raise InvalidInputError("Webhook body is not a JSON object.")
        return event


__all__ = ["StripeBillingClient"]
