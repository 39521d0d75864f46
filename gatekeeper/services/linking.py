"""
Account-linking protocol.

A chat identity proves it controls a paying Stripe customer in two steps:

1. ``start`` issues a short-lived handshake token whose URL the bot shows.
2. ``verify`` spends the handshake token together with a claimed billing
   email. When Stripe knows that email and it has an active subscription, a
   verification token bound to the customer id is emailed to that address.
3. ``finish`` spends the verification token and activates the identity.

``checkout`` is an alternative second step that sends the user to Stripe
Checkout; the ``checkout.session.completed`` webhook then activates them.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from urllib.parse import urlencode

from gatekeeper.clients import SQLiteAccountStore, SQLiteTokenStore, StripeBillingClient
from gatekeeper.core.config import LinkSettings
from gatekeeper.core.errors import (
    AccessDeniedError,
    ConfigurationError,
    InvalidInputError,
    TokenRedemptionError,
)
from gatekeeper.models.accounts import AccountRecord
from gatekeeper.models.tokens import (
    HandshakePayload,
    LinkToken,
    TokenKind,
    VerificationPayload,
)
from gatekeeper.schemas import VerifyOutcome, VerifyResult
from gatekeeper.services.deadline_policy import DeadlinePolicy, Transition
from gatekeeper.services.notifications import LinkNotifier
from gatekeeper.utils.time import Clock, utcnow

logger = logging.getLogger(__name__)

INVALID_LINK_MESSAGE = "Invalid or expired link. Please request a new one from the bot."

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MAX_IDENTITY_LENGTH = 128
_MAX_EMAIL_LENGTH = 254


class LinkingService:
    """Drives the handshake, verification and activation of one identity."""

    def __init__(
        self,
        *,
        accounts: SQLiteAccountStore,
        tokens: SQLiteTokenStore,
        billing: StripeBillingClient,
        notifier: LinkNotifier,
        policy: DeadlinePolicy,
        settings: LinkSettings,
        base_url: str,
        clock: Clock = utcnow,
    ) -> None:
        self._accounts = accounts
        self._tokens = tokens
        self._billing = billing
        self._notifier = notifier
        self._policy = policy
        self._settings = settings
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    @property
    def checkout_available(self) -> bool:
        return self._billing.checkout_configured

    def start(self, external_id: str) -> str:
        """Register the identity (idempotently) and return a fresh handshake URL."""
        external_id = self._clean_identity(external_id)
        deadline = self._policy.deadline_for(Transition.LINK_STARTED, self._clock())
        record = self._accounts.upsert_unlinked(external_id, deadline=deadline)
        secret = self._tokens.issue(
            owner_id=external_id,
            kind=TokenKind.HANDSHAKE,
            payload=HandshakePayload(),
            ttl=timedelta(seconds=self._settings.handshake_ttl_seconds),
        )
        logger.info("Link started for %s (status %s)", external_id, record.status.value)
        return self._url("/api/link", secret)

    def present(self, secret: str) -> LinkToken:
        """Check a handshake link is still usable before asking for an email."""
        token = self._tokens.peek(self._clean_secret(secret), kind=TokenKind.HANDSHAKE)
        if token is None:
            raise AccessDeniedError(INVALID_LINK_MESSAGE)
        return token

    async def verify(self, secret: str, claimed_email: str) -> VerifyResult:
        """Spend the handshake token and look the claimed email up in Stripe.

        The handshake token is consumed before any lookup, so a failed lookup
        cannot be retried with the same link; the user starts over instead.
        """
        email = self._clean_email(claimed_email)
        token = self._redeem(secret, TokenKind.HANDSHAKE)

        customer_ids = await self._billing.find_customer_ids(email)
        if not customer_ids:
            logger.info("No Stripe customer for the email claimed by %s", token.owner_id)
            return VerifyResult(outcome=VerifyOutcome.NO_CUSTOMER)

        customer_id = None
        for candidate in customer_ids:
            if await self._billing.has_active_subscription(candidate):
                customer_id = candidate
                break
        if customer_id is None:
            logger.info("No active subscription for the email claimed by %s", token.owner_id)
            return VerifyResult(outcome=VerifyOutcome.NO_ACTIVE_SUBSCRIPTION)

        ttl_seconds = self._settings.verification_ttl_seconds
        verification_secret = self._tokens.issue(
            owner_id=token.owner_id,
            kind=TokenKind.VERIFICATION,
            payload=VerificationPayload(customer_id=customer_id, email=email),
            ttl=timedelta(seconds=ttl_seconds),
        )
        verification_url = self._url("/api/link/finish", verification_secret)
        await self._notifier.send_verification_link(
            email=email,
            url=verification_url,
            expires_in_minutes=max(1, ttl_seconds // 60),
        )
        return VerifyResult(
            outcome=VerifyOutcome.VERIFIED,
            customer_id=customer_id,
            verification_url=verification_url,
        )

    def finish(self, secret: str) -> AccountRecord:
        """Spend the verification token and activate its owner."""
        token = self._redeem(secret, TokenKind.VERIFICATION)
        payload = token.payload
        if not isinstance(payload, VerificationPayload):
            raise AccessDeniedError(INVALID_LINK_MESSAGE)

        record = self._accounts.activate(token.owner_id, payload.customer_id)
        if record is None:
            logger.error("Verification token redeemed for unknown identity %s", token.owner_id)
            raise AccessDeniedError(INVALID_LINK_MESSAGE)
        logger.info("Linked %s to customer %s", record.external_id, record.billing_ref)
        return record

    async def checkout(self, secret: str) -> str:
        """Spend the handshake token and return a Stripe Checkout URL for its owner."""
        if not self._billing.checkout_configured:
            raise ConfigurationError("Stripe Checkout is not configured.")
        token = self._redeem(secret, TokenKind.HANDSHAKE)
        url = await self._billing.create_checkout_session(external_id=token.owner_id)
        logger.info("Checkout session created for %s", token.owner_id)
        return url

    def _redeem(self, secret: str, kind: TokenKind) -> LinkToken:
        try:
            return self._tokens.redeem(self._clean_secret(secret), kind=kind)
        except TokenRedemptionError as exc:
            # Callers only ever learn "invalid or expired"; the reason stays in the logs.
            logger.info("Rejected %s token: %s", kind.value, exc)
            raise AccessDeniedError(INVALID_LINK_MESSAGE) from exc

    def _url(self, path: str, secret: str) -> str:
        return f"{self._base_url}{path}?{urlencode({'token': secret})}"

    @staticmethod
    def _clean_identity(external_id: str) -> str:
        value = (external_id or "").strip()
        if not value or len(value) > _MAX_IDENTITY_LENGTH:
            raise InvalidInputError("A valid external identity is required.")
        return value

    @staticmethod
    def _clean_email(email: str) -> str:
        value = (email or "").strip()
        if len(value) > _MAX_EMAIL_LENGTH or not _EMAIL_PATTERN.match(value):
            raise InvalidInputError("Please enter a valid email address.")
        return value

    @staticmethod
    def _clean_secret(secret: str) -> str:
        value = (secret or "").strip()
        if not value:
            raise AccessDeniedError(INVALID_LINK_MESSAGE)
        return value


__all__ = ["INVALID_LINK_MESSAGE", "LinkingService"]
