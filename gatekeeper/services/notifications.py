"""Best-effort delivery of verification links to the claimed billing email."""

from __future__ import annotations

import asyncio
import html
import logging

from botocore.exceptions import BotoCoreError, ClientError

from gatekeeper.clients import SESMailer
from gatekeeper.core.config import EmailSettings

logger = logging.getLogger(__name__)


class LinkNotifier:
    """Email a verification URL; failures never undo the token that produced it."""

    def __init__(self, mailer: SESMailer | None, settings: EmailSettings) -> None:
        self._mailer = mailer
        self._settings = settings

    async def send_verification_link(
        self, *, email: str, url: str, expires_in_minutes: int
    ) -> bool:
        """Return whether the message was handed to the mail provider."""
        if self._mailer is None:
            logger.info("Email delivery disabled; verification link not sent")
            return False

        text = (
            "Confirm that this billing account belongs to you by opening the link "
            f"below. It expires in {expires_in_minutes} minutes and works once.\n\n{url}\n"
        )
        body = (
            "<p>Confirm that this billing account belongs to you by opening the link "
            f"below. It expires in {expires_in_minutes} minutes and works once.</p>"
            f'<p><a href="{html.escape(url, quote=True)}">Confirm subscription link</a></p>'
        )
        try:
            message_id = await asyncio.to_thread(
                self._mailer.send,
                to_address=email,
                subject=self._settings.subject,
                text=text,
                html=body,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Verification email delivery failed: %s", exc)
            return False

        logger.info("Verification email queued (message id %s)", message_id)
        return True


__all__ = ["LinkNotifier"]
