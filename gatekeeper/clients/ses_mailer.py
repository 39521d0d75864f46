"""
Amazon SES client wrapper for delivering link emails.
"""

from __future__ import annotations

import boto3

from gatekeeper.core.config import AWSSettings, EmailSettings


class SESMailer:
    """Send plain transactional emails through SES."""

    def __init__(self, aws_settings: AWSSettings, email_settings: EmailSettings) -> None:
        if not email_settings.sender:
            raise ValueError("An EMAIL_SENDER identity is required to send email.")
        self._sender = email_settings.sender
        self._client = boto3.client("ses", region_name=aws_settings.region)

    def send(self, *, to_address: str, subject: str, text: str, html: str) -> str:
        """Send a message and return the SES message id."""
        response = self._client.send_email(
            Source=self._sender,
            Destination={"ToAddresses": [to_address]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": text, "Charset": "UTF-8"},
                    "Html": {"Data": html, "Charset": "UTF-8"},
                },
            },
        )
        return response["MessageId"]


__all__ = ["SESMailer"]
