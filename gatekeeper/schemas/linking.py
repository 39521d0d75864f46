"""Schemas for the account-linking endpoints."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class LinkStartRequest(BaseModel):
    """Payload sent by the chat bot to request a link for one of its users."""

    external_id: str = Field(
        ...,
        validation_alias=AliasChoices("external_id", "discordId", "discord_id"),
        description="Chat-platform identity requesting the link.",
    )


class LinkStartResponse(BaseModel):
    url: str = Field(..., description="Single-use link the bot shows to the user.")


class VerifyOutcome(str, Enum):
    NO_CUSTOMER = "not-found"
    NO_ACTIVE_SUBSCRIPTION = "no-subscription"
    VERIFIED = "verified"


class VerifyResult(BaseModel):
    """Outcome of presenting a claimed billing email for a handshake token."""

    outcome: VerifyOutcome
    customer_id: Optional[str] = None
    verification_url: Optional[str] = None


__all__ = [
    "LinkStartRequest",
    "LinkStartResponse",
    "VerifyOutcome",
    "VerifyResult",
]
