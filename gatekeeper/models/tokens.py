"""
Domain models for single-use link tokens and their per-kind payloads.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class TokenKind(str, Enum):
    """Protocol phase a token belongs to."""

    HANDSHAKE = "handshake"
    VERIFICATION = "verification"


class HandshakePayload(BaseModel):
    """Handshake tokens carry nothing beyond their owner."""

    kind: Literal["handshake"] = "handshake"


class VerificationPayload(BaseModel):
    """Billing identity discovered while verifying the claimed email."""

    kind: Literal["verification"] = "verification"
    customer_id: str
    email: str


TokenPayload = Annotated[
    Union[HandshakePayload, VerificationPayload],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[TokenPayload] = TypeAdapter(TokenPayload)


def load_payload(raw: str) -> HandshakePayload | VerificationPayload:
    """Parse a stored JSON payload into its tagged variant."""
    return _payload_adapter.validate_json(raw)


class LinkToken(BaseModel):
    """A persisted token. The raw secret is never part of the record."""

    secret_hash: str
    owner_id: str
    kind: TokenKind
    payload: TokenPayload
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


__all__ = [
    "HandshakePayload",
    "LinkToken",
    "TokenKind",
    "TokenPayload",
    "VerificationPayload",
    "load_payload",
]
