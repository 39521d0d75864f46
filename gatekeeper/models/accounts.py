"""
Domain models for linked account state.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AccountStatus(str, Enum):
    """Access level of an external identity as seen by the enforcement job."""

    UNLINKED = "unlinked"
    ACTIVE = "active"
    PAYMENT_ISSUE = "payment_issue"


class AccountRecord(BaseModel):
    """Represents one row of the ``accounts`` table."""

    external_id: str = Field(..., description="Chat-platform identity, immutable.")
    billing_ref: Optional[str] = Field(
        None, description="Stripe customer id once the identity is linked."
    )
    status: AccountStatus = AccountStatus.UNLINKED
    deadline: Optional[datetime] = Field(
        None,
        description="Instant after which an unlinked or payment_issue record loses access.",
    )
    issue_since: Optional[datetime] = Field(
        None,
        description="Billing event time that opened the current payment issue.",
    )
    last_paid_at: Optional[datetime] = Field(
        None,
        description="Billing event time of the latest successful payment.",
    )
    created_at: datetime
    updated_at: datetime


__all__ = ["AccountRecord", "AccountStatus"]
