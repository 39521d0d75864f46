"""
Access-revocation deadlines for every state transition.

The enforcement job outside this service only reads ``status`` and
``deadline``; all grace periods that feed it are decided here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from gatekeeper.core.config import LinkSettings


class Transition(str, Enum):
    LINK_STARTED = "link_started"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_ENDED = "subscription_ended"
    ACTIVATED = "activated"


@dataclass(frozen=True)
class DeadlinePolicy:
    """Pure mapping from a transition and its instant to a deadline."""

    initial_grace: timedelta = timedelta(hours=48)
    payment_failed_grace: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls, settings: LinkSettings) -> "DeadlinePolicy":
        return cls(
            initial_grace=timedelta(hours=settings.initial_grace_hours),
            payment_failed_grace=timedelta(hours=settings.payment_failed_grace_hours),
        )

    def deadline_for(
        self,
        transition: Transition,
        at: datetime,
        provider_deadline: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Return the revocation instant, or ``None`` when access is unconditional.

        ``at`` is when the transition happened (event creation time for
        webhooks). A provider-reported end of service always wins over a
        locally computed one.
        """
        if transition is Transition.ACTIVATED:
            return None
        if transition is Transition.LINK_STARTED:
            return at + self.initial_grace
        if transition is Transition.PAYMENT_FAILED:
            return at + self.payment_failed_grace
        if transition is Transition.SUBSCRIPTION_ENDED:
            return provider_deadline or at
        raise ValueError(f"Unsupported transition: {transition!r}")


__all__ = ["DeadlinePolicy", "Transition"]
