try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timezone

import pytest

from gatekeeper.core.errors import InvalidInputError
from gatekeeper.schemas import (
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionEnded,
    parse_billing_event,
)

CREATED = 1_772_366_400  # 2026-03-01T12:00:00Z


def _event(event_type: str, obj: dict) -> dict:
    return {
        "id": "evt_1",
        "type": event_type,
        "created": CREATED,
        "data": {"object": obj},
    }


def test_payment_failed() -> None:
    event = parse_billing_event(_event("invoice.payment_failed", {"customer": "cus_123"}))

    assert isinstance(event, PaymentFailed)
    assert event.billing_ref == "cus_123"
    assert event.occurred_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_payment_succeeded_with_expanded_customer() -> None:
    event = parse_billing_event(
        _event("invoice.payment_succeeded", {"customer": {"id": "cus_123"}})
    )

    assert isinstance(event, PaymentSucceeded)
    assert event.billing_ref == "cus_123"


def test_subscription_deleted_prefers_provider_end() -> None:
    event = parse_billing_event(
        _event(
            "customer.subscription.deleted",
            {"customer": "cus_123", "ended_at": CREATED + 60, "canceled_at": CREATED - 60},
        )
    )

    assert isinstance(event, SubscriptionEnded)
    assert event.ended_at == datetime(2026, 3, 1, 12, 1, tzinfo=timezone.utc)


def test_subscription_deleted_reads_item_period_end() -> None:
    event = parse_billing_event(
        _event(
            "customer.subscription.deleted",
            {"customer": "cus_123", "items": {"data": [{"current_period_end": CREATED + 3600}]}},
        )
    )

    assert event.ended_at == datetime(2026, 3, 1, 13, 0, tzinfo=timezone.utc)


def test_checkout_completed_identity_sources() -> None:
    from_metadata = parse_billing_event(
        _event(
            "checkout.session.completed",
            {"customer": "cus_1", "mode": "subscription", "metadata": {"external_id": "u1"}},
        )
    )
    from_legacy_metadata = parse_billing_event(
        _event("checkout.session.completed", {"customer": "cus_1", "metadata": {"discord_id": "u2"}})
    )
    from_reference = parse_billing_event(
        _event("checkout.session.completed", {"customer": "cus_1", "client_reference_id": "u3"})
    )
    anonymous = parse_billing_event(_event("checkout.session.completed", {"customer": "cus_1"}))

    assert isinstance(from_metadata, CheckoutCompleted)
    assert from_metadata.external_id == "u1"
    assert from_legacy_metadata.external_id == "u2"
    assert from_reference.external_id == "u3"
    assert anonymous.external_id is None


def test_one_off_payment_checkout_is_ignored() -> None:
    event = _event(
        "checkout.session.completed",
        {"customer": "cus_1", "mode": "payment", "metadata": {"external_id": "u1"}},
    )

    assert parse_billing_event(event) is None


@pytest.mark.parametrize(
    "raw",
    [
        _event("customer.created", {"id": "cus_1"}),
        _event("invoice.payment_failed", {"customer": None}),
    ],
)
def test_irrelevant_events_are_ignored(raw: dict) -> None:
    assert parse_billing_event(raw) is None


def test_event_without_type_is_rejected() -> None:
    with pytest.raises(InvalidInputError):
        parse_billing_event({"id": "evt_1", "data": {"object": {}}})
