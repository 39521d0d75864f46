try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import hashlib
import hmac
import json
import time
from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest

from gatekeeper import dependencies
from gatekeeper.clients import SQLiteAccountStore, StripeBillingClient
from gatekeeper.core.config import CheckoutSettings, StripeSettings
from gatekeeper.main import app
from gatekeeper.models.accounts import AccountStatus
from gatekeeper.services import DeadlinePolicy, WebhookReconciler

pytestmark = pytest.mark.anyio

WEBHOOK_SECRET = "whsec_endpoint_test"


def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


def _event(event_type: str, obj: dict, created: int = 1_772_366_400) -> str:
    return json.dumps(
        {"id": "evt_1", "type": event_type, "created": created, "data": {"object": obj}}
    )


@pytest.fixture()
def accounts(db_path, clock):
    store = SQLiteAccountStore(db_path, clock=clock)
    billing = StripeBillingClient(
        StripeSettings(secret_key="sk_test_endpoint", webhook_secret=WEBHOOK_SECRET),
        CheckoutSettings(),
        client=SimpleNamespace(),
    )
    reconciler = WebhookReconciler(accounts=store, policy=DeadlinePolicy())
    app.dependency_overrides[dependencies.get_billing_client] = lambda: billing
    app.dependency_overrides[dependencies.get_webhook_reconciler] = lambda: reconciler
    yield store
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(accounts):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


async def _post(client, payload: str, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return await client.post("/api/webhooks/stripe", content=payload, headers=headers)


async def test_payment_failed_updates_linked_account(client, accounts, clock) -> None:
    accounts.upsert_unlinked("u2", deadline=clock.now + timedelta(hours=48))
    accounts.activate("u2", "cus_123")
    payload = _event("invoice.payment_failed", {"customer": "cus_123"})

    response = await _post(client, payload, _sign(payload))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    record = accounts.get("u2")
    assert record.status is AccountStatus.PAYMENT_ISSUE
    assert record.deadline == clock.now + timedelta(hours=24)


async def test_bad_signature_is_rejected_without_changes(client, accounts, clock) -> None:
    accounts.upsert_unlinked("u2", deadline=clock.now + timedelta(hours=48))
    accounts.activate("u2", "cus_123")
    payload = _event("invoice.payment_failed", {"customer": "cus_123"})

    response = await _post(client, payload, _sign(payload, secret="whsec_wrong"))

    assert response.status_code == 400
    assert accounts.get("u2").status is AccountStatus.ACTIVE


async def test_missing_signature_is_rejected(client) -> None:
    payload = _event("invoice.payment_failed", {"customer": "cus_123"})

    response = await _post(client, payload, None)

    assert response.status_code == 400


async def test_stale_signature_is_rejected(client) -> None:
    payload = _event("invoice.payment_failed", {"customer": "cus_123"})

    response = await _post(client, payload, _sign(payload, timestamp=int(time.time()) - 3600))

    assert response.status_code == 400


async def test_signed_garbage_is_invalid_payload(client) -> None:
    payload = "not json"

    response = await _post(client, payload, _sign(payload))

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


async def test_unhandled_event_type_is_acknowledged(client) -> None:
    payload = _event("customer.created", {"id": "cus_123"})

    response = await _post(client, payload, _sign(payload))

    assert response.status_code == 200


async def test_checkout_completed_activates_identity(client, accounts, clock) -> None:
    accounts.upsert_unlinked("u5", deadline=clock.now + timedelta(hours=48))
    payload = _event(
        "checkout.session.completed",
        {"customer": "cus_999", "mode": "subscription", "client_reference_id": "u5"},
    )

    response = await _post(client, payload, _sign(payload))

    assert response.status_code == 200
    record = accounts.get("u5")
    assert record.status is AccountStatus.ACTIVE
    assert record.billing_ref == "cus_999"
