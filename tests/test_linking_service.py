try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from gatekeeper.clients import SQLiteAccountStore, SQLiteTokenStore
from gatekeeper.core.config import LinkSettings
from gatekeeper.core.errors import (
    AccessDeniedError,
    BillingProviderError,
    ConfigurationError,
    InvalidInputError,
)
from gatekeeper.models.accounts import AccountStatus
from gatekeeper.schemas import VerifyOutcome
from gatekeeper.services import DeadlinePolicy, LinkingService

pytestmark = pytest.mark.anyio


class FakeBilling:
    def __init__(self) -> None:
        self.customers: dict[str, list[str]] = {
            "real@user.com": ["cus_123"],
            "lapsed@user.com": ["cus_lapsed"],
            "shared@user.com": ["cus_old", "cus_new"],
        }
        self.active: set[str] = {"cus_123", "cus_new"}
        self.checkout_configured = True
        self.checkout_calls: list[str] = []
        self.fail_lookups = False

    async def find_customer_ids(self, email: str) -> list[str]:
        if self.fail_lookups:
            raise BillingProviderError("timeout")
        return self.customers.get(email, [])

    async def has_active_subscription(self, customer_id: str) -> bool:
        return customer_id in self.active

    async def create_checkout_session(self, *, external_id: str) -> str:
        self.checkout_calls.append(external_id)
        return f"https://checkout.stripe.test/c/{external_id}"


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_verification_link(self, *, email: str, url: str, expires_in_minutes: int) -> bool:
        self.sent.append((email, url))
        return True


def _token(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


@pytest.fixture()
def env(db_path, clock):
    accounts = SQLiteAccountStore(db_path, clock=clock)
    tokens = SQLiteTokenStore(db_path, clock=clock)
    billing = FakeBilling()
    notifier = RecordingNotifier()
    service = LinkingService(
        accounts=accounts,
        tokens=tokens,
        billing=billing,
        notifier=notifier,
        policy=DeadlinePolicy(),
        settings=LinkSettings(),
        base_url="https://gatekeeper.example.com/",
        clock=clock,
    )
    return service, accounts, billing, notifier


async def test_start_creates_record_and_handshake_url(env, clock) -> None:
    service, accounts, _, _ = env

    url = service.start("u1")

    assert url.startswith("https://gatekeeper.example.com/api/link?token=")
    record = accounts.get("u1")
    assert record.status is AccountStatus.UNLINKED
    assert record.deadline == clock.now + timedelta(hours=48)
    assert service.present(_token(url)).owner_id == "u1"


async def test_start_rejects_blank_identity(env) -> None:
    service, _, _, _ = env

    with pytest.raises(InvalidInputError):
        service.start("   ")


async def test_unknown_email_spends_handshake_token(env) -> None:
    service, accounts, _, notifier = env
    t1 = _token(service.start("u1"))

    assert service.present(t1).owner_id == "u1"
    result = await service.verify(t1, "a@b.com")

    assert result.outcome is VerifyOutcome.NO_CUSTOMER
    with pytest.raises(AccessDeniedError):
        await service.verify(t1, "a@b.com")
    with pytest.raises(AccessDeniedError):
        service.present(t1)
    assert accounts.get("u1").status is AccountStatus.UNLINKED
    assert notifier.sent == []


async def test_customer_without_active_subscription(env) -> None:
    service, _, _, _ = env
    t1 = _token(service.start("u1"))

    result = await service.verify(t1, "lapsed@user.com")

    assert result.outcome is VerifyOutcome.NO_ACTIVE_SUBSCRIPTION
    assert result.verification_url is None


async def test_full_link_and_replayed_finish(env) -> None:
    service, accounts, _, notifier = env
    t1 = _token(service.start("u2"))

    result = await service.verify(t1, "real@user.com")

    assert result.outcome is VerifyOutcome.VERIFIED
    assert result.verification_url.startswith("https://gatekeeper.example.com/api/link/finish?token=")
    assert notifier.sent == [("real@user.com", result.verification_url)]

    t2 = _token(result.verification_url)
    record = service.finish(t2)
    assert record.status is AccountStatus.ACTIVE
    assert record.billing_ref == "cus_123"
    assert record.deadline is None

    with pytest.raises(AccessDeniedError):
        service.finish(t2)
    assert accounts.get("u2") == record


async def test_picks_the_customer_with_an_active_subscription(env) -> None:
    service, _, _, _ = env
    t1 = _token(service.start("u3"))

    result = await service.verify(t1, "shared@user.com")

    assert result.customer_id == "cus_new"


async def test_start_again_keeps_active_linkage(env) -> None:
    service, accounts, _, _ = env
    t1 = _token(service.start("u2"))
    result = await service.verify(t1, "real@user.com")
    service.finish(_token(result.verification_url))

    service.start("u2")

    record = accounts.get("u2")
    assert record.status is AccountStatus.ACTIVE
    assert record.billing_ref == "cus_123"


async def test_invalid_email_does_not_spend_token(env) -> None:
    service, _, _, _ = env
    t1 = _token(service.start("u1"))

    with pytest.raises(InvalidInputError):
        await service.verify(t1, "not-an-email")

    assert service.present(t1).owner_id == "u1"


async def test_handshake_token_cannot_finish(env) -> None:
    service, accounts, _, _ = env
    t1 = _token(service.start("u1"))

    with pytest.raises(AccessDeniedError):
        service.finish(t1)

    assert service.present(t1).owner_id == "u1"
    assert accounts.get("u1").status is AccountStatus.UNLINKED


async def test_expired_verification_link_is_denied(env, clock) -> None:
    service, accounts, _, _ = env
    t1 = _token(service.start("u2"))
    result = await service.verify(t1, "real@user.com")
    clock.advance(hours=2)

    with pytest.raises(AccessDeniedError):
        service.finish(_token(result.verification_url))
    assert accounts.get("u2").status is AccountStatus.UNLINKED


async def test_provider_failure_surfaces_as_transient_and_spends_token(env) -> None:
    service, _, billing, _ = env
    billing.fail_lookups = True
    t1 = _token(service.start("u1"))

    with pytest.raises(BillingProviderError):
        await service.verify(t1, "real@user.com")
    with pytest.raises(AccessDeniedError):
        service.present(t1)


async def test_checkout_spends_handshake_and_returns_stripe_url(env) -> None:
    service, _, billing, _ = env
    t1 = _token(service.start("u5"))

    url = await service.checkout(t1)

    assert url == "https://checkout.stripe.test/c/u5"
    assert billing.checkout_calls == ["u5"]
    with pytest.raises(AccessDeniedError):
        await service.checkout(t1)


async def test_checkout_unconfigured_keeps_token(env) -> None:
    service, _, billing, _ = env
    billing.checkout_configured = False
    t1 = _token(service.start("u5"))

    with pytest.raises(ConfigurationError):
        await service.checkout(t1)
    assert service.present(t1).owner_id == "u5"
