try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import timedelta
from types import SimpleNamespace

import pytest
from botocore.exceptions import NoRegionError

from gatekeeper import dependencies
from gatekeeper.clients import ses_mailer
from gatekeeper.core.config import AWSSettings, EmailSettings
from gatekeeper.dependencies import clients as client_factories


def test_settings_dependency_is_shared() -> None:
    settings = dependencies.get_app_settings()

    assert settings is dependencies.get_app_settings()
    assert settings.base_url == "https://gatekeeper.example.com"


def test_deadline_policy_follows_link_settings() -> None:
    policy = dependencies.get_deadline_policy()

    assert policy.initial_grace == timedelta(hours=48)
    assert policy.payment_failed_grace == timedelta(hours=24)


@pytest.fixture()
def fresh_mailer_cache():
    dependencies.get_mailer.cache_clear()
    yield
    dependencies.get_mailer.cache_clear()


def test_broken_aws_configuration_disables_email(
    monkeypatch: pytest.MonkeyPatch, fresh_mailer_cache
) -> None:
    settings = SimpleNamespace(
        aws=AWSSettings(region="us-east-1"),
        email=EmailSettings(sender="bot@example.com"),
    )

    def _no_region(*args, **kwargs):
        raise NoRegionError()

    monkeypatch.setattr(client_factories, "_settings", lambda: settings)
    monkeypatch.setattr(ses_mailer.boto3, "client", _no_region)

    assert dependencies.get_mailer() is None
    assert dependencies.get_link_notifier() is not None
