"""
Exception taxonomy shared by the stores, the services and the HTTP layer.
"""


class GatekeeperError(Exception):
    """Base class for errors raised by this service."""


class InvalidInputError(GatekeeperError):
    """Missing or malformed identity, email or token parameter."""


class AccessDeniedError(GatekeeperError):
    """Token not found, expired or already used. The caller must restart."""


class SignatureInvalidError(GatekeeperError):
    """A webhook delivery failed authenticity checks."""


class ConfigurationError(GatekeeperError):
    """An optional feature was invoked without the settings it needs."""


class TransientError(GatekeeperError):
    """Storage or billing provider unavailable; safe to retry the operation."""


class StorageUnavailableError(TransientError):
    """The SQLite database could not complete a statement."""


class BillingProviderError(TransientError):
    """Stripe failed, timed out or could not be reached."""


class TokenRedemptionError(GatekeeperError):
    """Base class for reasons a token cannot be redeemed."""


class TokenNotFoundError(TokenRedemptionError):
    """No token exists for the presented secret."""


class TokenExpiredError(TokenRedemptionError):
    """The token exists but its expiry has passed."""


class TokenAlreadyUsedError(TokenRedemptionError):
    """The token was redeemed before."""


__all__ = [
    "AccessDeniedError",
    "BillingProviderError",
    "ConfigurationError",
    "GatekeeperError",
    "InvalidInputError",
    "SignatureInvalidError",
    "StorageUnavailableError",
    "TokenAlreadyUsedError",
    "TokenExpiredError",
    "TokenNotFoundError",
    "TokenRedemptionError",
    "TransientError",
]
