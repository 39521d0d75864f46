"""Verify the gatekeeper's environment configuration before deploying it.

Subcommands:

``check``
    Load ``AppSettings`` from the given env file and print which optional
    features (Stripe Checkout, verification email) the configuration enables.
``record``
    Same validation, then store a SHA256 baseline of the env file.
``verify``
    Same validation, then compare the env file against the stored baseline so
    unexpected edits are caught before a restart.

Example usages::

    python -m scripts.check_env check --env-file /opt/gatekeeper/.env

    python -m scripts.check_env record --env-file /opt/gatekeeper/.env \
        --hash-file /opt/gatekeeper/.env.sha256

    python -m scripts.check_env verify --env-file /opt/gatekeeper/.env \
        --hash-file /opt/gatekeeper/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from gatekeeper.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5

_STRIPE_KEY_PREFIXES = ("sk_", "rk_")
_WEBHOOK_SECRET_PREFIX = "whsec_"


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    """Populate the process environment from ``env_file`` and build settings."""
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _warnings_for(settings: AppSettings) -> list[str]:
    """Settings that load but are very likely wrong."""
    warnings = []
    if not settings.stripe.secret_key.startswith(_STRIPE_KEY_PREFIXES):
        warnings.append("STRIPE_SECRET_KEY does not look like a Stripe secret or restricted key.")
    if not settings.stripe.webhook_secret.startswith(_WEBHOOK_SECRET_PREFIX):
        warnings.append("STRIPE_WEBHOOK_SECRET does not look like a webhook signing secret.")
    if settings.stripe.price_id and not (
        settings.checkout.success_url and settings.checkout.cancel_url
    ):
        warnings.append(
            "STRIPE_PRICE_ID is set but CHECKOUT_SUCCESS_URL/CHECKOUT_CANCEL_URL are missing; "
            "checkout stays disabled."
        )
    return warnings


def _report(settings: AppSettings) -> int:
    checkout = bool(
        settings.stripe.price_id
        and settings.checkout.success_url
        and settings.checkout.cancel_url
    )
    print(f"Settings OK for environment '{settings.environment}'.")
    print(f"  public base url:    {settings.base_url}")
    print(f"  database:           {settings.database_path}")
    print(f"  stripe checkout:    {'enabled' if checkout else 'disabled'}")
    print(f"  verification email: {'enabled' if settings.email.sender else 'disabled'}")
    for warning in _warnings_for(settings):
        print(f"WARNING: {warning}", file=sys.stderr)
    return EXIT_OK


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"Checksum baseline {hash_file} is missing. "
            "Run the 'record' command first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate gatekeeper settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text, needs_hash in (
        ("check", "Validate settings and report enabled features.", False),
        ("record", "Validate settings and store the checksum baseline.", True),
        ("verify", "Validate settings and compare against the baseline.", True),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the working directory).",
        )
        if needs_hash:
            subparser.add_argument(
                "--hash-file",
                required=True,
                type=Path,
                help="Location of the checksum baseline.",
            )

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "check": lambda: _report(settings),
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
