"""
FastAPI application entrypoint for the subscription gatekeeper.
"""

from __future__ import annotations

from fastapi import FastAPI

from gatekeeper.api.routes import router as api_router
from gatekeeper.core.config import get_settings
from gatekeeper.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Subscription Gatekeeper",
        version="0.1.0",
        description="Links chat identities to Stripe subscriptions and reconciles billing webhooks.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
