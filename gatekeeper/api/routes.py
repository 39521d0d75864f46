"""
FastAPI routes for the account-linking flow and Stripe webhooks.
"""

from __future__ import annotations

import html
import logging
from http import HTTPStatus
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Header, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from gatekeeper.clients import StripeBillingClient
from gatekeeper.core.errors import (
    AccessDeniedError,
    ConfigurationError,
    InvalidInputError,
    SignatureInvalidError,
    TransientError,
)
from gatekeeper.dependencies import (
    get_billing_client,
    get_linking_service,
    get_webhook_reconciler,
)
from gatekeeper.schemas import (
    LinkStartRequest,
    LinkStartResponse,
    VerifyOutcome,
    parse_billing_event,
)
from gatekeeper.services import INVALID_LINK_MESSAGE, LinkingService, WebhookReconciler

router = APIRouter()
logger = logging.getLogger(__name__)

_UNAVAILABLE_MESSAGE = "The service is temporarily unavailable. Please try again shortly."

_OUTCOME_MESSAGES = {
    VerifyOutcome.NO_CUSTOMER: (
        "We could not find a subscription account for that email address. "
        "Request a new link from the bot and try again with your billing email."
    ),
    VerifyOutcome.NO_ACTIVE_SUBSCRIPTION: (
        "That account has no active subscription. Subscribe first, then request "
        "a new link from the bot."
    ),
    VerifyOutcome.VERIFIED: (
        "Almost done! We sent a confirmation link to your billing email. "
        "Open it within the hour to finish linking your account."
    ),
}


def _page(title: str, body: str, status_code: int = HTTPStatus.OK) -> HTMLResponse:
    content = (
        "<!doctype html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1>{body}</body></html>"
    )
    return HTMLResponse(content=content, status_code=status_code)


def _message(title: str, message: str, status_code: int = HTTPStatus.OK) -> HTMLResponse:
    return _page(title, f"<p>{html.escape(message)}</p>", status_code)


def _email_form(token: str, *, error: str | None = None, checkout: bool = False) -> str:
    escaped = html.escape(token, quote=True)
    parts = []
    if error:
        parts.append(f"<p role=\"alert\">{html.escape(error)}</p>")
    parts.append(
        "<form method=\"post\" action=\"/api/link/verify\">"
        f"<input type=\"hidden\" name=\"token\" value=\"{escaped}\">"
        "<label for=\"email\">Billing email</label> "
        "<input type=\"email\" id=\"email\" name=\"email\" required>"
        "<button type=\"submit\">Verify</button>"
        "</form>"
    )
    if checkout:
        parts.append(
            f"<p>No subscription yet? <a href=\"/api/link/checkout?token={escaped}\">Subscribe</a></p>"
        )
    return "".join(parts)


@router.post(
    "/link/start", response_model=LinkStartResponse, status_code=HTTPStatus.CREATED
)
async def start_link(
    payload: LinkStartRequest,
    service: Annotated[LinkingService, Depends(get_linking_service)],
) -> LinkStartResponse:
    """Called by the chat bot to obtain a single-use link for one of its users."""
    try:
        url = service.start(payload.external_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    except TransientError as exc:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_MESSAGE
        ) from exc
    return LinkStartResponse(url=url)


@router.get("/link", response_class=HTMLResponse)
async def present_link(
    service: Annotated[LinkingService, Depends(get_linking_service)],
    token: str = Query("", description="Handshake token from the bot."),
) -> HTMLResponse:
    """Show the billing email form while the handshake link is still live."""
    try:
        service.present(token)
    except AccessDeniedError:
        return _message("Link unavailable", INVALID_LINK_MESSAGE, HTTPStatus.FORBIDDEN)
    except TransientError:
        return _message("Try again", _UNAVAILABLE_MESSAGE, HTTPStatus.SERVICE_UNAVAILABLE)
    return _page(
        "Link your subscription",
        _email_form(token, checkout=service.checkout_available),
    )


@router.post("/link/verify", response_class=HTMLResponse)
async def verify_link(
    service: Annotated[LinkingService, Depends(get_linking_service)],
    token: Annotated[str, Form()] = "",
    email: Annotated[str, Form()] = "",
) -> HTMLResponse:
    """Spend the handshake token and check the claimed email against Stripe."""
    try:
        result = await service.verify(token, email)
    except InvalidInputError as exc:
        # Nothing has been spent yet, so the same link can be submitted again.
        return _page(
            "Link your subscription",
            _email_form(token, error=str(exc)),
            HTTPStatus.BAD_REQUEST,
        )
    except AccessDeniedError:
        return _message("Link unavailable", INVALID_LINK_MESSAGE, HTTPStatus.FORBIDDEN)
    except TransientError:
        return _message("Try again", _UNAVAILABLE_MESSAGE, HTTPStatus.SERVICE_UNAVAILABLE)

    title = "Check your inbox" if result.outcome is VerifyOutcome.VERIFIED else "Not linked"
    return _message(title, _OUTCOME_MESSAGES[result.outcome])


@router.get("/link/finish", response_class=HTMLResponse)
async def finish_link(
    service: Annotated[LinkingService, Depends(get_linking_service)],
    token: str = Query("", description="Verification token from the email."),
) -> HTMLResponse:
    """Spend the verification token and activate the linked identity."""
    try:
        service.finish(token)
    except AccessDeniedError:
        return _message("Link unavailable", INVALID_LINK_MESSAGE, HTTPStatus.FORBIDDEN)
    except TransientError:
        return _message("Try again", _UNAVAILABLE_MESSAGE, HTTPStatus.SERVICE_UNAVAILABLE)
    return _message(
        "Account linked",
        "Your subscription is now linked. You can return to the chat.",
    )


@router.get("/link/checkout", response_model=None)
async def checkout_link(
    service: Annotated[LinkingService, Depends(get_linking_service)],
    token: str = Query("", description="Handshake token from the bot."),
) -> HTMLResponse | RedirectResponse:
    """Spend the handshake token and redirect to Stripe Checkout."""
    try:
        checkout_url = await service.checkout(token)
    except AccessDeniedError:
        return _message("Link unavailable", INVALID_LINK_MESSAGE, HTTPStatus.FORBIDDEN)
    except ConfigurationError:
        return _message(
            "Checkout unavailable",
            "Subscribing from this page is not enabled.",
            HTTPStatus.SERVICE_UNAVAILABLE,
        )
    except TransientError:
        return _message("Try again", _UNAVAILABLE_MESSAGE, HTTPStatus.SERVICE_UNAVAILABLE)
    return RedirectResponse(url=checkout_url, status_code=HTTPStatus.SEE_OTHER)


@router.post("/webhooks/stripe", status_code=HTTPStatus.OK)
async def stripe_webhook(
    request: Request,
    billing: Annotated[StripeBillingClient, Depends(get_billing_client)],
    reconciler: Annotated[WebhookReconciler, Depends(get_webhook_reconciler)],
    stripe_signature: Annotated[str | None, Header()] = None,
) -> dict:
    """Verify, parse and apply a Stripe event."""
    payload = await request.body()
    try:
        raw_event = billing.verify_webhook(payload, stripe_signature)
        event = parse_billing_event(raw_event)
    except SignatureInvalidError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="Invalid signature"
        ) from exc
    except InvalidInputError as exc:
        logger.warning("Malformed Stripe webhook: %s", exc)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="Invalid payload"
        ) from exc

    logger.info("Stripe event received: %s", raw_event.get("type"))
    if event is not None:
        try:
            reconciler.apply(event)
        except TransientError as exc:
            # A non-2xx response makes Stripe redeliver the event later.
            raise HTTPException(
                status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=_UNAVAILABLE_MESSAGE
            ) from exc
    return {"received": True}
