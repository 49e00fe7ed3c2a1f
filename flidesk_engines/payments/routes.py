from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool

from flidesk_engines.checkout.errors import CheckoutError, raise_http
from flidesk_engines.checkout.service import get_reconciler
from flidesk_engines.common.error_envelope import build_error_envelope
from flidesk_engines.payments.gateway import (
    PaymentCallbackHandler,
    StripeWebhookVerifier,
    WebhookVerificationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

_verifier: StripeWebhookVerifier | None = None


def get_webhook_verifier() -> StripeWebhookVerifier:
    global _verifier
    if _verifier is None:
        _verifier = StripeWebhookVerifier()
    return _verifier


def set_webhook_verifier(verifier: StripeWebhookVerifier | None) -> None:
    global _verifier
    _verifier = verifier


@router.post("/webhook")
async def stripe_webhook(request: Request):
    # INTENTIONALLY_PUBLIC: authenticity comes from the Stripe-Signature HMAC check.
    signature = request.headers.get("Stripe-Signature")
    payload = (await request.body()).decode("utf-8")
    try:
        event = get_webhook_verifier().verify(payload, signature)
    except WebhookVerificationError as exc:
        logger.warning("Rejected payment webhook: %s", exc.message)
        raise_http(exc)

    handler = PaymentCallbackHandler(get_reconciler())
    try:
        return await run_in_threadpool(handler.handle, event)
    except CheckoutError as exc:
        if exc.retryable or exc.http_status >= 500:
            # Server-side failures stay unacknowledged so the gateway redelivers.
            logger.error("Payment webhook %s failed: %s (%s)", event.get("id"), exc.code, exc.message)
            raise_http(exc)
        # Outcomes that cannot change on redelivery are acknowledged.
        logger.warning("Payment webhook %s not reconciled: %s (%s)", event.get("id"), exc.code, exc.message)
        envelope = build_error_envelope(
            code=exc.code,
            message=exc.message,
            status_code=exc.http_status,
            retryable=exc.retryable,
            resource_kind=exc.resource_kind,
            details=exc.details,
        )
        return {"received": True, **envelope.model_dump()}
