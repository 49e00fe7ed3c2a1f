"""Stripe callback verification and mapping onto reconciliation.

The gateway is trusted only after its signature checks out; every event
that reaches ``PaymentCallbackHandler`` has been through
``stripe.Webhook.construct_event``.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

import stripe

from flidesk_engines.checkout.errors import CheckoutError
from flidesk_engines.checkout.models import SESSION_ID_PATTERN, PaymentProof
from flidesk_engines.checkout.reconciler import Reconciler
from flidesk_engines.config import runtime_config

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"paid", "no_payment_required"})
SUCCESS_EVENTS = frozenset({"checkout.session.completed", "checkout.session.async_payment_succeeded"})
FAILED_EVENT = "checkout.session.async_payment_failed"
EXPIRED_EVENT = "checkout.session.expired"


class WebhookVerificationError(CheckoutError):
    code = "payments.invalid_webhook"
    http_status = 400
    resource_kind = "webhook"


class StripeWebhookVerifier:
    def __init__(self, secret: Optional[str] = None, stripe_client=None) -> None:
        self._secret = secret
        self._stripe = stripe_client or stripe

    def verify(self, payload: str, signature_header: Optional[str]) -> Dict[str, Any]:
        if not signature_header:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        secret = self._secret or runtime_config.get_stripe_webhook_secret()
        if not secret:
            raise WebhookVerificationError("missing STRIPE_WEBHOOK_SECRET")
        try:
            event = self._stripe.Webhook.construct_event(payload, signature_header, secret)  # type: ignore[attr-defined]
        except Exception as exc:
            raise WebhookVerificationError(f"invalid_webhook: {exc}") from exc
        return _as_dict(event)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _event_object(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _session_id(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return obj.get("client_reference_id") or metadata.get("session_id")


def _payment_proof(event: Dict[str, Any], obj: Dict[str, Any]) -> PaymentProof:
    reference = obj.get("payment_intent") or obj.get("subscription") or obj.get("id") or event.get("id")
    return PaymentProof(
        reference=str(reference),
        provider="stripe",
        event_id=event.get("id"),
        amount_total=obj.get("amount_total"),
        currency=obj.get("currency"),
        raw={"checkout_session": obj.get("id"), "customer": obj.get("customer")},
    )


class PaymentCallbackHandler:
    def __init__(self, reconciler: Reconciler) -> None:
        self.reconciler = reconciler

    def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get("type") or ""
        obj = _event_object(event)
        session_id = _session_id(obj)
        if not session_id:
            logger.warning("Ignoring %s event %s without a session id", event_type, event.get("id"))
            return {"received": True, "ignored": "missing_session_id"}
        if not isinstance(session_id, str) or not re.match(SESSION_ID_PATTERN, session_id):
            logger.warning("Ignoring %s event %s with malformed session id %r", event_type, event.get("id"), session_id)
            return {"received": True, "ignored": "invalid_session_id"}

        if event_type in SUCCESS_EVENTS:
            payment_status = obj.get("payment_status")
            if payment_status not in PAID_STATUSES:
                logger.info("Checkout session %s not paid yet (%s)", session_id, payment_status)
                return {"received": True, "ignored": f"payment_status:{payment_status}"}
            result = self.reconciler.reconcile(session_id, _payment_proof(event, obj))
            return {"received": True, "result": result.model_dump(mode="json")}

        if event_type == FAILED_EVENT:
            session = self.reconciler.fail(session_id, reason="async_payment_failed")
            return {"received": True, "session_status": session.status.value}

        if event_type == EXPIRED_EVENT:
            session = self.reconciler.expire(session_id)
            return {"received": True, "session_status": session.status.value}

        return {"received": True, "ignored": event_type or "unknown"}
