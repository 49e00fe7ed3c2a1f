from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel

from flidesk_engines.checkout.errors import CheckoutError, raise_http
from flidesk_engines.checkout.models import (
    CheckoutSession,
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    PurgeReport,
    Subscription,
    SweepReport,
)
from flidesk_engines.checkout.service import get_checkout_service, get_sweeper
from flidesk_engines.common.error_envelope import error_response
from flidesk_engines.config import runtime_config

router = APIRouter(prefix="/checkout", tags=["checkout"])


class SweepResponse(BaseModel):
    sweep: SweepReport
    purge: Optional[PurgeReport] = None


def _require_sweep_token(token: Optional[str]) -> None:
    expected = runtime_config.get_sweep_token()
    if not expected:
        return
    if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        error_response(
            code="checkout.sweep_forbidden",
            message="Invalid or missing sweep token",
            status_code=403,
        )


@router.post("/sessions", response_model=CheckoutSessionResponse, status_code=201)
def create_session(payload: CheckoutSessionCreate):
    svc = get_checkout_service()
    try:
        session = svc.create_session(payload)
    except CheckoutError as exc:
        raise_http(exc)
    return CheckoutSessionResponse(session=session, checkout_url=svc.checkout_url(session))


@router.get("/sessions/{session_id}", response_model=CheckoutSession)
def get_session(session_id: str):
    try:
        return get_checkout_service().get_session(session_id)
    except CheckoutError as exc:
        raise_http(exc)


@router.get("/subscriptions/{flidesk_id}", response_model=Subscription)
def get_subscription(flidesk_id: str):
    try:
        subscription = get_checkout_service().get_subscription(flidesk_id)
    except CheckoutError as exc:
        raise_http(exc)
    if subscription is None:
        error_response(
            code="checkout.subscription_not_found",
            message=f"Subscription {flidesk_id} not found",
            status_code=404,
            resource_kind="subscription",
            details={"flidesk_id": flidesk_id},
        )
    return subscription


@router.post("/sweep", response_model=SweepResponse)
def sweep_expired(
    purge: bool = False,
    x_sweep_token: Optional[str] = Header(default=None),
):
    # Called by the external scheduler; protected by a shared token when configured.
    _require_sweep_token(x_sweep_token)
    sweeper = get_sweeper()
    try:
        report = sweeper.sweep_expired()
        purge_report = sweeper.purge_expired() if purge else None
    except CheckoutError as exc:
        raise_http(exc)
    return SweepResponse(sweep=report, purge=purge_report)
