from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

from flidesk_engines.checkout.errors import SessionNotFound
from flidesk_engines.checkout.models import (
    CheckoutSession,
    CheckoutSessionCreate,
    Subscription,
    new_session_id,
)
from flidesk_engines.checkout.reconciler import Reconciler
from flidesk_engines.checkout.repository import SessionStore
from flidesk_engines.checkout.state import get_session_store
from flidesk_engines.checkout.sweep import ExpirationSweeper
from flidesk_engines.config import runtime_config
from flidesk_engines.notifications.service import get_notifier

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutService:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ttl: Optional[timedelta] = None,
        payment_link_url: Optional[str] = None,
    ) -> None:
        self.store = store or get_session_store()
        self._clock = clock or _now
        self._ttl = ttl or timedelta(hours=runtime_config.get_session_ttl_hours())
        self._payment_link_url = payment_link_url or runtime_config.get_payment_link_url()

    def create_session(self, payload: CheckoutSessionCreate) -> CheckoutSession:
        created_at = self._clock()
        session = CheckoutSession(
            session_id=payload.session_id or new_session_id(),
            email=payload.email,
            business_name=payload.business_name,
            phone=payload.phone,
            plan_id=payload.plan_id,
            amount=payload.amount,
            currency=payload.currency,
            payload=payload.payload,
            created_at=created_at,
            updated_at=created_at,
            expires_at=created_at + self._ttl,
        )
        self.store.create(session)
        logger.info("Checkout session %s created for plan %s", session.session_id, session.plan_id)
        return session

    def checkout_url(self, session: CheckoutSession) -> Optional[str]:
        """Hosted payment page URL carrying the session id back to the webhook."""
        if not self._payment_link_url:
            return None
        parts = urlsplit(self._payment_link_url)
        params = {"client_reference_id": session.session_id}
        if session.email:
            params["prefilled_email"] = session.email
        query = "&".join(q for q in (parts.query, urlencode(params)) if q)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    def get_session(self, session_id: str) -> CheckoutSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(f"Checkout session {session_id} not found", session_id=session_id)
        return session

    def get_subscription(self, flidesk_id: str) -> Optional[Subscription]:
        return self.store.get_subscription(flidesk_id)


_default_service: Optional[CheckoutService] = None


def get_checkout_service() -> CheckoutService:
    global _default_service
    if _default_service is None:
        _default_service = CheckoutService()
    return _default_service


def set_checkout_service(service: Optional[CheckoutService]) -> None:
    global _default_service
    _default_service = service


def get_reconciler() -> Reconciler:
    # Built per request; all durable state lives in the store.
    return Reconciler(get_session_store(), get_notifier())


def get_sweeper() -> ExpirationSweeper:
    return ExpirationSweeper(get_session_store())
