"""Turn a verified payment into exactly one subscription.

The only serialization point is the store's conditional status transition
(pending -> completed). No lock is held across the operation, so any number
of duplicate gateway callbacks may run concurrently; exactly one wins the
transition and the rest observe the stored outcome.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from flidesk_engines.checkout.errors import (
    IdGenerationExhausted,
    SessionExpired,
    SessionFailed,
    SessionNotFound,
)
from flidesk_engines.checkout.ids import generate_flidesk_id
from flidesk_engines.checkout.models import (
    CheckoutSession,
    PaymentProof,
    ReconcileResult,
    ReconcileStatus,
    SessionStatus,
    Subscription,
    UpdateOutcome,
)
from flidesk_engines.checkout.repository import SessionStore
from flidesk_engines.config import runtime_config
from flidesk_engines.notifications.models import NotificationIntent
from flidesk_engines.notifications.service import Notifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
        self,
        store: SessionStore,
        notifier: Notifier,
        *,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[[], str]] = None,
        max_id_attempts: Optional[int] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self._clock = clock or _now
        self._id_factory = id_factory or generate_flidesk_id
        self._max_id_attempts = max_id_attempts or runtime_config.get_flidesk_id_max_attempts()

    def reconcile(self, session_id: str, payment_proof: PaymentProof) -> ReconcileResult:
        session = self._load(session_id)

        if session.status == SessionStatus.pending and session.is_past_expiry(self._clock()):
            outcome = self.store.conditionally_update(
                session_id,
                SessionStatus.pending,
                SessionStatus.expired,
                status_reason="ttl_elapsed",
            )
            if outcome == UpdateOutcome.applied:
                logger.info("Checkout session %s expired before reconciliation", session_id)
                raise SessionExpired(
                    f"Checkout session {session_id} has expired",
                    session_id=session_id,
                    expires_at=session.expires_at.isoformat(),
                )
            session = self._load(session_id)

        if session.status != SessionStatus.pending:
            return self._prior_outcome(session)

        subscription = self._complete(session, payment_proof)
        if subscription is None:
            return self._prior_outcome(self._load(session_id))
        sent = self._notify(session, subscription)
        return ReconcileResult(
            status=ReconcileStatus.completed,
            session_id=session_id,
            flidesk_id=subscription.flidesk_id,
            notification_sent=sent,
        )

    def fail(self, session_id: str, reason: str) -> CheckoutSession:
        return self._close(session_id, SessionStatus.failed, reason)

    def expire(self, session_id: str, reason: str = "gateway_expired") -> CheckoutSession:
        return self._close(session_id, SessionStatus.expired, reason)

    def _load(self, session_id: str) -> CheckoutSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(f"Checkout session {session_id} not found", session_id=session_id)
        return session

    def _prior_outcome(self, session: CheckoutSession) -> ReconcileResult:
        if session.status == SessionStatus.completed:
            logger.info(
                "Checkout session %s already reconciled as %s", session.session_id, session.flidesk_id
            )
            return ReconcileResult(
                status=ReconcileStatus.already_processed,
                session_id=session.session_id,
                flidesk_id=session.flidesk_id or "",
                notification_sent=False,
            )
        if session.status == SessionStatus.failed:
            raise SessionFailed(
                f"Checkout session {session.session_id} has failed",
                session_id=session.session_id,
                reason=session.status_reason,
            )
        raise SessionExpired(
            f"Checkout session {session.session_id} has expired",
            session_id=session.session_id,
            reason=session.status_reason,
        )

    def _complete(self, session: CheckoutSession, proof: PaymentProof) -> Optional[Subscription]:
        """Run the conditional transition; ``None`` means another caller won it."""
        for attempt in range(1, self._max_id_attempts + 1):
            subscription = Subscription(
                flidesk_id=self._id_factory(),
                session_id=session.session_id,
                email=session.email,
                business_name=session.business_name,
                phone=session.phone,
                plan_id=session.plan_id,
                amount=session.amount,
                currency=session.currency,
                payment_reference=proof.reference,
                created_at=self._clock(),
            )
            outcome = self.store.conditionally_update(
                session.session_id,
                SessionStatus.pending,
                SessionStatus.completed,
                subscription=subscription,
            )
            if outcome == UpdateOutcome.applied:
                logger.info(
                    "Checkout session %s completed as subscription %s",
                    session.session_id,
                    subscription.flidesk_id,
                )
                return subscription
            if outcome == UpdateOutcome.id_taken:
                logger.warning(
                    "FliDESK id collision for session %s (attempt %s/%s)",
                    session.session_id,
                    attempt,
                    self._max_id_attempts,
                )
                continue
            if outcome == UpdateOutcome.not_found:
                raise SessionNotFound(
                    f"Checkout session {session.session_id} not found", session_id=session.session_id
                )
            logger.warning("Checkout session %s was transitioned concurrently", session.session_id)
            return None

        raise IdGenerationExhausted(
            f"Could not allocate a unique FliDESK id after {self._max_id_attempts} attempts",
            session_id=session.session_id,
            attempts=self._max_id_attempts,
        )

    def _notify(self, session: CheckoutSession, subscription: Subscription) -> bool:
        intent = NotificationIntent(
            session_id=session.session_id,
            email=session.email,
            flidesk_id=subscription.flidesk_id,
            plan_id=session.plan_id,
            business_name=session.business_name,
        )
        try:
            sent = self.notifier.send(intent).sent
        except Exception:
            logger.exception("Notifier raised for session %s", session.session_id)
            sent = False
        if not sent:
            logger.warning(
                "Confirmation not delivered for session %s; subscription %s stays active",
                session.session_id,
                subscription.flidesk_id,
            )
        try:
            self.store.record_notification(session.session_id, sent)
        except Exception as exc:
            logger.warning("Could not record notification for session %s: %s", session.session_id, exc)
        return sent

    def _close(self, session_id: str, status: SessionStatus, reason: str) -> CheckoutSession:
        session = self._load(session_id)
        if session.status != SessionStatus.pending:
            return session
        outcome = self.store.conditionally_update(
            session_id, SessionStatus.pending, status, status_reason=reason
        )
        if outcome == UpdateOutcome.applied:
            logger.info("Checkout session %s marked %s (%s)", session_id, status.value, reason)
        elif outcome == UpdateOutcome.not_found:
            raise SessionNotFound(f"Checkout session {session_id} not found", session_id=session_id)
        return self._load(session_id)
