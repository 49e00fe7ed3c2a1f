"""Shared builders and fakes for checkout tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from flidesk_engines.checkout.models import CheckoutSession, PaymentProof, SessionStatus
from flidesk_engines.notifications.models import NotificationIntent, NotificationOutcome, NotificationStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class RecordingNotifier:
    def __init__(self, status: NotificationStatus = NotificationStatus.sent, error: Optional[Exception] = None):
        self.sent: List[NotificationIntent] = []
        self._status = status
        self._error = error

    def send(self, intent: NotificationIntent) -> NotificationOutcome:
        self.sent.append(intent)
        if self._error is not None:
            raise self._error
        return NotificationOutcome(status=self._status)


def make_session(
    session_id: str = "abc123",
    *,
    expires_in: timedelta = timedelta(hours=1),
    status: SessionStatus = SessionStatus.pending,
    now: datetime = NOW,
) -> CheckoutSession:
    return CheckoutSession(
        session_id=session_id,
        email="owner@acme.test",
        business_name="Acme Dental",
        phone="+15550100",
        plan_id="pro_monthly",
        amount=4900,
        payload={"onboarding": {"seats": 3, "modules": ["booking", "sms"]}},
        status=status,
        created_at=now - timedelta(hours=1),
        expires_at=now + expires_in,
    )


def proof(reference: str = "pi_123") -> PaymentProof:
    return PaymentProof(reference=reference, event_id=f"evt_{reference}", amount_total=4900, currency="usd")


def id_sequence(values: Iterable[str]):
    it = iter(values)
    return lambda: next(it)
