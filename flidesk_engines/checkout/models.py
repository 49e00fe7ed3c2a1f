from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    expired = "expired"
    failed = "failed"


# Also a valid Firestore document id: no "/" and bounded length.
SESSION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"


class UpdateOutcome(str, Enum):
    """Result of a conditional status transition in the session store."""

    applied = "applied"
    conflict = "conflict"
    id_taken = "id_taken"
    not_found = "not_found"


class CheckoutSession(BaseModel):
    session_id: str
    email: str
    business_name: str = ""
    phone: str = ""
    plan_id: str
    amount: int = Field(ge=0, description="Minor currency units, e.g. cents")
    currency: str = "usd"
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: SessionStatus = SessionStatus.pending
    status_reason: Optional[str] = None
    flidesk_id: Optional[str] = None
    notification_sent: Optional[bool] = None
    created_at: datetime = Field(default_factory=_now)
    expires_at: datetime
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_now)

    def is_past_expiry(self, now: datetime) -> bool:
        return self.expires_at <= now


class CheckoutSessionCreate(BaseModel):
    session_id: Optional[str] = Field(default=None, pattern=SESSION_ID_PATTERN)
    email: str
    business_name: str = ""
    phone: str = ""
    plan_id: str
    amount: int = Field(ge=0)
    currency: str = "usd"
    payload: Dict[str, Any] = Field(default_factory=dict)


class CheckoutSessionResponse(BaseModel):
    session: CheckoutSession
    checkout_url: Optional[str] = None


class Subscription(BaseModel):
    flidesk_id: str
    session_id: str
    email: str
    business_name: str = ""
    phone: str = ""
    plan_id: str
    amount: int
    currency: str = "usd"
    payment_reference: Optional[str] = None
    status: Literal["active"] = "active"
    created_at: datetime = Field(default_factory=_now)


class PaymentProof(BaseModel):
    reference: str
    provider: str = "stripe"
    event_id: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class ReconcileStatus(str, Enum):
    completed = "completed"
    already_processed = "already_processed"


class ReconcileResult(BaseModel):
    status: ReconcileStatus
    session_id: str
    flidesk_id: str
    notification_sent: bool = False


class SweepReport(BaseModel):
    scanned: int = 0
    expired: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


class PurgeReport(BaseModel):
    scanned: int = 0
    deleted: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)


def new_session_id() -> str:
    return uuid4().hex
