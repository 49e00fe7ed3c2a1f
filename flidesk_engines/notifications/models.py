from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NotificationIntent(BaseModel):
    """What to tell the customer; ``session_id`` doubles as the dedup key."""

    session_id: str
    email: str
    flidesk_id: str
    plan_id: str
    business_name: str = ""
    template: str = "subscription_confirmed"

    @property
    def idempotency_key(self) -> str:
        return f"{self.template}/{self.session_id}"


class NotificationStatus(str, Enum):
    sent = "sent"
    failed = "failed"


class NotificationOutcome(BaseModel):
    status: NotificationStatus
    provider_message_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status == NotificationStatus.sent
