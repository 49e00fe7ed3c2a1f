"""Outbound confirmation email delivery.

Resend is used when RESEND_API_KEY is set; otherwise notifications are
reported as failed so reconciliation continues in a degraded state.
"""
from __future__ import annotations

import html
import logging
from typing import Optional, Protocol

import httpx

from flidesk_engines.config import runtime_config
from flidesk_engines.notifications.models import NotificationIntent, NotificationOutcome, NotificationStatus

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, intent: NotificationIntent) -> NotificationOutcome: ...


def _failed(detail: str) -> NotificationOutcome:
    return NotificationOutcome(status=NotificationStatus.failed, detail=detail)


class DisabledNotifier:
    def send(self, intent: NotificationIntent) -> NotificationOutcome:
        logger.warning(
            "Notifier not configured; skipping %s for session %s", intent.template, intent.session_id
        )
        return _failed("notifier_not_configured")


class ResendNotifier:
    def __init__(
        self,
        api_key: str,
        *,
        from_email: Optional[str] = None,
        app_name: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._from_email = from_email or runtime_config.get_notification_from_email()
        self._app_name = app_name or runtime_config.get_app_name()
        self._api_url = api_url or runtime_config.get_resend_api_url()
        self._timeout = timeout or runtime_config.get_notifier_timeout_seconds()
        self._transport = transport

    def _render(self, intent: NotificationIntent) -> dict:
        greeting = f"Hi {html.escape(intent.business_name)}," if intent.business_name else "Hi,"
        body = f"""
    <p>{greeting}</p>
    <p>Your {html.escape(self._app_name)} subscription is active.</p>
    <p><strong>FliDESK ID:</strong> {html.escape(intent.flidesk_id)}</p>
    <p><strong>Plan:</strong> {html.escape(intent.plan_id)}</p>
    <p>Keep this ID for any support request.</p>
    """
        return {
            "from": self._from_email,
            "to": [intent.email],
            "subject": f"Your {self._app_name} subscription is active ({intent.flidesk_id})",
            "html": body.strip(),
            "tags": [{"name": "template", "value": intent.template}],
        }

    def send(self, intent: NotificationIntent) -> NotificationOutcome:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": intent.idempotency_key,
        }
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(self._api_url, json=self._render(intent), headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Notifier timed out for session %s: %s", intent.session_id, exc)
            return _failed("timeout")
        except httpx.HTTPError as exc:
            logger.warning("Notifier request failed for session %s: %s", intent.session_id, exc)
            return _failed(f"request_error: {exc}")

        if resp.status_code >= 400:
            logger.warning(
                "Notifier rejected session %s: %s - %s", intent.session_id, resp.status_code, resp.text[:200]
            )
            return _failed(f"http_{resp.status_code}")

        try:
            message_id = resp.json().get("id")
        except ValueError:
            message_id = None
        logger.info("Confirmation email queued for session %s", intent.session_id)
        return NotificationOutcome(status=NotificationStatus.sent, provider_message_id=message_id)


def _default_notifier() -> Notifier:
    api_key = runtime_config.get_resend_api_key()
    if api_key:
        return ResendNotifier(api_key)
    return DisabledNotifier()


_default_service: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _default_service
    if _default_service is None:
        _default_service = _default_notifier()
    return _default_service


def set_notifier(notifier: Optional[Notifier]) -> None:
    global _default_service
    _default_service = notifier
