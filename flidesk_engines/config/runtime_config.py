"""Runtime configuration helpers for checkout engines."""
from __future__ import annotations

import os
from typing import Optional

DEFAULT_SESSION_TTL_HOURS = 24
DEFAULT_FLIDESK_ID_MAX_ATTEMPTS = 5
DEFAULT_NOTIFIER_TIMEOUT_SECONDS = 10.0
DEFAULT_EXPIRED_RETENTION_DAYS = 30
DEFAULT_RESEND_API_URL = "https://api.resend.com/emails"


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def _get_int(name: str, default: int) -> int:
    raw = (_get_env(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got: {value}")
    return value


def _get_float(name: str, default: float) -> float:
    raw = (_get_env(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got: {value}")
    return value


def get_checkout_backend() -> str:
    return (_get_env("CHECKOUT_BACKEND") or "memory").strip().lower()


def get_firestore_project() -> Optional[str]:
    return _get_env("GCP_PROJECT_ID") or _get_env("GCP_PROJECT")


def get_session_ttl_hours() -> int:
    return _get_int("SESSION_TTL_HOURS", DEFAULT_SESSION_TTL_HOURS)


def get_flidesk_id_max_attempts() -> int:
    return _get_int("FLIDESK_ID_MAX_ATTEMPTS", DEFAULT_FLIDESK_ID_MAX_ATTEMPTS)


def get_notifier_timeout_seconds() -> float:
    return _get_float("NOTIFIER_TIMEOUT_SECONDS", DEFAULT_NOTIFIER_TIMEOUT_SECONDS)


def get_expired_retention_days() -> int:
    return _get_int("EXPIRED_RETENTION_DAYS", DEFAULT_EXPIRED_RETENTION_DAYS)


def get_resend_api_key() -> Optional[str]:
    value = (_get_env("RESEND_API_KEY") or "").strip()
    return value or None


def get_resend_api_url() -> str:
    return (_get_env("RESEND_API_URL") or DEFAULT_RESEND_API_URL).rstrip("/")


def get_notification_from_email() -> str:
    return _get_env("NOTIFICATION_FROM_EMAIL") or "FliDESK <no-reply@flidesk.app>"


def get_app_name() -> str:
    return _get_env("APP_NAME") or "FliDESK"


def get_stripe_webhook_secret() -> Optional[str]:
    return _get_env("STRIPE_WEBHOOK_SECRET")


def get_payment_link_url() -> Optional[str]:
    value = (_get_env("PAYMENT_LINK_URL") or "").strip()
    return value or None


def get_sweep_token() -> Optional[str]:
    return _get_env("SWEEP_TOKEN")
