from __future__ import annotations

from typing import Any, Dict, Optional

from flidesk_engines.common.error_envelope import error_response


class CheckoutError(RuntimeError):
    code = "checkout.error"
    http_status = 400
    retryable = False
    resource_kind: Optional[str] = "checkout_session"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details


class SessionNotFound(CheckoutError):
    code = "checkout.session_not_found"
    http_status = 404


class SessionExpired(CheckoutError):
    code = "checkout.session_expired"
    http_status = 410


class SessionFailed(CheckoutError):
    code = "checkout.session_failed"
    http_status = 409


class DuplicateSession(CheckoutError):
    code = "checkout.duplicate_session"
    http_status = 409


class IdGenerationExhausted(CheckoutError):
    code = "checkout.id_generation_exhausted"
    http_status = 500
    resource_kind = "subscription"


class StoreUnavailable(CheckoutError):
    """Transient backend failure; safe to retry with backoff."""

    code = "checkout.store_unavailable"
    http_status = 503
    retryable = True


def raise_http(exc: CheckoutError) -> None:
    """Re-raise a domain error as the canonical HTTP error envelope."""
    error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.http_status,
        retryable=exc.retryable,
        resource_kind=exc.resource_kind,
        details=exc.details,
    )
