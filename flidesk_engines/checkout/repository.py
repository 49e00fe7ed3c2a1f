"""Session store backends for checkout sessions and derived subscriptions.

Every backend must implement ``conditionally_update`` as one atomic
check-and-write: the session status is compared with ``expected_status``,
the subscription id is checked for uniqueness, and both documents are
written together or not at all.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from flidesk_engines.checkout.errors import DuplicateSession, StoreUnavailable
from flidesk_engines.checkout.models import (
    CheckoutSession,
    SessionStatus,
    Subscription,
    UpdateOutcome,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    def create(self, session: CheckoutSession) -> CheckoutSession: ...
    def get(self, session_id: str) -> Optional[CheckoutSession]: ...
    def conditionally_update(
        self,
        session_id: str,
        expected_status: SessionStatus,
        new_status: SessionStatus,
        *,
        subscription: Optional[Subscription] = None,
        status_reason: Optional[str] = None,
    ) -> UpdateOutcome: ...
    def list(
        self,
        status: SessionStatus = SessionStatus.pending,
        expires_before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[str]: ...
    def record_notification(self, session_id: str, sent: bool) -> None: ...
    def delete(self, session_id: str, expected_status: SessionStatus) -> bool: ...
    def get_subscription(self, flidesk_id: str) -> Optional[Subscription]: ...


def _transition_patch(
    new_status: SessionStatus,
    subscription: Optional[Subscription],
    status_reason: Optional[str],
) -> Dict[str, Any]:
    patch: Dict[str, Any] = {"status": new_status, "updated_at": _now()}
    if subscription is not None:
        patch["flidesk_id"] = subscription.flidesk_id
        patch["completed_at"] = subscription.created_at
    if status_reason is not None:
        patch["status_reason"] = status_reason
    return patch


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, CheckoutSession] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def create(self, session: CheckoutSession) -> CheckoutSession:
        with self._lock:
            if session.session_id in self._sessions:
                raise DuplicateSession(
                    f"Checkout session {session.session_id} already exists",
                    session_id=session.session_id,
                )
            self._sessions[session.session_id] = session.model_copy(deep=True)
        return session

    def get(self, session_id: str) -> Optional[CheckoutSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def conditionally_update(
        self,
        session_id: str,
        expected_status: SessionStatus,
        new_status: SessionStatus,
        *,
        subscription: Optional[Subscription] = None,
        status_reason: Optional[str] = None,
    ) -> UpdateOutcome:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return UpdateOutcome.not_found
            if current.status != expected_status:
                return UpdateOutcome.conflict
            if subscription is not None:
                if subscription.flidesk_id in self._subscriptions:
                    return UpdateOutcome.id_taken
                self._subscriptions[subscription.flidesk_id] = subscription.model_copy(deep=True)
            patch = _transition_patch(new_status, subscription, status_reason)
            self._sessions[session_id] = current.model_copy(update=patch)
            return UpdateOutcome.applied

    def list(
        self,
        status: SessionStatus = SessionStatus.pending,
        expires_before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        with self._lock:
            matches = [s for s in self._sessions.values() if s.status == status]
        if expires_before is not None:
            matches = [s for s in matches if s.expires_at < expires_before]
        matches.sort(key=lambda s: s.expires_at)
        ids = [s.session_id for s in matches]
        return ids[:limit] if limit else ids

    def record_notification(self, session_id: str, sent: bool) -> None:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return
            self._sessions[session_id] = current.model_copy(
                update={"notification_sent": sent, "updated_at": _now()}
            )

    def delete(self, session_id: str, expected_status: SessionStatus) -> bool:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None or current.status != expected_status:
                return False
            del self._sessions[session_id]
            return True

    def get_subscription(self, flidesk_id: str) -> Optional[Subscription]:
        with self._lock:
            sub = self._subscriptions.get(flidesk_id)
            return sub.model_copy(deep=True) if sub else None


def _dump(model: CheckoutSession | Subscription) -> Dict[str, Any]:
    data = model.model_dump()
    if isinstance(data.get("status"), SessionStatus):
        data["status"] = data["status"].value
    return data


class FirestoreSessionStore:
    """Firestore-backed session store.

    ``list`` filters on ``status`` and ``expires_at`` together, which needs a
    composite index on the ``checkout_sessions`` collection.
    """

    _sessions_collection = "checkout_sessions"
    _subscriptions_collection = "subscriptions"

    def __init__(self, client: Optional[object] = None) -> None:
        try:
            from google.cloud import firestore  # type: ignore
        except Exception as exc:
            raise RuntimeError("google-cloud-firestore not installed") from exc
        from flidesk_engines.config import runtime_config

        project = runtime_config.get_firestore_project()
        if not project and client is None:
            raise RuntimeError("GCP project is required for Firestore session store")
        self._firestore = firestore
        self._client = client or firestore.Client(project=project)  # type: ignore[arg-type]

    def _sessions(self):
        return self._client.collection(self._sessions_collection)

    def _subscriptions(self):
        return self._client.collection(self._subscriptions_collection)

    def create(self, session: CheckoutSession) -> CheckoutSession:
        from google.api_core import exceptions as gexc  # type: ignore

        try:
            self._sessions().document(session.session_id).create(_dump(session))
        except gexc.AlreadyExists as exc:
            raise DuplicateSession(
                f"Checkout session {session.session_id} already exists",
                session_id=session.session_id,
            ) from exc
        except Exception as exc:
            logger.error(f"Failed to create checkout session '{session.session_id}': {exc}")
            raise StoreUnavailable("Session store unavailable", operation="create") from exc
        return session

    def get(self, session_id: str) -> Optional[CheckoutSession]:
        try:
            snap = self._sessions().document(session_id).get()
        except Exception as exc:
            logger.error(f"Failed to read checkout session '{session_id}': {exc}")
            raise StoreUnavailable("Session store unavailable", operation="get") from exc
        if not snap or not snap.exists:
            return None
        return CheckoutSession(**(snap.to_dict() or {}))

    def conditionally_update(
        self,
        session_id: str,
        expected_status: SessionStatus,
        new_status: SessionStatus,
        *,
        subscription: Optional[Subscription] = None,
        status_reason: Optional[str] = None,
    ) -> UpdateOutcome:
        session_ref = self._sessions().document(session_id)
        sub_ref = (
            self._subscriptions().document(subscription.flidesk_id) if subscription is not None else None
        )
        patch = _transition_patch(new_status, subscription, status_reason)
        patch["status"] = new_status.value

        @self._firestore.transactional
        def _apply(transaction) -> UpdateOutcome:
            # All reads must happen before the first write in a transaction.
            snap = session_ref.get(transaction=transaction)
            if not snap.exists:
                return UpdateOutcome.not_found
            if (snap.to_dict() or {}).get("status") != expected_status.value:
                return UpdateOutcome.conflict
            if sub_ref is not None:
                if sub_ref.get(transaction=transaction).exists:
                    return UpdateOutcome.id_taken
                transaction.create(sub_ref, _dump(subscription))
            transaction.update(session_ref, patch)
            return UpdateOutcome.applied

        try:
            return _apply(self._client.transaction())
        except Exception as exc:
            logger.error(f"Conditional update failed for checkout session '{session_id}': {exc}")
            raise StoreUnavailable(
                "Session store unavailable", operation="conditionally_update"
            ) from exc

    def list(
        self,
        status: SessionStatus = SessionStatus.pending,
        expires_before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        query = self._sessions().where("status", "==", status.value)
        if expires_before is not None:
            query = query.where("expires_at", "<", expires_before)
        query = query.order_by("expires_at")
        if limit:
            query = query.limit(limit)
        try:
            return [snap.id for snap in query.stream()]
        except Exception as exc:
            logger.error(f"Failed to list checkout sessions with status '{status.value}': {exc}")
            raise StoreUnavailable("Session store unavailable", operation="list") from exc

    def record_notification(self, session_id: str, sent: bool) -> None:
        try:
            self._sessions().document(session_id).update(
                {"notification_sent": sent, "updated_at": _now()}
            )
        except Exception as exc:
            logger.error(f"Failed to record notification for checkout session '{session_id}': {exc}")
            raise StoreUnavailable("Session store unavailable", operation="record_notification") from exc

    def delete(self, session_id: str, expected_status: SessionStatus) -> bool:
        session_ref = self._sessions().document(session_id)

        @self._firestore.transactional
        def _apply(transaction) -> bool:
            snap = session_ref.get(transaction=transaction)
            if not snap.exists or (snap.to_dict() or {}).get("status") != expected_status.value:
                return False
            transaction.delete(session_ref)
            return True

        try:
            return _apply(self._client.transaction())
        except Exception as exc:
            logger.error(f"Failed to delete checkout session '{session_id}': {exc}")
            raise StoreUnavailable("Session store unavailable", operation="delete") from exc

    def get_subscription(self, flidesk_id: str) -> Optional[Subscription]:
        try:
            snap = self._subscriptions().document(flidesk_id).get()
        except Exception as exc:
            logger.error(f"Failed to read subscription '{flidesk_id}': {exc}")
            raise StoreUnavailable(
                "Session store unavailable", operation="get_subscription"
            ) from exc
        if not snap or not snap.exists:
            return None
        return Subscription(**(snap.to_dict() or {}))
