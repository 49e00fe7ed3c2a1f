"""Shared session store singleton for routes/services."""
from __future__ import annotations

from typing import Optional

from flidesk_engines.checkout.repository import FirestoreSessionStore, InMemorySessionStore, SessionStore
from flidesk_engines.config import runtime_config


def _default_store() -> SessionStore:
    backend = runtime_config.get_checkout_backend()
    if backend == "firestore":
        try:
            return FirestoreSessionStore()
        except Exception as e:
            raise RuntimeError(f"Failed to initialize FirestoreSessionStore: {e}")
    if backend == "memory":
        return InMemorySessionStore()
    raise RuntimeError(f"CHECKOUT_BACKEND must be 'memory' or 'firestore'. Got: '{backend}'")


_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = _default_store()
    return _session_store


def set_session_store(store: Optional[SessionStore]) -> None:
    global _session_store
    _session_store = store
