from datetime import timedelta
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gexc

from flidesk_engines.checkout.errors import DuplicateSession, StoreUnavailable
from flidesk_engines.checkout.models import ReconcileStatus, SessionStatus, Subscription, UpdateOutcome
from flidesk_engines.checkout.reconciler import Reconciler
from flidesk_engines.checkout.repository import FirestoreSessionStore
from flidesk_engines.checkout.tests.fixtures import NOW, FixedClock, RecordingNotifier, make_session, proof


class _FakeFirestoreSnapshot:
    def __init__(self, doc_id, data, exists: bool):
        self.id = doc_id
        self._data = data
        self.exists = exists

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class _FakeFirestoreDoc:
    def __init__(self, doc_id):
        self.id = doc_id
        self._data = None
        self.exists = False

    def create(self, payload):
        if self.exists:
            raise gexc.AlreadyExists(f"Document already exists: {self.id}")
        self._data = dict(payload)
        self.exists = True

    def get(self, transaction=None):
        return _FakeFirestoreSnapshot(self.id, self._data, self.exists)

    def update(self, patch):
        if not self.exists:
            raise gexc.NotFound(f"No document to update: {self.id}")
        self._data.update(patch)

    def delete(self):
        self._data = None
        self.exists = False


class _UnavailableDoc(_FakeFirestoreDoc):
    def get(self, transaction=None):
        raise gexc.ServiceUnavailable("firestore backend unavailable")

    def create(self, payload):
        raise gexc.ServiceUnavailable("firestore backend unavailable")


class _FakeFirestoreQuery:
    def __init__(self, collection, filters=(), order=None, limit=None):
        self._collection = collection
        self._filters = tuple(filters)
        self._order = order
        self._limit = limit

    def where(self, field, op, value):
        return _FakeFirestoreQuery(self._collection, self._filters + ((field, op, value),), self._order, self._limit)

    def order_by(self, field):
        return _FakeFirestoreQuery(self._collection, self._filters, field, self._limit)

    def limit(self, count):
        return _FakeFirestoreQuery(self._collection, self._filters, self._order, count)

    def stream(self):
        snaps = [doc.get() for doc in self._collection._docs.values() if doc.exists]
        for field, op, value in self._filters:
            if op == "==":
                snaps = [s for s in snaps if s.to_dict().get(field) == value]
            elif op == "<":
                snaps = [s for s in snaps if s.to_dict().get(field) < value]
        if self._order:
            snaps.sort(key=lambda s: s.to_dict()[self._order])
        return iter(snaps[: self._limit] if self._limit else snaps)


class _FakeFirestoreCollection:
    def __init__(self, doc_factory):
        self._docs = {}
        self._doc_factory = doc_factory

    def document(self, doc_id):
        doc = self._docs.get(doc_id)
        if doc is None:
            doc = self._doc_factory(doc_id)
            self._docs[doc_id] = doc
        return doc

    def where(self, field, op, value):
        return _FakeFirestoreQuery(self).where(field, op, value)


class _FakeTransaction:
    def __init__(self):
        self.writes = []

    def create(self, ref, payload):
        ref.create(payload)
        self.writes.append(("create", ref.id))

    def update(self, ref, patch):
        ref.update(patch)
        self.writes.append(("update", ref.id))

    def delete(self, ref):
        ref.delete()
        self.writes.append(("delete", ref.id))


class _FakeFirestoreClient:
    def __init__(self, doc_factory=_FakeFirestoreDoc):
        self._collections = {}
        self._doc_factory = doc_factory
        self.transactions = []

    def collection(self, name):
        collection = self._collections.get(name)
        if collection is None:
            collection = _FakeFirestoreCollection(self._doc_factory)
            self._collections[name] = collection
        return collection

    def transaction(self):
        transaction = _FakeTransaction()
        self.transactions.append(transaction)
        return transaction


def _store(client=None):
    client = client or _FakeFirestoreClient()
    store = FirestoreSessionStore(client=client)
    # Runs the transactional body once against the fake transaction.
    store._firestore = SimpleNamespace(transactional=lambda fn: fn)
    return store, client


def _subscription(flidesk_id="FD-AAAAAAAAAA", session_id="abc123"):
    return Subscription(
        flidesk_id=flidesk_id,
        session_id=session_id,
        email="owner@acme.test",
        plan_id="pro_monthly",
        amount=4900,
        payment_reference="pi_123",
    )


def test_create_and_get_round_trip_status():
    store, _ = _store()
    store.create(make_session())

    session = store.get("abc123")
    assert session.status == SessionStatus.pending
    assert session.payload["onboarding"]["seats"] == 3
    assert store.get("missing") is None

    with pytest.raises(DuplicateSession):
        store.create(make_session())


def test_completion_applies_once():
    store, _ = _store()
    store.create(make_session())
    sub = _subscription()

    first = store.conditionally_update("abc123", SessionStatus.pending, SessionStatus.completed, subscription=sub)
    second = store.conditionally_update(
        "abc123", SessionStatus.pending, SessionStatus.completed, subscription=_subscription("FD-BBBBBBBBBB")
    )

    assert first == UpdateOutcome.applied
    assert second == UpdateOutcome.conflict
    session = store.get("abc123")
    assert session.status == SessionStatus.completed
    assert session.flidesk_id == "FD-AAAAAAAAAA"
    assert store.get_subscription("FD-AAAAAAAAAA").session_id == "abc123"
    assert store.get_subscription("FD-BBBBBBBBBB") is None


def test_taken_id_writes_nothing():
    store, client = _store()
    store.create(make_session("first"))
    store.create(make_session("second"))
    store.conditionally_update("first", SessionStatus.pending, SessionStatus.completed, subscription=_subscription(session_id="first"))

    outcome = store.conditionally_update(
        "second", SessionStatus.pending, SessionStatus.completed, subscription=_subscription(session_id="second")
    )

    assert outcome == UpdateOutcome.id_taken
    assert client.transactions[-1].writes == []
    assert store.get("second").status == SessionStatus.pending
    assert store.get("second").flidesk_id is None
    assert store.get_subscription("FD-AAAAAAAAAA").session_id == "first"


def test_missing_session_is_not_found():
    store, client = _store()
    outcome = store.conditionally_update("ghost", SessionStatus.pending, SessionStatus.expired)
    assert outcome == UpdateOutcome.not_found
    assert client.transactions[-1].writes == []


def test_status_reason_is_recorded():
    store, _ = _store()
    store.create(make_session())
    outcome = store.conditionally_update(
        "abc123", SessionStatus.pending, SessionStatus.failed, status_reason="async_payment_failed"
    )
    assert outcome == UpdateOutcome.applied
    assert store.get("abc123").status_reason == "async_payment_failed"


def test_list_filters_orders_and_limits():
    store, _ = _store()
    store.create(make_session("later", expires_in=-timedelta(minutes=5)))
    store.create(make_session("earlier", expires_in=-timedelta(hours=2)))
    store.create(make_session("future", expires_in=timedelta(hours=2)))
    store.create(make_session("done", expires_in=-timedelta(hours=3), status=SessionStatus.completed))

    assert store.list(expires_before=NOW) == ["earlier", "later"]
    assert store.list(expires_before=NOW, limit=1) == ["earlier"]
    assert store.list(status=SessionStatus.completed) == ["done"]


def test_delete_only_removes_matching_status():
    store, _ = _store()
    store.create(make_session("open"))
    store.create(make_session("stale", status=SessionStatus.expired))

    assert store.delete("open", SessionStatus.expired) is False
    assert store.delete("stale", SessionStatus.expired) is True
    assert store.delete("stale", SessionStatus.expired) is False
    assert store.get("open") is not None
    assert store.get("stale") is None


def test_record_notification_updates_session():
    store, _ = _store()
    store.create(make_session())
    store.record_notification("abc123", True)
    assert store.get("abc123").notification_sent is True


def test_backend_errors_surface_as_store_unavailable():
    store, _ = _store(_FakeFirestoreClient(doc_factory=_UnavailableDoc))

    with pytest.raises(StoreUnavailable) as excinfo:
        store.get("abc123")
    assert excinfo.value.retryable is True
    assert excinfo.value.details == {"operation": "get"}

    with pytest.raises(StoreUnavailable):
        store.create(make_session())
    with pytest.raises(StoreUnavailable):
        store.conditionally_update("abc123", SessionStatus.pending, SessionStatus.expired)
    with pytest.raises(StoreUnavailable):
        store.delete("abc123", SessionStatus.expired)


def test_reconcile_against_firestore_store():
    store, _ = _store()
    store.create(make_session())
    notifier = RecordingNotifier()
    reconciler = Reconciler(store, notifier, clock=FixedClock())

    first = reconciler.reconcile("abc123", proof())
    second = reconciler.reconcile("abc123", proof())

    assert first.status == ReconcileStatus.completed
    assert second.status == ReconcileStatus.already_processed
    assert second.flidesk_id == first.flidesk_id
    assert len(notifier.sent) == 1
    assert store.get("abc123").notification_sent is True
