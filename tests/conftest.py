"""Common utilities for tests."""

from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Any, Iterator, Optional

import pytest
from mockfirestore import CollectionReference, Query
from mockfirestore.document import DocumentReference

from basket.core.timeutil import from_millis
from basket.errors import SyncError, UnexpectedError
from basket.store.base import (
    ArrayRemove,
    ArrayUnion,
    CollectionQuery,
    Document,
    DocumentEmission,
    Emission,
    Subscription,
)


class MockArrayUnion:
    def __init__(self, values: list[Any]) -> None:
        self.values = values

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


class MockArrayRemove:
    def __init__(self, values: list[Any]) -> None:
        self.values = values

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


def patch_mockfirestore() -> None:
    """Apply monkeypatches to mockfirestore to support FieldFilter and array ops."""

    def collection_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(CollectionReference, "_where"):
        CollectionReference._where = CollectionReference.where
        CollectionReference.where = collection_where

    def query_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(Query, "_where"):
        Query._where = Query.where
        Query.where = query_where

    if not hasattr(DocumentReference, "_orig_update"):
        DocumentReference._orig_update = DocumentReference.update

        def patched_update(self: Any, data: dict[str, Any]) -> Any:
            current_data = self.get().to_dict() or {}
            new_data = {}
            for k, v in data.items():
                if isinstance(v, MockArrayUnion):
                    merged = list(current_data.get(k) or [])
                    for item in v.values:
                        if item not in merged:
                            merged.append(item)
                    new_data[k] = merged
                elif isinstance(v, MockArrayRemove):
                    existing = current_data.get(k) or []
                    new_data[k] = [i for i in existing if i not in v.values]
                else:
                    new_data[k] = v
            return self._orig_update(new_data)

        DocumentReference.update = patched_update


def _matches(data: dict[str, Any], query: CollectionQuery) -> bool:
    for f in query.filters:
        value = data.get(f.field)
        if f.op == "==" and value != f.value:
            return False
        if f.op == "array_contains" and f.value not in (value or ()):
            return False
    return True


class FakeDocumentStore:
    """In-memory document store whose streams are driven by the test.

    Writes change the stored data but never emit on their own; tests call
    :meth:`emit` to deliver exactly the emissions they want, in any order.
    Queue failures with :meth:`fail_next`.
    """

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.data: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple] = []
        self.now = now
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._subscriptions: list[tuple[CollectionQuery, Any, Any, Subscription]] = []
        self._doc_subscriptions: list[tuple[str, str, Any, Any, Subscription]] = []
        self._ids = itertools.count(1)

    # Test controls

    def fail_next(self, op: str, error: Exception, times: int = 1) -> None:
        self._failures[op].extend([error] * times)

    def _maybe_fail(self, op: str) -> None:
        if self._failures[op]:
            raise self._failures[op].pop(0)

    def put(self, collection: str, doc_id: str, **data: Any) -> Document:
        self.data[collection][doc_id] = data
        return Document(doc_id, dict(data))

    def results(self, query: CollectionQuery) -> list[Document]:
        return [
            Document(doc_id, dict(data))
            for doc_id, data in self.data[query.collection_path].items()
            if _matches(data, query)
        ]

    def emit(
        self,
        query: CollectionQuery,
        documents: list[Document] | None = None,
        from_cache: bool = False,
    ) -> int:
        """Deliver one emission to every live subscription on ``query``."""
        if documents is None:
            documents = self.results(query)
        emission = Emission(tuple(documents), from_cache=from_cache)
        delivered = 0
        for sub_query, on_next, _, subscription in list(self._subscriptions):
            if sub_query == query:
                on_next(emission)
                delivered += subscription.active
        return delivered

    def emit_error(self, query: CollectionQuery, error: SyncError) -> None:
        for sub_query, _, on_error, _ in list(self._subscriptions):
            if sub_query == query:
                on_error(error)

    def emit_document(
        self, collection: str, doc_id: str, data: dict | None, from_cache: bool = False
    ) -> None:
        document = Document(doc_id, data) if data is not None else None
        for sub_collection, sub_id, on_next, _, _ in list(self._doc_subscriptions):
            if (sub_collection, sub_id) == (collection, doc_id):
                on_next(DocumentEmission(document, from_cache=from_cache))

    def writes(self, op: str | None = None, collection: str | None = None) -> list[tuple]:
        return [
            call
            for call in self.calls
            if call[0] in ("add", "set", "update", "delete")
            and (op is None or call[0] == op)
            and (collection is None or call[1] == collection)
        ]

    @property
    def active_subscriptions(self) -> int:
        return sum(
            sub.active
            for sub in [s[3] for s in self._subscriptions]
            + [s[4] for s in self._doc_subscriptions]
        )

    # DocumentStore

    def subscribe(self, query, on_next, on_error) -> Subscription:
        subscription = Subscription()
        self._subscriptions.append(
            (query, subscription.guard(on_next), subscription.guard(on_error), subscription)
        )
        return subscription

    def subscribe_document(self, collection, doc_id, on_next, on_error) -> Subscription:
        subscription = Subscription()
        self._doc_subscriptions.append(
            (
                collection,
                doc_id,
                subscription.guard(on_next),
                subscription.guard(on_error),
                subscription,
            )
        )
        return subscription

    def query(self, query: CollectionQuery) -> list[Document]:
        self.calls.append(("query", query.collection_path))
        self._maybe_fail("query")
        return self.results(query)

    def get(self, collection: str, doc_id: str) -> Document | None:
        self.calls.append(("get", collection, doc_id))
        self._maybe_fail("get")
        data = self.data[collection].get(doc_id)
        return Document(doc_id, dict(data)) if data is not None else None

    def add(self, collection: str, data: dict[str, Any]) -> str:
        self.calls.append(("add", collection, data))
        self._maybe_fail("add")
        doc_id = f"doc{next(self._ids)}"
        self.data[collection][doc_id] = dict(data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.calls.append(("set", collection, doc_id, data))
        self._maybe_fail("set")
        self.data[collection][doc_id] = dict(data)

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self.calls.append(("update", collection, doc_id, fields))
        self._maybe_fail("update")
        current = self.data[collection].get(doc_id)
        if current is None:
            raise UnexpectedError(code="not-found")
        for key, value in fields.items():
            if isinstance(value, ArrayUnion):
                merged = list(current.get(key) or [])
                merged.extend(v for v in value.values if v not in merged)
                value = merged
            elif isinstance(value, ArrayRemove):
                value = [v for v in current.get(key) or [] if v not in value.values]
            current[key] = value

    def delete(self, collection: str, doc_id: str) -> None:
        self.calls.append(("delete", collection, doc_id))
        self._maybe_fail("delete")
        self.data[collection].pop(doc_id, None)

    def server_timestamp(self) -> Any:
        return from_millis(self.now)


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None) -> None:
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> Any:
        if self.cancelled:
            return None
        return self.function(*self.args, **self.kwargs)


class FakeTimers:
    """Timer factory that records timers instead of starting threads."""

    def __init__(self) -> None:
        self.created: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None) -> FakeTimer:
        timer = FakeTimer(interval, function, args, kwargs)
        self.created.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer | None:
        return self.created[-1] if self.created else None

    @property
    def live(self) -> list[FakeTimer]:
        return [t for t in self.created if t.started and not t.cancelled]


class Clock:
    """A settable millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()
