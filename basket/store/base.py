"""The document store boundary consumed by the sync core.

Every adapter reports failures as :class:`basket.errors.SyncError`
subclasses; nothing past this module inspects raw store error codes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from basket.errors import SyncError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class Order:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class CollectionQuery:
    """A collection path plus equality/containment filters and ordering."""

    path: tuple[str, ...]
    filters: tuple[Filter, ...] = ()
    order: tuple[Order, ...] = ()

    @property
    def collection_path(self) -> str:
        return "/".join(self.path)


@dataclass(frozen=True)
class Document:
    id: str
    data: dict[str, Any]


@dataclass(frozen=True)
class Emission:
    """One delivery of a collection stream."""

    documents: tuple[Document, ...]
    from_cache: bool = False

    @property
    def authoritative(self) -> bool:
        return not self.from_cache


@dataclass(frozen=True)
class DocumentEmission:
    """One delivery of a single-document stream; ``document`` is None when absent."""

    document: Document | None
    from_cache: bool = False

    @property
    def authoritative(self) -> bool:
        return not self.from_cache


@dataclass(frozen=True)
class ArrayUnion:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class ArrayRemove:
    values: tuple[Any, ...]


class Subscription:
    """Handle for a live stream.

    Closing is idempotent. Callbacks wrapped with :meth:`guard` are dropped
    once the subscription is closed, including deliveries already in flight.
    """

    def __init__(self, unsubscribe: Callable[[], None] | None = None) -> None:
        self._unsubscribe = unsubscribe
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def bind(self, unsubscribe: Callable[[], None]) -> None:
        with self._lock:
            if self._active:
                self._unsubscribe = unsubscribe
                return
        unsubscribe()

    def guard(self, callback: Callable[..., None]) -> Callable[..., None]:
        def guarded(*args: Any, **kwargs: Any) -> None:
            if not self._active:
                logger.debug("Discarding delivery for a closed subscription.")
                return
            callback(*args, **kwargs)

        return guarded

    def close(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


CollectionCallback = Callable[[Emission], None]
DocumentCallback = Callable[[DocumentEmission], None]
ErrorCallback = Callable[[SyncError], None]


class DocumentStore(Protocol):
    """Subscribe, query and write primitives of the hosted document store."""

    def subscribe(
        self,
        query: CollectionQuery,
        on_next: CollectionCallback,
        on_error: ErrorCallback,
    ) -> Subscription: ...

    def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        on_next: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Subscription: ...

    def query(self, query: CollectionQuery) -> list[Document]: ...

    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def add(self, collection: str, data: dict[str, Any]) -> str: ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None: ...

    def delete(self, collection: str, doc_id: str) -> None: ...

    def server_timestamp(self) -> Any: ...
