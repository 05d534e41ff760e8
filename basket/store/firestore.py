"""Document store adapter backed by Cloud Firestore through the Admin SDK."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore

from basket.errors import classify_error

from .base import (
    ArrayRemove,
    ArrayUnion,
    CollectionCallback,
    CollectionQuery,
    Document,
    DocumentCallback,
    DocumentEmission,
    Emission,
    ErrorCallback,
    Subscription,
)

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

logger = logging.getLogger(__name__)


def _to_document(snapshot: Any) -> Document:
    return Document(id=snapshot.id, data=snapshot.to_dict() or {})


class FirestoreDocumentStore:
    """Wraps a Firestore client.

    The Admin SDK keeps no offline cache, so every delivery it makes is
    server-confirmed and reported with ``from_cache=False``.
    """

    def __init__(self, db: Client | None = None) -> None:
        self.db = db if db is not None else firestore.client()

    def _build_query(self, query: CollectionQuery) -> Any:
        ref = self.db.collection(query.collection_path)
        for f in query.filters:
            ref = ref.where(filter=firestore.FieldFilter(f.field, f.op, f.value))
        for order in query.order:
            direction = (
                firestore.Query.DESCENDING if order.descending else firestore.Query.ASCENDING
            )
            ref = ref.order_by(order.field, direction=direction)
        return ref

    def _translate(self, fields: dict[str, Any]) -> dict[str, Any]:
        translated = {}
        for key, value in fields.items():
            if isinstance(value, ArrayUnion):
                value = firestore.ArrayUnion(list(value.values))
            elif isinstance(value, ArrayRemove):
                value = firestore.ArrayRemove(list(value.values))
            translated[key] = value
        return translated

    def subscribe(
        self,
        query: CollectionQuery,
        on_next: CollectionCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        subscription = Subscription()
        deliver = subscription.guard(on_next)

        def callback(docs: list[Any], changes: Any, read_time: Any) -> None:
            try:
                deliver(Emission(tuple(_to_document(d) for d in docs), from_cache=False))
            except Exception as e:
                logger.error(f"Error handling {query.collection_path} snapshot: {e}")

        try:
            watch = self._build_query(query).on_snapshot(callback)
        except Exception as e:
            subscription.close()
            on_error(classify_error(e))
            return subscription
        subscription.bind(watch.unsubscribe)
        return subscription

    def subscribe_document(
        self,
        collection: str,
        doc_id: str,
        on_next: DocumentCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        subscription = Subscription()
        deliver = subscription.guard(on_next)

        def callback(docs: list[Any], changes: Any, read_time: Any) -> None:
            snapshot = docs[0] if docs else None
            document = _to_document(snapshot) if snapshot and snapshot.exists else None
            try:
                deliver(DocumentEmission(document, from_cache=False))
            except Exception as e:
                logger.error(f"Error handling {collection}/{doc_id} snapshot: {e}")

        try:
            watch = self.db.collection(collection).document(doc_id).on_snapshot(callback)
        except Exception as e:
            subscription.close()
            on_error(classify_error(e))
            return subscription
        subscription.bind(watch.unsubscribe)
        return subscription

    def query(self, query: CollectionQuery) -> list[Document]:
        try:
            return [_to_document(doc) for doc in self._build_query(query).stream()]
        except Exception as e:
            raise classify_error(e) from e

    def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            snapshot = self.db.collection(collection).document(doc_id).get()
        except Exception as e:
            raise classify_error(e) from e
        return _to_document(snapshot) if snapshot.exists else None

    def add(self, collection: str, data: dict[str, Any]) -> str:
        try:
            _, ref = self.db.collection(collection).add(self._translate(data))
        except Exception as e:
            raise classify_error(e) from e
        return ref.id

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            self.db.collection(collection).document(doc_id).set(self._translate(data))
        except Exception as e:
            raise classify_error(e) from e

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        try:
            self.db.collection(collection).document(doc_id).update(self._translate(fields))
        except Exception as e:
            raise classify_error(e) from e

    def delete(self, collection: str, doc_id: str) -> None:
        try:
            self.db.collection(collection).document(doc_id).delete()
        except Exception as e:
            raise classify_error(e) from e

    def server_timestamp(self) -> Any:
        return firestore.SERVER_TIMESTAMP
