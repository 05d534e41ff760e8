"""Tests for the Firestore document store adapter."""

from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from firebase_admin import firestore
from google.api_core import exceptions as api_exceptions
from mockfirestore import MockFirestore

from basket.errors import PermissionDeniedError, TransientError, UnexpectedError
from basket.store.base import ArrayRemove, ArrayUnion
from basket.store.firestore import FirestoreDocumentStore
from basket.sync import queries
from tests.conftest import MockArrayRemove, MockArrayUnion, patch_mockfirestore


class FirestoreStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        patch_mockfirestore()
        self.db = MockFirestore()
        self.store = FirestoreDocumentStore(self.db)

        self.db.collection("groups").document("g1").set(
            {"name": "Home", "ownerId": "alice", "members": ["alice", "bob"], "createdAt": 2}
        )
        self.db.collection("groups").document("g2").set(
            {"name": "Work", "ownerId": "bob", "members": ["bob"], "createdAt": 1}
        )

    def test_query_applies_filters(self) -> None:
        docs = self.store.query(queries.groups_for_user("alice"))
        self.assertEqual([d.id for d in docs], ["g1"])
        self.assertEqual(docs[0].data["name"], "Home")

    def test_query_with_ordering(self) -> None:
        items = self.db.collection("items")
        items.document("i1").set({"shoppingListId": "l1", "isDone": False, "createdAt": 1})
        items.document("i2").set({"shoppingListId": "l1", "isDone": True, "createdAt": 2})
        items.document("i3").set({"shoppingListId": "l2", "isDone": False, "createdAt": 3})

        docs = self.store.query(queries.items_for_list("l1"))

        self.assertEqual({d.id for d in docs}, {"i1", "i2"})

    def test_get(self) -> None:
        self.assertEqual(self.store.get("groups", "g1").data["ownerId"], "alice")
        self.assertIsNone(self.store.get("groups", "missing"))

    def test_add_and_set(self) -> None:
        doc_id = self.store.add("shoppingLists", {"groupId": "g1", "name": "Food"})
        self.assertEqual(self.store.get("shoppingLists", doc_id).data["name"], "Food")

        self.store.set("users", "alice", {"displayName": "alice"})
        self.assertEqual(self.store.get("users", "alice").data, {"displayName": "alice"})

    @patch("basket.store.firestore.firestore.ArrayRemove", MockArrayRemove)
    @patch("basket.store.firestore.firestore.ArrayUnion", MockArrayUnion)
    def test_update_translates_array_operations(self) -> None:
        self.store.update("groups", "g1", {"members": ArrayUnion(("carol", "bob"))})
        self.assertEqual(
            self.store.get("groups", "g1").data["members"], ["alice", "bob", "carol"]
        )

        self.store.update("groups", "g1", {"members": ArrayRemove(("bob",))})
        self.assertEqual(self.store.get("groups", "g1").data["members"], ["alice", "carol"])

    def test_delete(self) -> None:
        self.store.delete("groups", "g2")
        self.assertIsNone(self.store.get("groups", "g2"))

    def test_server_timestamp(self) -> None:
        self.assertIs(self.store.server_timestamp(), firestore.SERVER_TIMESTAMP)


class FirestoreErrorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = MagicMock()
        self.store = FirestoreDocumentStore(self.db)
        self.doc_ref = self.db.collection.return_value.document.return_value

    def test_unavailable_is_transient(self) -> None:
        self.doc_ref.get.side_effect = api_exceptions.ServiceUnavailable("down")
        with self.assertRaises(TransientError) as ctx:
            self.store.get("items", "i1")
        self.assertEqual(ctx.exception.code, "unavailable")

    def test_permission_denied(self) -> None:
        self.doc_ref.update.side_effect = api_exceptions.PermissionDenied("no")
        with self.assertRaises(PermissionDeniedError):
            self.store.update("items", "i1", {"isDone": True})

    def test_missing_document_on_update(self) -> None:
        self.doc_ref.update.side_effect = api_exceptions.NotFound("gone")
        with self.assertRaises(UnexpectedError) as ctx:
            self.store.update("items", "i1", {"isDone": True})
        self.assertEqual(ctx.exception.code, "not-found")

    def test_network_failure_on_query(self) -> None:
        self.db.collection.return_value.where.return_value.stream.side_effect = ConnectionError()
        with self.assertRaises(TransientError) as ctx:
            self.store.query(queries.groups_for_user("alice"))
        self.assertEqual(ctx.exception.code, "network-request-failed")


def _snapshot(doc_id: str, data: dict | None) -> MagicMock:
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.exists = data is not None
    snapshot.to_dict.return_value = data
    return snapshot


class FirestoreListenTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = MagicMock()
        self.store = FirestoreDocumentStore(self.db)
        self.query_ref = self.db.collection.return_value.where.return_value

    def test_subscribe_delivers_server_emissions(self) -> None:
        received = []
        subscription = self.store.subscribe(
            queries.groups_for_user("alice"), received.append, MagicMock()
        )
        callback = self.query_ref.on_snapshot.call_args[0][0]

        callback([_snapshot("g1", {"name": "Home"})], [], None)

        self.assertEqual(len(received), 1)
        self.assertTrue(received[0].authoritative)
        self.assertEqual(received[0].documents[0].id, "g1")

        subscription.close()
        self.query_ref.on_snapshot.return_value.unsubscribe.assert_called_once()
        callback([], [], None)
        self.assertEqual(len(received), 1)

    def test_registration_failure_reports_error(self) -> None:
        self.query_ref.on_snapshot.side_effect = api_exceptions.PermissionDenied("no")
        errors = []

        subscription = self.store.subscribe(
            queries.groups_for_user("alice"), MagicMock(), errors.append
        )

        self.assertFalse(subscription.active)
        self.assertIsInstance(errors[0], PermissionDeniedError)

    def test_subscribe_document(self) -> None:
        received = []
        doc_ref = self.db.collection.return_value.document.return_value
        self.store.subscribe_document("users", "alice", received.append, MagicMock())
        callback = doc_ref.on_snapshot.call_args[0][0]

        callback([_snapshot("alice", {"displayName": "al"})], [], None)
        callback([_snapshot("alice", None)], [], None)

        self.assertEqual(received[0].document.data, {"displayName": "al"})
        self.assertIsNone(received[1].document)

    def test_failing_listener_is_logged(self) -> None:
        def explode(emission):
            raise RuntimeError("boom")

        self.store.subscribe(queries.groups_for_user("alice"), explode, MagicMock())
        callback = self.query_ref.on_snapshot.call_args[0][0]

        with self.assertLogs("basket.store.firestore", level="ERROR"):
            callback([], [], None)
