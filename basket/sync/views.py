"""Per-screen view-models.

A view owns one reconciliation engine, the live subscriptions feeding it and
its registration with the mutation pipeline. Views are context managers;
leaving the block releases every subscription, and deliveries still in
flight afterwards are dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from basket import constants
from basket.core.models import ChatMessage, Group, ShoppingItem, ShoppingList
from basket.storage.snapshot import Snapshot
from basket.storage.visits import Scope
from basket.store.base import CollectionQuery, Document, DocumentEmission, Emission, Subscription

from . import pipeline, queries
from .completion import is_complete, with_completion
from .reconcile import ReconciliationEngine

if TYPE_CHECKING:
    from .session import SyncSession

logger = logging.getLogger(__name__)


class CollectionView:
    """Base class: one reconciled collection bound to one live query."""

    kind = ""
    scope: Scope | None = None

    def __init__(self, session: SyncSession, key: str) -> None:
        self.session = session
        self.key = key
        self.engine: ReconciliationEngine = ReconciliationEngine(
            sort_key=self.sort_key,
            overlay=self.overlay,
            policy=session.policy,
            match_window_ms=session.settings.match_window_ms,
            lock=session.lock,
            name=f"{self.kind} {key}".strip(),
        )
        self.engine.add_listener(self._changed)
        self._subscriptions: list[Subscription] = []
        self._focused = False
        self._closed = False
        self._unregister = session.registry.register(self.kind, key, self.engine)

        snapshot = session.snapshot
        if snapshot is not None:
            self.engine.seed(self.from_snapshot(snapshot))
        self._attach()

    # Hooks for subclasses

    def sort_key(self, entity: Any) -> Any:
        raise NotImplementedError

    def parse(self, doc: Document) -> Any:
        raise NotImplementedError

    def query(self) -> CollectionQuery:
        raise NotImplementedError

    def from_snapshot(self, snapshot: Snapshot) -> Sequence[Any]:
        raise NotImplementedError

    def overlay(self, entities: list, authoritative: bool) -> list:
        return entities

    def _attach(self) -> None:
        self._subscriptions.append(
            self.session.store.subscribe(self.query(), self._on_next, self.engine.fail)
        )

    # Stream handling

    def _on_next(self, emission: Emission) -> None:
        entities = [self.parse(doc) for doc in emission.documents]
        self.engine.apply(entities, emission.authoritative)

    def _changed(self, entities: tuple) -> None:
        if self._focused:
            self._mark_visited()

    def _mark_visited(self) -> None:
        if self.scope is not None:
            self.session.visits.mark_visited(self.scope, self.key)

    # Presentation

    @property
    def entities(self) -> tuple:
        return self.engine.entities

    @property
    def error(self) -> str | None:
        error = self.engine.last_error
        return error.code if error is not None else None

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_ids(self) -> set[str]:
        return {e.id for e in self.entities if getattr(e, "pending", False)}

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_ids())

    def focus(self) -> None:
        """Mark the scope visited now and keep it visited while focused."""
        self._focused = True
        self._mark_visited()

    def blur(self) -> None:
        self._focused = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        self.engine.close()
        self._unregister()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class ItemsView(CollectionView):
    """Items of one shopping list, with pending toggles overlaid."""

    kind = pipeline.ITEMS
    scope = Scope.LIST

    def __init__(self, session: SyncSession, list_id: str) -> None:
        self.shopping_list: ShoppingList | None = None
        super().__init__(session, list_id)

    @property
    def list_id(self) -> str:
        return self.key

    def sort_key(self, item: ShoppingItem) -> Any:
        return (item.is_done, -item.created_at)

    def parse(self, doc: Document) -> ShoppingItem:
        return ShoppingItem.from_document(doc.id, doc.data)

    def query(self) -> CollectionQuery:
        return queries.items_for_list(self.list_id)

    def from_snapshot(self, snapshot: Snapshot) -> list[ShoppingItem]:
        self.shopping_list = snapshot.shopping_list(self.list_id)
        return snapshot.items_for_list(self.list_id)

    def overlay(self, items: list, authoritative: bool) -> list:
        return self.session.ledger.overlay(items)

    def _changed(self, items: tuple) -> None:
        super()._changed(items)
        self.session.pipeline.refresh_completion(self.list_id)

    def _attach(self) -> None:
        super()._attach()
        self._subscriptions.append(
            self.session.store.subscribe_document(
                constants.SHOPPING_LISTS, self.list_id, self._on_list, self._on_list_error
            )
        )

    def _on_list(self, emission: DocumentEmission) -> None:
        with self.session.lock:
            if emission.document is None:
                if emission.authoritative:
                    self.shopping_list = None
                return
            self.shopping_list = ShoppingList.from_document(
                emission.document.id, emission.document.data
            )

    def _on_list_error(self, error: Any) -> None:
        logger.warning(f"Error listening to list {self.list_id}: {error.code}")

    @property
    def items(self) -> tuple[ShoppingItem, ...]:
        return self.engine.entities

    @property
    def is_complete(self) -> bool:
        return is_complete(self.items)

    def pending_ids(self) -> set[str]:
        ledger = self.session.ledger.get_all()
        return {i.id for i in self.items if i.pending or i.id in ledger}

    def unread_ids(self) -> set[str]:
        return self.session.unread.unread_item_ids(self.list_id, self.items)

    @property
    def has_unread(self) -> bool:
        return bool(self.unread_ids())

    def to_dict(self) -> dict[str, Any]:
        pending = self.pending_ids()
        unread = self.unread_ids()
        return {
            "list": self.shopping_list.to_dict() if self.shopping_list else None,
            "items": [
                {**item.to_dict(), "pending": item.id in pending, "unread": item.id in unread}
                for item in self.items
            ],
            "isComplete": self.is_complete,
            "hasPending": bool(pending),
            "hasUnread": bool(unread),
            "error": self.error,
        }


class ListsView(CollectionView):
    """Shopping lists of one group."""

    kind = pipeline.LISTS
    scope = Scope.GROUP

    @property
    def group_id(self) -> str:
        return self.key

    def sort_key(self, shopping_list: ShoppingList) -> Any:
        return (shopping_list.is_complete, -shopping_list.created_at)

    def parse(self, doc: Document) -> ShoppingList:
        return ShoppingList.from_document(doc.id, doc.data)

    def query(self) -> CollectionQuery:
        return queries.lists_for_group(self.group_id)

    def from_snapshot(self, snapshot: Snapshot) -> list[ShoppingList]:
        return snapshot.lists_for_group(self.group_id)

    def overlay(self, lists: list, authoritative: bool) -> list:
        """Derive each list's completion flag from the items this device knows.

        Items of an open items screen win. Otherwise the snapshot items with
        pending toggles applied are used, unless the lists came from the
        server and nothing is pending, in which case the stored flag stands.
        """
        ledger_busy = len(self.session.ledger) > 0
        return [self._with_derived_completion(lst, authoritative, ledger_busy) for lst in lists]

    def _with_derived_completion(
        self, shopping_list: ShoppingList, authoritative: bool, ledger_busy: bool
    ) -> ShoppingList:
        items = self.session.pipeline.displayed_items(shopping_list.id)
        if items is not None:
            return with_completion(shopping_list, items)
        snapshot = self.session.snapshot
        if snapshot is None or (authoritative and not ledger_busy):
            return shopping_list
        items = self.session.ledger.overlay(snapshot.items_for_list(shopping_list.id))
        return with_completion(shopping_list, items)

    @property
    def lists(self) -> tuple[ShoppingList, ...]:
        return self.engine.entities

    def unread_ids(self) -> set[str]:
        return {lst.id for lst in self.lists if self.session.unread.list_unread(lst)}

    @property
    def has_unread(self) -> bool:
        return bool(self.unread_ids())

    def to_dict(self) -> dict[str, Any]:
        unread = self.unread_ids()
        return {
            "groupId": self.group_id,
            "groupName": self.session.names.get(self.group_id),
            "lists": [
                {**lst.to_dict(), "pending": lst.pending, "unread": lst.id in unread}
                for lst in self.lists
            ],
            "hasPending": self.has_pending,
            "hasUnread": bool(unread),
            "error": self.error,
        }


class ChatView(CollectionView):
    """Messages of one group chat, newest first."""

    kind = pipeline.CHAT
    scope = Scope.CHAT

    @property
    def group_id(self) -> str:
        return self.key

    def sort_key(self, message: ChatMessage) -> Any:
        return -message.created_at

    def parse(self, doc: Document) -> ChatMessage:
        return ChatMessage.from_document(doc.id, {**doc.data, "groupId": self.group_id})

    def query(self) -> CollectionQuery:
        return queries.chat_messages(self.group_id)

    def from_snapshot(self, snapshot: Snapshot) -> list[ChatMessage]:
        return snapshot.messages_for_group(self.group_id)

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self.engine.entities

    @property
    def has_unread(self) -> bool:
        return self.session.unread.chat_unread(self.group_id, self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupId": self.group_id,
            "messages": [{**m.to_dict(), "pending": m.pending} for m in self.messages],
            "hasPending": self.has_pending,
            "hasUnread": self.has_unread,
            "error": self.error,
        }


class GroupsView(CollectionView):
    """Groups the signed-in user belongs to."""

    kind = pipeline.GROUPS

    def __init__(self, session: SyncSession) -> None:
        super().__init__(session, session.user_id)

    def sort_key(self, group: Group) -> Any:
        return -group.created_at

    def parse(self, doc: Document) -> Group:
        return Group.from_document(doc.id, doc.data)

    def query(self) -> CollectionQuery:
        return queries.groups_for_user(self.session.user_id)

    def from_snapshot(self, snapshot: Snapshot) -> list[Group]:
        return list(snapshot.groups)

    def _changed(self, groups: tuple) -> None:
        self.session.names.remember(groups)

    @property
    def groups(self) -> tuple[Group, ...]:
        return self.engine.entities

    def group_unread(self, group_id: str) -> bool:
        """Unread activity in the group's chat or any of its lists."""
        lists = self.session.lists_view(group_id)
        chat = self.session.chat_view(group_id)
        return self.session.unread.group_unread(group_id, lists.lists, chat.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": [
                {
                    **group.to_dict(),
                    "isOwner": group.owner_id == self.session.user_id,
                    "unread": self.group_unread(group.id),
                }
                for group in self.groups
            ],
            "error": self.error,
        }
