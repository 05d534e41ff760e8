"""Optimistic mutation pipeline.

Each user action is applied to the open views first, then written to the
store. The outcome of the remote write decides what happens to the local
change:

* confirmed: the local change stands and its bookkeeping is cleared;
* deferred: a connectivity failure; done toggles stay in the durable ledger
  and are retried by :meth:`MutationPipeline.drain_pending`;
* rejected: the local change is rolled back and a notice is posted.

Validation and unexpected failures are raised to the caller; transient and
permission failures are reported through the returned :class:`Outcome` and
the :class:`Notices` board.
"""

from __future__ import annotations

import dataclasses
import enum
import itertools
import logging
import secrets
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from basket import constants
from basket.core.models import (
    ChatMessage,
    Group,
    ShoppingItem,
    ShoppingList,
    is_temporary_id,
)
from basket.core.timeutil import from_millis, now_ms
from basket.errors import (
    DuplicateResourceError,
    NotFoundError,
    PermissionDeniedError,
    SyncError,
    TransientError,
    UnexpectedError,
    ValidationError,
    user_message,
)
from basket.storage.ledger import PendingToggleLedger
from basket.store.base import ArrayRemove, ArrayUnion, DocumentStore
from basket.validation import (
    UserDirectory,
    sanitize_input,
    validate_item_name,
    validate_message,
    validate_name,
    validate_username,
)

from . import queries
from .completion import recompute_list_completion, touch_list, with_completion
from .connectivity import ConnectivityMonitor
from .reconcile import NameCache, ReconciliationEngine

logger = logging.getLogger(__name__)

ITEMS = "items"
LISTS = "lists"
CHAT = "chat"
GROUPS = "groups"


class Outcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    DEFERRED = "deferred"
    REJECTED = "rejected"


def new_temp_id(clock: Callable[[], int] = now_ms) -> str:
    """Return a client-side id for an entity the store has not assigned yet."""
    return f"{constants.TEMP_ID_PREFIX}{clock()}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class PendingOperation:
    id: str
    kind: str
    description: str
    timestamp: int


class PendingOperations:
    """In-flight mutations, for sync indicators."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self.clock = clock
        self._operations: dict[str, PendingOperation] = {}
        self._lock = threading.Lock()

    def register(self, op_id: str, kind: str, description: str) -> PendingOperation:
        operation = PendingOperation(op_id, kind, description, self.clock())
        with self._lock:
            self._operations[op_id] = operation
        return operation

    def complete(self, op_id: str) -> None:
        with self._lock:
            self._operations.pop(op_id, None)

    def all(self) -> list[PendingOperation]:
        with self._lock:
            return sorted(self._operations.values(), key=lambda op: op.timestamp)

    @property
    def has_pending(self) -> bool:
        return bool(self._operations)

    @property
    def count(self) -> int:
        return len(self._operations)

    def __contains__(self, op_id: object) -> bool:
        return op_id in self._operations


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    code: str | None = None
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class Notices:
    """User-facing messages posted by the core, drained by the presentation layer."""

    def __init__(self, maxlen: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def publish(self, level: str, message: str, code: str | None = None) -> Notice:
        notice = Notice(level, message, code)
        with self._lock:
            self._notices.append(notice)
        return notice

    def info(self, message: str, code: str | None = None) -> Notice:
        return self.publish("info", message, code)

    def error(self, message: str, code: str | None = None) -> Notice:
        return self.publish("error", message, code)

    def drain(self) -> list[Notice]:
        with self._lock:
            notices = list(self._notices)
            self._notices.clear()
        return notices

    def __len__(self) -> int:
        return len(self._notices)


class ViewRegistry:
    """Reconciliation engines of the open views, keyed by kind and scope id."""

    def __init__(self) -> None:
        self._engines: dict[tuple[str, str], list[ReconciliationEngine]] = {}
        self._lock = threading.Lock()

    def register(self, kind: str, key: str, engine: ReconciliationEngine) -> Callable[[], None]:
        with self._lock:
            self._engines.setdefault((kind, key), []).append(engine)

        def unregister() -> None:
            with self._lock:
                engines = self._engines.get((kind, key), [])
                if engine in engines:
                    engines.remove(engine)
                if not engines:
                    self._engines.pop((kind, key), None)

        return unregister

    def engines(self, kind: str, key: str) -> list[ReconciliationEngine]:
        with self._lock:
            return list(self._engines.get((kind, key), ()))

    def engines_of_kind(self, kind: str) -> list[ReconciliationEngine]:
        with self._lock:
            return [e for (k, _), engines in self._engines.items() if k == kind for e in engines]


@dataclass
class DrainReport:
    confirmed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.confirmed) + len(self.failed) + len(self.dropped)


class MutationPipeline:
    """Applies user actions optimistically and settles them against the store."""

    def __init__(
        self,
        store: DocumentStore,
        ledger: PendingToggleLedger,
        connectivity: ConnectivityMonitor,
        user_id: str,
        *,
        registry: ViewRegistry | None = None,
        pending: PendingOperations | None = None,
        notices: Notices | None = None,
        names: NameCache | None = None,
        lock: threading.RLock | None = None,
        clock: Callable[[], int] = now_ms,
        user_name: str = "",
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.connectivity = connectivity
        self.user_id = user_id
        self.registry = registry or ViewRegistry()
        self.pending = pending or PendingOperations(clock)
        self.notices = notices or Notices()
        self.names = names or NameCache()
        self.lock = lock or threading.RLock()
        self.clock = clock
        self.user_name = user_name
        self.directory = UserDirectory(store)
        # Latest toggle issued per item in this process.
        self._toggle_tokens: dict[str, int] = {}
        self._toggle_counter = itertools.count(1)

    # Settling

    def _settle(
        self, error: SyncError, action: str, transient: Outcome = Outcome.DEFERRED
    ) -> Outcome:
        """Turn a classified store failure into an outcome, or raise it."""
        if isinstance(error, TransientError):
            logger.info(f"{action} deferred: {error.code}")
            self.notices.info(user_message(error.code), error.code)
            return transient
        if isinstance(error, PermissionDeniedError):
            logger.warning(f"{action} denied: {error.code}")
            self.notices.error(user_message(error.code), error.code)
            return Outcome.REJECTED
        logger.error(f"Error during {action}: {error.message}")
        raise error

    def _defer_offline(self, action: str) -> Outcome:
        logger.info(f"{action} skipped while offline.")
        self.notices.info(user_message("offline"), "offline")
        return Outcome.DEFERRED

    def _refuse(self, action: str) -> Outcome:
        logger.warning(f"{self.user_id} may not {action}.")
        self.notices.error(user_message("permission-denied"), "permission-denied")
        return Outcome.REJECTED

    # Lookups

    def _load_item(self, item_id: str) -> ShoppingItem:
        doc = self.store.get(constants.ITEMS, item_id)
        if doc is None:
            raise NotFoundError("Item not found.")
        return ShoppingItem.from_document(doc.id, doc.data)

    def _load_list(self, list_id: str) -> ShoppingList:
        doc = self.store.get(constants.SHOPPING_LISTS, list_id)
        if doc is None:
            raise NotFoundError("List not found.")
        return ShoppingList.from_document(doc.id, doc.data)

    def _load_group(self, group_id: str) -> Group:
        doc = self.store.get(constants.GROUPS, group_id)
        if doc is None:
            raise NotFoundError("Group not found.")
        return Group.from_document(doc.id, doc.data)

    def _displayed_item(self, list_id: str, item_id: str) -> ShoppingItem | None:
        for engine in self.registry.engines(ITEMS, list_id):
            item = engine.get(item_id)
            if item is not None:
                return item
        return None

    def _may_modify_item(self, item: ShoppingItem, shopping_list: ShoppingList, group: Group) -> bool:
        return self.user_id in (item.added_by, shopping_list.created_by, group.owner_id)

    def _may_manage_list(self, shopping_list: ShoppingList, group: Group) -> bool:
        return self.user_id in (shopping_list.created_by, group.owner_id)

    # Local display updates

    def _replace_everywhere(self, kind: str, key: str | None, entity: Any) -> None:
        engines = (
            self.registry.engines(kind, key) if key is not None
            else self.registry.engines_of_kind(kind)
        )
        for engine in engines:
            engine.replace(entity)

    def _remove_everywhere(self, kind: str, key: str | None, entity_id: str) -> None:
        engines = (
            self.registry.engines(kind, key) if key is not None
            else self.registry.engines_of_kind(kind)
        )
        for engine in engines:
            engine.remove(entity_id)

    def displayed_items(self, list_id: str) -> tuple[ShoppingItem, ...] | None:
        """Items of ``list_id`` as an open items screen shows them, or None."""
        for engine in self.registry.engines(ITEMS, list_id):
            if engine.has_live_data or engine.entities:
                return engine.entities
        return None

    def refresh_completion(self, list_id: str) -> None:
        """Re-derive the displayed completion flag of ``list_id`` on every lists screen."""
        items = self.displayed_items(list_id)
        for engine in self.registry.engines_of_kind(LISTS):
            shopping_list = engine.get(list_id)
            if shopping_list is None:
                continue
            if items is not None:
                engine.replace(with_completion(shopping_list, items))
            engine.refresh()

    def _after_item_write(self, list_id: str, recompute: bool) -> None:
        """Stamp the parent list and converge its completion flag."""
        try:
            touch_list(self.store, list_id, self.user_id)
            if recompute:
                recompute_list_completion(self.store, list_id)
        except SyncError as e:
            logger.warning(f"Could not update list {list_id} after item write: {e.message}")

    # Items

    def toggle_item(self, list_id: str, item_id: str, done: bool | None = None) -> Outcome:
        """Set (or flip) an item's done flag."""
        if is_temporary_id(item_id):
            raise ValidationError("This item is still being saved.")
        with self.lock:
            item = self._displayed_item(list_id, item_id)
        if item is None:
            try:
                item = self._load_item(item_id)
            except SyncError as e:
                return self._settle(e, "toggle item")

        previous = item.is_done
        value = (not previous) if done is None else bool(done)

        with self.lock:
            token = next(self._toggle_counter)
            self._toggle_tokens[item_id] = token
            self.ledger.set_pending(item_id, value)
            self._replace_everywhere(ITEMS, list_id, dataclasses.replace(item, is_done=value))
            self.refresh_completion(list_id)
            self.pending.register(f"toggle:{item_id}", "toggle", f"Toggle {item.text}")

        try:
            self.store.update(constants.ITEMS, item_id, {"isDone": value})
        except SyncError as e:
            if isinstance(e, TransientError):
                return self._settle(e, "toggle item")
            with self.lock:
                if self._settle_toggle(item_id, token):
                    self._rollback_toggle(list_id, item_id, value, previous)
            return self._settle(e, "toggle item")

        with self.lock:
            self._settle_toggle(item_id, token)
        self._after_item_write(list_id, recompute=True)
        return Outcome.CONFIRMED

    def _settle_toggle(self, item_id: str, token: int | None) -> bool:
        """Clear the ledger entry of ``item_id`` unless a newer toggle was issued.

        Returns True when this toggle was still the latest one.
        """
        if self._toggle_tokens.get(item_id) != token:
            return False
        self._toggle_tokens.pop(item_id, None)
        self.ledger.clear(item_id)
        self.pending.complete(f"toggle:{item_id}")
        return True

    def _forget_toggles(self, item_ids: list[str]) -> None:
        self.ledger.clear_many(item_ids)
        for item_id in item_ids:
            self._toggle_tokens.pop(item_id, None)
            self.pending.complete(f"toggle:{item_id}")

    def _rollback_toggle(self, list_id: str, item_id: str, value: bool, previous: bool) -> None:
        for engine in self.registry.engines(ITEMS, list_id):
            shown = engine.get(item_id)
            if shown is not None and shown.is_done == value:
                engine.replace(dataclasses.replace(shown, is_done=previous))
        self.refresh_completion(list_id)

    def add_item(self, list_id: str, text: str, photo_url: str | None = None) -> Outcome:
        text = validate_item_name(text)
        created_at = self.clock()
        item = ShoppingItem(
            id=new_temp_id(self.clock),
            list_id=list_id,
            text=text,
            added_by=self.user_id,
            created_at=created_at,
            photo_url=photo_url,
            pending=True,
        )
        with self.lock:
            for engine in self.registry.engines(ITEMS, list_id):
                engine.insert_optimistic(item)
            self.refresh_completion(list_id)
            self.pending.register(item.id, "add_item", f"Add {text}")

        try:
            self.store.add(
                constants.ITEMS,
                {
                    "shoppingListId": list_id,
                    "text": text,
                    "isDone": False,
                    "addedBy": self.user_id,
                    "createdAt": from_millis(created_at),
                    "photoURL": photo_url,
                },
            )
        except SyncError as e:
            with self.lock:
                self._remove_everywhere(ITEMS, list_id, item.id)
                self.refresh_completion(list_id)
                self.pending.complete(item.id)
            return self._settle(e, "add item", transient=Outcome.REJECTED)

        with self.lock:
            self.pending.complete(item.id)
        self._after_item_write(list_id, recompute=True)
        return Outcome.CONFIRMED

    def edit_item(
        self, list_id: str, item_id: str, text: str, photo_url: str | None = None
    ) -> Outcome:
        text = validate_item_name(text)
        if self.connectivity.is_offline:
            return self._defer_offline("edit item")
        try:
            item = self._load_item(item_id)
            shopping_list = self._load_list(list_id)
            group = self._load_group(shopping_list.group_id)
            if not self._may_modify_item(item, shopping_list, group):
                return self._refuse("edit this item")
            fields: dict[str, Any] = {"text": text}
            if photo_url is not None:
                fields["photoURL"] = photo_url or None
            self.store.update(constants.ITEMS, item_id, fields)
        except SyncError as e:
            return self._settle(e, "edit item")

        with self.lock:
            shown = self._displayed_item(list_id, item_id) or item
            updated = dataclasses.replace(shown, text=text)
            if photo_url is not None:
                updated = dataclasses.replace(updated, photo_url=photo_url or None)
            self._replace_everywhere(ITEMS, list_id, updated)
        self._after_item_write(list_id, recompute=False)
        return Outcome.CONFIRMED

    def delete_item(self, list_id: str, item_id: str) -> Outcome:
        if self.connectivity.is_offline:
            return self._defer_offline("delete item")
        try:
            item = self._load_item(item_id)
            shopping_list = self._load_list(list_id)
            group = self._load_group(shopping_list.group_id)
            if not self._may_modify_item(item, shopping_list, group):
                return self._refuse("delete this item")
            self.store.delete(constants.ITEMS, item_id)
        except SyncError as e:
            return self._settle(e, "delete item")

        with self.lock:
            self._forget_toggles([item_id])
            self._remove_everywhere(ITEMS, list_id, item_id)
            self.refresh_completion(list_id)
        self._after_item_write(list_id, recompute=True)
        return Outcome.CONFIRMED

    # Lists

    def create_list(self, group_id: str, name: str) -> Outcome:
        name = validate_item_name(name)
        created_at = self.clock()
        shopping_list = ShoppingList(
            id=new_temp_id(self.clock),
            group_id=group_id,
            name=name,
            created_by=self.user_id,
            created_at=created_at,
            updated_at=created_at,
            last_updated_by=self.user_id,
            pending=True,
        )
        with self.lock:
            for engine in self.registry.engines(LISTS, group_id):
                engine.insert_optimistic(shopping_list)
            self.pending.register(shopping_list.id, "create_list", f"Create {name}")

        timestamp = from_millis(created_at)
        try:
            self.store.add(
                constants.SHOPPING_LISTS,
                {
                    "groupId": group_id,
                    "name": name,
                    "createdAt": timestamp,
                    "createdBy": self.user_id,
                    "isComplete": False,
                    "updatedAt": timestamp,
                    "lastUpdatedBy": self.user_id,
                },
            )
        except SyncError as e:
            with self.lock:
                self._remove_everywhere(LISTS, group_id, shopping_list.id)
                self.pending.complete(shopping_list.id)
            return self._settle(e, "create list", transient=Outcome.REJECTED)

        with self.lock:
            self.pending.complete(shopping_list.id)
        return Outcome.CONFIRMED

    def rename_list(self, list_id: str, name: str) -> Outcome:
        name = validate_item_name(name)
        if self.connectivity.is_offline:
            return self._defer_offline("rename list")
        try:
            shopping_list = self._load_list(list_id)
            group = self._load_group(shopping_list.group_id)
            if not self._may_manage_list(shopping_list, group):
                return self._refuse("rename this list")
            self.store.update(constants.SHOPPING_LISTS, list_id, {"name": name})
        except SyncError as e:
            return self._settle(e, "rename list")

        with self.lock:
            for engine in self.registry.engines(LISTS, shopping_list.group_id):
                shown = engine.get(list_id)
                if shown is not None:
                    engine.replace(dataclasses.replace(shown, name=name))
        try:
            touch_list(self.store, list_id, self.user_id)
        except SyncError as e:
            logger.warning(f"Could not stamp list {list_id}: {e.message}")
        return Outcome.CONFIRMED

    def _delete_list_documents(self, list_id: str) -> list[str]:
        item_ids = [doc.id for doc in self.store.query(queries.items_for_list(list_id))]
        for item_id in item_ids:
            self.store.delete(constants.ITEMS, item_id)
        self.store.delete(constants.SHOPPING_LISTS, list_id)
        return item_ids

    def delete_list(self, list_id: str) -> Outcome:
        """Delete a list together with all of its items."""
        if self.connectivity.is_offline:
            return self._defer_offline("delete list")
        try:
            shopping_list = self._load_list(list_id)
            group = self._load_group(shopping_list.group_id)
            if not self._may_manage_list(shopping_list, group):
                return self._refuse("delete this list")
            item_ids = self._delete_list_documents(list_id)
        except SyncError as e:
            return self._settle(e, "delete list")

        with self.lock:
            self._forget_toggles(item_ids)
            self._remove_everywhere(LISTS, shopping_list.group_id, list_id)
        return Outcome.CONFIRMED

    # Chat

    def send_message(
        self, group_id: str, text: str, image_urls: list[str] | None = None
    ) -> Outcome:
        image_urls = [url for url in image_urls or () if url]
        text = validate_message(text) if text or not image_urls else ""
        created_at = self.clock()
        message = ChatMessage(
            id=new_temp_id(self.clock),
            group_id=group_id,
            text=text,
            user_id=self.user_id,
            user_name=self.user_name,
            created_at=created_at,
            image_urls=tuple(image_urls),
            pending=True,
        )
        with self.lock:
            for engine in self.registry.engines(CHAT, group_id):
                engine.insert_optimistic(message)
            self.pending.register(message.id, "send_message", "Send message")

        try:
            self.store.add(
                queries.messages_collection(group_id),
                {
                    "text": text,
                    "createdAt": from_millis(created_at),
                    "userId": self.user_id,
                    "userName": self.user_name,
                    "imageUrls": image_urls or None,
                    "imageUrl": image_urls[0] if image_urls else None,
                },
            )
        except SyncError as e:
            with self.lock:
                self._remove_everywhere(CHAT, group_id, message.id)
                self.pending.complete(message.id)
            return self._settle(e, "send message", transient=Outcome.REJECTED)

        with self.lock:
            self.pending.complete(message.id)
        return Outcome.CONFIRMED

    # Groups

    def create_group(self, name: str) -> Outcome:
        name = validate_name(name, "Group name")
        try:
            group_id = self.store.add(
                constants.GROUPS,
                {
                    "name": name,
                    "ownerId": self.user_id,
                    "members": [self.user_id],
                    "createdAt": from_millis(self.clock()),
                },
            )
        except SyncError as e:
            return self._settle(e, "create group", transient=Outcome.REJECTED)
        self.names.remember([Group(id=group_id, name=name, owner_id=self.user_id)])
        return Outcome.CONFIRMED

    def rename_group(self, group_id: str, name: str) -> Outcome:
        name = validate_name(name, "Group name")
        if self.connectivity.is_offline:
            return self._defer_offline("rename group")
        try:
            group = self._load_group(group_id)
            if group.owner_id != self.user_id:
                return self._refuse("rename this group")
            self.store.update(constants.GROUPS, group_id, {"name": name})
        except SyncError as e:
            return self._settle(e, "rename group")

        renamed = dataclasses.replace(group, name=name)
        with self.lock:
            self._replace_everywhere(GROUPS, None, renamed)
        self.names.remember([renamed])
        return Outcome.CONFIRMED

    def add_member(self, group_id: str, display_name: str) -> Outcome:
        """Add the user holding ``display_name`` to the group."""
        display_name = sanitize_input(display_name).lower()
        if len(display_name) < constants.MIN_USERNAME_LENGTH:
            raise ValidationError(
                f"Username must be at least {constants.MIN_USERNAME_LENGTH} characters."
            )
        if self.connectivity.is_offline:
            return self._defer_offline("add member")
        try:
            group = self._load_group(group_id)
            docs = self.directory.find_by_display_name(display_name)
            if not docs:
                raise NotFoundError("No user with that username.")
            uid = docs[0].data.get("uid") or docs[0].id
            if group.is_member(uid):
                raise DuplicateResourceError("This user is already a member of the group.")
            self.store.update(constants.GROUPS, group_id, {"members": ArrayUnion((uid,))})
        except SyncError as e:
            return self._settle(e, "add member")

        with self.lock:
            self._replace_everywhere(
                GROUPS, None, dataclasses.replace(group, members=group.members + (uid,))
            )
        return Outcome.CONFIRMED

    def remove_member(self, group_id: str, member_id: str) -> Outcome:
        if self.connectivity.is_offline:
            return self._defer_offline("remove member")
        try:
            group = self._load_group(group_id)
            if group.owner_id != self.user_id:
                return self._refuse("remove members of this group")
            if member_id == group.owner_id:
                raise ValidationError("The group owner cannot be removed.")
            if not group.is_member(member_id):
                raise NotFoundError("This user is not a member of the group.")
            self.store.update(
                constants.GROUPS, group_id, {"members": ArrayRemove((member_id,))}
            )
        except SyncError as e:
            return self._settle(e, "remove member")

        members = tuple(m for m in group.members if m != member_id)
        with self.lock:
            self._replace_everywhere(GROUPS, None, dataclasses.replace(group, members=members))
        return Outcome.CONFIRMED

    def leave_group(self, group_id: str) -> Outcome:
        """Leave a group. The owner must delete the group instead."""
        if self.connectivity.is_offline:
            return self._defer_offline("leave group")
        try:
            group = self._load_group(group_id)
            if group.owner_id == self.user_id:
                raise ValidationError(
                    "The group owner cannot leave the group. Delete it instead."
                )
            self.store.update(
                constants.GROUPS, group_id, {"members": ArrayRemove((self.user_id,))}
            )
        except PermissionDeniedError:
            # Access is already gone, which is what leaving means.
            logger.info(f"Lost access to group {group_id} while leaving.")
        except SyncError as e:
            return self._settle(e, "leave group")

        with self.lock:
            self._remove_everywhere(GROUPS, None, group_id)
        return Outcome.CONFIRMED

    def delete_group(self, group_id: str) -> Outcome:
        """Delete a group with all of its lists and their items."""
        if self.connectivity.is_offline:
            return self._defer_offline("delete group")
        item_ids: list[str] = []
        try:
            group = self._load_group(group_id)
            if group.owner_id != self.user_id:
                return self._refuse("delete this group")
            for doc in self.store.query(queries.lists_for_group(group_id)):
                item_ids.extend(self._delete_list_documents(doc.id))
            self.store.delete(constants.GROUPS, group_id)
        except SyncError as e:
            if item_ids:
                self.ledger.clear_many(item_ids)
            return self._settle(e, "delete group")

        with self.lock:
            self._forget_toggles(item_ids)
            self._remove_everywhere(GROUPS, None, group_id)
        return Outcome.CONFIRMED

    # Profile

    def update_display_name(self, name: str) -> Outcome:
        """Change the signed-in user's display name (stored lower-cased)."""
        name = validate_username(name).lower()
        if self.connectivity.is_offline:
            return self._defer_offline("update display name")
        if self.directory.username_exists(name, exclude_uid=self.user_id):
            raise DuplicateResourceError("This username is already taken.")
        try:
            self.store.update(constants.USERS, self.user_id, {"displayName": name})
        except SyncError as e:
            return self._settle(e, "update display name")
        self.user_name = name
        return Outcome.CONFIRMED

    # Reconnection

    def drain_pending(self) -> DrainReport:
        """Re-issue every ledger entry once.

        Entries that succeed are cleared. Entries whose item no longer exists
        are dropped. Anything else stays for the next reconnection.
        """
        report = DrainReport()
        affected_lists: set[str] = set()
        for item_id, value in self.ledger.get_all().items():
            with self.lock:
                token = self._toggle_tokens.get(item_id)
            try:
                self.store.update(constants.ITEMS, item_id, {"isDone": value})
            except UnexpectedError as e:
                if e.code == "not-found":
                    with self.lock:
                        self._settle_toggle(item_id, token)
                    report.dropped.append(item_id)
                    continue
                logger.error(f"Error syncing toggle for {item_id}: {e.message}")
                report.failed.append(item_id)
                continue
            except SyncError as e:
                logger.info(f"Toggle for {item_id} still pending: {e.code}")
                report.failed.append(item_id)
                continue
            with self.lock:
                self._settle_toggle(item_id, token)
            report.confirmed.append(item_id)
            try:
                doc = self.store.get(constants.ITEMS, item_id)
            except SyncError as e:
                logger.warning(f"Could not resolve list of item {item_id}: {e.message}")
                continue
            if doc is not None and doc.data.get("shoppingListId"):
                affected_lists.add(doc.data["shoppingListId"])

        for list_id in sorted(affected_lists):
            try:
                recompute_list_completion(self.store, list_id)
            except SyncError as e:
                logger.warning(f"Could not recompute completion of {list_id}: {e.message}")

        if report.attempted:
            logger.info(
                f"Pending toggles drained: {len(report.confirmed)} synced, "
                f"{len(report.failed)} failed, {len(report.dropped)} dropped."
            )
        return report
