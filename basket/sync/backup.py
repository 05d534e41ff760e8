"""Snapshot building and the debounced backup schedule."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

from basket import constants
from basket.core.models import ChatMessage, Group, ShoppingItem, ShoppingList, UserProfile
from basket.core.timeutil import now_ms
from basket.errors import PermissionDeniedError, SyncError
from basket.storage.snapshot import Snapshot, SnapshotStore
from basket.store.base import DocumentStore, Emission

from . import queries
from .connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)


def _log_part_failure(part: str, error: SyncError) -> None:
    if not isinstance(error, PermissionDeniedError):
        logger.error(f"Error fetching {part} for snapshot: {error.message}")


def build_snapshot(store: DocumentStore, user_id: str) -> Snapshot:
    """Read everything ``user_id`` can see into a new snapshot.

    A part that cannot be read is left empty. Permission failures are
    expected for groups the user just left and are not logged.
    """
    profile = None
    try:
        doc = store.get(constants.USERS, user_id)
        if doc is not None:
            profile = UserProfile.from_document(doc.id, doc.data)
    except SyncError as e:
        _log_part_failure("user profile", e)

    groups: list[Group] = []
    try:
        groups = [
            Group.from_document(doc.id, doc.data)
            for doc in store.query(queries.groups_for_user(user_id))
        ]
    except SyncError as e:
        _log_part_failure("groups", e)

    lists: list[ShoppingList] = []
    items: list[ShoppingItem] = []
    chat_messages: dict[str, tuple[ChatMessage, ...]] = {}
    for group in groups:
        try:
            for doc in store.query(queries.lists_for_group(group.id)):
                lists.append(ShoppingList.from_document(doc.id, doc.data))
                items.extend(
                    ShoppingItem.from_document(item.id, item.data)
                    for item in store.query(queries.items_for_list(doc.id))
                )
        except SyncError as e:
            _log_part_failure(f"lists of group {group.id}", e)
        try:
            messages = tuple(
                ChatMessage.from_document(doc.id, {**doc.data, "groupId": group.id})
                for doc in store.query(queries.chat_messages(group.id))
            )
        except SyncError as e:
            _log_part_failure(f"chat of group {group.id}", e)
            continue
        if messages:
            chat_messages[group.id] = messages

    return Snapshot(
        user_id=user_id,
        timestamp=now_ms(),
        user_profile=profile,
        groups=tuple(groups),
        lists=tuple(lists),
        items=tuple(items),
        chat_messages=chat_messages,
    )


class BackupScheduler:
    """Writes the snapshot on a debounced schedule.

    ``schedule`` (re)starts the debounce timer. ``perform`` does the work,
    skipping it while offline, while another backup is running, while paused,
    or when the last backup is more recent than ``min_interval`` seconds.
    """

    def __init__(
        self,
        store: DocumentStore,
        snapshots: SnapshotStore,
        connectivity: ConnectivityMonitor,
        user_id: str,
        *,
        min_interval: float = constants.BACKUP_MIN_INTERVAL,
        debounce: float = constants.BACKUP_DEBOUNCE,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Callable[..., Any] = threading.Timer,
        on_written: Callable[[Snapshot], None] | None = None,
    ) -> None:
        self.store = store
        self.snapshots = snapshots
        self.connectivity = connectivity
        self.user_id = user_id
        self.min_interval = min_interval
        self.debounce = debounce
        self.clock = clock
        self.timer_factory = timer_factory
        self.on_written = on_written
        self.last_backup: float | None = None
        self._timer: Any = None
        self._busy = False
        self._paused = 0
        self._lock = threading.Lock()
        self._previous_groups: tuple | None = None

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def schedule(self, reason: str = "change") -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self.timer_factory(self.debounce, self.perform, args=(reason,))
            timer.daemon = True
            self._timer = timer
        logger.debug(f"Backup scheduled ({reason}) in {self.debounce}s.")
        timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @contextlib.contextmanager
    def paused(self) -> Iterator[None]:
        """Hold off backups while the block runs."""
        with self._lock:
            self._paused += 1
        try:
            yield
        finally:
            with self._lock:
                self._paused -= 1

    def perform(self, reason: str = "auto") -> bool:
        """Build and write a snapshot now. Returns True when one was written."""
        with self._lock:
            self._timer = None
            if self._busy or self._paused:
                return False
            if self.connectivity.is_offline:
                logger.debug("Skipping backup while offline.")
                return False
            now = self.clock()
            if self.last_backup is not None and now - self.last_backup < self.min_interval:
                logger.debug("Skipping backup; last one was too recent.")
                return False
            self._busy = True
        try:
            snapshot = build_snapshot(self.store, self.user_id)
            path = self.snapshots.write(snapshot)
        except (OSError, SyncError) as e:
            logger.error(f"Auto-backup failed ({reason}): {e}")
            return False
        finally:
            with self._lock:
                self._busy = False
        with self._lock:
            self.last_backup = now
        logger.info(f"Backup written to {path} ({reason}).")
        if self.on_written is not None:
            self.on_written(snapshot)
        return True

    def watch_groups(self, emission: Emission) -> None:
        """Schedule a backup when the user's groups change on the server.

        The first emission only records the baseline.
        """
        current = tuple((doc.id, repr(sorted(doc.data.items()))) for doc in emission.documents)
        previous, self._previous_groups = self._previous_groups, current
        if previous is None or previous == current:
            return
        if emission.authoritative and emission.documents:
            self.schedule("online-sync")
