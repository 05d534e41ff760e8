"""One signed-in user's sync state on this device."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from basket import constants
from basket.core.models import UserProfile
from basket.core.timeutil import now_ms
from basket.errors import SyncError
from basket.storage.kv import FileKeyValueStore, KeyValueStore
from basket.storage.ledger import PendingToggleLedger
from basket.storage.snapshot import Snapshot, SnapshotStore
from basket.storage.visits import Scope, VisitTracker
from basket.store.base import DocumentEmission, DocumentStore, Subscription

from . import queries
from .backup import BackupScheduler
from .connectivity import ConnectivityMonitor
from .pipeline import DrainReport, MutationPipeline, Notices, PendingOperations, ViewRegistry
from .reconcile import NameCache, get_policy
from .unread import UnreadTracker
from .views import ChatView, CollectionView, GroupsView, ItemsView, ListsView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncSettings:
    backup_min_interval: float = constants.BACKUP_MIN_INTERVAL
    backup_debounce: float = constants.BACKUP_DEBOUNCE
    match_window_ms: int = constants.OPTIMISTIC_MATCH_WINDOW_MS
    auth_timeout: float = constants.AUTH_TIMEOUT
    tentative_policy: str = "larger"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> SyncSettings:
        """Build settings from a Flask-style config mapping."""
        return cls(
            backup_min_interval=float(
                config.get("BACKUP_MIN_INTERVAL", constants.BACKUP_MIN_INTERVAL)
            ),
            backup_debounce=float(config.get("BACKUP_DEBOUNCE", constants.BACKUP_DEBOUNCE)),
            match_window_ms=int(
                config.get("OPTIMISTIC_MATCH_WINDOW", constants.OPTIMISTIC_MATCH_WINDOW_MS)
            ),
            auth_timeout=float(config.get("AUTH_TIMEOUT", constants.AUTH_TIMEOUT)),
            tentative_policy=str(config.get("TENTATIVE_POLICY") or "larger"),
        )


class SyncSession:
    """Wires storage, the store, views and the mutation pipeline for one user.

    Store listeners call back on worker threads, so every change to
    reconciled state happens under :attr:`lock`.
    """

    def __init__(
        self,
        store: DocumentStore,
        device_dir: Path,
        user_id: str,
        settings: SyncSettings | None = None,
        *,
        connectivity: ConnectivityMonitor | None = None,
        kv: KeyValueStore | None = None,
        clock: Callable[[], int] = now_ms,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self.store = store
        self.device_dir = Path(device_dir)
        self.user_id = user_id
        self.settings = settings or SyncSettings()
        self.policy = get_policy(self.settings.tentative_policy)
        self.lock = threading.RLock()

        self.kv = kv or FileKeyValueStore(self.device_dir / constants.STORAGE_FILE)
        self.ledger = PendingToggleLedger(self.kv)
        self.visits = VisitTracker(self.kv, clock)
        self.snapshots = SnapshotStore(self.device_dir / constants.BACKUP_DIR)
        self.connectivity = connectivity or ConnectivityMonitor()
        self.unread = UnreadTracker(self.visits, user_id)
        self.names = NameCache()
        self.registry = ViewRegistry()
        self.pending = PendingOperations(clock)
        self.notices = Notices()

        self.pipeline = MutationPipeline(
            store,
            self.ledger,
            self.connectivity,
            user_id,
            registry=self.registry,
            pending=self.pending,
            notices=self.notices,
            names=self.names,
            lock=self.lock,
            clock=clock,
        )
        self.backup = BackupScheduler(
            store,
            self.snapshots,
            self.connectivity,
            user_id,
            min_interval=self.settings.backup_min_interval,
            debounce=self.settings.backup_debounce,
            timer_factory=timer_factory,
            on_written=self.invalidate_snapshot,
        )

        self.profile: UserProfile | None = None
        self._snapshot: Snapshot | None = None
        self._snapshot_loaded = False
        self._profile_ready = threading.Event()
        self._profile_subscription: Subscription | None = None
        self._subscriptions: list[Subscription] = []
        self._views: dict[tuple[str, str], CollectionView] = {}
        self._opened: list[CollectionView] = []
        self._remove_listener: Callable[[], None] | None = None
        self._started = False
        self._closed = False

    # Lifecycle

    def start(self) -> SyncSession:
        """Watch connectivity and the user's groups; drain pending toggles if online."""
        if self._started:
            return self
        self._started = True
        self._remove_listener = self.connectivity.add_listener(self._on_connectivity)
        self._subscriptions.append(
            self.store.subscribe(
                queries.groups_for_user(self.user_id),
                self.backup.watch_groups,
                self._on_groups_error,
            )
        )
        if self.connectivity.is_online and len(self.ledger):
            self.reconnect()
        return self

    def _on_groups_error(self, error: SyncError) -> None:
        if error.code != "permission-denied":
            logger.error(f"Error listening to groups: {error.message}")

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.reconnect()

    def reconnect(self) -> DrainReport:
        """Re-issue pending writes, then schedule a backup."""
        with self.backup.paused():
            report = self.pipeline.drain_pending()
        self.backup.schedule("network-restored")
        return report

    def set_online(self, online: bool) -> bool:
        return self.connectivity.set_online(online)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._remove_listener is not None:
            self._remove_listener()
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        for view in [*self._views.values(), *self._opened]:
            view.close()
        self._views.clear()
        self._opened.clear()
        self.backup.cancel()
        self.names.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> SyncSession:
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Snapshot and profile

    @property
    def snapshot(self) -> Snapshot | None:
        """The stored snapshot filtered to this user, or None.

        A snapshot written for a different user is never used.
        """
        if not self._snapshot_loaded:
            self._snapshot_loaded = True
            snapshot = self.snapshots.read()
            if snapshot is not None and snapshot.user_id != self.user_id:
                logger.info("Ignoring snapshot that belongs to another user.")
                snapshot = None
            if snapshot is not None:
                snapshot = snapshot.visible_to(self.user_id)
                self.names.remember(snapshot.groups)
            self._snapshot = snapshot
        return self._snapshot

    def invalidate_snapshot(self, *_: Any) -> None:
        """Forget the loaded snapshot; the next view to open reads the file again."""
        with self.lock:
            self._snapshot_loaded = False
            self._snapshot = None

    def delete_backup(self) -> None:
        self.snapshots.delete()
        self.invalidate_snapshot()

    def _set_profile(self, profile: UserProfile) -> None:
        self.profile = profile
        self.pipeline.user_name = profile.display_name or profile.email

    def resolve_profile(self, timeout: float | None = None) -> UserProfile | None:
        """Return the user's profile, waiting at most ``timeout`` seconds.

        The snapshot profile is shown first. On timeout the best profile known
        so far is returned, or None when nothing is known (degraded mode).
        """
        if timeout is None:
            timeout = self.settings.auth_timeout
        snapshot = self.snapshot
        if self.profile is None and snapshot is not None and snapshot.user_profile:
            if snapshot.user_profile.uid == self.user_id:
                self._set_profile(snapshot.user_profile)

        if self._profile_subscription is None:
            self._profile_subscription = self.store.subscribe_document(
                constants.USERS, self.user_id, self._on_profile, self._on_profile_error
            )
            self._subscriptions.append(self._profile_subscription)

        if not self._profile_ready.wait(timeout):
            logger.warning(
                f"Profile for {self.user_id} not resolved within {timeout}s; continuing."
            )
        return self.profile

    def _on_profile(self, emission: DocumentEmission) -> None:
        if emission.document is not None:
            with self.lock:
                self._set_profile(
                    UserProfile.from_document(emission.document.id, emission.document.data)
                )
        self._profile_ready.set()

    def _on_profile_error(self, error: SyncError) -> None:
        logger.warning(f"Error loading profile: {error.code}")
        self._profile_ready.set()

    # Views

    def _track(self, view: CollectionView) -> CollectionView:
        self._opened = [v for v in self._opened if not v.closed]
        self._opened.append(view)
        return view

    def open_items(self, list_id: str) -> ItemsView:
        return self._track(ItemsView(self, list_id))

    def open_lists(self, group_id: str) -> ListsView:
        return self._track(ListsView(self, group_id))

    def open_chat(self, group_id: str) -> ChatView:
        return self._track(ChatView(self, group_id))

    def open_groups(self) -> GroupsView:
        return self._track(GroupsView(self))

    def _cached(self, key: tuple[str, str], factory: Callable[[], CollectionView]) -> Any:
        with self.lock:
            view = self._views.get(key)
            if view is None or view.closed:
                view = factory()
                self._views[key] = view
            return view

    def items_view(self, list_id: str) -> ItemsView:
        """A session-owned items view, kept open until the session closes."""
        return self._cached(("items", list_id), lambda: ItemsView(self, list_id))

    def lists_view(self, group_id: str) -> ListsView:
        return self._cached(("lists", group_id), lambda: ListsView(self, group_id))

    def chat_view(self, group_id: str) -> ChatView:
        return self._cached(("chat", group_id), lambda: ChatView(self, group_id))

    def groups_view(self) -> GroupsView:
        return self._cached(("groups", self.user_id), lambda: GroupsView(self))

    # Visits and status

    def mark_visited(self, scope: Scope, scope_id: str) -> int:
        return self.visits.mark_visited(Scope(scope), scope_id)

    def status(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "online": self.connectivity.is_online,
            "pendingOperations": self.pending.count,
            "pendingToggles": len(self.ledger),
            "snapshot": self.snapshots.info(),
        }

