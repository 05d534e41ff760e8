"""Reconciliation of snapshot, live stream and local overlays into one view state.

A :class:`ReconciliationEngine` holds the ordered collection one screen
renders. It is seeded from the on-device snapshot, then fed every stream
emission. Each emission is overlaid (pending toggles, derived flags), run
through a :class:`ReplacementPolicy`, and merged with the optimistic entries
the mutation pipeline inserted but the stream has not yet echoed back.

Replacement is idempotent: feeding the same or an older emission twice
never produces a visible change beyond what its content implies, and an
emission equal to the displayed state notifies nobody.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Generic, TypeVar

from basket.constants import OPTIMISTIC_MATCH_WINDOW_MS
from basket.core.models import Group
from basket.errors import PermissionDeniedError, SyncError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Overlay = Callable[[list, bool], list]
ChangeListener = Callable[[tuple], None]


class ReplacementPolicy:
    """Decides whether an emission may replace the displayed collection."""

    name = "base"

    def accepts(self, authoritative: bool, incoming_size: int, baseline: int | None) -> bool:
        raise NotImplementedError


class LargerCollectionPolicy(ReplacementPolicy):
    """Server-confirmed data always wins; cached data only when it adds entities.

    While a snapshot baseline is active a tentative emission must be strictly
    larger than the baseline. This keeps a cold local cache from blanking a
    snapshot-seeded screen, at the cost of also masking a collection that
    legitimately shrank while only cached data is available.
    """

    name = "larger"

    def accepts(self, authoritative: bool, incoming_size: int, baseline: int | None) -> bool:
        if authoritative or baseline is None:
            return True
        return incoming_size > baseline


class AlwaysReplacePolicy(ReplacementPolicy):
    """Every emission replaces the displayed collection."""

    name = "always"

    def accepts(self, authoritative: bool, incoming_size: int, baseline: int | None) -> bool:
        return True


POLICIES: dict[str, type[ReplacementPolicy]] = {
    LargerCollectionPolicy.name: LargerCollectionPolicy,
    AlwaysReplacePolicy.name: AlwaysReplacePolicy,
}


def get_policy(name: str) -> ReplacementPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown tentative replacement policy: {name!r}") from None


def matches_optimistic(local: Any, confirmed: Any, window_ms: int) -> bool:
    """True when ``confirmed`` is the stored copy of optimistic ``local``."""
    return (
        local.author_id == confirmed.author_id
        and local.content == confirmed.content
        and abs(local.created_at - confirmed.created_at) < window_ms
    )


class NameCache:
    """Group names by id, kept for the lifetime of one session."""

    def __init__(self) -> None:
        self._names: dict[str, str] = {}
        self._lock = threading.Lock()

    def remember(self, groups: Iterable[Group]) -> None:
        with self._lock:
            for group in groups:
                self._names[group.id] = group.name

    def get(self, group_id: str, default: str = "") -> str:
        with self._lock:
            return self._names.get(group_id, default)

    def clear(self) -> None:
        with self._lock:
            self._names.clear()

    def __len__(self) -> int:
        return len(self._names)


class ReconciliationEngine(Generic[T]):
    """The reconciled, ordered collection behind one screen."""

    def __init__(
        self,
        *,
        sort_key: Callable[[T], Any],
        overlay: Overlay | None = None,
        policy: ReplacementPolicy | None = None,
        match_window_ms: int = OPTIMISTIC_MATCH_WINDOW_MS,
        lock: threading.RLock | None = None,
        name: str = "collection",
    ) -> None:
        self.sort_key = sort_key
        self.overlay = overlay
        self.policy = policy or LargerCollectionPolicy()
        self.match_window_ms = match_window_ms
        self.lock = lock or threading.RLock()
        self.name = name
        self.last_error: SyncError | None = None
        self._entities: tuple[T, ...] = ()
        self._baseline: int | None = None
        self._has_live_data = False
        self._authoritative = False
        self._closed = False
        self._listeners: list[ChangeListener] = []

    @property
    def entities(self) -> tuple[T, ...]:
        return self._entities

    @property
    def snapshot_baseline(self) -> int | None:
        """Size of the snapshot-seeded collection, or None if not seeded."""
        return self._baseline

    @property
    def has_live_data(self) -> bool:
        return self._has_live_data

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def get(self, entity_id: str) -> T | None:
        return next((e for e in self._entities if e.id == entity_id), None)

    def _apply_overlay(self, entities: list[T], authoritative: bool) -> list[T]:
        if self.overlay is None:
            return entities
        return self.overlay(entities, authoritative)

    def _set(self, entities: tuple[T, ...]) -> bool:
        if entities == self._entities:
            return False
        self._entities = entities
        for listener in list(self._listeners):
            listener(entities)
        return True

    def seed(self, entities: Sequence[T]) -> bool:
        """Show snapshot-derived entities until live data arrives."""
        with self.lock:
            if self._closed or self._has_live_data:
                return False
            seeded = self._apply_overlay(list(entities), False)
            if seeded:
                self._baseline = len(seeded)
            return self._set(tuple(sorted(seeded, key=self.sort_key)))

    def apply(self, entities: Sequence[T], authoritative: bool) -> bool:
        """Merge one stream emission. Returns True when the display changed."""
        with self.lock:
            if self._closed:
                return False
            self._has_live_data = True
            incoming = self._apply_overlay(list(entities), authoritative)
            if not self.policy.accepts(authoritative, len(incoming), self._baseline):
                logger.debug(
                    "Ignoring tentative %s emission of %d (baseline %s)",
                    self.name,
                    len(incoming),
                    self._baseline,
                )
                return False
            if self._baseline is not None and len(incoming) > self._baseline:
                self._baseline = len(incoming)
            self.last_error = None
            self._authoritative = authoritative
            confirmed = sorted(incoming, key=self.sort_key)
            return self._set(tuple(self._unmatched_pending(confirmed)) + tuple(confirmed))

    def refresh(self) -> bool:
        """Re-run the overlay over the displayed entities and re-sort them.

        Optimistic entries keep their place at the front.
        """
        with self.lock:
            if self._closed:
                return False
            pending = [e for e in self._entities if getattr(e, "pending", False)]
            settled = [e for e in self._entities if not getattr(e, "pending", False)]
            settled = self._apply_overlay(settled, self._authoritative)
            return self._set(tuple(pending) + tuple(sorted(settled, key=self.sort_key)))

    def _unmatched_pending(self, confirmed: list[T]) -> list[T]:
        claimed: set[int] = set()
        retained = []
        for local in self._entities:
            if not getattr(local, "pending", False):
                continue
            match = next(
                (
                    index
                    for index, entity in enumerate(confirmed)
                    if index not in claimed
                    and matches_optimistic(local, entity, self.match_window_ms)
                ),
                None,
            )
            if match is None:
                retained.append(local)
            else:
                claimed.add(match)
        return retained

    def fail(self, error: SyncError) -> bool:
        """Handle a stream error. Returns True when the display changed."""
        with self.lock:
            if self._closed:
                return False
            self.last_error = error
            if isinstance(error, TransientError):
                logger.info(f"{self.name} stream unavailable ({error.code}); keeping state.")
                return False
            if isinstance(error, PermissionDeniedError):
                if self._baseline is not None:
                    logger.warning(
                        f"{self.name} stream denied; keeping snapshot-backed state."
                    )
                    return False
                logger.warning(f"{self.name} stream denied; clearing state.")
                return self._set(())
            logger.error(f"Error listening to {self.name}: {error.message}")
            return False

    def insert_optimistic(self, entity: T) -> bool:
        with self.lock:
            if self._closed:
                return False
            return self._set((entity,) + self._entities)

    def replace(self, entity: T) -> T | None:
        """Swap in a new value for an entity with the same id."""
        with self.lock:
            previous = self.get(entity.id)
            if previous is None or self._closed:
                return None
            self._set(tuple(entity if e.id == entity.id else e for e in self._entities))
            return previous

    def remove(self, entity_id: str) -> T | None:
        with self.lock:
            previous = self.get(entity_id)
            if previous is None or self._closed:
                return None
            self._set(tuple(e for e in self._entities if e.id != entity_id))
            return previous

    def close(self) -> None:
        with self.lock:
            self._closed = True
            self._listeners.clear()
