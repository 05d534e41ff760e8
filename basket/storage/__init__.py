"""Durable on-device storage: key-value pairs, the toggle ledger, snapshots and visits."""

from .kv import FileKeyValueStore, KeyValueStore
from .ledger import PendingToggleLedger
from .snapshot import Snapshot, SnapshotStore
from .visits import Scope, VisitTracker

__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "PendingToggleLedger",
    "Scope",
    "Snapshot",
    "SnapshotStore",
    "VisitTracker",
]
