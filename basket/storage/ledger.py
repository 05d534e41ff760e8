"""Pending-write ledger for item done toggles.

Holds one desired ``isDone`` value per item that was applied locally but not
yet confirmed by the store. Stored as a flat JSON object under a single key;
the key is removed once the ledger is empty.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from collections.abc import Iterable

from basket.constants import PENDING_TOGGLES_KEY
from basket.core.models import ShoppingItem

from .kv import KeyValueStore

logger = logging.getLogger(__name__)


class PendingToggleLedger:
    """Durable map of item id to desired done value."""

    def __init__(self, kv: KeyValueStore, key: str = PENDING_TOGGLES_KEY) -> None:
        self.kv = kv
        self.key = key
        # Every change is read-modify-write of the whole blob.
        self._lock = threading.RLock()

    def _read(self) -> dict[str, bool]:
        raw = self.kv.get(self.key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable pending toggle ledger.")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, bool)}

    def _write(self, data: dict[str, bool]) -> None:
        if data:
            self.kv.set(self.key, json.dumps(data, sort_keys=True))
        else:
            self.kv.remove(self.key)

    def set_pending(self, item_id: str, value: bool) -> None:
        """Record ``value`` for ``item_id``, replacing any earlier entry."""
        with self._lock:
            data = self._read()
            data[item_id] = bool(value)
            self._write(data)

    def get_all(self) -> dict[str, bool]:
        with self._lock:
            return self._read()

    def get(self, item_id: str) -> bool | None:
        return self.get_all().get(item_id)

    def clear(self, item_id: str) -> bool:
        """Remove the entry for ``item_id``. Returns True when one was removed."""
        with self._lock:
            data = self._read()
            if item_id not in data:
                return False
            del data[item_id]
            self._write(data)
            return True

    def clear_many(self, item_ids: Iterable[str]) -> None:
        ids = set(item_ids)
        with self._lock:
            data = self._read()
            remaining = {k: v for k, v in data.items() if k not in ids}
            if remaining != data:
                self._write(remaining)

    def overlay(self, items: Iterable[ShoppingItem]) -> list[ShoppingItem]:
        """Apply pending values to the done flag of each item."""
        pending = self.get_all()
        if not pending:
            return list(items)
        return [
            dataclasses.replace(item, is_done=pending[item.id])
            if item.id in pending and item.is_done != pending[item.id]
            else item
            for item in items
        ]

    def __len__(self) -> int:
        return len(self.get_all())

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.get_all()
