"""Per-scope last-visited timestamps, kept on the device only."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable

from basket.core.timeutil import now_ms

from .kv import KeyValueStore

logger = logging.getLogger(__name__)


class Scope(str, enum.Enum):
    CHAT = "chat"
    LIST = "list"
    GROUP = "group"


def visit_key(scope: Scope, scope_id: str) -> str:
    return f"{Scope(scope).value}_last_visit_{scope_id}"


class VisitTracker:
    """Reads and writes one timestamp key per (scope, id)."""

    def __init__(self, kv: KeyValueStore, clock: Callable[[], int] = now_ms) -> None:
        self.kv = kv
        self.clock = clock

    def mark_visited(self, scope: Scope, scope_id: str) -> int:
        """Record a visit at the current time and return the stored value.

        The stored value never moves backwards, even if the wall clock does.
        """
        visited_at = max(self.clock(), self.last_visit(scope, scope_id))
        try:
            self.kv.set(visit_key(scope, scope_id), str(visited_at))
        except OSError as e:
            logger.error(f"Error marking {scope.value} {scope_id} as visited: {e}")
        return visited_at

    def last_visit(self, scope: Scope, scope_id: str) -> int:
        try:
            value = self.kv.get(visit_key(scope, scope_id))
        except OSError as e:
            logger.error(f"Error reading last {scope.value} visit: {e}")
            return 0
        if not value:
            return 0
        try:
            return int(value)
        except ValueError:
            return 0
