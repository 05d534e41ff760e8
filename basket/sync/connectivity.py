"""Online/offline state with transition listeners."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks reachability as reported by the platform.

    The state starts unknown; while unknown the device is not treated as
    offline. Listeners run synchronously on every change of the online flag,
    including the first report.
    """

    def __init__(self, online: bool | None = None) -> None:
        self._online = online
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online is not False

    @property
    def is_offline(self) -> bool:
        return self._online is False

    @property
    def initialized(self) -> bool:
        return self._online is not None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def set_online(self, online: bool) -> bool:
        """Report reachability. Returns True when this changed the state."""
        with self._lock:
            previous = self._online
            self._online = bool(online)
            listeners = list(self._listeners)
        if previous == self._online:
            return False
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in listeners:
            listener(bool(online))
        return True
