"""Flask extensions for the application."""

from __future__ import annotations

import threading
from pathlib import Path

from flask import Flask, current_app

from .sync.connectivity import ConnectivityMonitor
from .sync.session import SyncSession, SyncSettings


class SyncSessions:
    """Per-user :class:`SyncSession` objects sharing one device connectivity monitor."""

    def __init__(self, app: Flask | None = None) -> None:
        self.connectivity = ConnectivityMonitor()
        self._sessions: dict[str, SyncSession] = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["basket_sessions"] = self

    def _document_store(self):
        store = current_app.config.get("DOCUMENT_STORE")
        if store is None:
            from .store.firestore import FirestoreDocumentStore

            store = FirestoreDocumentStore()
            current_app.config["DOCUMENT_STORE"] = store
        return store

    def get(self, user_id: str) -> SyncSession:
        """Return the running session for ``user_id``, starting one if needed."""
        with self._lock:
            session = self._sessions.get(user_id)
            if session is not None and not session.closed:
                return session
            config = current_app.config
            session = SyncSession(
                self._document_store(),
                Path(config["BASKET_DATA_DIR"]) / user_id,
                user_id,
                SyncSettings.from_mapping(config),
                connectivity=self.connectivity,
                timer_factory=config.get("TIMER_FACTORY") or threading.Timer,
            )
            self._sessions[user_id] = session
        current_app.logger.info(f"Started sync session for {user_id}.")
        return session.start()

    def close(self, user_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()


sessions = SyncSessions()
