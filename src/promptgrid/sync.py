# Copyright (c) Syntropy Systems
"""Persisting store snapshots to a back end after changes settle."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from promptgrid.db import (
    get_connection,
    init_db,
    load_snapshot,
    save_snapshot,
)

if TYPE_CHECKING:
    from pathlib import Path

    from promptgrid.models.prompt import Prompt
    from promptgrid.store import TestMatrixStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


class SnapshotBackend(Protocol):
    """Somewhere the full prompt list can be written to and read back from."""

    def persist_snapshot(self, prompts: list[Prompt]) -> None:
        ...

    def load_snapshot(self) -> Optional[list[Prompt]]:
        ...


class SQLiteSnapshotBackend:
    """Snapshot back end on the project's SQLite database."""

    db_path: Path

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        init_db(db_path)

    def persist_snapshot(self, prompts: list[Prompt]) -> None:
        conn = get_connection(self.db_path)
        try:
            save_snapshot(conn, prompts)
        finally:
            conn.close()

    def load_snapshot(self) -> Optional[list[Prompt]]:
        conn = get_connection(self.db_path)
        try:
            return load_snapshot(conn)
        finally:
            conn.close()


class AutoSync:
    """Writes the store to a snapshot back end once changes go quiet.

    Each store change restarts a debounce timer on the running event loop.
    Without a running loop the change is only remembered; call ``flush`` to
    write it. An empty prompt list is only written once the store has held
    prompts. Sync failures are logged and kept in ``last_error``, never
    raised.
    """

    store: TestMatrixStore
    backend: SnapshotBackend
    debounce_seconds: float
    is_syncing: bool
    last_sync_time: Optional[float]
    last_error: Optional[str]
    _pending: bool
    _has_data: bool
    _timer: Optional[asyncio.TimerHandle]
    _unsubscribe: Optional[Callable[[], None]]

    def __init__(
        self,
        store: TestMatrixStore,
        backend: SnapshotBackend,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.store = store
        self.backend = backend
        self.debounce_seconds = debounce_seconds
        self.is_syncing = False
        self.last_sync_time = None
        self.last_error = None
        self._pending = False
        self._has_data = False
        self._timer = None
        self._unsubscribe = None

    @property
    def enabled(self) -> bool:
        return self._unsubscribe is not None

    @property
    def pending(self) -> bool:
        """Whether a change is waiting to be written."""
        return self._pending

    def start(self) -> None:
        """Begin listening to store changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def stop(self) -> None:
        """Stop listening and drop any scheduled write."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_timer()
        self.is_syncing = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_change(self, prompts: list[Prompt]) -> None:
        # An empty list only counts once prompts have existed.
        if not prompts and not self._has_data:
            return
        self._has_data = self._has_data or bool(prompts)
        self._pending = True
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self.debounce_seconds, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self.sync_now()

    def sync_now(self) -> bool:
        """Write the current prompt list immediately. Returns success."""
        self.is_syncing = True
        self.last_error = None
        try:
            self.backend.persist_snapshot(self.store.prompts)
        except Exception as e:
            self.last_error = str(e) or "Failed to sync data"
            logger.exception("Error syncing prompts")
            return False
        else:
            self._pending = False
            self.last_sync_time = time.time()
            return True
        finally:
            self.is_syncing = False

    def flush(self) -> bool:
        """Write a pending change now instead of waiting for the timer."""
        self._cancel_timer()
        if not self._pending:
            return True
        return self.sync_now()

    def load(self) -> bool:
        """Replace the store contents with the stored snapshot, if any."""
        self.is_syncing = True
        self.last_error = None
        try:
            prompts = self.backend.load_snapshot()
        except Exception as e:
            self.last_error = str(e) or "Failed to load snapshot"
            logger.exception("Error loading prompts")
            return False
        finally:
            self.is_syncing = False

        if prompts is None:
            return False
        self._has_data = self._has_data or bool(prompts)
        self.store.replace_all(prompts)
        self._cancel_timer()
        self._pending = False
        self.last_sync_time = time.time()
        return True

    def clear_error(self) -> None:
        self.last_error = None
