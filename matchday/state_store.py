"""Shared global state: one authoritative row, push subscribers and pollers."""
import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from .config import DB_PATH, POLL_INTERVAL_SECONDS
from .database import get_connection, get_system_state, init_database, save_system_state, utcnow
from .models import GlobalSystemState
from .notifications import Broadcaster

logger = logging.getLogger(__name__)


class StateStore:
    """Read, upsert and subscribe to the singleton GlobalSystemState row."""

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = db_path
        self._changes = Broadcaster()
        conn = get_connection(db_path)
        try:
            init_database(conn)
        finally:
            conn.close()

    def read(self) -> GlobalSystemState:
        """Current state; created with defaults on first access."""
        conn = get_connection(self.db_path)
        try:
            return get_system_state(conn)
        finally:
            conn.close()

    def upsert(self, state: GlobalSystemState) -> GlobalSystemState:
        """Overwrite the row (last write wins) and notify subscribers."""
        stamped = replace(state, last_updated=utcnow())
        conn = get_connection(self.db_path)
        try:
            save_system_state(conn, stamped)
        finally:
            conn.close()
        self._changes.publish(stamped)
        return stamped

    def subscribe(self, callback: Callable[[GlobalSystemState], None]) -> Callable[[], None]:
        """Receive every upserted state. Returns an unsubscribe function."""
        return self._changes.subscribe(callback)


class StateWatcher:
    """
    Poll the store and report changes.

    Viewers in other processes cannot receive in-process pushes, so they
    converge by polling within one interval.
    """

    def __init__(
        self,
        store: StateStore,
        on_change: Callable[[GlobalSystemState], None],
        interval: float = POLL_INTERVAL_SECONDS
    ):
        self.store = store
        self.on_change = on_change
        self.interval = interval
        self._last: Optional[GlobalSystemState] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> bool:
        """Read the store once; returns True if the state changed."""
        try:
            state = self.store.read()
        except Exception as e:
            logger.error(f"Polling system state failed: {e}")
            return False
        if state == self._last:
            return False
        self._last = state
        self.on_change(state)
        return True

    def _run(self):
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="state-watcher", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
