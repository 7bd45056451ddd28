"""Holder for the most recent process snapshot."""

import threading

from procdash.models import Snapshot


class SnapshotStore:
    """
    Latest successfully fetched snapshot plus fetch status.

    The snapshot is replaced as a whole under a lock, so readers always get
    either the previous snapshot or the new one. A failed fetch keeps the
    previous snapshot and records the error message.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._lock = threading.Lock()
        self._snapshot: Snapshot | None = None
        self._loading = False
        self._error = ""
        self._generation = 0

    @property
    def snapshot(self) -> Snapshot | None:
        """The latest snapshot, or None before the first successful fetch."""
        with self._lock:
            return self._snapshot

    @property
    def current_user(self) -> str | None:
        """The user reported with the latest snapshot."""
        with self._lock:
            return self._snapshot.current_user if self._snapshot is not None else None

    @property
    def loading(self) -> bool:
        """Whether a fetch is in flight."""
        with self._lock:
            return self._loading

    @property
    def error(self) -> str:
        """Message of the last failed fetch, empty after a success."""
        with self._lock:
            return self._error

    @property
    def generation(self) -> int:
        """Number of snapshots applied so far."""
        with self._lock:
            return self._generation

    def begin_loading(self) -> None:
        """Mark a fetch as started."""
        with self._lock:
            self._loading = True

    def replace(self, snapshot: Snapshot) -> None:
        """Swap in a new snapshot and clear the error state."""
        with self._lock:
            self._snapshot = snapshot
            self._error = ""
            self._loading = False
            self._generation += 1

    def record_failure(self, message: str) -> None:
        """Record a failed fetch, keeping the previous snapshot."""
        with self._lock:
            self._error = message
            self._loading = False
