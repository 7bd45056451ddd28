"""Refresh scheduling for procdash."""

import logging
import threading
from collections.abc import Callable

from procdash.backend import BackendError, ProcessBackend
from procdash.store import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3.0
UNEXPECTED_ERROR = "Unexpected error"

RefreshListener = Callable[[SnapshotStore], None]


class RefreshScheduler:
    """
    Drives snapshot fetches into a SnapshotStore.

    Runs periodic fetches in a daemon thread while auto-refresh is on, and
    on-demand fetches through ``refresh``/``request_refresh``. Fetches never
    overlap, so a slow older response can never overwrite a newer one.
    Refreshes requested while one is in flight collapse into a single
    follow-up fetch.
    """

    def __init__(
        self,
        store: SnapshotStore,
        backend: ProcessBackend,
        interval: float = DEFAULT_INTERVAL,
        auto_refresh: bool = True,
    ) -> None:
        """
        Initialize the RefreshScheduler.

        Args:
            store: Store that receives fetched snapshots.
            backend: Source of snapshots.
            interval: Seconds between automatic fetches. Default 3.0s.
            auto_refresh: Whether periodic fetching starts enabled.
        """
        self._store = store
        self._backend = backend
        self._interval = interval
        self._auto_refresh = auto_refresh
        self._fetch_lock = threading.Lock()
        self._refresh_again = threading.Event()
        self._state_lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._listeners: list[RefreshListener] = []
        self._started = False

    @property
    def interval(self) -> float:
        """Seconds between automatic fetches."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Set the refresh interval; takes effect from the next wait."""
        self._interval = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def auto_refresh(self) -> bool:
        """Whether periodic fetching is enabled."""
        return self._auto_refresh

    @property
    def is_running(self) -> bool:
        """Check if the periodic timer thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def in_flight(self) -> bool:
        """Whether a fetch is currently running."""
        return self._fetch_lock.locked()

    def add_listener(self, listener: RefreshListener) -> None:
        """Register a callback run after every completed fetch."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Run the initial fetch and start the timer if auto-refresh is on."""
        with self._state_lock:
            if self._started:
                return
            self._started = True
            if self._auto_refresh:
                self._start_timer(fetch_first=True)
                return
        self.request_refresh()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the periodic timer.

        Args:
            timeout: How long to wait for the timer thread to exit (seconds).
        """
        with self._state_lock:
            thread = self._cancel_timer()
            self._started = False
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def set_auto_refresh(self, enabled: bool) -> None:
        """
        Enable or disable periodic fetching.

        Disabling cancels the pending wait immediately. Enabling schedules
        the next fetch one interval from now rather than fetching at once.
        """
        with self._state_lock:
            if enabled == self._auto_refresh:
                return
            self._auto_refresh = enabled
            if not self._started:
                return
            if enabled:
                self._start_timer(fetch_first=False)
            else:
                self._cancel_timer()
        logger.info("Auto-refresh %s", "enabled" if enabled else "disabled")

    def toggle_auto_refresh(self) -> bool:
        """Flip auto-refresh and return the new setting."""
        self.set_auto_refresh(not self._auto_refresh)
        return self._auto_refresh

    def refresh(self) -> bool:
        """
        Fetch one snapshot, blocking until the backend answers.

        A call made while another fetch is in flight does not fetch itself.
        It asks the fetch in flight to run once more when it finishes, so a
        request is never answered by a snapshot taken before it was made.

        Returns:
            False if the fetch was handed to the one already in flight,
            True otherwise.
        """
        if not self._acquire_fetch():
            return False
        while True:
            # Requests made before this point are answered by this fetch
            self._refresh_again.clear()
            try:
                self._fetch()
            finally:
                self._fetch_lock.release()

            self._notify()
            if not self._refresh_again.is_set() or not self._acquire_fetch():
                return True
            logger.debug("Running refresh requested during the previous fetch")

    def request_refresh(self) -> threading.Thread:
        """Run ``refresh`` on a background thread and return that thread."""
        thread = threading.Thread(target=self.refresh, daemon=True, name="RefreshNow")
        thread.start()
        return thread

    def _acquire_fetch(self) -> bool:
        if self._fetch_lock.acquire(blocking=False):
            return True
        self._refresh_again.set()
        # The fetch in flight may have finished before seeing the flag
        if self._fetch_lock.acquire(blocking=False):
            return True
        logger.debug("Refresh deferred to the fetch in flight")
        return False

    def _fetch(self) -> None:
        self._store.begin_loading()
        try:
            snapshot = self._backend.fetch_snapshot()
        except BackendError as exc:
            logger.warning("Snapshot fetch failed: %s", exc)
            self._store.record_failure(str(exc) or UNEXPECTED_ERROR)
        except Exception:
            logger.exception("Unexpected error while fetching snapshot")
            self._store.record_failure(UNEXPECTED_ERROR)
        else:
            self._store.replace(snapshot)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._store)
            except Exception:
                logger.exception("Refresh listener failed")

    def _start_timer(self, fetch_first: bool) -> None:
        # Caller holds _state_lock. Each timer owns its stop event, so a
        # cancelled loop cannot be revived by a later enable.
        self._cancel_timer()
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._poll_loop,
            args=(stop_event, fetch_first),
            daemon=True,
            name="RefreshScheduler",
        )
        self._thread.start()

    def _cancel_timer(self) -> threading.Thread | None:
        thread = self._thread
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._thread = None
        return thread

    def _poll_loop(self, stop_event: threading.Event, fetch_first: bool) -> None:
        """Main polling loop running in the background thread."""
        if fetch_first:
            self.refresh()
        # Wait for interval seconds or until this timer is cancelled
        while not stop_event.wait(timeout=self._interval):
            self.refresh()
