"""Dashboard controller: owns the view state and publishes derived views."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future
from pathlib import Path

from procdash.backend import ProcessBackend
from procdash.config import DashboardConfig
from procdash.export import export_csv
from procdash.models import ProcessRecord, TerminationAttempt
from procdash.monitor import RefreshScheduler
from procdash.store import SnapshotStore
from procdash.termination import PermissionDeniedError, TerminationWorkflow
from procdash.view import PAGE_SIZES, DerivedView, SortKey, ViewParameters, derive_view

logger = logging.getLogger(__name__)

ViewListener = Callable[[DerivedView], None]


class DashboardController:
    """
    Single owner of the dashboard's mutable state.

    Every handler updates its input under one lock, re-runs the derivation
    pipeline, stores a clamped page back into the parameters, and publishes
    the new view to listeners. Listeners may be called from background
    threads, always one at a time and in the order the views were derived,
    so they must not block.
    """

    def __init__(
        self,
        backend: ProcessBackend,
        config: DashboardConfig | None = None,
        executor: Executor | None = None,
    ) -> None:
        """
        Initialize the DashboardController.

        Args:
            backend: Source of snapshots and target of termination requests.
            config: Runtime settings; defaults when omitted.
            executor: Executor for termination requests.
        """
        self._config = config or DashboardConfig()
        self._lock = threading.RLock()
        self._listeners: list[ViewListener] = []
        self._error = ""
        self._last_user: str | None = None

        self.store = SnapshotStore()
        self.params = ViewParameters(page_size=self._config.page_size)
        self.scheduler = RefreshScheduler(
            self.store,
            backend,
            interval=self._config.refresh_interval,
            auto_refresh=self._config.auto_refresh,
        )
        self.scheduler.add_listener(self._on_refreshed)
        self.workflow = TerminationWorkflow(
            self.store,
            backend,
            on_success=self.scheduler.request_refresh,
            on_error=self._on_termination_error,
            executor=executor,
            on_change=self._publish,
        )
        self._view = derive_view(None, self.params)

    @property
    def view(self) -> DerivedView:
        """The most recently derived view."""
        with self._lock:
            return self._view

    @property
    def error(self) -> str:
        """Operation-level error for the operator, empty when none."""
        with self._lock:
            return self._error

    @property
    def loading(self) -> bool:
        return self.store.loading

    @property
    def auto_refresh(self) -> bool:
        return self.scheduler.auto_refresh

    @property
    def log_entries(self) -> list[TerminationAttempt]:
        """Recent termination attempts, newest first."""
        return self.workflow.log.entries()

    def add_listener(self, listener: ViewListener) -> None:
        """Register a callback that receives every published view."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Begin fetching snapshots."""
        self.scheduler.start()

    def stop(self) -> None:
        """Stop the refresh timer and the termination pool."""
        self.scheduler.stop()
        self.workflow.shutdown()

    # Refresh handlers

    def refresh_now(self) -> None:
        """Fetch a snapshot in the background."""
        self.scheduler.request_refresh()

    def toggle_auto_refresh(self) -> bool:
        """Flip periodic refreshing and return the new setting."""
        enabled = self.scheduler.toggle_auto_refresh()
        self._publish()
        return enabled

    # View parameter handlers

    def toggle_ownership_filter(self) -> bool:
        """Flip the user-only filter and return the new setting."""
        with self._lock:
            enabled = self.params.toggle_owned_only()
        self._publish()
        return enabled

    def set_search_text(self, text: str) -> None:
        with self._lock:
            self.params.set_search(text)
        self._publish()

    def set_sort(self, key: SortKey) -> None:
        """Sort by ``key``, flipping direction if it is already active."""
        with self._lock:
            self.params.sort_by(key)
        self._publish()

    def set_page(self, page: int) -> DerivedView:
        """Go to ``page``; out-of-range pages are clamped to the last one."""
        with self._lock:
            self.params.set_page(page)
        return self._publish()

    def next_page(self) -> DerivedView:
        return self.set_page(self.view.page + 1)

    def previous_page(self) -> DerivedView:
        return self.set_page(self.view.page - 1)

    def first_page(self) -> DerivedView:
        return self.set_page(1)

    def last_page(self) -> DerivedView:
        return self.set_page(self.view.total_pages)

    def set_page_size(self, size: int) -> None:
        """Change rows per page; raises ValueError for unsupported sizes."""
        with self._lock:
            self.params.set_page_size(size)
        self._publish()

    def cycle_page_size(self) -> int:
        """Step to the next allowed page size and return it."""
        with self._lock:
            index = PAGE_SIZES.index(self.params.page_size)
            size = PAGE_SIZES[(index + 1) % len(PAGE_SIZES)]
            self.params.set_page_size(size)
        self._publish()
        return size

    # Termination handlers

    def can_terminate(self, process: ProcessRecord) -> bool:
        return self.workflow.is_permitted(process)

    def authorize(self, process: ProcessRecord) -> None:
        """Check permission, surfacing a refusal as the current error."""
        try:
            self.workflow.authorize(process)
        except PermissionDeniedError as exc:
            self._set_error(str(exc))
            raise

    def submit_termination(self, process: ProcessRecord) -> Future[TerminationAttempt]:
        """Send an already confirmed termination request."""
        return self.workflow.submit(process)

    def request_termination(
        self, process: ProcessRecord, confirm: Callable[[ProcessRecord], bool]
    ) -> Future[TerminationAttempt] | None:
        """
        Authorize, confirm and submit a termination.

        Raises:
            PermissionDeniedError: If the process belongs to another user.
        """
        self.authorize(process)
        if not confirm(process):
            return None
        return self.submit_termination(process)

    # Export

    def export_current_view(self) -> str:
        """CSV of every row matching the current filters, in display order."""
        return export_csv(self.view.sorted_rows)

    def write_export(self, path: Path | None = None) -> Path:
        """Write the current view as CSV and return the file path."""
        target = path or self._config.export_path
        target.write_text(self.export_current_view() + "\n", encoding="utf-8")
        logger.info("Exported %d processes to %s", self.view.filtered_count, target)
        return target

    def dismiss_error(self) -> None:
        self._set_error("")

    # Internals

    def _on_refreshed(self, store: SnapshotStore) -> None:
        with self._lock:
            if store.error:
                self._error = store.error
            else:
                self._error = ""
                user = store.current_user
                if user != self._last_user:
                    self._last_user = user
                    self.params.set_page(1)
        self._publish()

    def _on_termination_error(self, message: str) -> None:
        self._set_error(message)

    def _set_error(self, message: str) -> None:
        with self._lock:
            self._error = message
        self._publish()

    def _publish(self) -> DerivedView:
        # Listeners run under the lock so views arrive in derivation order
        with self._lock:
            view = derive_view(self.store.snapshot, self.params)
            if view.page != self.params.page:
                self.params.page = view.page
            self._view = view
            for listener in list(self._listeners):
                try:
                    listener(view)
                except Exception:
                    logger.exception("View listener failed")
        return view
