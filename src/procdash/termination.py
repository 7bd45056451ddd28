"""Permission-gated termination requests and their outcome log."""

import itertools
import logging
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime

from procdash.backend import KILL_FAILED, BackendError, ProcessBackend
from procdash.models import AttemptStatus, ProcessRecord, TerminationAttempt
from procdash.store import SnapshotStore
from procdash.view import is_owned_by

logger = logging.getLogger(__name__)

LOG_LIMIT = 5
PENDING_MESSAGE = "Sending SIGTERM..."
SUCCESS_MESSAGE = "Terminated successfully"
PERMISSION_DENIED = "Permission denied. You can only terminate your own processes."


class PermissionDeniedError(Exception):
    """The current user may not terminate the target process."""


def can_terminate(process: ProcessRecord, current_user: str | None) -> bool:
    """
    Whether ``current_user`` may terminate ``process``.

    An unknown current user is allowed everything.
    """
    if not current_user:
        return True
    return is_owned_by(process, current_user)


class TerminationLog:
    """Most-recent-first log of termination attempts, capped in size."""

    def __init__(self, limit: int = LOG_LIMIT) -> None:
        self._limit = limit
        self._lock = threading.Lock()
        self._order: deque[int] = deque()
        self._entries: dict[int, TerminationAttempt] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    @property
    def limit(self) -> int:
        return self._limit

    def entries(self) -> list[TerminationAttempt]:
        """Attempts, newest first."""
        with self._lock:
            return [self._entries[attempt_id] for attempt_id in self._order]

    def get(self, attempt_id: int) -> TerminationAttempt | None:
        with self._lock:
            return self._entries.get(attempt_id)

    def add(self, attempt: TerminationAttempt) -> None:
        """Prepend an attempt, evicting the oldest beyond the cap."""
        with self._lock:
            self._order.appendleft(attempt.id)
            self._entries[attempt.id] = attempt
            while len(self._order) > self._limit:
                del self._entries[self._order.pop()]

    def resolve(self, attempt_id: int, status: AttemptStatus, message: str) -> TerminationAttempt | None:
        """
        Move a pending attempt to its final status.

        Returns:
            The updated attempt, or None if it has been evicted.

        Raises:
            ValueError: If the attempt already left the pending state, or
                ``status`` is not a final state.
        """
        if status is AttemptStatus.PENDING:
            raise ValueError("Cannot resolve an attempt to pending")
        with self._lock:
            attempt = self._entries.get(attempt_id)
            if attempt is None:
                return None
            if not attempt.is_pending:
                raise ValueError(f"Attempt {attempt_id} is already {attempt.status.value}")
            updated = replace(attempt, status=status, message=message)
            self._entries[attempt_id] = updated
            return updated


class TerminationWorkflow:
    """
    Authorizes, submits and tracks termination requests.

    Submissions run on a thread pool, so several attempts can be in flight
    at once. Each backend answer is matched to its attempt by id.
    """

    def __init__(
        self,
        store: SnapshotStore,
        backend: ProcessBackend,
        on_success: Callable[[], object] | None = None,
        on_error: Callable[[str], object] | None = None,
        log_limit: int = LOG_LIMIT,
        executor: Executor | None = None,
        on_change: Callable[[], object] | None = None,
    ) -> None:
        """
        Initialize the TerminationWorkflow.

        Args:
            store: Store providing the current user for authorization.
            backend: Backend that delivers the termination request.
            on_success: Called after an attempt succeeds, typically to
                trigger a refresh.
            on_error: Called with the message of a failed attempt.
            log_limit: Number of attempts kept in the log.
            executor: Executor for backend calls. A private thread pool is
                created when omitted.
            on_change: Called whenever the log changes.
        """
        self._store = store
        self._backend = backend
        self._on_success = on_success
        self._on_error = on_error
        self._on_change = on_change
        self._log = TerminationLog(log_limit)
        self._ids = itertools.count(1)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="terminate")

    @property
    def log(self) -> TerminationLog:
        return self._log

    def is_permitted(self, process: ProcessRecord) -> bool:
        """Whether the current user may terminate ``process``."""
        return can_terminate(process, self._store.current_user)

    def authorize(self, process: ProcessRecord) -> None:
        """Raise PermissionDeniedError unless termination is permitted."""
        if not self.is_permitted(process):
            logger.info("Refused to terminate pid %d owned by %s", process.pid, process.user)
            raise PermissionDeniedError(PERMISSION_DENIED)

    def request_termination(
        self, process: ProcessRecord, confirm: Callable[[ProcessRecord], bool]
    ) -> Future[TerminationAttempt] | None:
        """
        Authorize, confirm and submit a termination.

        Returns:
            A future resolving to the finished attempt, or None if the
            operator declined.

        Raises:
            PermissionDeniedError: If the process belongs to another user.
        """
        self.authorize(process)
        if not confirm(process):
            logger.debug("Termination of pid %d declined", process.pid)
            return None
        return self.submit(process)

    def submit(self, process: ProcessRecord) -> Future[TerminationAttempt]:
        """Log a pending attempt and send the request to the backend."""
        attempt = TerminationAttempt(
            id=next(self._ids),
            pid=process.pid,
            name=process.name,
            status=AttemptStatus.PENDING,
            message=PENDING_MESSAGE,
            created_at=datetime.now(),
        )
        self._log.add(attempt)
        self._changed()
        logger.info("Requesting termination of %s (pid %d)", process.name, process.pid)
        return self._executor.submit(self._deliver, attempt)

    def shutdown(self, wait: bool = False) -> None:
        """Shut down the private thread pool, if any."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _deliver(self, attempt: TerminationAttempt) -> TerminationAttempt:
        try:
            self._backend.kill(attempt.pid)
        except BackendError as exc:
            return self._fail(attempt, str(exc) or KILL_FAILED)
        except Exception:
            logger.exception("Unexpected error terminating pid %d", attempt.pid)
            return self._fail(attempt, KILL_FAILED)

        resolved = self._resolve(attempt, AttemptStatus.SUCCESS, SUCCESS_MESSAGE)
        logger.info("Terminated %s (pid %d)", attempt.name, attempt.pid)
        if self._on_success is not None:
            try:
                self._on_success()
            except Exception:
                logger.exception("Success callback failed for pid %d", attempt.pid)
        return resolved

    def _fail(self, attempt: TerminationAttempt, message: str) -> TerminationAttempt:
        resolved = self._resolve(attempt, AttemptStatus.ERROR, message)
        logger.warning("Termination of pid %d failed: %s", attempt.pid, message)
        if self._on_error is not None:
            try:
                self._on_error(message)
            except Exception:
                logger.exception("Error callback failed for pid %d", attempt.pid)
        return resolved

    def _resolve(self, attempt: TerminationAttempt, status: AttemptStatus, message: str) -> TerminationAttempt:
        resolved = self._log.resolve(attempt.id, status, message)
        if resolved is None:
            # Evicted while in flight; report the outcome without a log entry
            logger.debug("Attempt %d resolved after eviction", attempt.id)
            resolved = replace(attempt, status=status, message=message)
        self._changed()
        return resolved

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
