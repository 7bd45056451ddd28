"""Backend contract and the HTTP client for the process API."""

import logging
from typing import Any, Protocol

import requests

from procdash.models import ProcessRecord, Snapshot

logger = logging.getLogger(__name__)

FETCH_FAILED = "Failed to fetch processes"
KILL_FAILED = "Failed to terminate"
MALFORMED_RESPONSE = "Malformed response from backend"


class BackendError(Exception):
    """A backend operation failed; ``str()`` is the operator-facing message."""


class ProcessBackend(Protocol):
    """Operations the dashboard needs from a process backend."""

    def fetch_snapshot(self) -> Snapshot:
        """Return the current process list, raising BackendError on failure."""
        ...

    def kill(self, pid: int) -> str | None:
        """Request SIGTERM for ``pid``, raising BackendError on failure."""
        ...


def describe_kill_failure(body: dict[str, Any] | None) -> str:
    """
    Build the message for a failed kill from an error body.

    ``{"error": "denied", "message": "not permitted", "errno": 1}`` becomes
    ``"denied: not permitted (errno 1)"``.
    """
    if not body:
        return KILL_FAILED
    error = body.get("error")
    message = body.get("message")
    errno = body.get("errno")
    if not error:
        return str(message) if message else KILL_FAILED
    if message and errno is not None:
        return f"{error}: {message} (errno {errno})"
    if message:
        return f"{error}: {message}"
    return str(error)


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {value!r}")
    return float(value)


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)


def parse_process(data: Any) -> ProcessRecord:
    """Convert one JSON process object into a ProcessRecord."""
    if not isinstance(data, dict):
        raise ValueError(f"expected an object, got {type(data).__name__}")
    pid = data.get("pid")
    name = data.get("name")
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise ValueError(f"invalid pid {pid!r}")
    if not isinstance(name, str) or not name:
        raise ValueError(f"invalid name for pid {pid}")
    user = data.get("user")
    return ProcessRecord(
        pid=pid,
        name=name,
        user=str(user) if user else None,
        state=str(data.get("state") or "?"),
        cpu_percent=_optional_float(data.get("cpu_percent")),
        mem_percent=_optional_float(data.get("mem_percent")),
        vmrss_kb=_optional_int(data.get("vmrss_kb")),
        vmsize_kb=_optional_int(data.get("vmsize_kb")),
    )


def parse_snapshot(body: Any) -> Snapshot:
    """Convert a ``/api/processes`` body into a Snapshot."""
    if not isinstance(body, dict):
        raise BackendError(MALFORMED_RESPONSE)
    raw = body.get("processes") or []
    if not isinstance(raw, list):
        raise BackendError(MALFORMED_RESPONSE)
    try:
        processes = tuple(parse_process(item) for item in raw)
    except ValueError as exc:
        logger.warning("Malformed process record: %s", exc)
        raise BackendError(MALFORMED_RESPONSE) from exc
    current_user = body.get("current_user")
    return Snapshot(
        processes=processes,
        current_user=current_user if isinstance(current_user, str) else None,
    )


class HttpBackend:
    """Client for the process listing REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        """
        Initialize the HttpBackend.

        Args:
            base_url: Server root, e.g. ``http://localhost:8080``.
            timeout: Per-request timeout in seconds, None to wait forever.
            session: Optional pre-configured requests session.
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        """Server root the client talks to."""
        return self._base_url

    def fetch_snapshot(self) -> Snapshot:
        """GET /api/processes."""
        url = f"{self._base_url}/api/processes"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise BackendError(str(exc) or FETCH_FAILED) from exc

        try:
            body = response.json()
        except ValueError as exc:
            if not response.ok:
                raise BackendError(FETCH_FAILED) from exc
            raise BackendError(MALFORMED_RESPONSE) from exc

        if not response.ok:
            error = body.get("error") if isinstance(body, dict) else None
            raise BackendError(error or FETCH_FAILED)
        return parse_snapshot(body)

    def kill(self, pid: int) -> str | None:
        """POST /api/kill with the target pid."""
        url = f"{self._base_url}/api/kill"
        try:
            response = self._session.post(url, json={"pid": pid}, timeout=self._timeout)
        except requests.RequestException as exc:
            raise BackendError(KILL_FAILED) from exc

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = None

        if not response.ok:
            raise BackendError(describe_kill_failure(body))
        if body is None:
            return None
        return body.get("message") or body.get("status")

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()
