"""In-process backend that reads the process table with psutil."""

import errno
import logging
import os

import psutil

from procdash.backend import BackendError, describe_kill_failure
from procdash.models import ProcessRecord, Snapshot

logger = logging.getLogger(__name__)

# psutil status strings mapped to single-letter state codes
STATUS_CODES: dict[str, str] = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_DISK_SLEEP: "D",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_TRACING_STOP: "T",
    psutil.STATUS_IDLE: "I",
}


def status_code(status: str | None) -> str:
    """Map a psutil status to a state code; unknown statuses pass through."""
    if not status:
        return "?"
    return STATUS_CODES.get(status, status)


def _kill_failure(code: int) -> BackendError:
    return BackendError(
        describe_kill_failure({"error": "kill failed", "message": os.strerror(code), "errno": code})
    )


class LocalBackend:
    """
    Backend that enumerates and signals processes on this machine.

    Uses psutil.process_iter() with oneshot() for efficiency. Processes that
    die mid-scan, deny access or are zombies without readable details are
    skipped.
    """

    def __init__(self) -> None:
        """Initialize the LocalBackend."""
        self._self_process = psutil.Process()

    def current_user(self) -> str | None:
        """Name of the user running the dashboard."""
        try:
            return self._self_process.username()
        except (psutil.AccessDenied, KeyError, OSError):
            logger.debug("Could not determine current user", exc_info=True)
            return None

    def fetch_snapshot(self) -> Snapshot:
        """Collect a snapshot of all running processes."""
        return Snapshot(processes=tuple(self._collect_processes()), current_user=self.current_user())

    def _collect_processes(self) -> list[ProcessRecord]:
        processes: list[ProcessRecord] = []

        attrs = [
            "pid",
            "name",
            "username",
            "status",
            "cpu_percent",
            "memory_percent",
            "memory_info",
        ]

        for proc in psutil.process_iter(attrs=attrs):
            try:
                with proc.oneshot():
                    info = proc.info
                    pid = info.get("pid") or proc.pid
                    if pid <= 0:
                        # System idle pseudo-process
                        continue

                    mem_info = info.get("memory_info")
                    processes.append(
                        ProcessRecord(
                            pid=pid,
                            name=info.get("name") or f"[{pid}]",
                            user=info.get("username") or None,
                            state=status_code(info.get("status")),
                            cpu_percent=info.get("cpu_percent"),
                            mem_percent=info.get("memory_percent"),
                            vmrss_kb=mem_info.rss // 1024 if mem_info else None,
                            vmsize_kb=mem_info.vms // 1024 if mem_info else None,
                        )
                    )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return processes

    def kill(self, pid: int) -> str | None:
        """Send SIGTERM to ``pid``."""
        if pid <= 0:
            raise BackendError("Invalid PID")
        try:
            psutil.Process(pid).terminate()
        except psutil.NoSuchProcess as exc:
            raise _kill_failure(errno.ESRCH) from exc
        except psutil.AccessDenied as exc:
            raise _kill_failure(errno.EPERM) from exc
        logger.info("Sent SIGTERM to pid %d", pid)
        return "terminated"
