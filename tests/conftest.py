"""Shared fixtures for procdash tests."""

import threading

import pytest

from procdash.models import ProcessRecord, Snapshot


def make_process(
    pid: int,
    name: str = "proc",
    user: str | None = "alice",
    state: str = "S",
    cpu: float | None = 0.0,
    mem: float | None = 0.0,
    rss: int | None = 1024,
    vms: int | None = 4096,
) -> ProcessRecord:
    """Build a ProcessRecord with test defaults."""
    return ProcessRecord(
        pid=pid,
        name=name,
        user=user,
        state=state,
        cpu_percent=cpu,
        mem_percent=mem,
        vmrss_kb=rss,
        vmsize_kb=vms,
    )


class FakeBackend:
    """In-memory backend with switches for failures and slow responses."""

    def __init__(self, snapshot: Snapshot | None = None) -> None:
        self.snapshot = snapshot or Snapshot(processes=(), current_user="alice")
        self.fetch_error: Exception | None = None
        self.fetch_gate: threading.Event | None = None
        self.fetch_started = threading.Event()
        self.fetch_calls = 0
        self.kill_errors: dict[int, Exception] = {}
        self.kill_gates: dict[int, threading.Event] = {}
        self.killed: list[int] = []
        self._lock = threading.Lock()

    def fetch_snapshot(self) -> Snapshot:
        with self._lock:
            self.fetch_calls += 1
        self.fetch_started.set()
        if self.fetch_gate is not None:
            self.fetch_gate.wait(timeout=5.0)
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.snapshot

    def kill(self, pid: int) -> str | None:
        gate = self.kill_gates.get(pid)
        if gate is not None:
            gate.wait(timeout=5.0)
        with self._lock:
            self.killed.append(pid)
        if pid in self.kill_errors:
            raise self.kill_errors[pid]
        return "terminated"


@pytest.fixture
def process_factory():
    """Factory for ProcessRecord instances."""
    return make_process


@pytest.fixture
def backend() -> FakeBackend:
    """A fake backend reporting a handful of processes for alice."""
    snapshot = Snapshot(
        processes=(
            make_process(1, "init", user="root", cpu=0.1, mem=0.2),
            make_process(42, "bash", user="alice", cpu=1.5, mem=0.5),
            make_process(77, "python", user="alice", state="R", cpu=35.0, mem=4.0),
            make_process(90, "postgres", user="postgres", cpu=2.0, mem=12.5),
        ),
        current_user="alice",
    )
    return FakeBackend(snapshot)
