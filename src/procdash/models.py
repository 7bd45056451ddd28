"""Data models for procdash."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable record of one process as reported by a backend."""

    pid: int
    name: str
    user: str | None
    state: str  # 'R', 'S', 'D', 'Z', 'T', 'I' or a verbatim unknown code
    cpu_percent: float | None
    mem_percent: float | None
    vmrss_kb: int | None
    vmsize_kb: int | None


@dataclass(slots=True, frozen=True)
class Snapshot:
    """One complete fetch: the process list plus the viewing user."""

    processes: tuple[ProcessRecord, ...]
    current_user: str | None = None
    fetched_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        # An empty user name means the backend could not establish one
        if not self.current_user:
            object.__setattr__(self, "current_user", None)


class AttemptStatus(Enum):
    """Lifecycle states of a termination attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class TerminationAttempt:
    """One tracked request to terminate a process."""

    id: int
    pid: int
    name: str
    status: AttemptStatus
    message: str
    created_at: datetime

    @property
    def is_pending(self) -> bool:
        """Whether the backend has not answered yet."""
        return self.status is AttemptStatus.PENDING

    @property
    def time_label(self) -> str:
        """Local wall-clock time the attempt was created."""
        return self.created_at.strftime("%H:%M:%S")
