"""View parameters and the derivation pipeline for the process table.

``derive_view`` is a pure function of a snapshot and the operator's view
parameters. It filters by ownership, then by search text, sorts the
remainder, and cuts out the requested page. The aggregate counters are
computed over the whole snapshot, not the filtered rows.
"""

import locale
import math
from dataclasses import dataclass
from enum import Enum

from procdash.formatting import state_label
from procdash.models import ProcessRecord, Snapshot

CPU_ALERT = 20.0
MEM_ALERT = 10.0

PAGE_SIZES: tuple[int, ...] = (10, 15, 20, 50)
DEFAULT_PAGE_SIZE = 15


class SortKey(Enum):
    """Sort keys for the process table."""

    PID = "pid"
    NAME = "name"
    CPU = "cpu"
    MEM = "mem"


class SortDirection(Enum):
    """Sort direction for the process table."""

    ASC = "asc"
    DESC = "desc"

    def flipped(self) -> "SortDirection":
        """Return the opposite direction."""
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


@dataclass(slots=True)
class ViewParameters:
    """
    Operator-controlled view state.

    Every mutation except ``set_page`` sends the operator back to page 1.
    """

    search: str = ""
    owned_only: bool = True
    sort_key: SortKey = SortKey.PID
    sort_direction: SortDirection = SortDirection.ASC
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.page_size not in PAGE_SIZES:
            raise ValueError(f"Unsupported page size: {self.page_size}")
        self.page = max(1, self.page)

    def set_search(self, text: str) -> None:
        """Replace the search text."""
        self.search = text
        self.page = 1

    def set_owned_only(self, enabled: bool) -> None:
        """Show only the current user's processes, or everyone's."""
        self.owned_only = enabled
        self.page = 1

    def toggle_owned_only(self) -> bool:
        """Flip the ownership filter and return the new value."""
        self.set_owned_only(not self.owned_only)
        return self.owned_only

    def sort_by(self, key: SortKey) -> None:
        """
        Select a sort key.

        Selecting the active key flips the direction; a new key always
        starts ascending.
        """
        if key is self.sort_key:
            self.sort_direction = self.sort_direction.flipped()
        else:
            self.sort_key = key
            self.sort_direction = SortDirection.ASC
        self.page = 1

    def set_page_size(self, size: int) -> None:
        """Change the number of rows per page."""
        if size not in PAGE_SIZES:
            raise ValueError(f"Unsupported page size: {size}")
        self.page_size = size
        self.page = 1

    def set_page(self, page: int) -> None:
        """Jump to a page; the upper bound is applied by ``derive_view``."""
        self.page = max(1, page)


@dataclass(slots=True, frozen=True)
class DerivedView:
    """Everything the presentation layer needs to draw one frame."""

    rows: tuple[ProcessRecord, ...]
    sorted_rows: tuple[ProcessRecord, ...]
    filtered_count: int
    page: int
    total_pages: int
    page_size: int
    total_count: int
    owned_count: int
    high_usage_count: int
    excluded_by_ownership: int
    excluded_by_search: int
    current_user: str | None
    owned_only: bool
    sort_key: SortKey
    sort_direction: SortDirection

    @property
    def first_index(self) -> int:
        """1-based index of the first visible row, 0 when empty."""
        if not self.rows:
            return 0
        return (self.page - 1) * self.page_size + 1

    @property
    def last_index(self) -> int:
        """1-based index of the last visible row, 0 when empty."""
        if not self.rows:
            return 0
        return self.first_index + len(self.rows) - 1


def is_owned_by(process: ProcessRecord, user: str | None) -> bool:
    """Case-insensitive ownership check; a missing owner never matches."""
    if not user:
        return False
    return (process.user or "").lower() == user.lower()


def is_high_usage(process: ProcessRecord) -> bool:
    """Whether a process meets either usage alert threshold."""
    return (process.cpu_percent or 0.0) >= CPU_ALERT or (process.mem_percent or 0.0) >= MEM_ALERT


def filter_owned(
    processes: tuple[ProcessRecord, ...], current_user: str | None, owned_only: bool
) -> tuple[ProcessRecord, ...]:
    """Apply the ownership filter; an unknown user disables it."""
    if not owned_only or not current_user:
        return processes
    return tuple(p for p in processes if is_owned_by(p, current_user))


def matches_search(process: ProcessRecord, term: str) -> bool:
    """Match a lower-cased term against pid, name and state label."""
    return (
        term in str(process.pid)
        or term in process.name.lower()
        or term in state_label(process.state).lower()
    )


def filter_search(processes: tuple[ProcessRecord, ...], search: str) -> tuple[ProcessRecord, ...]:
    """Apply the search filter to already ownership-filtered records."""
    term = search.strip().lower()
    if not term:
        return processes
    return tuple(p for p in processes if matches_search(p, term))


def sort_processes(
    processes: tuple[ProcessRecord, ...], key: SortKey, direction: SortDirection
) -> tuple[ProcessRecord, ...]:
    """Stable sort; equal keys keep their input order in both directions."""
    key_func = {
        SortKey.PID: lambda p: p.pid,
        SortKey.NAME: lambda p: locale.strxfrm(p.name),
        SortKey.CPU: lambda p: p.cpu_percent or 0.0,
        SortKey.MEM: lambda p: p.mem_percent or 0.0,
    }
    return tuple(sorted(processes, key=key_func[key], reverse=direction is SortDirection.DESC))


def page_count(filtered_count: int, page_size: int) -> int:
    """Number of pages needed, never less than one."""
    return max(1, math.ceil(filtered_count / page_size))


def derive_view(snapshot: Snapshot | None, params: ViewParameters) -> DerivedView:
    """
    Derive the visible page and counters from a snapshot.

    Args:
        snapshot: Latest snapshot, or None before the first successful fetch.
        params: Current view parameters. Not modified; the clamped page is
            reported in the result for the caller to store.

    Returns:
        The derived view.
    """
    processes = snapshot.processes if snapshot is not None else ()
    current_user = snapshot.current_user if snapshot is not None else None

    owned = filter_owned(processes, current_user, params.owned_only)
    searched = filter_search(owned, params.search)
    ordered = sort_processes(searched, params.sort_key, params.sort_direction)

    total_pages = page_count(len(ordered), params.page_size)
    page = min(max(1, params.page), total_pages)
    start = (page - 1) * params.page_size

    return DerivedView(
        rows=ordered[start : start + params.page_size],
        sorted_rows=ordered,
        filtered_count=len(ordered),
        page=page,
        total_pages=total_pages,
        page_size=params.page_size,
        total_count=len(processes),
        owned_count=sum(1 for p in processes if is_owned_by(p, current_user)),
        high_usage_count=sum(1 for p in processes if is_high_usage(p)),
        excluded_by_ownership=len(processes) - len(owned),
        excluded_by_search=len(owned) - len(searched),
        current_user=current_user,
        owned_only=params.owned_only,
        sort_key=params.sort_key,
        sort_direction=params.sort_direction,
    )
