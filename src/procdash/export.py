"""CSV export of the process table."""

import csv
import io
from collections.abc import Iterable

from procdash.formatting import state_label
from procdash.models import ProcessRecord

HEADER = (
    "pid",
    "name",
    "user",
    "state",
    "cpu_percent",
    "mem_percent",
    "rss_kb",
    "vmsize_kb",
)


def _fixed(value: float | None) -> str:
    return "" if value is None else f"{value:.2f}"


def _plain(value: object | None) -> str:
    return "" if value is None else str(value)


def export_row(process: ProcessRecord) -> list[str]:
    """Column values for one process."""
    return [
        str(process.pid),
        process.name,
        _plain(process.user),
        state_label(process.state),
        _fixed(process.cpu_percent),
        _fixed(process.mem_percent),
        _plain(process.vmrss_kb),
        _plain(process.vmsize_kb),
    ]


def export_csv(processes: Iterable[ProcessRecord]) -> str:
    """
    Serialize processes as comma-separated text with a header row.

    Fields containing a comma, a quote or a line break are quoted, with
    embedded quotes doubled. Rows are separated by ``\\n`` and there is no
    trailing newline.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(HEADER)
    for process in processes:
        writer.writerow(export_row(process))
    return buffer.getvalue().removesuffix("\n")
