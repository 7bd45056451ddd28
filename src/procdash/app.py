"""procdash - Main Textual application."""

import locale
import logging
from queue import Empty, Queue

from rich.markup import escape
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Input, Static

from procdash.backend import ProcessBackend
from procdash.config import ConfigError, DashboardConfig, build_backend, configure_logging, load_config
from procdash.controller import DashboardController
from procdash.formatting import format_kb, format_percent, format_user, state_label
from procdash.models import AttemptStatus, ProcessRecord, TerminationAttempt
from procdash.termination import PermissionDeniedError
from procdash.view import CPU_ALERT, MEM_ALERT, DerivedView, SortDirection, SortKey, is_high_usage

logger = logging.getLogger(__name__)

ATTEMPT_STYLES = {
    AttemptStatus.PENDING: "yellow",
    AttemptStatus.SUCCESS: "green",
    AttemptStatus.ERROR: "red",
}


def sort_label(view: DerivedView) -> str:
    """Subtitle describing the sort a view was derived with."""
    arrow = "↑" if view.sort_direction is SortDirection.ASC else "↓"
    return f"Sort: {view.sort_key.value.upper()} {arrow}"


class SummaryStats(Static):
    """Header widget showing process counters."""

    DEFAULT_CSS = """
    SummaryStats {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize SummaryStats."""
        super().__init__(*args, **kwargs)
        self._total = 0
        self._owned = 0
        self._high_usage = 0
        self._current_user: str | None = None

    def update_view(self, view: DerivedView) -> None:
        """Update the counters from a derived view."""
        self._total = view.total_count
        self._owned = view.owned_count
        self._high_usage = view.high_usage_count
        self._current_user = view.current_user
        self.update(self.render_stats())

    def render_stats(self) -> str:
        """Counter line markup."""
        user = escape(self._current_user or "unknown")
        return (
            f"Total [b]{self._total}[/b]   "
            f"User ({user}) [b]{self._owned}[/b]   "
            f"High usage [b red]{self._high_usage}[/b red] "
            f"[dim](CPU ≥ {CPU_ALERT:g}% or Mem ≥ {MEM_ALERT:g}%)[/dim]"
        )


class StatusLine(Static):
    """Loading, range and error status."""

    def show_status(self, view: DerivedView, loading: bool, error: str, auto_refresh: bool) -> None:
        if loading and view.total_count == 0:
            text = "Loading..."
        elif view.filtered_count:
            text = f"Showing {view.first_index}-{view.last_index} of {view.filtered_count}"
        else:
            text = "0 processes shown"
        text += f"   Page {view.page} of {view.total_pages} ({view.page_size} rows)"
        text += f"   Auto refresh: {'on' if auto_refresh else 'off'}"
        text += f"   User only: {'on' if view.owned_only else 'off'}"
        if error:
            text += f"   [b red]{escape(error)}[/b red]"
        self.update(text)


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._rows: list[ProcessRecord] = []

    @property
    def rows(self) -> list[ProcessRecord]:
        """Records currently shown, in display order."""
        return list(self._rows)

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("Process", key="name", width=24)
        table.add_column("User", key="user", width=12)
        table.add_column("State", key="state", width=10)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("RSS", key="rss", width=10)
        table.add_column("VM Size", key="vms", width=10)

    def selected(self) -> ProcessRecord | None:
        """The record under the cursor."""
        table = self.query_one("#process-table", DataTable)
        row = table.cursor_row
        if 0 <= row < len(self._rows):
            return self._rows[row]
        return None

    def update_rows(self, rows: tuple[ProcessRecord, ...]) -> None:
        """
        Replace the table contents with one page of records.

        The cursor stays on the same pid when it is still visible.
        """
        table = self.query_one("#process-table", DataTable)
        previous = self.selected()

        table.clear()
        for proc in rows:
            self._add_row(table, proc)
        self._rows = list(rows)

        if previous is not None:
            for index, proc in enumerate(self._rows):
                if proc.pid == previous.pid:
                    table.move_cursor(row=index)
                    break

    def _add_row(self, table: DataTable, proc: ProcessRecord) -> None:
        style = "bold red" if is_high_usage(proc) else ""
        table.add_row(
            Text(str(proc.pid), style=style),
            Text(proc.name, style=style),
            Text(format_user(proc.user), style=style),
            Text(state_label(proc.state), style=style),
            Text(format_percent(proc.cpu_percent), style=style),
            Text(format_percent(proc.mem_percent), style=style),
            Text(format_kb(proc.vmrss_kb), style=style),
            Text(format_kb(proc.vmsize_kb), style=style),
            key=str(proc.pid),
        )


class TerminationLogPanel(Static):
    """Recent termination requests."""

    DEFAULT_CSS = """
    TerminationLogPanel {
        height: auto;
        padding: 0 1;
        border-top: solid $primary;
    }
    """

    def show_entries(self, entries: list[TerminationAttempt]) -> None:
        if not entries:
            self.update("[dim]No terminate requests yet.[/dim]")
            return
        lines = ["[b]Terminate requests[/b]"]
        for item in entries:
            style = ATTEMPT_STYLES[item.status]
            lines.append(
                f"{item.time_label} PID {item.pid} ({escape(item.name)}) [{style}]{escape(item.message)}[/{style}]"
            )
        self.update("\n".join(lines))


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no confirmation dialog."""

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }

    #confirm-dialog {
        width: 50;
        height: auto;
        padding: 1 2;
        border: thick $error;
        background: $surface;
    }

    #confirm-buttons {
        height: auto;
        margin-top: 1;
    }
    """

    BINDINGS = [
        ("y", "confirm", "Yes"),
        ("n", "cancel", "No"),
        ("escape", "cancel", "Cancel"),
    ]

    def __init__(self, prompt: str) -> None:
        super().__init__()
        self._prompt = prompt

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static(self._prompt, id="confirm-prompt"),
            Horizontal(
                Button("Terminate", variant="error", id="confirm-yes"),
                Button("Cancel", id="confirm-no"),
                id="confirm-buttons",
            ),
            id="confirm-dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm-yes")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


class ProcessDetailsScreen(ModalScreen[bool]):
    """
    Every field of one process.

    Dismisses with True when the operator asks to terminate the process.
    """

    DEFAULT_CSS = """
    ProcessDetailsScreen {
        align: center middle;
    }

    #details-dialog {
        width: 50;
        height: auto;
        padding: 1 2;
        border: thick $primary;
        background: $surface;
    }

    #details-buttons {
        height: auto;
        margin-top: 1;
    }
    """

    BINDINGS = [
        ("k", "terminate", "Terminate"),
        ("escape", "close", "Close"),
    ]

    def __init__(self, process: ProcessRecord, can_terminate: bool) -> None:
        super().__init__()
        self._process = process
        self._can_terminate = can_terminate

    def detail_lines(self) -> list[str]:
        proc = self._process
        fields = [
            ("PID", str(proc.pid)),
            ("Name", proc.name),
            ("User", format_user(proc.user)),
            ("State", state_label(proc.state)),
            ("CPU %", format_percent(proc.cpu_percent)),
            ("Mem %", format_percent(proc.mem_percent)),
            ("RSS", format_kb(proc.vmrss_kb)),
            ("VM Size", format_kb(proc.vmsize_kb)),
        ]
        return [f"{label:<8} [b]{escape(value)}[/b]" for label, value in fields]

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("[b]Process Details[/b]", id="details-title"),
            Static("\n".join(self.detail_lines()), id="details-fields"),
            Horizontal(
                Button(
                    "Terminate",
                    variant="error",
                    id="details-terminate",
                    disabled=not self._can_terminate,
                ),
                Button("Close", id="details-close"),
                id="details-buttons",
            ),
            id="details-dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "details-terminate")

    def action_terminate(self) -> None:
        # The app re-checks permission and reports a refusal
        self.dismiss(True)

    def action_close(self) -> None:
        self.dismiss(False)


class ProcdashApp(App):
    """Main procdash application."""

    TITLE = "procdash"
    SUB_TITLE = "Process Dashboard"

    CSS = """
    Screen {
        layout: vertical;
    }

    #summary {
        dock: top;
    }

    #search {
        height: 3;
    }

    #status {
        height: auto;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("a", "toggle_auto_refresh", "Auto"),
        ("u", "toggle_user_only", "User only"),
        ("slash", "search", "Search"),
        Binding("p", "sort('pid')", "PID", show=False),
        Binding("n", "sort('name')", "Name", show=False),
        Binding("c", "sort('cpu')", "CPU", show=False),
        Binding("m", "sort('mem')", "Mem", show=False),
        Binding("left_square_bracket", "previous_page", "Prev", show=False),
        Binding("right_square_bracket", "next_page", "Next", show=False),
        Binding("left_curly_bracket", "first_page", "First", show=False),
        Binding("right_curly_bracket", "last_page", "Last", show=False),
        ("z", "cycle_page_size", "Rows"),
        ("k", "terminate", "Terminate"),
        ("e", "export", "Export CSV"),
        ("escape", "dismiss", "Dismiss"),
    ]

    def __init__(
        self,
        config: DashboardConfig | None = None,
        backend: ProcessBackend | None = None,
    ) -> None:
        """
        Initialize the ProcdashApp.

        Args:
            config: Runtime settings; defaults when omitted.
            backend: Process backend; built from ``config`` when omitted.
        """
        super().__init__()
        self._config = config or DashboardConfig()
        self._update_queue: Queue[DerivedView] = Queue()
        self._controller = DashboardController(backend or build_backend(self._config), self._config)
        self._controller.add_listener(self._update_queue.put)

    @property
    def controller(self) -> DashboardController:
        return self._controller

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield SummaryStats(id="summary")
        yield Input(placeholder="Search by PID, name, or state", id="search")
        yield StatusLine(id="status")
        yield ProcessTable()
        yield TerminationLogPanel(id="action-log")
        yield Footer()

    def on_mount(self) -> None:
        """Start refreshing when the app is mounted."""
        self.query_one("#process-table", DataTable).focus()
        self._update_queue.put(self._controller.view)
        self._controller.start()
        # Poll the queue for views published from worker threads
        self.set_interval(0.1, self._check_for_updates)

    def on_unmount(self) -> None:
        self._controller.stop()

    def _check_for_updates(self) -> None:
        """Render the most recent published view, if any."""
        view = None
        while True:
            try:
                view = self._update_queue.get_nowait()
            except Empty:
                break

        if view is not None:
            self._apply_view(view)

    def _apply_view(self, view: DerivedView) -> None:
        controller = self._controller
        self.query_one("#summary", SummaryStats).update_view(view)
        self.query_one("#status", StatusLine).show_status(
            view,
            loading=controller.loading,
            error=controller.error,
            auto_refresh=controller.auto_refresh,
        )
        self.query_one(ProcessTable).update_rows(view.rows)
        self.query_one("#action-log", TerminationLogPanel).show_entries(controller.log_entries)
        self.sub_title = sort_label(view)

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search":
            self._controller.set_search_text(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.query_one("#process-table", DataTable).focus()

    def action_refresh(self) -> None:
        self._controller.refresh_now()

    def action_toggle_auto_refresh(self) -> None:
        enabled = self._controller.toggle_auto_refresh()
        self.notify(f"Auto refresh {'on' if enabled else 'off'}")

    def action_toggle_user_only(self) -> None:
        self._controller.toggle_ownership_filter()

    def action_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_sort(self, key: str) -> None:
        self._controller.set_sort(SortKey(key))

    def action_previous_page(self) -> None:
        self._controller.previous_page()

    def action_next_page(self) -> None:
        self._controller.next_page()

    def action_first_page(self) -> None:
        self._controller.first_page()

    def action_last_page(self) -> None:
        self._controller.last_page()

    def action_cycle_page_size(self) -> None:
        size = self._controller.cycle_page_size()
        self.notify(f"Rows per page: {size}")

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Open the details dialog for the chosen row."""
        process = self.query_one(ProcessTable).selected()
        if process is None:
            return

        def on_close(terminate: bool | None) -> None:
            if terminate:
                self._terminate(process)

        self.push_screen(ProcessDetailsScreen(process, self._controller.can_terminate(process)), on_close)

    def action_terminate(self) -> None:
        """Confirm and terminate the selected process."""
        process = self.query_one(ProcessTable).selected()
        if process is not None:
            self._terminate(process)

    def _terminate(self, process: ProcessRecord) -> None:
        try:
            self._controller.authorize(process)
        except PermissionDeniedError as exc:
            self.notify(str(exc), severity="error")
            return

        def on_confirm(confirmed: bool | None) -> None:
            if confirmed:
                self._controller.submit_termination(process)

        self.push_screen(ConfirmScreen(f"Terminate {escape(process.name)} (PID {process.pid})?"), on_confirm)

    def action_export(self) -> None:
        try:
            path = self._controller.write_export()
        except OSError as exc:
            logger.warning("Export failed: %s", exc)
            self.notify(f"Export failed: {exc}", severity="error")
            return
        self.notify(f"Exported to {path}")

    def action_dismiss(self) -> None:
        search = self.query_one("#search", Input)
        if search.has_focus:
            self.query_one("#process-table", DataTable).focus()
        else:
            self._controller.dismiss_error()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._controller.stop()
        self.exit()


def main(argv: list[str] | None = None) -> None:
    """Entry point for procdash application."""
    try:
        config = load_config(argv)
    except ConfigError as exc:
        raise SystemExit(f"procdash: {exc}") from exc
    configure_logging(config)
    try:
        # Name sorting follows the user's collation rules
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        logger.debug("Falling back to the C collation locale")
    app = ProcdashApp(config)
    app.run()


if __name__ == "__main__":
    main()
