"""proctop - Main Textual application."""

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import DataTable, Footer, Input, OptionList, Static
from textual.widgets.option_list import Option

from proctop.config import Config
from proctop.engine import SamplingEngine
from proctop.models import (
    PermissionDenied,
    ProcessNotFound,
    SignalKind,
    Snapshot,
    SortDirection,
    SortKey,
    ViewRow,
)
from proctop.probe import ProcessProbe, PsutilProbe

UNAVAILABLE = "n/a"


def format_bytes(size: int | None) -> str:
    """Format bytes as human-readable string."""
    if size is None:
        return UNAVAILABLE
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_time(ticks: int | None, tick_rate: float) -> str:
    """Format cumulative CPU ticks as TIME+ (hh:mm:ss, or days for long runners)."""
    if ticks is None or tick_rate <= 0:
        return UNAVAILABLE
    secs = int(ticks / tick_rate)
    mins, hours, days = secs // 60, secs // 3600, secs // 86400
    if days > 99:
        return f"{days}d"
    if days > 0:
        return f"{days:02d}d{hours % 24:02d}h"
    return f"{hours:02d}:{mins % 60:02d}:{secs % 60:02d}"


def format_uptime(uptime: float) -> str:
    """Format seconds since boot."""
    days = int(uptime // 86400)
    hours = int((uptime % 86400) // 3600)
    minutes = int((uptime % 3600) // 60)
    seconds = int(uptime % 60)
    if days > 0:
        return f"{days} days, {hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_percent(value: float | None) -> str:
    return UNAVAILABLE if value is None else f"{value:5.1f}"


def bar(percent: float, color: str, width: int = 20) -> str:
    """Rich-markup meter of `width` cells."""
    filled = min(width, max(0, int(percent / (100 / width))))
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


def command_cell(row: ViewRow, tree_mode: bool) -> str:
    """Command column, indented with a branch marker in tree mode."""
    command = row.counters.command or row.counters.name
    if not tree_mode:
        return command
    prefix = "  " * row.depth
    if row.depth > 0:
        prefix += "└─ "
    if row.node.children and not row.node.expanded:
        prefix += "+"
    return prefix + command


class HeaderStats(Static):
    """Header widget showing CPU and memory statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 0 1;
        background: $surface;
    }

    #advisory {
        color: $warning;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._snapshot: Snapshot | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )
        yield Static("", id="advisory")

    def update_stats(self, snapshot: Snapshot) -> None:
        """Update the statistics from an engine snapshot."""
        self._snapshot = snapshot
        self.query_one("#cpu-info", Static).update(self._get_cpu_info())
        self.query_one("#mem-info", Static).update(self._get_mem_info())
        self.query_one("#advisory", Static).update(self._get_advisory())

    def _get_cpu_info(self) -> str:
        """Get CPU info display."""
        if self._snapshot is None or not self._snapshot.core_utilization:
            return "Loading CPU info..."
        lines = []
        for i, usage in enumerate(self._snapshot.core_utilization):
            # Use escaped brackets for the bar container
            lines.append(f"CPU{i:<2} \\[{bar(usage, 'green')}] {usage:5.1f}%")
        return "\n".join(lines)

    def _get_mem_info(self) -> str:
        """Get memory info display."""
        sample = self._snapshot.sample if self._snapshot is not None else None
        if sample is None or sample.system is None:
            return "Loading memory info..."

        system = sample.system
        gib = 1024**3
        load_avg = system.load_avg
        return (
            f"Mem\\[{bar(system.memory_percent, 'cyan')}] "
            f"{system.memory_used / gib:.1f}G/{system.memory_total / gib:.1f}G\n"
            f"Swp\\[{bar(system.swap_percent, 'yellow')}] "
            f"{system.swap_used / gib:.1f}G/{system.swap_total / gib:.1f}G\n"
            f"Tasks: {len(sample.processes)}, "
            f"Load average: {load_avg[0]:.2f} {load_avg[1]:.2f} {load_avg[2]:.2f}\n"
            f"Uptime: {format_uptime(sample.wall_time - system.boot_time)}"
        )

    def _get_advisory(self) -> str:
        if self._snapshot is None or not self._snapshot.status.degraded:
            return ""
        return f"⚠ {self._snapshot.status.reason} (showing last known data)"


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
        self._row_pids: list[int] = []

    @property
    def row_pids(self) -> list[int]:
        """Pids in display order."""
        return list(self._row_pids)

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("USER", key="user", width=10)
        table.add_column("S", key="status", width=3)
        table.add_column("CPU%", key="cpu", width=6)
        table.add_column("MEM%", key="mem", width=6)
        table.add_column("RES", key="rss", width=8)
        table.add_column("VIRT", key="virt", width=8)
        table.add_column("THR", key="threads", width=5)
        table.add_column("TIME+", key="time", width=10)
        table.add_column("Command", key="command")

    def selected_pid(self) -> int | None:
        """Pid under the cursor, if any."""
        table = self.query_one("#process-table", DataTable)
        if not self._row_pids or table.cursor_row < 0:
            return None
        return self._row_pids[min(table.cursor_row, len(self._row_pids) - 1)]

    def update_rows(self, snapshot: Snapshot) -> None:
        """
        Replace the table contents with the snapshot's rows.

        The cursor follows the selected process to its new position.
        """
        table = self.query_one("#process-table", DataTable)
        selected = self.selected_pid()
        tree_mode = snapshot.view_state.tree_mode
        tick_rate = snapshot.sample.tick_rate if snapshot.sample is not None else 0.0

        table.clear()
        self._row_pids = []
        for row in snapshot.rows:
            counters, metrics = row.counters, row.metrics
            table.add_row(
                str(row.pid),
                (counters.username or "?")[:10],
                counters.status,
                format_percent(metrics.cpu_percent),
                format_percent(metrics.memory_percent),
                format_bytes(metrics.memory_bytes),
                format_bytes(counters.virtual_bytes),
                str(counters.threads) if counters.accessible else UNAVAILABLE,
                format_time(counters.cpu_ticks, tick_rate),
                command_cell(row, tree_mode)[:120],
                key=str(row.pid),
            )
            self._row_pids.append(row.pid)

        if selected is not None and selected in self._row_pids:
            table.move_cursor(row=self._row_pids.index(selected))


class KillMenu(ModalScreen[SignalKind | None]):
    """Popup listing the signals that can be sent to the selected process."""

    DEFAULT_CSS = """
    KillMenu {
        align: center middle;
    }

    KillMenu OptionList {
        width: 24;
        height: auto;
        border: solid $accent;
    }
    """

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("q", "cancel", "Cancel"),
    ]

    def __init__(self, pid: int) -> None:
        super().__init__()
        self.pid = pid

    def compose(self) -> ComposeResult:
        options = OptionList(*[Option(kind.label, id=kind.name) for kind in SignalKind], id="signal-list")
        options.border_title = f"Send signal to {self.pid}"
        yield options

    def on_mount(self) -> None:
        option_list = self.query_one("#signal-list", OptionList)
        option_list.highlighted = list(SignalKind).index(SignalKind.TERM)
        option_list.focus()

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        self.dismiss(SignalKind[event.option.id])

    def action_cancel(self) -> None:
        self.dismiss(None)


class ProctopApp(App):
    """Main proctop application."""

    TITLE = "proctop"
    SUB_TITLE = "Python Process Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }

    #search {
        dock: bottom;
        display: none;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("f10", "quit", "Quit", show=False),
        Binding("f5", "toggle_tree", "Tree"),
        Binding("f6", "cycle_sort", "Sort"),
        Binding("i", "invert_sort", "Invert"),
        Binding("f9", "kill", "Kill"),
        Binding("slash", "search", "Search"),
        Binding("escape", "clear_filter", "Clear filter", show=False),
        Binding("space", "toggle_expand", "Expand", show=False),
        Binding("c", "sort('cpu')", "CPU", show=False),
        Binding("m", "sort('mem')", "MEM", show=False),
        Binding("p", "sort('pid')", "PID", show=False),
        Binding("n", "sort('name')", "Name", show=False),
        Binding("u", "sort('user')", "User", show=False),
        Binding("t", "sort('time')", "Time", show=False),
    ]

    def __init__(self, config: Config | None = None, probe: ProcessProbe | None = None) -> None:
        """Initialize the ProctopApp."""
        super().__init__()
        self._config = config or Config()
        self._engine = SamplingEngine(
            probe or PsutilProbe(),
            poll_rate=self._config.interval,
            view_state=self._config.view_state(),
        )
        self._rendered_generation = -1

    @property
    def engine(self) -> SamplingEngine:
        return self._engine

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Input(placeholder="Filter by command (Enter to apply, Esc to cancel)", id="search")
        yield Footer()

    def on_mount(self) -> None:
        """Start the sampling engine when the app is mounted."""
        self._engine.start()
        # Poll the engine's published snapshot; rendering never waits on sampling
        self.set_interval(0.25, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Render the engine's snapshot if it changed since the last render."""
        snapshot = self._engine.snapshot()
        if snapshot.generation != self._rendered_generation:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: Snapshot) -> None:
        """Update the UI with the new snapshot."""
        self._rendered_generation = snapshot.generation
        self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
        self.query_one(ProcessTable).update_rows(snapshot)
        state = snapshot.view_state
        direction = "▼" if state.sort_direction is SortDirection.DESCENDING else "▲"
        parts = [f"sort {state.sort_key.value.upper()}{direction}"]
        if state.tree_mode:
            parts.append("tree")
        if state.filter_text:
            parts.append(f"filter: {state.filter_text}")
        self.sub_title = " | ".join(parts)

    def _refresh_now(self) -> None:
        self._update_ui(self._engine.snapshot())

    def action_sort(self, key: str) -> None:
        """Sort by key; pressing the active key again inverts the order."""
        sort_key = SortKey(key)
        if self._engine.view_state.sort_key is sort_key:
            self._engine.invert_sort()
        else:
            self._engine.set_sort_key(sort_key)
        self._refresh_now()

    def action_cycle_sort(self) -> None:
        """Cycle to the next sort key."""
        keys = list(SortKey)
        current_index = keys.index(self._engine.view_state.sort_key)
        new_key = keys[(current_index + 1) % len(keys)]
        self._engine.set_sort_key(new_key)
        self._refresh_now()
        self.notify(f"Sort: {new_key.value.upper()}")

    def action_invert_sort(self) -> None:
        self._engine.invert_sort()
        self._refresh_now()

    def action_toggle_tree(self) -> None:
        self._engine.toggle_tree_mode()
        self._refresh_now()

    def action_toggle_expand(self) -> None:
        pid = self.query_one(ProcessTable).selected_pid()
        if pid is not None and self._engine.view_state.tree_mode:
            self._engine.toggle_expand(pid)
            self._refresh_now()

    def action_search(self) -> None:
        search = self.query_one("#search", Input)
        search.value = self._engine.view_state.filter_text
        search.display = True
        search.focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._engine.set_filter(event.value)
        self._close_search()
        self._refresh_now()

    def action_clear_filter(self) -> None:
        """Close the search bar, or clear the active filter."""
        search = self.query_one("#search", Input)
        if search.display:
            self._close_search()
            return
        if self._engine.view_state.filter_text:
            self._engine.set_filter("")
            self._refresh_now()

    def _close_search(self) -> None:
        search = self.query_one("#search", Input)
        search.display = False
        self.query_one("#process-table", DataTable).focus()

    def action_kill(self) -> None:
        """Open the signal menu for the selected process."""
        pid = self.query_one(ProcessTable).selected_pid()
        if pid is None:
            return

        def send(kind: SignalKind | None) -> None:
            if kind is not None:
                self.send_signal(pid, kind)

        self.push_screen(KillMenu(pid), send)

    def send_signal(self, pid: int, kind: SignalKind) -> None:
        """Send a signal and report the outcome as a notification."""
        try:
            self._engine.request_kill(pid, kind)
        except ProcessNotFound:
            self.notify(f"Process {pid} no longer exists", severity="warning")
        except PermissionDenied:
            self.notify(f"Permission denied sending SIG{kind.name} to {pid}", severity="error")
        else:
            self.notify(f"Sent SIG{kind.name} to PID {pid}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._engine.stop()
        self.exit()
