"""proctelemetry-top: a textual dashboard driven by proctelemetry."""

import logging
from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import DataTable, Footer, Sparkline, Static

from proctelemetry.errors import AccessDenied, ErrorKind, NoSuchProcess
from proctelemetry.models import ProcessSnapshot
from proctelemetry.monitor import SystemMonitor, SystemSnapshot
from proctelemetry.process import Process, resolve

logger = logging.getLogger(__name__)

METER_WIDTH = 20


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"
    NAME = "name"


# Largest first for the usage columns, natural order for the rest
DESCENDING = frozenset({SortKey.CPU, SortKey.MEM})


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(per_second: float) -> str:
    return f"{format_bytes(per_second).strip()}/s"


def format_uptime(seconds: float) -> str:
    """``D days, HH:MM:SS``, with the day part only once a day has passed."""
    days, rest = divmod(int(seconds), 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    clock = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    if days:
        return f"{days} day{'s' if days != 1 else ''}, {clock}"
    return clock


def meter(percent: float, colour: str, width: int = METER_WIDTH) -> str:
    """A bar of ``width`` cells filled in proportion to ``percent``."""
    filled = max(0, min(width, int(percent * width / 100)))
    # escaped bracket so rich markup leaves the frame alone
    return f"\\[[{colour}]{'█' * filled}[/{colour}][dim]{'░' * (width - filled)}[/dim]]"


class CpuPanel(Vertical):
    """Per-core meters plus a sparkline of overall utilisation."""

    DEFAULT_CSS = """
    CpuPanel {
        width: 1fr;
        height: auto;
        padding-right: 2;
    }

    CpuPanel Sparkline {
        height: 2;
        margin-top: 1;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static("Loading CPU info...", id="cpu-info")
        yield Sparkline([], id="cpu-history")

    def render_stats(self, snapshot: SystemSnapshot) -> str:
        lines = [
            f"CPU{i:<2} {meter(usage, 'green')} {usage:5.1f}%"
            for i, usage in enumerate(snapshot.cpu_percent_per_core)
        ]
        total = snapshot.cpu_percent_total
        lines.append(f"Avg   {meter(total, 'bold green')} {total:5.1f}%")
        return "\n".join(lines)

    def update_stats(self, snapshot: SystemSnapshot, history: list[float]) -> None:
        self.query_one("#cpu-info", Static).update(self.render_stats(snapshot))
        self.query_one("#cpu-history", Sparkline).data = history


class ResourcePanel(Static):
    """Memory, swap, load, uptime and I/O throughput."""

    DEFAULT_CSS = """
    ResourcePanel {
        width: 1fr;
        height: auto;
        padding-left: 2;
    }
    """

    def render_stats(self, snapshot: SystemSnapshot) -> str:
        gib = 1024**3
        load = snapshot.load_avg
        running = sum(1 for proc in snapshot.processes if proc.status == "running")
        return (
            f"Mem {meter(snapshot.memory_percent, 'cyan')} "
            f"{snapshot.memory_used / gib:.1f}G/{snapshot.memory_total / gib:.1f}G\n"
            f"Swp {meter(snapshot.swap_percent if snapshot.swap_total else 0.0, 'yellow')} "
            f"{snapshot.swap_used / gib:.1f}G/{snapshot.swap_total / gib:.1f}G\n"
            f"Tasks: {len(snapshot.processes)}, {running} running\n"
            f"Load average: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}\n"
            f"Uptime: {format_uptime(snapshot.uptime_seconds)}\n"
            f"Disk: read {format_rate(snapshot.disk_read_rate)} "
            f"write {format_rate(snapshot.disk_write_rate)}\n"
            f"Net:  recv {format_rate(snapshot.net_recv_rate)} "
            f"sent {format_rate(snapshot.net_sent_rate)}"
        )

    def update_stats(self, snapshot: SystemSnapshot) -> None:
        self.update(self.render_stats(snapshot))


class HeaderStats(Horizontal):
    """Header holding the CPU and resource panels side by side."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 8;
        padding: 1;
        background: $surface;
    }
    """

    def compose(self) -> ComposeResult:
        yield CpuPanel(id="cpu-panel")
        yield ResourcePanel("Loading memory info...", id="mem-info")

    def update_stats(self, snapshot: SystemSnapshot, history: list[float]) -> None:
        self.query_one(CpuPanel).update_stats(snapshot, history)
        self.query_one(ResourcePanel).update_stats(snapshot)


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    COLUMNS = (
        ("PID", "pid", 8),
        ("USER", "user", 10),
        ("NI", "nice", 4),
        ("STATE", "status", 10),
        ("CPU%", "cpu", 7),
        ("MEM%", "mem", 7),
        ("RES", "rss", 8),
        ("THR", "threads", 5),
        ("Command", "command", None),
    )

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._rows: dict[int, ProcessSnapshot] = {}
        self._sort_key: SortKey = SortKey.CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key, re-sort, and return the new key."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._resort()
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        for label, key, width in self.COLUMNS:
            table.add_column(label, key=key, width=width)

    def selected_pid(self) -> int | None:
        """Pid of the row under the cursor, if any."""
        table = self.query_one("#process-table", DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return int(row_key.value) if row_key.value is not None else None

    @staticmethod
    def _cells(proc: ProcessSnapshot) -> dict[str, str]:
        return {
            "pid": str(proc.pid),
            "user": proc.username[:10],
            "nice": str(proc.nice),
            "status": proc.status,
            "cpu": f"{proc.cpu_percent:5.1f}",
            "mem": f"{proc.memory_percent:5.1f}",
            "rss": format_bytes(proc.memory_rss),
            "threads": str(proc.threads),
            "command": proc.command_line[:60],
        }

    def update_processes(self, processes: list[ProcessSnapshot]) -> None:
        """
        Update the process table with new data.

        Rows are keyed by pid: vanished pids are removed, known ones updated
        cell by cell, new ones appended, and the table re-sorted once.
        """
        table = self.query_one("#process-table", DataTable)
        fresh = {proc.pid: proc for proc in processes}

        for pid in self._rows.keys() - fresh.keys():
            table.remove_row(str(pid))

        for pid, proc in fresh.items():
            cells = self._cells(proc)
            if pid in self._rows:
                for column, value in cells.items():
                    table.update_cell(str(pid), column, value)
            else:
                table.add_row(*cells.values(), key=str(pid))

        self._rows = fresh
        self._resort()

    def _sort_value(self, proc: ProcessSnapshot) -> object:
        match self._sort_key:
            case SortKey.CPU:
                return proc.cpu_percent
            case SortKey.MEM:
                return proc.memory_percent
            case SortKey.PID:
                return proc.pid
            case SortKey.USER:
                return proc.username.lower()
            case SortKey.NAME:
                return proc.name.lower()

    def _resort(self) -> None:
        if not self._rows:
            return
        table = self.query_one("#process-table", DataTable)
        # the pid cell is the row key, so it leads back to the snapshot
        table.sort(
            "pid",
            key=lambda pid: self._sort_value(self._rows[int(pid)]),
            reverse=self._sort_key in DESCENDING,
        )


class TelemetryApp(App):
    """Dashboard over SystemMonitor snapshots."""

    TITLE = "proctelemetry"
    SUB_TITLE = "Process Telemetry"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("f9", "terminate", "Terminate"),
    ]

    def __init__(self, poll_rate: float = 2.0) -> None:
        super().__init__()
        self._update_queue: Queue[SystemSnapshot] = Queue()
        self._monitor = SystemMonitor(self._update_queue, poll_rate=poll_rate)

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Apply the most recent queued snapshot, dropping older ones."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break
        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: SystemSnapshot) -> None:
        history = [
            sum(per_core) / len(per_core)
            for per_core in self._monitor.get_cpu_history()
            if per_core
        ]
        self.query_one(HeaderStats).update_stats(snapshot, history)
        self.query_one(ProcessTable).update_processes(snapshot.processes)

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_terminate(self) -> None:
        """Send SIGTERM to the highlighted process."""
        pid = self.query_one(ProcessTable).selected_pid()
        if pid is None:
            return
        match resolve(pid):
            case Process() as proc:
                try:
                    proc.terminate()
                except NoSuchProcess:
                    self.notify(f"{pid} already exited", severity="warning")
                except AccessDenied:
                    self.notify(f"Not allowed to signal {pid}", severity="error")
                else:
                    self.notify(f"Sent SIGTERM to {pid}")
            case ErrorKind.ACCESS_DENIED:
                self.notify(f"Not allowed to inspect {pid}", severity="error")
            case kind:
                logger.debug("cannot resolve pid %d: %s", pid, kind)
                self.notify(f"{pid} already exited", severity="warning")

    def action_quit(self) -> None:
        """Stop the monitor thread, then exit."""
        self._monitor.stop()
        self.exit()


def main() -> None:
    """Entry point for the proctelemetry-top script."""
    TelemetryApp().run()


if __name__ == "__main__":
    main()
