"""Background poller that feeds periodic system snapshots to a queue."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from queue import Queue

from proctelemetry import delta
from proctelemetry.config import TelemetryConfig
from proctelemetry.errors import AccessDenied, NoSuchProcess, OsQueryError
from proctelemetry.models import DiskIOCounters, NetIOCounters, ProcessSnapshot
from proctelemetry.process import DEFAULT_CAPABILITY, Process, resolve
from proctelemetry.sampler import MetricFamily
from proctelemetry.system import System

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SystemSnapshot:
    """Snapshot of overall system state."""

    cpu_percent_total: float
    cpu_percent_per_core: list[float]
    memory_total: int
    memory_used: int
    memory_percent: float
    swap_total: int
    swap_used: int
    swap_percent: float
    load_avg: tuple[float, float, float]
    uptime_seconds: float
    disk_read_rate: float
    disk_write_rate: float
    net_recv_rate: float
    net_sent_rate: float
    processes: list[ProcessSnapshot]


class SystemMonitor:
    """
    Collects system and process data on a separate daemon thread.

    Percentages are measured between consecutive polls, so the System and the
    process handles are only ever touched from the polling thread.
    Processes that vanish or deny access mid-poll are skipped.
    """

    def __init__(
        self,
        update_queue: Queue[SystemSnapshot],
        poll_rate: float = 2.0,
        config: TelemetryConfig | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Thread-safe queue to push updates to.
            poll_rate: How often to poll the system (in seconds). Default 2.0s.
            config: Where to read kernel state from.
        """
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._config = config or TelemetryConfig()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cpu_history: deque[list[float]] = deque(maxlen=60)
        # Priming happens here: the first poll measures since construction
        self._system = System(self._config)
        self._handles: dict[int, Process] = {}
        self._io_baselines: dict[
            MetricFamily, tuple[float, DiskIOCounters | NetIOCounters]
        ] = {}
        logger.debug("process capability: %s", DEFAULT_CAPABILITY.__name__)

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self._collect_snapshot())
            except Exception:
                # Keep the loop running; the next poll may well succeed
                logger.debug("snapshot collection failed", exc_info=True)

            self._stop_event.wait(timeout=self._poll_rate)

    def _collect_snapshot(self) -> SystemSnapshot:
        """Collect a snapshot of the current system state."""
        # Since the previous poll, without blocking
        cpu_percents = self._system.cpu_percent(percpu=True)
        cpu_total = self._system.cpu_percent()
        self._cpu_history.append(cpu_percents)

        mem = self._system.virtual_memory()
        swap = self._system.swap_memory()
        disk = self._io_rates(MetricFamily.DISK_IO)
        net = self._io_rates(MetricFamily.NET_IO)

        return SystemSnapshot(
            cpu_percent_total=cpu_total,
            cpu_percent_per_core=cpu_percents,
            memory_total=mem.total,
            memory_used=mem.used,
            memory_percent=mem.percent,
            swap_total=swap.total,
            swap_used=swap.used,
            swap_percent=swap.percent,
            load_avg=self._system.load_avg(),
            uptime_seconds=self._system.uptime(),
            disk_read_rate=disk.get("read_bytes", 0.0),
            disk_write_rate=disk.get("write_bytes", 0.0),
            net_recv_rate=net.get("bytes_recv", 0.0),
            net_sent_rate=net.get("bytes_sent", 0.0),
            processes=self._collect_processes(mem.total),
        )

    def _io_rates(self, family: MetricFamily) -> dict[str, float]:
        """
        Per-second counter rates since the previous poll.

        The first poll only records a baseline and reports no rates. Counters
        that cannot be read (no disks, no /proc/net/dev) also report none.
        """
        try:
            counters = self._system.sampler.sample(family)
        except OsQueryError:
            logger.debug("no %s counters", family.value, exc_info=True)
            return {}
        now = time.monotonic()
        previous = self._io_baselines.get(family)
        self._io_baselines[family] = (now, counters)
        if previous is None or now <= previous[0]:
            return {}
        return delta.counter_rates(previous[1], counters, now - previous[0])

    def _handle(self, pid: int) -> Process | None:
        """
        Reuse the handle from the previous poll if it is still the same process.

        Reuse keeps cpu_percent measuring between polls; a reused pid gets a
        new handle and therefore a new baseline.
        """
        fresh = resolve(pid, config=self._config)
        if not isinstance(fresh, Process):
            self._handles.pop(pid, None)
            return None
        known = self._handles.get(pid)
        if known is not None and known == fresh:
            return known
        self._handles[pid] = fresh
        return fresh

    def _collect_processes(self, memory_total: int) -> list[ProcessSnapshot]:
        """Collect snapshots of all running processes."""
        processes: list[ProcessSnapshot] = []
        live = set()

        for pid in self._system.pids():
            proc = self._handle(pid)
            if proc is None:
                continue
            live.add(pid)
            try:
                cmdline = proc.cmdline()
                name = proc.name()
                memory_rss = proc.memory_info().rss
                snapshot = ProcessSnapshot(
                    pid=pid,
                    name=name,
                    username=self._safe(proc.username, ""),
                    status=proc.status(),
                    cpu_percent=proc.cpu_percent(),
                    memory_percent=round(memory_rss / memory_total * 100, 2) if memory_total else 0.0,
                    memory_rss=memory_rss,
                    threads=self._safe(proc.num_threads, 0),
                    nice=self._safe(proc.nice, 0),
                    command_line=" ".join(cmdline) if cmdline else name,
                )
            except (NoSuchProcess, AccessDenied, OsQueryError):
                # Died mid-poll, forbidden, or a zombie without the files we read
                continue
            processes.append(snapshot)

        for pid in set(self._handles) - live:
            del self._handles[pid]
        return processes

    @staticmethod
    def _safe(getter, default):
        try:
            return getter()
        except (AccessDenied, NotImplementedError):
            return default

    def get_cpu_history(self) -> list[list[float]]:
        """Get the CPU usage history for sparkline rendering."""
        return list(self._cpu_history)
