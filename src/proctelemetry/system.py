"""
System-wide telemetry: samples, utilisation percentages and rates.

A System owns one Sampler and one RateCache. Percentages are measured either
across a blocking ``interval`` or since the previous call on the same System,
so keep one System per thread (or lock around it) when sampling from several.
"""

import time
from collections.abc import Callable
from pathlib import Path

from proctelemetry import connections as netconn
from proctelemetry import delta, native
from proctelemetry.config import TelemetryConfig
from proctelemetry.errors import InvalidArgument
from proctelemetry.models import (
    Connection,
    CpuTimes,
    CpuTimesPercent,
    DiskIOCounters,
    DiskPartition,
    DiskUsage,
    NetIOCounters,
    SwapMemory,
    SystemInfo,
    User,
    VirtualMemory,
)
from proctelemetry.ratecache import RateCache
from proctelemetry.sampler import MetricFamily, Sampler

CPU_PERCENT = "cpu_percent"
CPU_TIMES_PERCENT = "cpu_times_percent"
IO_RATES = "io_rates"


def _check_interval(interval: float | None) -> float:
    if interval is None:
        return 0.0
    if interval < 0:
        raise InvalidArgument(f"interval must be >= 0 (got {interval!r})")
    return interval


class System:
    """
    Entry point for system-wide sampling.

    Args:
        config: Where to read kernel state from.
        sampler: Sampler to use. Built from ``config`` when omitted.
        rate_cache: Store for "since last call" baselines. When omitted, a new
            cache is created and primed with CPU samples taken right now, so
            the first zero-interval call measures since this System was built.
        sleep: Blocking sleep used between interval samples.
    """

    def __init__(
        self,
        config: TelemetryConfig | None = None,
        *,
        sampler: Sampler | None = None,
        rate_cache: RateCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or (sampler.config if sampler else TelemetryConfig())
        self.sampler = sampler or Sampler(self.config)
        self._sleep = sleep
        self._boot_time: float | None = None
        if rate_cache is None:
            rate_cache = RateCache()
            cpu = self.sampler.sample(MetricFamily.CPU)
            per_cpu = self.sampler.sample(MetricFamily.PER_CPU)
            for operation in (CPU_PERCENT, CPU_TIMES_PERCENT):
                rate_cache.put((operation, MetricFamily.CPU), cpu)
                rate_cache.put((operation, MetricFamily.PER_CPU), per_cpu)
        self.rate_cache = rate_cache

    # ------------------------------------------------------------------
    # Sampling-interval protocol
    # ------------------------------------------------------------------

    def _start_end(self, operation: str, family: MetricFamily, interval: float, empty):
        """
        Return ``(start, end)`` samples of ``family`` and remember ``end``.

        A positive interval takes both samples now, sleeping in between.
        Otherwise the start is the sample remembered from the previous call
        (``empty`` if there was none).
        """
        key = (operation, family)
        if interval > 0:
            start = self.sampler.sample(family)
            self._sleep(interval)
            end = self.sampler.sample(family)
            self.rate_cache.put(key, end)
        else:
            end = self.sampler.sample(family)
            start = self.rate_cache.exchange(key, end, default=empty(end))
        return start, end

    def cpu_percent(
        self, interval: float | None = None, percpu: bool = False
    ) -> float | list[float]:
        """
        System-wide CPU utilisation as a percentage.

        Args:
            interval: Seconds to block and measure across. 0 or None measures
                since the previous call (or since this System was created).
            percpu: Return one value per CPU.

        Note:
            Very small intervals give coarse results: the kernel only
            accounts time in clock ticks.
        """
        interval = _check_interval(interval)
        if percpu:
            start, end = self._start_end(
                CPU_PERCENT, MetricFamily.PER_CPU, interval,
                lambda end: [CpuTimes.zero()] * len(end),
            )
            return delta.per_cpu_percent(start, end)
        start, end = self._start_end(
            CPU_PERCENT, MetricFamily.CPU, interval, lambda end: CpuTimes.zero()
        )
        return delta.cpu_percent(start, end)

    def cpu_times_percent(
        self, interval: float | None = None, percpu: bool = False
    ) -> CpuTimesPercent | list[CpuTimesPercent]:
        """Like ``cpu_percent`` but broken down per CPU state."""
        interval = _check_interval(interval)
        if percpu:
            start, end = self._start_end(
                CPU_TIMES_PERCENT, MetricFamily.PER_CPU, interval,
                lambda end: [CpuTimes.zero()] * len(end),
            )
            return delta.per_cpu_times_percent(start, end)
        start, end = self._start_end(
            CPU_TIMES_PERCENT, MetricFamily.CPU, interval, lambda end: CpuTimes.zero()
        )
        return delta.cpu_times_percent(start, end)

    def _rates(self, family: MetricFamily, per_device: bool, interval: float | None):
        interval = _check_interval(interval)
        key = (IO_RATES, family)
        if interval > 0:
            start_at, start = time.monotonic(), self.sampler.sample(family)
            self._sleep(interval)
        else:
            previous = self.rate_cache.get(key)
            if previous is None:
                raise InvalidArgument(
                    f"no earlier {family.value} sample; pass an interval for the first call"
                )
            start_at, start = previous
        end_at, end = time.monotonic(), self.sampler.sample(family)
        self.rate_cache.put(key, (end_at, end))
        elapsed = end_at - start_at
        if not per_device:
            return delta.counter_rates(start, end, elapsed)
        # devices that appeared in between have no baseline to diff against
        return {
            name: delta.counter_rates(start[name], counters, elapsed)
            for name, counters in end.items()
            if name in start
        }

    def disk_io_rates(
        self, interval: float | None = None, perdisk: bool = False
    ) -> dict[str, float] | dict[str, dict[str, float]]:
        """
        Per-second disk counters (bytes/s, operations/s).

        The first call on a System needs a positive interval; later calls may
        pass 0 to measure since the previous one.
        """
        family = MetricFamily.PER_DISK_IO if perdisk else MetricFamily.DISK_IO
        return self._rates(family, perdisk, interval)

    def net_io_rates(
        self, interval: float | None = None, pernic: bool = False
    ) -> dict[str, float] | dict[str, dict[str, float]]:
        """Per-second network counters; same protocol as ``disk_io_rates``."""
        family = MetricFamily.PER_NIC_IO if pernic else MetricFamily.NET_IO
        return self._rates(family, pernic, interval)

    # ------------------------------------------------------------------
    # Pass-through samples
    # ------------------------------------------------------------------

    def cpu_times(self, percpu: bool = False) -> CpuTimes | list[CpuTimes]:
        return self.sampler.cpu_times(percpu)

    def cpu_count(self, logical: bool = True) -> int | None:
        return self.sampler.cpu_count(logical)

    def virtual_memory(self) -> VirtualMemory:
        return self.sampler.virtual_memory()

    def swap_memory(self) -> SwapMemory:
        return self.sampler.swap_memory()

    def disk_partitions(self, all: bool = False) -> list[DiskPartition]:
        return self.sampler.disk_partitions(all)

    def disk_usage(self, path: str | Path) -> DiskUsage:
        return native.disk_usage(path)

    def disk_io_counters(
        self, perdisk: bool = False
    ) -> DiskIOCounters | dict[str, DiskIOCounters]:
        return self.sampler.disk_io_counters(perdisk)

    def net_io_counters(
        self, pernic: bool = False
    ) -> NetIOCounters | dict[str, NetIOCounters]:
        return self.sampler.net_io_counters(pernic)

    def net_connections(self, kind: str = "inet") -> list[Connection]:
        """
        Every socket of the given kind on the host.

        Sockets held by processes we may not inspect are still listed, with
        ``pid`` None and ``fd`` -1.
        """
        netconn.check_kind(kind)
        procfs = self.sampler.procfs
        return netconn.connections(procfs, kind, netconn.all_inodes(procfs), owned_only=False)

    def load_avg(self) -> tuple[float, float, float]:
        return self.sampler.load_avg()

    def boot_time(self) -> float:
        """Boot time in seconds since the epoch. Read once per System."""
        if self._boot_time is None:
            self._boot_time = self.sampler.boot_time()
        return self._boot_time

    def uptime(self) -> float:
        return time.time() - self.boot_time()

    def users(self) -> list[User]:
        return native.users()

    def system_info(self) -> SystemInfo:
        return native.system_info()

    def pids(self) -> list[int]:
        return self.sampler.pids()
