"""Turn raw procfs reads into typed, unit-normalised samples."""

import os
import re
from enum import Enum

from proctelemetry import procfs
from proctelemetry.config import TelemetryConfig
from proctelemetry.errors import InvalidArgument, OsQueryError
from proctelemetry.models import (
    CPU_FIELDS,
    CpuTimes,
    DiskIOCounters,
    DiskPartition,
    NetIOCounters,
    SwapMemory,
    VirtualMemory,
    sum_counters,
)
from proctelemetry.native import usage_percent

_DIGITS = re.compile(r"\d+")


class MetricFamily(Enum):
    """Shapes of sample the sampler can take."""

    CPU = "cpu"
    PER_CPU = "per_cpu"
    DISK_IO = "disk_io"
    PER_DISK_IO = "per_disk_io"
    NET_IO = "net_io"
    PER_NIC_IO = "per_nic_io"
    MEMORY = "memory"
    SWAP = "swap"


def is_partition_of(name: str, disk: str) -> bool:
    """
    Whether ``name`` is a partition of ``disk`` under kernel naming rules.

    The kernel appends the partition number to the disk name, with a ``p``
    in between when the disk name itself ends in a digit: sda -> sda1,
    nvme0n1 -> nvme0n1p2.
    """
    if len(name) <= len(disk) or not name.startswith(disk):
        return False
    suffix = name[len(disk):]
    if disk[-1].isdigit():
        return suffix[0] == "p" and _DIGITS.fullmatch(suffix[1:]) is not None
    return _DIGITS.fullmatch(suffix) is not None


def classify_disks(names: list[str]) -> list[str]:
    """
    Pick the block devices whose counters should be reported.

    Disks that have partitions in the table are left out so activity is not
    counted twice; partitions and partition-less disks are kept.
    """
    has_partitions = {
        disk for disk in names for name in names if is_partition_of(name, disk)
    }
    return [name for name in names if name not in has_partitions]


class Sampler:
    """
    Read one metric family at a time from the OS query layer.

    Every method is a pure read: nothing is cached between calls.
    """

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self.config = config or TelemetryConfig()
        self.procfs = procfs.ProcFS(self.config.procfs_root)

    def sample(self, family: MetricFamily):
        """Take one sample of ``family``."""
        match family:
            case MetricFamily.CPU:
                return self.cpu_times()
            case MetricFamily.PER_CPU:
                return self.cpu_times(percpu=True)
            case MetricFamily.DISK_IO:
                return self.disk_io_counters()
            case MetricFamily.PER_DISK_IO:
                return self.disk_io_counters(perdisk=True)
            case MetricFamily.NET_IO:
                return self.net_io_counters()
            case MetricFamily.PER_NIC_IO:
                return self.net_io_counters(pernic=True)
            case MetricFamily.MEMORY:
                return self.virtual_memory()
            case MetricFamily.SWAP:
                return self.swap_memory()
        raise InvalidArgument(f"unknown metric family {family!r}")

    # ------------------------------------------------------------------
    # CPU
    # ------------------------------------------------------------------

    def _cpu_times_from_ticks(self, ticks: list[int]) -> CpuTimes:
        hz = self.config.clock_ticks
        values: dict[str, float | None] = {}
        for index, name in enumerate(CPU_FIELDS):
            if index < len(ticks):
                values[name] = ticks[index] / hz
            elif index < 7:
                # iowait/irq/softirq predate every kernel we can meet
                values[name] = 0.0
        return CpuTimes(**values)

    def cpu_times(self, percpu: bool = False) -> CpuTimes | list[CpuTimes]:
        """
        System CPU times in seconds.

        Args:
            percpu: Return one sample per CPU instead of the aggregate line.
        """
        rows = procfs.parse_cpu_lines(self.procfs.read_text("stat"))
        if not rows or rows[0][0] != "cpu":
            raise OsQueryError("no aggregate cpu line in /proc/stat")
        if not percpu:
            return self._cpu_times_from_ticks(rows[0][1])
        return [self._cpu_times_from_ticks(ticks) for label, ticks in rows[1:]]

    def cpu_count(self, logical: bool = True) -> int | None:
        """
        Number of logical CPUs, or physical cores when ``logical`` is False.

        Returns None when the physical layout is not reported.
        """
        try:
            blocks = procfs.parse_cpuinfo(self.procfs.read_text("cpuinfo"))
        except OsQueryError:
            blocks = []
        processors = [block for block in blocks if "processor" in block]
        if logical:
            return len(processors) or os.cpu_count()

        cores_per_socket: dict[str, int] = {}
        core_ids = set()
        for block in processors:
            socket_id = block.get("physical id")
            if socket_id is None:
                continue
            if "cpu cores" in block:
                cores_per_socket.setdefault(socket_id, int(block["cpu cores"]))
            if "core id" in block:
                core_ids.add((socket_id, block["core id"]))
        if cores_per_socket:
            return sum(cores_per_socket.values())
        return len(core_ids) or None

    def boot_time(self) -> float:
        """System boot time in seconds since the epoch."""
        return float(procfs.parse_stat_value(self.procfs.read_text("stat"), "btime"))

    def load_avg(self) -> tuple[float, float, float]:
        return procfs.parse_loadavg(self.procfs.read_text("loadavg"))

    def pids(self) -> list[int]:
        return self.procfs.pids()

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def virtual_memory(self) -> VirtualMemory:
        info = procfs.parse_key_values(self.procfs.read_text("meminfo"))
        # values are expressed in KiB, we want bytes instead
        total = info.get("MemTotal", 0) * 1024
        free = info.get("MemFree", 0) * 1024
        buffers = info.get("Buffers", 0) * 1024
        cached = info.get("Cached", 0) * 1024
        if "MemAvailable" in info:
            available = info["MemAvailable"] * 1024
        else:
            available = free + cached + buffers
        return VirtualMemory(
            total=total,
            available=available,
            percent=usage_percent(total - available, total, 1),
            used=total - free,
            free=free,
            active=info.get("Active", 0) * 1024,
            inactive=info.get("Inactive", 0) * 1024,
            buffers=buffers,
            cached=cached,
        )

    def swap_memory(self) -> SwapMemory:
        devices = procfs.parse_swaps(self.procfs.read_text("swaps"))
        total = sum(size for _, size, _ in devices) * 1024
        used = sum(used for _, _, used in devices) * 1024
        vmstat = procfs.parse_key_values(self.procfs.read_text("vmstat"), sep=" ")
        # pswpin/pswpout count pages
        return SwapMemory(
            total=total,
            used=used,
            free=total - used,
            percent=usage_percent(used, total, 1),
            sin=vmstat.get("pswpin", 0) * self.config.page_size,
            sout=vmstat.get("pswpout", 0) * self.config.page_size,
        )

    # ------------------------------------------------------------------
    # Disks
    # ------------------------------------------------------------------

    def disk_partitions(self, all: bool = False) -> list[DiskPartition]:
        """
        Mounted filesystems.

        Args:
            all: Include virtual filesystems (proc, sysfs, tmpfs...).
        """
        physical = procfs.parse_filesystems(self.procfs.read_text("filesystems"))
        return [
            DiskPartition(device=device, mountpoint=mountpoint, fstype=fstype, opts=opts)
            for device, mountpoint, fstype, opts in procfs.parse_mounts(
                self.procfs.read_text("self", "mounts")
            )
            if all or fstype in physical
        ]

    def disk_io_counters(
        self, perdisk: bool = False
    ) -> DiskIOCounters | dict[str, DiskIOCounters]:
        devices = classify_disks(procfs.parse_partitions(self.procfs.read_text("partitions")))
        stats = procfs.parse_diskstats(self.procfs.read_text("diskstats"))
        sector = self.config.sector_size
        per_disk = {}
        for name in devices:
            if name not in stats:
                continue
            reads, writes, rsect, wsect, rtime, wtime = stats[name]
            per_disk[name] = DiskIOCounters(
                read_count=reads,
                write_count=writes,
                read_bytes=rsect * sector,
                write_bytes=wsect * sector,
                read_time=rtime,
                write_time=wtime,
            )
        if perdisk:
            return per_disk
        return sum_counters(per_disk.values(), DiskIOCounters)

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def net_io_counters(
        self, pernic: bool = False
    ) -> NetIOCounters | dict[str, NetIOCounters]:
        per_nic = {}
        for name, fields in procfs.parse_net_dev(self.procfs.read_text("net", "dev")).items():
            per_nic[name] = NetIOCounters(
                bytes_recv=fields[0],
                packets_recv=fields[1],
                errin=fields[2],
                dropin=fields[3],
                bytes_sent=fields[8],
                packets_sent=fields[9],
                errout=fields[10],
                dropout=fields[11],
            )
        if pernic:
            return per_nic
        return sum_counters(per_nic.values(), NetIOCounters)
