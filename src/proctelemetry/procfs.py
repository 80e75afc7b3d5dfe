"""
Raw access to the /proc pseudo-filesystem.

Readers here return kernel values in kernel units (ticks, KiB, sectors,
pages). Converting them is the sampler's job.
"""

import os
from pathlib import Path

from proctelemetry.errors import OsQueryError


class ProcFS:
    """Line-oriented reader rooted at a procfs mount (``/proc`` by default)."""

    def __init__(self, root: str | Path = "/proc") -> None:
        self.root = Path(root)

    def path(self, *parts: str | int) -> Path:
        return self.root.joinpath(*(str(part) for part in parts))

    def read_raw(self, *parts: str | int) -> str:
        """Read a pseudo-file, letting OSError through for the caller to classify."""
        with open(self.path(*parts), encoding="utf-8", errors="replace") as f:
            return f.read()

    def read_text(self, *parts: str | int) -> str:
        """Read a system-wide pseudo-file; any failure is an OsQueryError."""
        try:
            return self.read_raw(*parts)
        except OSError as exc:
            raise OsQueryError(f"cannot read {self.path(*parts)}: {exc}") from exc

    def pids(self) -> list[int]:
        """Numeric entries of the procfs root, sorted."""
        try:
            names = os.listdir(self.root)
        except OSError as exc:
            raise OsQueryError(f"cannot list {self.root}: {exc}") from exc
        return sorted(int(name) for name in names if name.isdigit())


def parse_cpu_lines(text: str) -> list[tuple[str, list[int]]]:
    """Return ``(label, tick_counters)`` for every ``cpu*`` line of /proc/stat."""
    rows = []
    for line in text.splitlines():
        if not line.startswith("cpu"):
            continue
        parts = line.split()
        rows.append((parts[0], [int(value) for value in parts[1:]]))
    return rows


def parse_stat_value(text: str, key: str) -> int:
    """Return the integer following ``key`` in /proc/stat (e.g. ``btime``)."""
    for line in text.splitlines():
        parts = line.split()
        if parts and parts[0] == key:
            return int(parts[1])
    raise OsQueryError(f"{key!r} not found in /proc/stat")


def parse_key_values(text: str, sep: str = ":") -> dict[str, int]:
    """
    Parse ``Key: value [unit]`` lines (meminfo, vmstat, status counters).

    Lines whose first value is not an integer are skipped.
    """
    values: dict[str, int] = {}
    for line in text.splitlines():
        if sep == " ":
            key, _, rest = line.partition(" ")
        else:
            key, found, rest = line.partition(sep)
            if not found:
                continue
        fields = rest.split()
        if not fields:
            continue
        try:
            values[key.strip()] = int(fields[0])
        except ValueError:
            continue
    return values


def parse_swaps(text: str) -> list[tuple[str, int, int]]:
    """Return ``(device, size_kib, used_kib)`` for each row of /proc/swaps."""
    devices = []
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) >= 4:
            devices.append((fields[0], int(fields[2]), int(fields[3])))
    return devices


def parse_filesystems(text: str) -> set[str]:
    """Filesystem types that are backed by a real device (no ``nodev`` flag)."""
    types = set()
    for line in text.splitlines():
        if line.startswith("nodev"):
            continue
        name = line.strip()
        if name:
            types.add(name)
    return types


def parse_mounts(text: str) -> list[tuple[str, str, str, str]]:
    """Return ``(device, mountpoint, fstype, opts)`` for each mount entry."""
    mounts = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) >= 4:
            # mount points with spaces are octal-escaped by the kernel
            mountpoint = fields[1].replace("\\040", " ")
            mounts.append((fields[0], mountpoint, fields[2], fields[3]))
    return mounts


def parse_partitions(text: str) -> list[str]:
    """Device names from /proc/partitions, in table order."""
    names = []
    for line in text.splitlines()[2:]:
        fields = line.split()
        if len(fields) >= 4:
            names.append(fields[3])
    return names


def parse_diskstats(text: str) -> dict[str, tuple[int, int, int, int, int, int]]:
    """
    Return ``name -> (reads, writes, read_sectors, write_sectors, read_ms, write_ms)``.

    See Documentation/admin-guide/iostats.rst for the column layout. Kernels
    before 2.6.25 print 7 fields for partitions and have no time columns.
    """
    stats = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) >= 14:
            name = fields[2]
            reads, rsect, rtime = int(fields[3]), int(fields[5]), int(fields[6])
            writes, wsect, wtime = int(fields[7]), int(fields[9]), int(fields[10])
        elif len(fields) == 7:
            name = fields[2]
            reads, rsect, writes, wsect = (int(value) for value in fields[3:7])
            rtime = wtime = 0
        else:
            continue
        stats[name] = (reads, writes, rsect, wsect, rtime, wtime)
    return stats


def parse_net_dev(text: str) -> dict[str, list[int]]:
    """Return ``interface -> 16 counters`` from /proc/net/dev."""
    counters = {}
    for line in text.splitlines()[2:]:
        name, found, rest = line.rpartition(":")
        if not found:
            continue
        counters[name.strip()] = [int(value) for value in rest.split()]
    return counters


def parse_cpuinfo(text: str) -> list[dict[str, str]]:
    """Split /proc/cpuinfo into one ``key -> value`` mapping per processor block."""
    blocks = []
    current: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
                current = {}
            continue
        key, _, value = line.partition(":")
        current[key.strip()] = value.strip()
    if current:
        blocks.append(current)
    return blocks


def parse_loadavg(text: str) -> tuple[float, float, float]:
    fields = text.split()
    return float(fields[0]), float(fields[1]), float(fields[2])
