"""Data models for proctelemetry."""

from dataclasses import asdict, dataclass, fields
from typing import Iterable, NamedTuple, TypeVar

CPU_FIELDS = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)


@dataclass(slots=True, frozen=True)
class CpuTimes:
    """
    Time a CPU (or all of them) spent in each state, in seconds.

    ``steal``, ``guest`` and ``guest_nice`` are None when the kernel is too
    old to report them. They are never filled in with zero.
    """

    user: float
    nice: float
    system: float
    idle: float
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float | None = None
    guest: float | None = None
    guest_nice: float | None = None

    def as_dict(self) -> dict[str, float | None]:
        return {name: getattr(self, name) for name in CPU_FIELDS}

    def value(self, name: str) -> float:
        """Field value with unset fields read as 0.0."""
        return getattr(self, name) or 0.0

    @property
    def total(self) -> float:
        return sum(self.value(name) for name in CPU_FIELDS)

    @property
    def busy(self) -> float:
        """Everything but idle, summed directly rather than as total - idle."""
        return sum(self.value(name) for name in CPU_FIELDS if name != "idle")

    @classmethod
    def zero(cls) -> "CpuTimes":
        return cls(user=0.0, nice=0.0, system=0.0, idle=0.0)


@dataclass(slots=True, frozen=True)
class CpuTimesPercent:
    """Share of elapsed CPU time spent in each state, 0.0 - 100.0."""

    user: float
    nice: float
    system: float
    idle: float
    iowait: float
    irq: float
    softirq: float
    steal: float
    guest: float
    guest_nice: float

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class VirtualMemory:
    """System memory counters in bytes."""

    total: int
    available: int
    percent: float
    used: int
    free: int
    active: int
    inactive: int
    buffers: int
    cached: int


@dataclass(slots=True, frozen=True)
class SwapMemory:
    """Swap usage in bytes; sin/sout are cumulative bytes swapped in/out."""

    total: int
    used: int
    free: int
    percent: float
    sin: int
    sout: int


@dataclass(slots=True, frozen=True)
class DiskPartition:
    device: str
    mountpoint: str
    fstype: str
    opts: str


@dataclass(slots=True, frozen=True)
class DiskUsage:
    total: int
    used: int
    free: int
    percent: float


C = TypeVar("C", bound="_Counters")


class _Counters:
    """Field-wise addition for counter records."""

    __slots__ = ()

    def __add__(self: C, other: C) -> C:
        if type(other) is not type(self):
            return NotImplemented
        return type(self)(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def zero(cls: type[C]) -> C:
        return cls(**{f.name: 0 for f in fields(cls)})


@dataclass(slots=True, frozen=True)
class DiskIOCounters(_Counters):
    """Cumulative disk activity. Bytes are already converted from sectors."""

    read_count: int
    write_count: int
    read_bytes: int
    write_bytes: int
    read_time: int  # milliseconds
    write_time: int  # milliseconds


@dataclass(slots=True, frozen=True)
class NetIOCounters(_Counters):
    """Cumulative network interface activity."""

    bytes_sent: int
    bytes_recv: int
    packets_sent: int
    packets_recv: int
    errin: int
    errout: int
    dropin: int
    dropout: int


def sum_counters(counters: Iterable[C], kind: type[C]) -> C:
    """Field-wise total of counter records; the zero record if there are none."""
    total = kind.zero()
    for counter in counters:
        total = total + counter
    return total


@dataclass(slots=True, frozen=True)
class ProcessIdentity:
    """
    What makes a process handle refer to one OS process instance.

    A pid alone is not enough because the kernel reuses pids. ``create_time``
    is None when the creation time could not be read (access denied).
    """

    pid: int
    create_time: float | None


@dataclass(slots=True, frozen=True)
class ProcessCpuTimes:
    user: float
    system: float
    children_user: float = 0.0
    children_system: float = 0.0

    @property
    def total(self) -> float:
        return self.user + self.system


@dataclass(slots=True, frozen=True)
class MemoryInfo:
    rss: int
    vms: int


@dataclass(slots=True, frozen=True)
class MemoryInfoEx:
    rss: int
    vms: int
    shared: int
    text: int
    lib: int
    data: int
    dirty: int


@dataclass(slots=True, frozen=True)
class Ids:
    """Real, effective and saved user or group ids."""

    real: int
    effective: int
    saved: int


@dataclass(slots=True, frozen=True)
class IOPriority:
    ioclass: int
    value: int


@dataclass(slots=True, frozen=True)
class RLimit:
    soft: int
    hard: int


@dataclass(slots=True, frozen=True)
class CtxSwitches:
    voluntary: int
    involuntary: int


@dataclass(slots=True, frozen=True)
class ThreadInfo:
    id: int
    user_time: float
    system_time: float


@dataclass(slots=True, frozen=True)
class OpenFile:
    path: str
    fd: int
    position: int
    mode: str
    flags: int


@dataclass(slots=True, frozen=True)
class MemoryMap:
    """
    One mapping from /proc/<pid>/smaps, sizes in bytes.

    When maps are grouped by path, ``addr`` and ``perms`` are None and the
    sizes are summed over every mapping of that path.
    """

    path: str
    rss: int
    size: int
    pss: int
    shared_clean: int
    shared_dirty: int
    private_clean: int
    private_dirty: int
    referenced: int
    anonymous: int
    swap: int
    addr: str | None = None
    perms: str | None = None


@dataclass(slots=True, frozen=True)
class ProcessIOCounters:
    read_count: int
    write_count: int
    read_bytes: int
    write_bytes: int


class Address(NamedTuple):
    ip: str
    port: int


@dataclass(slots=True, frozen=True)
class Connection:
    """
    A socket from the kernel connection tables.

    ``laddr``/``raddr`` are Address pairs for inet sockets and paths for unix
    sockets; an unconnected remote end is ``()`` or ``""`` respectively.
    ``pid`` is None for per-process listings and for sockets nobody owns.
    """

    fd: int
    family: int
    type: int
    laddr: Address | tuple | str
    raddr: Address | tuple | str
    status: str
    pid: int | None = None


@dataclass(slots=True, frozen=True)
class User:
    name: str
    terminal: str | None
    host: str
    started: float
    pid: int


@dataclass(slots=True, frozen=True)
class SystemInfo:
    os_short: str
    os_full: str
    kernel: str
    arch: str
    hostname: str


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a process state, as shown by the dashboard."""

    pid: int
    name: str
    username: str
    status: str  # 'running', 'sleeping', 'zombie', etc.
    cpu_percent: float  # 0.0 - 100.0 * core_count
    memory_percent: float
    memory_rss: int  # Bytes
    threads: int
    nice: int
    command_line: str
