"""Capability interface implemented once per operating system family."""

import resource
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping

from proctelemetry.config import TelemetryConfig
from proctelemetry.errors import InvalidArgument
from proctelemetry.models import (
    Connection,
    CtxSwitches,
    Ids,
    IOPriority,
    MemoryInfo,
    MemoryInfoEx,
    MemoryMap,
    OpenFile,
    ProcessCpuTimes,
    ProcessIOCounters,
    RLimit,
    ThreadInfo,
)

NICE_MIN, NICE_MAX = -20, 19

IOPRIO_CLASS_NONE = 0
IOPRIO_CLASS_RT = 1
IOPRIO_CLASS_BE = 2
IOPRIO_CLASS_IDLE = 3
IOPRIO_CLASSES = {
    "none": IOPRIO_CLASS_NONE,
    "rt": IOPRIO_CLASS_RT,
    "be": IOPRIO_CLASS_BE,
    "idle": IOPRIO_CLASS_IDLE,
}

RLIMITS = {
    name[len("RLIMIT_"):].lower(): getattr(resource, name)
    for name in dir(resource)
    if name.startswith("RLIMIT_")
}

STATUS_RUNNING = "running"
STATUS_SLEEPING = "sleeping"
STATUS_DISK_SLEEP = "disk-sleep"
STATUS_STOPPED = "stopped"
STATUS_TRACING_STOP = "tracing-stop"
STATUS_ZOMBIE = "zombie"
STATUS_DEAD = "dead"
STATUS_WAKE_KILL = "wake-kill"
STATUS_WAKING = "waking"
STATUS_IDLE = "idle"
STATUS_PARKED = "parked"

PROC_STATUSES = {
    "R": STATUS_RUNNING,
    "S": STATUS_SLEEPING,
    "D": STATUS_DISK_SLEEP,
    "T": STATUS_STOPPED,
    "t": STATUS_TRACING_STOP,
    "Z": STATUS_ZOMBIE,
    "X": STATUS_DEAD,
    "x": STATUS_DEAD,
    "K": STATUS_WAKE_KILL,
    "W": STATUS_WAKING,
    "I": STATUS_IDLE,
    "P": STATUS_PARKED,
}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_nice(value) -> int:
    if not _is_int(value):
        raise InvalidArgument(f"niceness must be an integer (got {value!r})")
    if not NICE_MIN <= value <= NICE_MAX:
        raise InvalidArgument(f"niceness must be within {NICE_MIN}..{NICE_MAX} (got {value})")
    return value


def check_affinity(cpus: Iterable[int], cpu_count: int) -> set[int]:
    try:
        wanted = list(cpus)
    except TypeError:
        raise InvalidArgument(f"cpu affinity must be a list of cpu indexes (got {cpus!r})") from None
    if not wanted:
        raise InvalidArgument("cpu affinity cannot be empty")
    for cpu in wanted:
        if not _is_int(cpu) or not 0 <= cpu < cpu_count:
            raise InvalidArgument(
                f"invalid cpu {cpu!r}; choose between 0 and {cpu_count - 1}"
            )
    return set(wanted)


def check_rlimit_resource(res) -> int:
    if isinstance(res, str):
        try:
            return RLIMITS[res.lower().removeprefix("rlimit_")]
        except KeyError:
            raise InvalidArgument(f"unknown resource limit {res!r}") from None
    if not _is_int(res) or res not in RLIMITS.values():
        raise InvalidArgument(f"unknown resource limit {res!r}")
    return res


def check_rlimit_limits(limits) -> RLimit:
    """Accept ``(soft, hard)``, an RLimit, or a mapping with both keys."""
    if isinstance(limits, RLimit):
        soft, hard = limits.soft, limits.hard
    elif isinstance(limits, Mapping):
        if "soft" not in limits or "hard" not in limits:
            raise InvalidArgument(f"resource limit needs both 'soft' and 'hard' (got {dict(limits)!r})")
        soft, hard = limits["soft"], limits["hard"]
    elif isinstance(limits, (tuple, list)) and len(limits) == 2:
        soft, hard = limits
    else:
        raise InvalidArgument(f"resource limit must be a (soft, hard) pair (got {limits!r})")
    if not _is_int(soft) or not _is_int(hard):
        raise InvalidArgument(f"resource limits must be integers (got {soft!r}, {hard!r})")
    infinity = resource.RLIM_INFINITY
    if hard != infinity and (soft == infinity or soft > hard):
        raise InvalidArgument(f"soft limit {soft} exceeds hard limit {hard}")
    return RLimit(soft=soft, hard=hard)


def check_ionice(ioclass, value) -> tuple[int, int]:
    if isinstance(ioclass, str):
        try:
            ioclass = IOPRIO_CLASSES[ioclass.lower()]
        except KeyError:
            raise InvalidArgument(f"unknown I/O class {ioclass!r}") from None
    if not _is_int(ioclass) or ioclass not in IOPRIO_CLASSES.values():
        raise InvalidArgument(f"I/O class must be one of 0, 1, 2, 3 (got {ioclass!r})")
    if value is None:
        value = 4 if ioclass in (IOPRIO_CLASS_RT, IOPRIO_CLASS_BE) else 0
    if not _is_int(value) or not 0 <= value <= 7:
        raise InvalidArgument(f"I/O priority value must be an integer within 0..7 (got {value!r})")
    if ioclass in (IOPRIO_CLASS_NONE, IOPRIO_CLASS_IDLE) and value != 0:
        raise InvalidArgument(f"I/O class {ioclass} does not accept a priority value")
    return ioclass, value


class ProcessCapability(ABC):
    """
    Per-process attribute queries for one platform.

    Every method raises NoSuchProcess when the process is gone and
    AccessDenied when the OS refuses. Operations a platform cannot provide
    raise NotImplementedError.
    """

    def __init__(self, pid: int, config: TelemetryConfig | None = None) -> None:
        self.pid = pid
        self.config = config or TelemetryConfig()

    @abstractmethod
    def ppid(self) -> int: ...

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def exe(self) -> str: ...

    @abstractmethod
    def cmdline(self) -> list[str]: ...

    @abstractmethod
    def cwd(self) -> str: ...

    @abstractmethod
    def status(self) -> str: ...

    @abstractmethod
    def create_time(self) -> float: ...

    @abstractmethod
    def uids(self) -> Ids: ...

    @abstractmethod
    def gids(self) -> Ids: ...

    @abstractmethod
    def terminal(self) -> str | None: ...

    @abstractmethod
    def nice(self) -> int: ...

    @abstractmethod
    def set_nice(self, value: int) -> None: ...

    @abstractmethod
    def cpu_affinity(self) -> list[int]: ...

    @abstractmethod
    def set_cpu_affinity(self, cpus: Iterable[int]) -> None: ...

    @abstractmethod
    def rlimit(self, res: int | str) -> RLimit: ...

    @abstractmethod
    def set_rlimit(self, res: int | str, limits) -> RLimit: ...

    @abstractmethod
    def ionice(self) -> IOPriority: ...

    @abstractmethod
    def set_ionice(self, ioclass: int | str, value: int | None = None) -> None: ...

    @abstractmethod
    def cpu_times(self) -> ProcessCpuTimes: ...

    @abstractmethod
    def memory_info(self) -> MemoryInfo: ...

    @abstractmethod
    def memory_info_ex(self) -> MemoryInfoEx: ...

    @abstractmethod
    def num_fds(self) -> int: ...

    @abstractmethod
    def open_files(self) -> list[OpenFile]: ...

    @abstractmethod
    def memory_maps(self, grouped: bool = True) -> list[MemoryMap]: ...

    @abstractmethod
    def threads(self) -> list[ThreadInfo]: ...

    @abstractmethod
    def num_threads(self) -> int: ...

    @abstractmethod
    def num_ctx_switches(self) -> CtxSwitches: ...

    @abstractmethod
    def io_counters(self) -> ProcessIOCounters: ...

    @abstractmethod
    def connections(self, kind: str = "inet") -> list[Connection]: ...

    @classmethod
    @abstractmethod
    def ppid_map(cls, config: TelemetryConfig | None = None) -> dict[int, int]:
        """Parent pid of every visible process, read in one pass."""


def select_capability(system: str | None = None) -> type[ProcessCapability]:
    """
    Pick the capability implementation for an OS name (``sys.platform`` style).

    Raises:
        RuntimeError: The platform is neither Linux nor a known POSIX system.
    """
    system = sys.platform if system is None else system
    if system.startswith("linux"):
        from proctelemetry.platforms.linux import LinuxProcess

        chosen: type[ProcessCapability] = LinuxProcess
    elif system == "darwin" or "bsd" in system or system.startswith(("sunos", "aix")):
        from proctelemetry.platforms.posix import PosixProcess

        chosen = PosixProcess
    else:
        raise RuntimeError(f"unsupported platform: {system!r}")
    return chosen
