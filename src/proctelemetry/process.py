"""
Process handles that stay safe to query across pid reuse.

A Process is identified by (pid, creation time). Most accessors simply ask
the platform capability about the pid; the identity-checked ones (parent,
children, every mutator, signals) first make sure the pid still belongs to
the process this handle was created for.
"""

import os
import pwd
import signal
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from proctelemetry.config import TelemetryConfig
from proctelemetry.delta import process_cpu_percent
from proctelemetry.errors import (
    AccessDenied,
    ErrorKind,
    InvalidArgument,
    NoSuchProcess,
    OsQueryError,
    ZombieProcess,
    classify,
)
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
    ProcessIdentity,
    ProcessIOCounters,
    RLimit,
    ThreadInfo,
)
from proctelemetry.native import pid_exists as _pid_exists
from proctelemetry.native import usage_percent
from proctelemetry.platforms.base import ProcessCapability, select_capability
from proctelemetry.ratecache import RateCache
from proctelemetry.sampler import Sampler

# Chosen once per interpreter; handles get it injected, nobody selects again.
DEFAULT_CAPABILITY: type[ProcessCapability] = select_capability()

# comm is truncated by the kernel to 15 characters
_COMM_LEN = 15

T = TypeVar("T")


class Resolved(Generic[T]):
    """
    A value computed on first access and kept for the owner's lifetime.

    There is no invalidation: callers that need a fresh value build a new
    handle.
    """

    __slots__ = ("_compute", "_value", "_done")

    def __init__(self, compute: Callable[[], T]) -> None:
        self._compute = compute
        self._value: T | None = None
        self._done = False

    @property
    def resolved(self) -> bool:
        return self._done

    def get(self) -> T:
        if not self._done:
            self._value = self._compute()
            self._done = True
        return self._value  # type: ignore[return-value]


@dataclass(slots=True, frozen=True)
class _CpuSample:
    clock: float
    times: ProcessCpuTimes


def _check_pid(pid) -> int:
    if not isinstance(pid, int) or isinstance(pid, bool):
        raise InvalidArgument(f"pid must be an integer (got {pid!r})")
    if pid <= 0:
        raise InvalidArgument(f"pid must be a positive integer (got {pid})")
    return pid


class Process:
    """
    An OS process, identified by pid and creation time.

    Args:
        pid: Process id. Defaults to the calling process.
        config: Where to read kernel state from.
        capability: Platform implementation class. Defaults to the one selected
            at import time.
        rate_cache: Store for the previous cpu sample used by
            ``cpu_percent()``. Defaults to a cache private to this handle.

    Raises:
        InvalidArgument: ``pid`` is not a positive integer.
        NoSuchProcess: No process with this pid exists.
    """

    def __init__(
        self,
        pid: int | None = None,
        *,
        config: TelemetryConfig | None = None,
        capability: type[ProcessCapability] | None = None,
        rate_cache: RateCache | None = None,
    ) -> None:
        self._pid = _check_pid(os.getpid() if pid is None else pid)
        self._config = config or TelemetryConfig()
        self._capability_type = capability or DEFAULT_CAPABILITY
        self._proc = self._capability_type(self._pid, self._config)
        self._rate_cache = rate_cache if rate_cache is not None else RateCache()
        self._gone = False
        # filled by process_iter(attrs=...)
        self.info: dict[str, Any] = {}
        self._name: Resolved[str] = Resolved(self._resolve_name)
        self._exe: Resolved[str] = Resolved(self._resolve_exe)
        self._create_time: Resolved[float] = Resolved(self._proc.create_time)
        try:
            create_time: float | None = self._create_time.get()
        except AccessDenied:
            # identity still works on pid alone, just less strictly
            create_time = None
        except NoSuchProcess:
            raise NoSuchProcess(self._pid, msg=f"no process found with pid {self._pid}") from None
        self._identity = ProcessIdentity(pid=self._pid, create_time=create_time)

    def __repr__(self) -> str:
        try:
            return f"proctelemetry.Process(pid={self._pid}, name={self.name()!r})"
        except NoSuchProcess:
            return f"proctelemetry.Process(pid={self._pid}, terminated)"
        except AccessDenied:
            return f"proctelemetry.Process(pid={self._pid})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Process):
            return NotImplemented
        return self._identity == other._identity

    def __hash__(self) -> int:
        return hash(self._identity)

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def identity(self) -> ProcessIdentity:
        return self._identity

    # ------------------------------------------------------------------
    # Identity checks
    # ------------------------------------------------------------------

    def _fresh(self, pid: int) -> "Process | ErrorKind":
        return resolve(pid, config=self._config, capability=self._capability_type)

    def is_running(self) -> bool:
        """
        Whether the process this handle was created for is still alive.

        A pid that now belongs to a different process counts as not running.
        Once this returns False it always will.
        """
        if self._gone:
            return False
        match self._fresh(self._pid):
            case Process() as current if current.identity == self._identity:
                return True
            case _:
                # reused pid or failed lookup; either way this process is gone
                self._gone = True
                return False

    def _assert_running(self) -> None:
        if not self.is_running():
            raise NoSuchProcess(self._pid, self._name_or_none())

    def _name_or_none(self) -> str | None:
        return self._name.get() if self._name.resolved else None

    def parent(self) -> "Process | None":
        """
        The parent process, or None if it is unknown.

        A candidate created after this process cannot be its parent: its pid
        was reused, so None is returned rather than the wrong process.
        """
        ppid = self.ppid()
        if ppid <= 0:
            return None
        match self._fresh(ppid):
            case Process() as parent if _not_younger(parent.identity, self._identity):
                return parent
            case _:
                return None

    def children(self, recursive: bool = False) -> list["Process"]:
        """
        Processes whose parent is this one.

        Args:
            recursive: Include grandchildren and so on.
        """
        self._assert_running()
        parents = self._capability_type.ppid_map(self._config)
        by_parent: dict[int, list[int]] = {}
        for pid, ppid in parents.items():
            by_parent.setdefault(ppid, []).append(pid)

        found: list[Process] = []
        queue = [self]
        seen = {self._pid}
        while queue:
            current = queue.pop(0)
            for pid in sorted(by_parent.get(current.pid, [])):
                if pid in seen:
                    continue
                seen.add(pid)
                match self._fresh(pid):
                    case Process() as child if _not_younger(current.identity, child.identity):
                        found.append(child)
                        if recursive:
                            queue.append(child)
                    case _:
                        continue
        return found

    # ------------------------------------------------------------------
    # Memoized attributes
    # ------------------------------------------------------------------

    def create_time(self) -> float:
        """Process creation time in seconds since the epoch."""
        return self._create_time.get()

    def _resolve_name(self) -> str:
        name = self._proc.name()
        if len(name) >= _COMM_LEN:
            # the kernel truncated it; the first argument usually has it whole
            try:
                cmdline = self._proc.cmdline()
            except AccessDenied:
                cmdline = []
            if cmdline:
                extended = os.path.basename(cmdline[0])
                if extended.startswith(name):
                    name = extended
        return name

    def name(self) -> str:
        """The process name. Computed once per handle."""
        return self._name.get()

    def _resolve_exe(self) -> str:
        denied: AccessDenied | None = None
        try:
            exe = self._proc.exe()
        except AccessDenied as exc:
            exe = ""
            denied = exc
        if exe:
            return exe
        try:
            cmdline = self._proc.cmdline()
        except AccessDenied:
            cmdline = []
        if cmdline:
            candidate = cmdline[0]
            if (
                os.path.isabs(candidate)
                and os.path.isfile(candidate)
                and os.path.realpath(candidate) == candidate
                and os.access(candidate, os.X_OK)
            ):
                return candidate
        if denied is not None:
            raise denied
        return exe

    def exe(self) -> str:
        """The executable as an absolute path, possibly ''. Computed once per handle."""
        return self._exe.get()

    def username(self) -> str:
        """Name of the user owning the process, or the uid if it has no name."""
        real_uid = self.uids().real
        try:
            return pwd.getpwuid(real_uid).pw_name
        except KeyError:
            return str(real_uid)

    # ------------------------------------------------------------------
    # Plain accessors
    # ------------------------------------------------------------------

    def ppid(self) -> int:
        return self._proc.ppid()

    def cmdline(self) -> list[str]:
        return self._proc.cmdline()

    def cwd(self) -> str:
        return self._proc.cwd()

    def status(self) -> str:
        return self._proc.status()

    def uids(self) -> Ids:
        return self._proc.uids()

    def gids(self) -> Ids:
        return self._proc.gids()

    def terminal(self) -> str | None:
        return self._proc.terminal()

    def nice(self) -> int:
        return self._proc.nice()

    def cpu_affinity(self) -> list[int]:
        return self._proc.cpu_affinity()

    def rlimit(self, res: int | str) -> RLimit:
        return self._proc.rlimit(res)

    def ionice(self) -> IOPriority:
        return self._proc.ionice()

    def cpu_times(self) -> ProcessCpuTimes:
        return self._proc.cpu_times()

    def memory_info(self) -> MemoryInfo:
        return self._proc.memory_info()

    def memory_info_ex(self) -> MemoryInfoEx:
        return self._proc.memory_info_ex()

    def num_fds(self) -> int:
        return self._proc.num_fds()

    def open_files(self) -> list[OpenFile]:
        return self._proc.open_files()

    def memory_maps(self, grouped: bool = True) -> list[MemoryMap]:
        return self._proc.memory_maps(grouped)

    def threads(self) -> list[ThreadInfo]:
        return self._proc.threads()

    def num_threads(self) -> int:
        return self._proc.num_threads()

    def num_ctx_switches(self) -> CtxSwitches:
        return self._proc.num_ctx_switches()

    def io_counters(self) -> ProcessIOCounters:
        return self._proc.io_counters()

    def connections(self, kind: str = "inet") -> list[Connection]:
        return self._proc.connections(kind)

    # ------------------------------------------------------------------
    # Derived metrics
    # ------------------------------------------------------------------

    def _cpu_sample(self) -> _CpuSample:
        return _CpuSample(clock=time.monotonic(), times=self._proc.cpu_times())

    def cpu_percent(self, interval: float | None = None) -> float:
        """
        CPU utilisation of the process as a percentage.

        With a positive ``interval`` this blocks for that many seconds and
        measures across it. Otherwise it measures since the previous call, or
        since the process started on the first call. Values above 100.0 are
        possible for processes running on several cores.
        """
        if interval is not None and interval < 0:
            raise InvalidArgument(f"interval must be >= 0 (got {interval!r})")
        key = ("process_cpu", self._identity)
        if interval:
            start = self._cpu_sample()
            time.sleep(interval)
            end = self._cpu_sample()
            self._rate_cache.put(key, end)
        else:
            end = self._cpu_sample()
            start = self._rate_cache.exchange(key, end)
            if start is None:
                # only the first call measures against the epoch-based start time
                created = self._identity.create_time
                elapsed = time.time() - created if created is not None else 0.0
                return process_cpu_percent(ProcessCpuTimes(user=0.0, system=0.0), end.times, elapsed)
        return process_cpu_percent(start.times, end.times, end.clock - start.clock)

    def memory_percent(self) -> float:
        """Resident memory as a percentage of total physical memory."""
        total = Sampler(self._config).virtual_memory().total
        return round(usage_percent(self.memory_info().rss, total), 2)

    # ------------------------------------------------------------------
    # Identity-checked mutators
    # ------------------------------------------------------------------

    def set_nice(self, value: int) -> None:
        self._assert_running()
        self._proc.set_nice(value)

    def set_cpu_affinity(self, cpus: Iterable[int]) -> None:
        self._assert_running()
        self._proc.set_cpu_affinity(cpus)

    def set_rlimit(self, res: int | str, limits) -> RLimit:
        self._assert_running()
        return self._proc.set_rlimit(res, limits)

    def set_ionice(self, ioclass: int | str, value: int | None = None) -> None:
        self._assert_running()
        self._proc.set_ionice(ioclass, value)

    def send_signal(self, sig: int) -> None:
        self._assert_running()
        try:
            os.kill(self._pid, sig)
        except ProcessLookupError:
            self._gone = True
            raise NoSuchProcess(self._pid, self._name_or_none()) from None
        except PermissionError:
            raise AccessDenied(self._pid, self._name_or_none()) from None

    def suspend(self) -> None:
        self.send_signal(signal.SIGSTOP)

    def resume(self) -> None:
        self.send_signal(signal.SIGCONT)

    def terminate(self) -> None:
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        self.send_signal(signal.SIGKILL)

    # ------------------------------------------------------------------
    # Bulk collection
    # ------------------------------------------------------------------

    def as_dict(self, attrs: Iterable[str] | None = None, ad_value: Any = None) -> dict[str, Any]:
        """
        Collect several attributes at once.

        Args:
            attrs: Attribute names. Defaults to every read-only attribute.
            ad_value: Stored for attributes the OS refuses to reveal and for
                those a zombie no longer has. When ``attrs`` is omitted it
                also stands in for attributes this platform does not
                implement or cannot read; named attributes propagate
                NotImplementedError and OsQueryError instead.

        Raises:
            InvalidArgument: An unknown attribute name was requested.
        """
        explicit = attrs is not None
        names = list(attrs) if explicit else sorted(AS_DICT_ATTRS)
        unknown = [name for name in names if name not in AS_DICT_ATTRS]
        if unknown:
            raise InvalidArgument(f"unknown attribute(s) {unknown}")

        info: dict[str, Any] = {}
        for name in names:
            try:
                info[name] = getattr(self, name)()
            except (AccessDenied, ZombieProcess):
                info[name] = ad_value
            except (NotImplementedError, OsQueryError) as exc:
                match classify(exc):
                    case ErrorKind.NOT_IMPLEMENTED | ErrorKind.OS_QUERY if explicit:
                        raise
                    case _:
                        info[name] = ad_value
        return info


AS_DICT_ATTRS = frozenset(
    {
        "cmdline",
        "connections",
        "cpu_affinity",
        "cpu_percent",
        "cpu_times",
        "create_time",
        "cwd",
        "exe",
        "gids",
        "io_counters",
        "ionice",
        "memory_info",
        "memory_info_ex",
        "memory_maps",
        "memory_percent",
        "name",
        "nice",
        "num_ctx_switches",
        "num_fds",
        "num_threads",
        "open_files",
        "ppid",
        "status",
        "terminal",
        "threads",
        "uids",
        "username",
    }
)


def _not_younger(parent: ProcessIdentity, child: ProcessIdentity) -> bool:
    # an unknown creation time cannot disprove the relationship
    if parent.create_time is None or child.create_time is None:
        return True
    return parent.create_time <= child.create_time


def resolve(
    pid: int,
    *,
    config: TelemetryConfig | None = None,
    capability: type[ProcessCapability] | None = None,
) -> Process | ErrorKind:
    """
    Build a handle for ``pid``, or return why that was impossible.

    Lookups that are expected to fail now and then (liveness checks, parent
    and child discovery) branch on the returned ErrorKind instead of
    catching exceptions.
    """
    try:
        return Process(pid, config=config, capability=capability)
    except (NoSuchProcess, AccessDenied, InvalidArgument, OsQueryError) as exc:
        return exc.kind


def pids(config: TelemetryConfig | None = None) -> list[int]:
    """Pids of every process currently visible."""
    return Sampler(config).pids()


def pid_exists(pid: int) -> bool:
    return _pid_exists(_check_pid(pid))


def process_iter(
    attrs: Iterable[str] | None = None,
    ad_value: Any = None,
    *,
    config: TelemetryConfig | None = None,
) -> Iterator[Process]:
    """
    Yield a fresh Process for every running process, sorted by pid.

    Processes that exit while being iterated are skipped. With ``attrs`` each
    yielded handle carries ``info``, the result of ``as_dict(attrs, ad_value)``.
    """
    wanted = list(attrs) if attrs is not None else None
    for pid in pids(config):
        match resolve(pid, config=config):
            case Process() as proc:
                if wanted is not None:
                    try:
                        proc.info = proc.as_dict(wanted, ad_value)
                    except NoSuchProcess:
                        continue
                yield proc
            case _:
                continue
