"""Process capability backed by /proc/<pid> and Linux system calls."""

import functools
import glob
import os
import resource
from collections.abc import Iterable

from proctelemetry import connections as netconn
from proctelemetry import native, procfs
from proctelemetry.config import TelemetryConfig
from proctelemetry.errors import (
    AccessDenied,
    InvalidArgument,
    NoSuchProcess,
    OsQueryError,
    ZombieProcess,
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
    ProcessIOCounters,
    RLimit,
    ThreadInfo,
)
from proctelemetry.platforms.base import (
    PROC_STATUSES,
    ProcessCapability,
    check_affinity,
    check_ionice,
    check_nice,
    check_rlimit_limits,
    check_rlimit_resource,
)

SMAPS_FIELDS = {
    "Rss:": "rss",
    "Size:": "size",
    "Pss:": "pss",
    "Shared_Clean:": "shared_clean",
    "Shared_Dirty:": "shared_dirty",
    "Private_Clean:": "private_clean",
    "Private_Dirty:": "private_dirty",
    "Referenced:": "referenced",
    "Anonymous:": "anonymous",
    "Swap:": "swap",
}


@functools.lru_cache(maxsize=None)
def _boot_time(root: str) -> float:
    return float(procfs.parse_stat_value(procfs.ProcFS(root).read_text("stat"), "btime"))


def _terminal_map() -> dict[int, str]:
    ttys = {}
    for path in glob.glob("/dev/tty*") + glob.glob("/dev/pts/*"):
        try:
            ttys[os.stat(path).st_rdev] = path
        except OSError:
            continue
    return ttys


def _file_mode(flags: int) -> str:
    append = flags & os.O_APPEND
    match flags & os.O_ACCMODE:
        case os.O_RDONLY:
            return "r"
        case os.O_WRONLY:
            return "a" if append else "w"
        case _:
            return "a+" if append else "r+"


def wrap_exceptions(method):
    """Translate OSError from /proc and syscalls into NoSuchProcess / AccessDenied."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except PermissionError as exc:
            raise AccessDenied(self.pid) from exc
        except (ProcessLookupError, FileNotFoundError) as exc:
            if not self._procfs.path(self.pid).exists():
                raise NoSuchProcess(self.pid) from exc
            if self._is_zombie():
                # exited but unreaped: most of /proc/<pid> is already gone
                raise ZombieProcess(self.pid) from exc
            if isinstance(exc, ProcessLookupError):
                raise NoSuchProcess(self.pid) from exc
            # the process is there but this file is not (old kernel)
            raise OsQueryError(f"pid {self.pid}: {exc}") from exc

    return wrapper


class LinuxProcess(ProcessCapability):
    """Linux implementation of ProcessCapability."""

    def __init__(self, pid: int, config: TelemetryConfig | None = None) -> None:
        super().__init__(pid, config)
        self._procfs = procfs.ProcFS(self.config.procfs_root)

    def _read(self, name: str) -> str:
        return self._procfs.read_raw(self.pid, name)

    def _stat(self) -> tuple[str, list[str]]:
        """Return ``(comm, fields after comm)`` from /proc/<pid>/stat."""
        data = self._read("stat")
        # comm may itself contain spaces and parentheses
        rpar = data.rfind(")")
        return data[data.find("(") + 1:rpar], data[rpar + 2:].split()

    def _is_zombie(self) -> bool:
        try:
            return self._stat()[1][0] == "Z"
        except (OSError, IndexError):
            return False

    def _status(self) -> dict[str, str]:
        status = {}
        for line in self._read("status").splitlines():
            key, _, value = line.partition(":")
            status[key] = value.strip()
        return status

    def _statm(self) -> list[int]:
        page = self.config.page_size
        return [int(value) * page for value in self._read("statm").split()[:7]]

    @wrap_exceptions
    def ppid(self) -> int:
        return int(self._stat()[1][1])

    @wrap_exceptions
    def name(self) -> str:
        return self._stat()[0]

    @wrap_exceptions
    def exe(self) -> str:
        try:
            return os.readlink(self._procfs.path(self.pid, "exe"))
        except FileNotFoundError:
            if self._procfs.path(self.pid).exists():
                # kernel threads have no executable
                return ""
            raise

    @wrap_exceptions
    def cmdline(self) -> list[str]:
        data = self._read("cmdline")
        if not data:
            return []
        if "\0" in data:
            return data.rstrip("\0").split("\0")
        # processes that rewrite their title often use spaces instead of NULs
        return data.split(" ")

    @wrap_exceptions
    def cwd(self) -> str:
        return os.readlink(self._procfs.path(self.pid, "cwd"))

    @wrap_exceptions
    def status(self) -> str:
        return PROC_STATUSES.get(self._stat()[1][0], "?")

    @wrap_exceptions
    def create_time(self) -> float:
        ticks = int(self._stat()[1][19])
        return _boot_time(str(self.config.procfs_root)) + ticks / self.config.clock_ticks

    def _ids(self, key: str) -> Ids:
        real, effective, saved = (int(value) for value in self._status()[key].split()[:3])
        return Ids(real=real, effective=effective, saved=saved)

    @wrap_exceptions
    def uids(self) -> Ids:
        return self._ids("Uid")

    @wrap_exceptions
    def gids(self) -> Ids:
        return self._ids("Gid")

    @wrap_exceptions
    def terminal(self) -> str | None:
        tty_nr = int(self._stat()[1][4])
        if tty_nr == 0:
            return None
        return _terminal_map().get(tty_nr)

    @wrap_exceptions
    def nice(self) -> int:
        return os.getpriority(os.PRIO_PROCESS, self.pid)

    def set_nice(self, value: int) -> None:
        check_nice(value)
        self._set_nice(value)

    @wrap_exceptions
    def _set_nice(self, value: int) -> None:
        os.setpriority(os.PRIO_PROCESS, self.pid, value)

    @wrap_exceptions
    def cpu_affinity(self) -> list[int]:
        return sorted(os.sched_getaffinity(self.pid))

    def set_cpu_affinity(self, cpus: Iterable[int]) -> None:
        wanted = check_affinity(cpus, os.cpu_count() or 1)
        self._set_cpu_affinity(wanted)

    @wrap_exceptions
    def _set_cpu_affinity(self, cpus: set[int]) -> None:
        try:
            os.sched_setaffinity(self.pid, cpus)
        except OSError as exc:
            if isinstance(exc, (PermissionError, ProcessLookupError)):
                raise
            # EINVAL: none of the cpus is online or allowed by the cpuset
            raise InvalidArgument(f"cannot set cpu affinity to {sorted(cpus)}: {exc}") from exc

    @wrap_exceptions
    def rlimit(self, res: int | str) -> RLimit:
        soft, hard = resource.prlimit(self.pid, check_rlimit_resource(res))
        return RLimit(soft=soft, hard=hard)

    def set_rlimit(self, res: int | str, limits) -> RLimit:
        res = check_rlimit_resource(res)
        wanted = check_rlimit_limits(limits)
        self._set_rlimit(res, wanted)
        return self.rlimit(res)

    @wrap_exceptions
    def _set_rlimit(self, res: int, limits: RLimit) -> None:
        try:
            resource.prlimit(self.pid, res, (limits.soft, limits.hard))
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc

    def ionice(self) -> IOPriority:
        return native.ionice(self.pid)

    def set_ionice(self, ioclass: int | str, value: int | None = None) -> None:
        ioclass, value = check_ionice(ioclass, value)
        native.set_ionice(self.pid, ioclass, value)

    @wrap_exceptions
    def cpu_times(self) -> ProcessCpuTimes:
        fields = self._stat()[1]
        hz = self.config.clock_ticks
        utime, stime, cutime, cstime = (int(value) / hz for value in fields[11:15])
        return ProcessCpuTimes(
            user=utime, system=stime, children_user=cutime, children_system=cstime
        )

    @wrap_exceptions
    def memory_info(self) -> MemoryInfo:
        vms, rss = self._statm()[:2]
        return MemoryInfo(rss=rss, vms=vms)

    @wrap_exceptions
    def memory_info_ex(self) -> MemoryInfoEx:
        vms, rss, shared, text, lib, data, dirty = self._statm()
        return MemoryInfoEx(
            rss=rss, vms=vms, shared=shared, text=text, lib=lib, data=data, dirty=dirty
        )

    @wrap_exceptions
    def num_fds(self) -> int:
        return len(os.listdir(self._procfs.path(self.pid, "fd")))

    @wrap_exceptions
    def open_files(self) -> list[OpenFile]:
        files = []
        fd_dir = self._procfs.path(self.pid, "fd")
        for name in os.listdir(fd_dir):
            try:
                path = os.readlink(fd_dir / name)
            except FileNotFoundError:
                continue
            if not path.startswith("/") or not os.path.isfile(path):
                continue
            try:
                fdinfo = self._procfs.read_raw(self.pid, "fdinfo", name)
            except FileNotFoundError:
                continue
            position = flags = 0
            for line in fdinfo.splitlines():
                key, _, value = line.partition(":")
                if key == "pos":
                    position = int(value)
                elif key == "flags":
                    # printed in octal
                    flags = int(value, 8)
            files.append(
                OpenFile(
                    path=path, fd=int(name), position=position,
                    mode=_file_mode(flags), flags=flags,
                )
            )
        return files

    @wrap_exceptions
    def memory_maps(self, grouped: bool = True) -> list[MemoryMap]:
        """
        Mappings from /proc/<pid>/smaps.

        Args:
            grouped: Sum mappings that share a path into one entry.
        """
        maps = []
        current: dict | None = None
        for line in self._read("smaps").splitlines():
            fields = line.split()
            if not fields:
                continue
            if not fields[0].endswith(":"):
                if current is not None:
                    maps.append(current)
                path = " ".join(fields[5:]) if len(fields) > 5 else "[anon]"
                current = {"addr": fields[0], "perms": fields[1], "path": path}
                current.update(dict.fromkeys(SMAPS_FIELDS.values(), 0))
            elif current is not None and fields[0] in SMAPS_FIELDS:
                current[SMAPS_FIELDS[fields[0]]] = int(fields[1]) * 1024
        if current is not None:
            maps.append(current)

        if not grouped:
            return [MemoryMap(**entry) for entry in maps]
        by_path: dict[str, dict] = {}
        for entry in maps:
            total = by_path.setdefault(
                entry["path"], dict.fromkeys(SMAPS_FIELDS.values(), 0)
            )
            for key in SMAPS_FIELDS.values():
                total[key] += entry[key]
        return [MemoryMap(path=path, **sizes) for path, sizes in by_path.items()]

    @wrap_exceptions
    def threads(self) -> list[ThreadInfo]:
        hz = self.config.clock_ticks
        threads = []
        for tid in sorted(os.listdir(self._procfs.path(self.pid, "task")), key=int):
            try:
                data = self._procfs.read_raw(self.pid, "task", tid, "stat")
            except FileNotFoundError:
                # thread exited meanwhile
                continue
            fields = data[data.rfind(")") + 2:].split()
            threads.append(
                ThreadInfo(
                    id=int(tid),
                    user_time=int(fields[11]) / hz,
                    system_time=int(fields[12]) / hz,
                )
            )
        return threads

    @wrap_exceptions
    def num_threads(self) -> int:
        return int(self._status()["Threads"])

    @wrap_exceptions
    def num_ctx_switches(self) -> CtxSwitches:
        status = self._status()
        try:
            return CtxSwitches(
                voluntary=int(status["voluntary_ctxt_switches"]),
                involuntary=int(status["nonvoluntary_ctxt_switches"]),
            )
        except KeyError:
            raise NotImplementedError("kernel does not report context switches") from None

    @wrap_exceptions
    def io_counters(self) -> ProcessIOCounters:
        io = procfs.parse_key_values(self._read("io"))
        return ProcessIOCounters(
            read_count=io["syscr"],
            write_count=io["syscw"],
            read_bytes=io["read_bytes"],
            write_bytes=io["write_bytes"],
        )

    def connections(self, kind: str = "inet") -> list[Connection]:
        netconn.check_kind(kind)
        return self._connections(kind)

    @wrap_exceptions
    def _connections(self, kind: str) -> list[Connection]:
        owned = netconn.pid_inodes(self._procfs, self.pid)
        inodes = {inode: [(None, fd)] for inode, fd in owned.items()}
        return netconn.connections(self._procfs, kind, inodes, owned_only=True)

    @classmethod
    def ppid_map(cls, config: TelemetryConfig | None = None) -> dict[int, int]:
        config = config or TelemetryConfig()
        reader = procfs.ProcFS(config.procfs_root)
        parents = {}
        for pid in reader.pids():
            try:
                data = reader.read_raw(pid, "stat")
            except (FileNotFoundError, ProcessLookupError, PermissionError):
                continue
            parents[pid] = int(data[data.rfind(")") + 2:].split()[1])
        return parents
