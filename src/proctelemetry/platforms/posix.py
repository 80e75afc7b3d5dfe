"""
Process capability for POSIX systems without a Linux-style /proc.

Attributes come from ``ps -o <field>= -p <pid>``; priorities and the calling
process's own limits come from the standard ``os``/``resource`` calls. What
neither can answer raises NotImplementedError.
"""

import os
import resource
import subprocess
import time
from collections.abc import Iterable

from proctelemetry.config import TelemetryConfig
from proctelemetry.errors import AccessDenied, InvalidArgument, NoSuchProcess, OsQueryError
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
    check_nice,
    check_rlimit_limits,
    check_rlimit_resource,
)

PS_ENV = {**os.environ, "LC_ALL": "C"}


def parse_cputime(value: str) -> float:
    """Seconds from ps ``time`` output: ``[dd-]hh:mm:ss`` or ``mm:ss.cc``."""
    days = 0
    if "-" in value:
        day_part, value = value.split("-", 1)
        days = int(day_part)
    seconds = 0.0
    for part in value.split(":"):
        seconds = seconds * 60 + float(part)
    return days * 86400 + seconds


def parse_lstart(value: str) -> float:
    """Epoch seconds from ps ``lstart`` output, e.g. ``Mon Oct 17 17:37:01 2026``."""
    started = time.strptime(" ".join(value.split()), "%a %b %d %H:%M:%S %Y")
    # lstart is local time
    return time.mktime(started)


class PosixProcess(ProcessCapability):
    """Generic POSIX implementation of ProcessCapability."""

    def _ps(self, field: str) -> str:
        try:
            result = subprocess.run(
                ["ps", "-o", f"{field}=", "-p", str(self.pid)],
                capture_output=True,
                text=True,
                env=PS_ENV,
                check=False,
            )
        except FileNotFoundError as exc:
            raise OsQueryError("ps is not available") from exc
        output = result.stdout.strip()
        if not output:
            if result.returncode != 0 and "permission" in result.stderr.lower():
                raise AccessDenied(self.pid)
            raise NoSuchProcess(self.pid)
        return output

    def _self_only(self, what: str) -> None:
        if self.pid != os.getpid():
            raise NotImplementedError(f"{what} is only available for the calling process here")

    def ppid(self) -> int:
        return int(self._ps("ppid"))

    def name(self) -> str:
        return os.path.basename(self._ps("comm"))

    def exe(self) -> str:
        comm = self._ps("comm")
        return comm if comm.startswith("/") else ""

    def cmdline(self) -> list[str]:
        # ps joins arguments with spaces, so embedded spaces are lost
        return self._ps("args").split()

    def cwd(self) -> str:
        raise NotImplementedError("cwd is not available without /proc")

    def status(self) -> str:
        return PROC_STATUSES.get(self._ps("stat")[0], "?")

    def create_time(self) -> float:
        return parse_lstart(self._ps("lstart"))

    def _ids(self, fields: str) -> Ids:
        real, effective, saved = (int(value) for value in self._ps(fields).split())
        return Ids(real=real, effective=effective, saved=saved)

    def uids(self) -> Ids:
        return self._ids("ruid=,uid=,svuid")

    def gids(self) -> Ids:
        return self._ids("rgid=,gid=,svgid")

    def terminal(self) -> str | None:
        tty = self._ps("tty")
        if tty in ("?", "??", "-"):
            return None
        return tty if tty.startswith("/") else f"/dev/{tty}"

    def nice(self) -> int:
        try:
            return os.getpriority(os.PRIO_PROCESS, self.pid)
        except ProcessLookupError as exc:
            raise NoSuchProcess(self.pid) from exc
        except PermissionError as exc:
            raise AccessDenied(self.pid) from exc

    def set_nice(self, value: int) -> None:
        check_nice(value)
        try:
            os.setpriority(os.PRIO_PROCESS, self.pid, value)
        except ProcessLookupError as exc:
            raise NoSuchProcess(self.pid) from exc
        except PermissionError as exc:
            raise AccessDenied(self.pid) from exc

    def cpu_affinity(self) -> list[int]:
        raise NotImplementedError("cpu affinity is Linux-only")

    def set_cpu_affinity(self, cpus: Iterable[int]) -> None:
        raise NotImplementedError("cpu affinity is Linux-only")

    def rlimit(self, res: int | str) -> RLimit:
        res = check_rlimit_resource(res)
        self._self_only("rlimit")
        soft, hard = resource.getrlimit(res)
        return RLimit(soft=soft, hard=hard)

    def set_rlimit(self, res: int | str, limits) -> RLimit:
        res = check_rlimit_resource(res)
        wanted = check_rlimit_limits(limits)
        self._self_only("rlimit")
        try:
            resource.setrlimit(res, (wanted.soft, wanted.hard))
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
        except PermissionError as exc:
            raise AccessDenied(self.pid) from exc
        return self.rlimit(res)

    def ionice(self) -> IOPriority:
        raise NotImplementedError("I/O priority is Linux-only")

    def set_ionice(self, ioclass: int | str, value: int | None = None) -> None:
        raise NotImplementedError("I/O priority is Linux-only")

    def cpu_times(self) -> ProcessCpuTimes:
        if self.pid == os.getpid():
            times = os.times()
            return ProcessCpuTimes(
                user=times.user,
                system=times.system,
                children_user=times.children_user,
                children_system=times.children_system,
            )
        # ps reports only the combined figure for other processes
        return ProcessCpuTimes(user=parse_cputime(self._ps("time")), system=0.0)

    def memory_info(self) -> MemoryInfo:
        rss, vsz = (int(value) * 1024 for value in self._ps("rss=,vsz").split())
        return MemoryInfo(rss=rss, vms=vsz)

    def memory_info_ex(self) -> MemoryInfoEx:
        raise NotImplementedError("extended memory info needs /proc")

    def num_fds(self) -> int:
        self._self_only("num_fds")
        return len(os.listdir("/dev/fd"))

    def open_files(self) -> list[OpenFile]:
        raise NotImplementedError("open files need /proc")

    def memory_maps(self, grouped: bool = True) -> list[MemoryMap]:
        raise NotImplementedError("memory maps need /proc")

    def threads(self) -> list[ThreadInfo]:
        raise NotImplementedError("per-thread times need /proc")

    def num_threads(self) -> int:
        raise NotImplementedError("thread counts need /proc")

    def num_ctx_switches(self) -> CtxSwitches:
        self._self_only("num_ctx_switches")
        usage = resource.getrusage(resource.RUSAGE_SELF)
        return CtxSwitches(voluntary=usage.ru_nvcsw, involuntary=usage.ru_nivcsw)

    def io_counters(self) -> ProcessIOCounters:
        raise NotImplementedError("I/O counters need /proc")

    def connections(self, kind: str = "inet") -> list[Connection]:
        raise NotImplementedError("connection tables need /proc")

    @classmethod
    def ppid_map(cls, config: TelemetryConfig | None = None) -> dict[int, int]:
        try:
            result = subprocess.run(
                ["ps", "-A", "-o", "pid=,ppid="],
                capture_output=True,
                text=True,
                env=PS_ENV,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise OsQueryError(f"ps -A failed: {exc}") from exc
        parents = {}
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) == 2:
                parents[int(fields[0])] = int(fields[1])
        return parents
