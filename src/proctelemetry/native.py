"""Thin pass-throughs to native system calls. No derived logic lives here."""

import contextlib
import os
import platform
import socket
from collections.abc import Iterator
from pathlib import Path

import psutil

from proctelemetry.errors import (
    AccessDenied,
    InvalidArgument,
    NoSuchProcess,
    OsQueryError,
    ZombieProcess,
)
from proctelemetry.models import DiskUsage, IOPriority, SystemInfo, User


def clock_ticks() -> int:
    return os.sysconf("SC_CLK_TCK")


def page_size() -> int:
    return os.sysconf("SC_PAGE_SIZE")


def usage_percent(used: float, total: float, ndigits: int | None = None) -> float:
    """Percentage of ``used`` over ``total``; 0.0 when total is zero."""
    try:
        percent = (float(used) / total) * 100
    except ZeroDivisionError:
        percent = 0.0
    if ndigits is not None:
        percent = round(percent, ndigits)
    return percent


def disk_usage(path: str | Path) -> DiskUsage:
    """
    Usage of the filesystem mounted at or containing ``path``.

    The percentage ignores blocks reserved for root, so it reads a few points
    lower than ``df``.
    """
    try:
        st = os.statvfs(path)
    except FileNotFoundError as exc:
        raise InvalidArgument(f"{path!r} does not exist") from exc
    except PermissionError as exc:
        raise AccessDenied(msg=f"cannot stat {path!r}") from exc
    except OSError as exc:
        raise OsQueryError(f"statvfs({path!r}) failed: {exc}") from exc
    total = st.f_blocks * st.f_frsize
    free = st.f_bavail * st.f_frsize
    used = (st.f_blocks - st.f_bfree) * st.f_frsize
    return DiskUsage(total=total, used=used, free=free, percent=usage_percent(used, total, 1))


@contextlib.contextmanager
def psutil_errors(pid: int) -> Iterator[None]:
    """Re-raise psutil's process errors as the matching proctelemetry ones."""
    try:
        yield
    except psutil.ZombieProcess as exc:
        raise ZombieProcess(pid) from exc
    except psutil.NoSuchProcess as exc:
        raise NoSuchProcess(pid) from exc
    except psutil.AccessDenied as exc:
        raise AccessDenied(pid) from exc


def users() -> list[User]:
    """Users currently logged in, from the host's utmp database."""
    try:
        entries = psutil.users()
    except OSError as exc:
        raise OsQueryError(f"cannot read logged-in users: {exc}") from exc
    found = []
    for entry in entries:
        host = entry.host or ""
        if host in (":0", ":0.0"):
            host = "localhost"
        found.append(
            User(
                name=entry.name,
                terminal=entry.terminal or None,
                host=host,
                started=float(entry.started),
                pid=entry.pid,
            )
        )
    return found


def ionice(pid: int) -> IOPriority:
    with psutil_errors(pid):
        ioclass, value = psutil.Process(pid).ionice()
    return IOPriority(ioclass=int(ioclass), value=value)


def set_ionice(pid: int, ioclass: int, value: int) -> None:
    """Set the I/O scheduling class and priority. Arguments are already validated."""
    with psutil_errors(pid):
        proc = psutil.Process(pid)
        try:
            proc.ionice(ioclass, value)
        except (ValueError, OSError) as exc:
            raise InvalidArgument(f"cannot set I/O priority {ioclass}/{value}: {exc}") from exc


def system_info() -> SystemInfo:
    uname = os.uname()
    return SystemInfo(
        os_short=uname.sysname,
        os_full=platform.platform(),
        kernel=uname.release,
        arch=uname.machine,
        hostname=socket.gethostname(),
    )


def pid_exists(pid: int) -> bool:
    """Whether a process with this pid exists, using signal 0."""
    if pid <= 0:
        # kill(2) treats 0 and negative pids as process groups
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # it exists, it just isn't ours
        return True
    return True
