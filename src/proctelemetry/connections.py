"""
Socket enumeration from /proc/net connection tables.

Sockets are attributed to processes by matching the inode in each table row
against the ``socket:[inode]`` links in /proc/<pid>/fd.
"""

import os
import socket
import sys
from collections.abc import Iterator

from proctelemetry.errors import InvalidArgument, OsQueryError
from proctelemetry.models import Address, Connection
from proctelemetry.procfs import ProcFS

CONN_NONE = "NONE"

TCP_STATUSES = {
    "01": "ESTABLISHED",
    "02": "SYN_SENT",
    "03": "SYN_RECV",
    "04": "FIN_WAIT1",
    "05": "FIN_WAIT2",
    "06": "TIME_WAIT",
    "07": "CLOSE",
    "08": "CLOSE_WAIT",
    "09": "LAST_ACK",
    "0A": "LISTEN",
    "0B": "CLOSING",
}

# (table file, address family, socket type)
_TCP4 = ("tcp", socket.AF_INET, socket.SOCK_STREAM)
_TCP6 = ("tcp6", socket.AF_INET6, socket.SOCK_STREAM)
_UDP4 = ("udp", socket.AF_INET, socket.SOCK_DGRAM)
_UDP6 = ("udp6", socket.AF_INET6, socket.SOCK_DGRAM)
_UNIX = ("unix", socket.AF_UNIX, None)

CONNECTION_KINDS = {
    "all": (_TCP4, _TCP6, _UDP4, _UDP6, _UNIX),
    "tcp": (_TCP4, _TCP6),
    "tcp4": (_TCP4,),
    "tcp6": (_TCP6,),
    "udp": (_UDP4, _UDP6),
    "udp4": (_UDP4,),
    "udp6": (_UDP6,),
    "unix": (_UNIX,),
    "inet": (_TCP4, _TCP6, _UDP4, _UDP6),
    "inet4": (_TCP4, _UDP4),
    "inet6": (_TCP6, _UDP6),
}

InodeMap = dict[int, list[tuple[int | None, int]]]


def check_kind(kind: str) -> None:
    if not isinstance(kind, str) or kind not in CONNECTION_KINDS:
        valid = ", ".join(sorted(CONNECTION_KINDS))
        raise InvalidArgument(f"invalid connection kind {kind!r}; choose from {valid}")


def decode_address(addr: str, family: int) -> Address | tuple:
    """
    Decode a ``HEXIP:HEXPORT`` column from /proc/net/tcp{,6} or udp{,6}.

    The kernel prints the address as 32-bit words in host byte order.
    An all-zero address with port 0 is an unconnected peer and decodes to ().
    """
    ip_hex, port_hex = addr.split(":")
    port = int(port_hex, 16)
    raw = bytes.fromhex(ip_hex)
    if sys.byteorder == "little":
        raw = b"".join(raw[i:i + 4][::-1] for i in range(0, len(raw), 4))
    if port == 0 and not any(raw):
        return ()
    return Address(socket.inet_ntop(family, raw), port)


def _socket_inode(link: str) -> int | None:
    if link.startswith("socket:["):
        return int(link[8:-1])
    return None


def pid_inodes(procfs: ProcFS, pid: int) -> dict[int, int]:
    """
    Socket inode -> fd for one process.

    OSError from listing or reading the fd table propagates so the caller can
    tell a vanished process from a forbidden one.
    """
    fd_dir = procfs.path(pid, "fd")
    inodes = {}
    for name in os.listdir(fd_dir):
        try:
            link = os.readlink(fd_dir / name)
        except FileNotFoundError:
            # fd closed while we were looking
            continue
        inode = _socket_inode(link)
        if inode is not None:
            inodes[inode] = int(name)
    return inodes


def all_inodes(procfs: ProcFS) -> InodeMap:
    """Socket inode -> [(pid, fd)] across every process we are allowed to inspect."""
    inodes: InodeMap = {}
    for pid in procfs.pids():
        try:
            owned = pid_inodes(procfs, pid)
        except (FileNotFoundError, ProcessLookupError, PermissionError):
            continue
        for inode, fd in owned.items():
            inodes.setdefault(inode, []).append((pid, fd))
    return inodes


def _read_table(procfs: ProcFS, name: str) -> list[str]:
    try:
        return procfs.read_raw("net", name).splitlines()[1:]
    except FileNotFoundError:
        # IPv6 disabled, or no such protocol compiled in
        return []
    except OSError as exc:
        raise OsQueryError(f"cannot read /proc/net/{name}: {exc}") from exc


def parse_inet(
    lines: list[str], family: int, type_: int, inodes: InodeMap, *, owned_only: bool
) -> Iterator[Connection]:
    for line in lines:
        fields = line.split()
        if len(fields) < 10:
            continue
        inode = int(fields[9])
        owners = inodes.get(inode)
        if owned_only and not owners:
            continue
        laddr = decode_address(fields[1], family)
        raddr = decode_address(fields[2], family)
        if type_ == socket.SOCK_STREAM:
            status = TCP_STATUSES.get(fields[3].upper(), CONN_NONE)
        else:
            status = CONN_NONE
        for pid, fd in owners or [(None, -1)]:
            yield Connection(
                fd=fd, family=family, type=type_, laddr=laddr, raddr=raddr,
                status=status, pid=pid,
            )


def parse_unix(lines: list[str], inodes: InodeMap, *, owned_only: bool) -> Iterator[Connection]:
    for line in lines:
        fields = line.split()
        if len(fields) < 7:
            continue
        inode = int(fields[6])
        owners = inodes.get(inode)
        if owned_only and not owners:
            continue
        path = fields[7] if len(fields) > 7 else ""
        for pid, fd in owners or [(None, -1)]:
            yield Connection(
                fd=fd, family=socket.AF_UNIX, type=int(fields[4], 16), laddr=path,
                raddr="", status=CONN_NONE, pid=pid,
            )


def connections(procfs: ProcFS, kind: str, inodes: InodeMap, *, owned_only: bool) -> list[Connection]:
    """
    Read the tables selected by ``kind`` and join them with ``inodes``.

    Args:
        procfs: Reader for the procfs root.
        kind: One of CONNECTION_KINDS.
        inodes: Socket inode -> [(pid, fd)] owners.
        owned_only: Drop rows whose inode nobody in ``inodes`` holds.
    """
    check_kind(kind)
    found: list[Connection] = []
    seen = set()
    for table, family, type_ in CONNECTION_KINDS[kind]:
        lines = _read_table(procfs, table)
        if family == socket.AF_UNIX:
            rows = parse_unix(lines, inodes, owned_only=owned_only)
        else:
            rows = parse_inet(lines, family, type_, inodes, owned_only=owned_only)
        for conn in rows:
            # the same socket can appear in a table more than once
            if conn not in seen:
                seen.add(conn)
                found.append(conn)
    return found
