"""Shared fixtures: a fake procfs tree with deterministic contents."""

from pathlib import Path

import pytest

from proctelemetry.config import TelemetryConfig

STAT = """\
cpu  100 0 50 850 0 0 0 0 0 0
cpu0 60 0 30 410 0 0 0 0 0 0
cpu1 40 0 20 440 0 0 0 0 0 0
intr 1234 0 0
ctxt 98765
btime 1700000000
processes 4321
"""

MEMINFO = """\
MemTotal:        8000000 kB
MemFree:         2000000 kB
MemAvailable:    6000000 kB
Buffers:          100000 kB
Cached:          3000000 kB
Active:          2500000 kB
Inactive:        1500000 kB
"""

SWAPS = """\
Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority
/dev/sda2                               partition\t1000000\t\t250000\t\t-2
/swapfile                               file\t\t1000000\t\t0\t\t-3
"""

VMSTAT = """\
nr_free_pages 500000
pswpin 10
pswpout 20
"""

FILESYSTEMS = """\
nodev\tsysfs
nodev\tproc
nodev\ttmpfs
\text4
\tvfat
"""

MOUNTS = """\
sysfs /sys sysfs rw,nosuid 0 0
proc /proc proc rw,nosuid 0 0
/dev/sda1 / ext4 rw,relatime 0 0
/dev/sdb1 /media/my\\040disk vfat rw 0 0
tmpfs /run tmpfs rw 0 0
"""

PARTITIONS = """\
major minor  #blocks  name

   8        0  488386584 sda
   8        1  487386584 sda1
   8        2    1000000 sda2
   8       16    1000000 sdb
 259        0  500000000 nvme0n1
 259        1  499000000 nvme0n1p1
"""

DISKSTATS = """\
   8       0 sda 900 0 9000 90 800 0 8000 80 0 0 0
   8       1 sda1 500 10 4000 40 400 20 4000 30 0 100 70 0 0 0 0
   8       2 sda2 100 0 1000 10 100 0 1000 10 0 20 20 0 0 0 0
   8      16 sdb 10 0 80 1 5 0 40 2 0 3 3 0 0 0 0
 259       0 nvme0n1 9 9 9 9 9 9 9 9 0 9 9 0 0 0 0
 259       1 nvme0n1p1 200 0 2000 20 300 0 3000 30 0 50 50 0 0 0 0
"""

NET_DEV = """\
Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:    1000      10    0    0    0     0          0         0     1000      10    0    0    0     0       0          0
  eth0:    5000      50    1    2    0     0          0         0     3000      30    3    4    0     0       0          0
"""

CPUINFO = """\
processor\t: 0
physical id\t: 0
core id\t\t: 0
cpu cores\t: 1

processor\t: 1
physical id\t: 0
core id\t\t: 0
cpu cores\t: 1

"""

LOADAVG = "0.50 0.25 0.10 1/123 4567\n"


class FakeProcFS:
    """Writes pseudo-files under a temporary root."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def write(self, relative: str, text: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    def remove(self, relative: str) -> None:
        (self.root / relative).unlink()

    def config(self, **overrides) -> TelemetryConfig:
        values = dict(procfs_root=self.root, clock_ticks=100, page_size=4096)
        values.update(overrides)
        return TelemetryConfig(**values)


@pytest.fixture
def fake_proc(tmp_path):
    """A populated fake procfs root."""
    proc = FakeProcFS(tmp_path / "proc")
    proc.write("stat", STAT)
    proc.write("meminfo", MEMINFO)
    proc.write("swaps", SWAPS)
    proc.write("vmstat", VMSTAT)
    proc.write("filesystems", FILESYSTEMS)
    proc.write("self/mounts", MOUNTS)
    proc.write("partitions", PARTITIONS)
    proc.write("diskstats", DISKSTATS)
    proc.write("net/dev", NET_DEV)
    proc.write("cpuinfo", CPUINFO)
    proc.write("loadavg", LOADAVG)
    for pid in (1, 42, 300):
        proc.write(f"{pid}/stat", f"{pid} (fake) S 0\n")
    return proc
