"""Tests for System: the sampling-interval protocol and pass-throughs."""

import psutil
import pytest

from proctelemetry.errors import InvalidArgument
from proctelemetry.ratecache import RateCache
from proctelemetry.system import System

# 15 busy ticks out of 20 on the aggregate line; cpu0 fully busy, cpu1 idling
LATER_STAT = """\
cpu  110 0 55 855 0 0 0 0 0 0
cpu0 70 0 35 410 0 0 0 0 0 0
cpu1 40 0 20 450 0 0 0 0 0 0
btime 1700000000
"""

LATER_DISKSTATS = """\
   8       1 sda1 600 10 4200 40 400 20 4000 30 0 100 70 0 0 0 0
   8       2 sda2 100 0 1000 10 100 0 1000 10 0 20 20 0 0 0 0
   8      16 sdb 10 0 80 1 5 0 40 2 0 3 3 0 0 0 0
 259       1 nvme0n1p1 200 0 2000 20 300 0 3000 30 0 50 50 0 0 0 0
"""


def advancing_sleep(fake_proc, **files):
    """A sleep replacement that moves the fake kernel counters forward."""
    slept = []

    def sleep(seconds):
        slept.append(seconds)
        for name, text in files.items():
            fake_proc.write(name, text)

    sleep.slept = slept
    return sleep


class TestCpuPercent:
    """Tests for System.cpu_percent."""

    def test_blocking_interval(self, fake_proc):
        """Test a positive interval measures across a sleep."""
        sleep = advancing_sleep(fake_proc, stat=LATER_STAT)
        system = System(fake_proc.config(), sleep=sleep)
        assert system.cpu_percent(interval=0.5) == 75.0
        assert sleep.slept == [0.5]

    def test_since_previous_call(self, fake_proc):
        """Test a zero interval measures against the previous call."""
        system = System(fake_proc.config())
        fake_proc.write("stat", LATER_STAT)
        assert system.cpu_percent(interval=0) == 75.0
        # nothing moved since the call above
        assert system.cpu_percent(interval=None) == 0.0

    def test_percpu(self, fake_proc):
        """Test per-cpu values come back in cpu order."""
        system = System(fake_proc.config())
        fake_proc.write("stat", LATER_STAT)
        # cpu1 only idled, so it reports its overall busy ratio: 120 / 1010
        assert system.cpu_percent(percpu=True) == [100.0, 11.88]

    def test_unprimed_cache_measures_since_boot(self, fake_proc):
        """Test the first call on an empty cache diffs against zero counters."""
        system = System(fake_proc.config(), rate_cache=RateCache())
        # 150 busy out of 1000 ticks since boot
        assert system.cpu_percent() == 15.0

    def test_negative_interval(self, fake_proc):
        """Test negative intervals are rejected before sampling."""
        system = System(fake_proc.config())
        with pytest.raises(InvalidArgument):
            system.cpu_percent(interval=-1)
        with pytest.raises(InvalidArgument):
            system.cpu_times_percent(interval=-0.1)

    def test_operations_keep_separate_baselines(self, fake_proc):
        """Test cpu_percent calls do not consume the cpu_times_percent baseline."""
        system = System(fake_proc.config())
        fake_proc.write("stat", LATER_STAT)
        assert system.cpu_percent() == 75.0
        breakdown = system.cpu_times_percent()
        assert breakdown.user == 50.0
        assert breakdown.system == 25.0
        assert breakdown.idle == 25.0


class TestCpuTimesPercent:
    """Tests for System.cpu_times_percent."""

    def test_percpu(self, fake_proc):
        """Test the per-cpu breakdown."""
        sleep = advancing_sleep(fake_proc, stat=LATER_STAT)
        system = System(fake_proc.config(), sleep=sleep)
        cpu0, cpu1 = system.cpu_times_percent(interval=1, percpu=True)
        assert cpu0.user == 66.67
        assert cpu0.idle == 0.0
        assert cpu1.idle == 100.0


class TestIoRates:
    """Tests for disk and network rates."""

    def test_first_call_needs_interval(self, fake_proc):
        """Test there is nothing to diff against on the very first call."""
        system = System(fake_proc.config())
        with pytest.raises(InvalidArgument):
            system.disk_io_rates()

    def test_disk_rates_over_interval(self, fake_proc):
        """Test rates are per second of measured time."""
        sleep = advancing_sleep(fake_proc, diskstats=LATER_DISKSTATS)
        system = System(fake_proc.config(), sleep=sleep)
        rates = system.disk_io_rates(interval=1, perdisk=True)
        assert set(rates) == {"sda1", "sda2", "sdb", "nvme0n1p1"}
        assert rates["sda1"]["read_count"] > 0
        assert rates["sda2"]["read_count"] == 0.0

    def test_later_calls_reuse_baseline(self, fake_proc):
        """Test a zero interval works once a baseline exists."""
        system = System(fake_proc.config(), sleep=lambda seconds: None)
        system.net_io_rates(interval=0.01)
        rates = system.net_io_rates()
        assert rates["bytes_sent"] == 0.0
        assert set(rates) >= {"bytes_sent", "bytes_recv", "dropin"}


class TestPassThrough:
    """Tests for the plain sample accessors."""

    def test_boot_time_and_uptime(self, fake_proc):
        """Test boot time is read from stat and uptime derived from it."""
        system = System(fake_proc.config())
        assert system.boot_time() == 1700000000.0
        assert system.uptime() > 0

    def test_samples(self, fake_proc):
        """Test sample accessors delegate to the sampler."""
        system = System(fake_proc.config())
        assert system.cpu_count() == 2
        assert system.virtual_memory().percent == 25.0
        assert system.swap_memory().used == 250000 * 1024
        assert system.load_avg() == (0.5, 0.25, 0.1)
        assert system.pids() == [1, 42, 300]
        assert len(system.cpu_times(percpu=True)) == 2

    def test_users_with_nobody_logged_in(self, fake_proc, monkeypatch):
        """Test an empty user database means no users."""
        monkeypatch.setattr(psutil, "users", lambda: [])
        assert System(fake_proc.config()).users() == []

    def test_system_info(self, fake_proc):
        """Test host identification fields are filled."""
        info = System(fake_proc.config()).system_info()
        assert info.kernel
        assert info.hostname
