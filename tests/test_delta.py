"""Tests for percentage and rate derivation."""

import pytest

from proctelemetry import delta
from proctelemetry.errors import InvalidArgument
from proctelemetry.models import (
    CPU_FIELDS,
    CpuTimes,
    DiskIOCounters,
    NetIOCounters,
    ProcessCpuTimes,
)


def times(user, system, idle, **rest) -> CpuTimes:
    return CpuTimes(user=user, nice=rest.pop("nice", 0.0), system=system, idle=idle, **rest)


class TestCpuPercent:
    """Tests for cpu_percent."""

    def test_busy_share_of_elapsed_time(self):
        """15 busy out of 20 elapsed is 75%."""
        start = times(100, 50, 850)
        end = times(110, 55, 855)
        assert delta.cpu_percent(start, end) == 75.00

    def test_identical_samples_are_zero(self):
        """Test no elapsed time at all reports 0.0."""
        sample = times(100, 50, 850)
        assert delta.cpu_percent(sample, sample) == 0.0

    def test_busy_going_backwards_is_zero(self):
        """Test a lower later busy time never yields a negative percent."""
        start = times(100, 50, 850)
        end = times(99.99, 50, 870)
        assert delta.cpu_percent(start, end) == 0.0

    def test_idle_only_interval_reports_instantaneous_ratio(self):
        """Test unchanged busy counters fall back to the overall busy ratio."""
        start = times(100, 50, 850)
        end = times(100, 50, 860)
        # (150 + 150) / (1000 + 1010)
        assert delta.cpu_percent(start, end) == round(300 / 2010 * 100, 2)

    def test_result_is_bounded(self):
        """Test results stay within 0-100."""
        start = times(0, 0, 0)
        end = times(500, 500, 0)
        assert delta.cpu_percent(start, end) == 100.0

    def test_steal_counts_as_busy(self):
        """Test optional fields contribute once present."""
        start = times(10, 10, 80, steal=0.0)
        end = times(10, 10, 90, steal=10.0)
        assert delta.cpu_percent(start, end) == 50.0


class TestCpuTimesPercent:
    """Tests for cpu_times_percent."""

    def test_identical_samples_are_all_zero(self):
        """Test every field is 0.0 when no time elapsed."""
        sample = times(100, 50, 850)
        result = delta.cpu_times_percent(sample, sample)
        assert all(value == 0.0 for value in result.as_dict().values())

    def test_fields_split_elapsed_time(self):
        """Test fields add up to 100 and follow the deltas."""
        start = times(100, 50, 850)
        end = times(110, 55, 855)
        result = delta.cpu_times_percent(start, end)
        assert result.user == 50.0
        assert result.system == 25.0
        assert result.idle == 25.0
        assert sum(result.as_dict().values()) == pytest.approx(100.0)

    def test_field_regression_clamps_to_zero(self):
        """Test a field that went backwards reads 0.0."""
        start = times(100, 50, 850, iowait=5.0)
        end = times(120, 50, 850, iowait=4.0)
        result = delta.cpu_times_percent(start, end)
        assert result.iowait == 0.0
        assert set(result.as_dict()) == set(CPU_FIELDS)

    @pytest.mark.parametrize(
        "start, end",
        [
            (times(100, 50, 850), times(110, 55, 855)),
            (
                times(1000.3, 400.1, 8000, nice=10, iowait=20, irq=3, softirq=4, steal=1.0),
                times(1013.7, 409.9, 8031.3, nice=12.2, iowait=23.1, irq=3.4, softirq=5.2, steal=1.6),
            ),
            (times(5, 5, 90), times(5.5, 5, 140)),
        ],
    )
    def test_non_idle_fields_match_cpu_percent(self, start, end):
        """Test the non-idle shares add up to the aggregate busy percentage."""
        result = delta.cpu_times_percent(start, end).as_dict()
        non_idle = sum(value for name, value in result.items() if name != "idle")
        assert non_idle == pytest.approx(delta.cpu_percent(start, end), abs=0.05)


class TestPerCpu:
    """Tests for the per-cpu variants."""

    def test_lengths_must_match(self):
        """Test samples from different cpu counts are rejected."""
        with pytest.raises(InvalidArgument):
            delta.per_cpu_percent([CpuTimes.zero()], [CpuTimes.zero()] * 2)
        with pytest.raises(InvalidArgument):
            delta.per_cpu_times_percent([CpuTimes.zero()] * 2, [CpuTimes.zero()])

    def test_one_value_per_cpu(self):
        """Test each cpu is measured on its own."""
        start = [times(0, 0, 0), times(0, 0, 0)]
        end = [times(5, 5, 10), times(0, 0, 20)]
        assert delta.per_cpu_percent(start, end) == [50.0, 0.0]


class TestProcessCpuPercent:
    """Tests for process_cpu_percent."""

    def test_can_exceed_one_core(self):
        """Test a process busy on two cores reports about 200%."""
        start = ProcessCpuTimes(user=1.0, system=1.0)
        end = ProcessCpuTimes(user=3.0, system=3.0)
        assert delta.process_cpu_percent(start, end, 2.0) == 200.0

    def test_no_elapsed_time(self):
        """Test zero wall time reports 0.0 rather than dividing by zero."""
        sample = ProcessCpuTimes(user=1.0, system=1.0)
        assert delta.process_cpu_percent(sample, sample, 0.0) == 0.0


class TestCounterRates:
    """Tests for counter_rates."""

    def test_per_second_rates(self):
        """Test every field becomes a per-second rate."""
        start = DiskIOCounters(0, 0, 0, 0, 0, 0)
        end = DiskIOCounters(10, 20, 4096, 8192, 2, 4)
        rates = delta.counter_rates(start, end, 2.0)
        assert rates["read_count"] == 5.0
        assert rates["write_bytes"] == 4096.0
        assert set(rates) == set(DiskIOCounters.zero().as_dict())

    def test_wrapped_counter_is_zero(self):
        """Test a counter that went backwards gives a 0.0 rate."""
        start = NetIOCounters(100, 100, 0, 0, 0, 0, 0, 0)
        end = NetIOCounters(50, 200, 0, 0, 0, 0, 0, 0)
        rates = delta.counter_rates(start, end, 1.0)
        assert rates["bytes_sent"] == 0.0
        assert rates["bytes_recv"] == 100.0

    def test_elapsed_must_be_positive(self):
        """Test zero or negative elapsed time is rejected."""
        sample = NetIOCounters.zero()
        with pytest.raises(InvalidArgument):
            delta.counter_rates(sample, sample, 0)

    def test_record_types_must_match(self):
        """Test disk counters cannot be diffed against network counters."""
        with pytest.raises(InvalidArgument):
            delta.counter_rates(DiskIOCounters.zero(), NetIOCounters.zero(), 1.0)
