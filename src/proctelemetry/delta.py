"""
Derive utilisation percentages and rates from two samples of the same family.

Every function here is pure: the caller supplies both the earlier ("start")
and the later ("end") sample.
"""

from dataclasses import fields

from proctelemetry.errors import InvalidArgument
from proctelemetry.models import CPU_FIELDS, CpuTimes, CpuTimesPercent, ProcessCpuTimes


def cpu_percent(start: CpuTimes, end: CpuTimes) -> float:
    """
    Busy share of the CPU time elapsed between two samples, 0.0 - 100.0.

    Float accumulation can make the later busy time read slightly lower than
    the earlier one; that is reported as 0.0, never as a negative number.
    Identical samples (no elapsed time at all) give 0.0. When time elapsed but
    the busy counters did not move, the interval was too short to see a
    state change, so the instantaneous busy ratio of both samples is
    reported instead of 0.0.
    """
    start_busy, end_busy = start.busy, end.busy
    if end_busy < start_busy:
        return 0.0
    total_delta = end.total - start.total
    if total_delta <= 0:
        return 0.0
    busy_delta = end_busy - start_busy
    if busy_delta == 0:
        percent = (end_busy + start_busy) / (end.total + start.total) * 100
    else:
        percent = busy_delta / total_delta * 100
    return round(min(percent, 100.0), 2)


def cpu_times_percent(start: CpuTimes, end: CpuTimes) -> CpuTimesPercent:
    """Per-state share of the CPU time elapsed between two samples."""
    total_delta = end.total - start.total
    values = {}
    for name in CPU_FIELDS:
        if total_delta <= 0:
            values[name] = 0.0
            continue
        field_delta = max(end.value(name) - start.value(name), 0.0)
        values[name] = round(field_delta * 100 / total_delta, 2)
    return CpuTimesPercent(**values)


def _check_aligned(start: list, end: list) -> None:
    if len(start) != len(end):
        raise InvalidArgument(
            f"per-cpu samples do not line up ({len(start)} vs {len(end)} cpus); "
            "were they taken across a reboot or cpu hot-plug?"
        )


def per_cpu_percent(start: list[CpuTimes], end: list[CpuTimes]) -> list[float]:
    _check_aligned(start, end)
    return [cpu_percent(s, e) for s, e in zip(start, end)]


def per_cpu_times_percent(
    start: list[CpuTimes], end: list[CpuTimes]
) -> list[CpuTimesPercent]:
    _check_aligned(start, end)
    return [cpu_times_percent(s, e) for s, e in zip(start, end)]


def process_cpu_percent(
    start: ProcessCpuTimes, end: ProcessCpuTimes, elapsed: float
) -> float:
    """
    CPU used by a process over ``elapsed`` wall seconds, as a percentage.

    Multi-threaded processes can exceed 100.0 on multi-core machines.
    """
    if elapsed <= 0:
        return 0.0
    used = max(end.total - start.total, 0.0)
    return round(used / elapsed * 100, 1)


def counter_rates(start, end, elapsed: float) -> dict[str, float]:
    """
    Per-second change of every field of two counter records.

    Counters that went backwards (wrap, device reset) give a 0.0 rate.
    """
    if elapsed <= 0:
        raise InvalidArgument(f"elapsed must be positive (got {elapsed!r})")
    if type(start) is not type(end):
        raise InvalidArgument(
            f"cannot diff {type(start).__name__} against {type(end).__name__}"
        )
    return {
        f.name: max(getattr(end, f.name) - getattr(start, f.name), 0) / elapsed
        for f in fields(end)
    }
