"""Resilience of the monitor while processes come and go underneath it.

Processes die between listing and reading, become zombies, or reuse a pid.
None of that may stop the polling thread.
"""

import multiprocessing
import random
import sys
import time
from queue import Empty, Queue

import pytest

from proctelemetry.monitor import SystemMonitor, SystemSnapshot

pytestmark = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs /proc")


def dummy_worker(duration: float = 60.0) -> None:
    """Sleep for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


def spawn(count: int, duration: float = 60.0) -> list[multiprocessing.Process]:
    workers = []
    for _ in range(count):
        worker = multiprocessing.Process(target=dummy_worker, args=(duration,))
        worker.start()
        workers.append(worker)
    return workers


def reap(workers: list[multiprocessing.Process]) -> None:
    for worker in workers:
        if worker.is_alive():
            worker.terminate()
        worker.join(timeout=1.0)


class TestChaosMonkey:
    """Chaos verification suite."""

    def test_monitor_survives_process_termination(self):
        """Test random terminations during polling never stop the monitor."""
        workers = spawn(30)
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.2)

        try:
            monitor.start()
            assert queue.get(timeout=5.0) is not None

            for worker in random.sample(workers, 15):
                worker.terminate()
                time.sleep(0.05)

            received = 0
            deadline = time.monotonic() + 3.0
            while time.monotonic() < deadline:
                try:
                    snapshot = queue.get(timeout=1.0)
                except Empty:
                    continue
                assert isinstance(snapshot.processes, list)
                received += 1

            assert monitor.is_running
            assert received > 0
        finally:
            monitor.stop()
            reap(workers)

    def test_collect_processes_skips_terminated_process(self):
        """Test a process that died before the poll is simply absent."""
        [worker] = spawn(1)
        time.sleep(0.1)
        pid = worker.pid
        worker.terminate()
        worker.join(timeout=1.0)

        monitor = SystemMonitor(Queue())
        processes = monitor._collect_processes(monitor._system.virtual_memory().total)

        assert pid not in {proc.pid for proc in processes}
        assert pid not in monitor._handles

    def test_zombie_process_handling(self):
        """Test unreaped children do not break a poll."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.2)
        workers = spawn(5, duration=0.05)

        try:
            # Children exit but stay unreaped until join
            time.sleep(0.3)
            monitor.start()
            for _ in range(3):
                snapshot = queue.get(timeout=5.0)
                assert isinstance(snapshot.processes, list)
            assert monitor.is_running
        finally:
            monitor.stop()
            reap(workers)

    def test_handles_are_dropped_for_dead_processes(self):
        """Test handles of vanished pids do not accumulate between polls."""
        monitor = SystemMonitor(Queue())
        total = monitor._system.virtual_memory().total
        workers = spawn(10)
        try:
            time.sleep(0.1)
            monitor._collect_processes(total)
            pids = {worker.pid for worker in workers}
            assert pids <= set(monitor._handles)
        finally:
            reap(workers)

        monitor._collect_processes(total)
        assert not pids & set(monitor._handles)
