"""Unit tests for the process-wide minimum-interval gate (pyrate-limiter)."""

from __future__ import annotations

import threading
import time
from typing import List

import pytest

from MjlogKit.Harvest.ratelimit import MinIntervalGate


class TestMinIntervalGate:
    def test_zero_interval_never_waits(self) -> None:
        gate = MinIntervalGate(0)
        assert [gate.acquire() for _ in range(5)] == [0, 0, 0, 0, 0]

    def test_negative_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            MinIntervalGate(-1)

    def test_first_acquire_is_immediate(self) -> None:
        gate = MinIntervalGate(200)
        start = time.monotonic()
        gate.acquire()
        assert time.monotonic() - start < 0.15

    def test_sequential_spacing(self) -> None:
        interval_ms = 60
        gate = MinIntervalGate(interval_ms, poll_interval_s=0.001)
        stamps: List[float] = []
        for _ in range(4):
            gate.acquire()
            stamps.append(time.monotonic())
        elapsed_ms = (stamps[-1] - stamps[0]) * 1000
        assert elapsed_ms >= 3 * interval_ms - 5, elapsed_ms

    def test_spacing_is_global_across_threads(self) -> None:
        """Admissions from many threads are still spaced by the interval."""
        interval_ms = 40
        gate = MinIntervalGate(interval_ms, poll_interval_s=0.001)
        stamps: List[float] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(2):
                with gate:
                    with lock:
                        stamps.append(time.monotonic())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        stamps.sort()
        assert len(stamps) == 8
        elapsed_ms = (stamps[-1] - stamps[0]) * 1000
        assert elapsed_ms >= 7 * interval_ms - 10, elapsed_ms

    def test_acquire_reports_wait(self) -> None:
        gate = MinIntervalGate(50, poll_interval_s=0.001)
        gate.acquire()
        waited = gate.acquire()
        assert waited >= 30
