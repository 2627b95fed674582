import numpy as np
import pytest

from turbo_sr.adaptive_parsimony import RunningSearchStatistics
from turbo_sr.monitor import ResourceMonitor


class _StepClock:
    def __init__(self, times):
        self._times = iter(times)

    def __call__(self):
        return next(self._times)


def test_monitor_estimates_busy_fraction():
    # construction, then (start, stop) pairs
    clock = _StepClock([0.0, 0.0, 1.0, 2.0, 3.0, 8.0, 9.0])
    monitor = ResourceMonitor(10, clock=clock)
    assert monitor.estimate_work_fraction() == 0.0
    for _ in range(3):
        monitor.start_work()
        monitor.stop_work()
    # busy 1 + 1 + 1 over a span of 9 seconds
    assert monitor.estimate_work_fraction() == pytest.approx(3.0 / 9.0)


def test_monitor_ring_buffer_is_bounded():
    clock = _StepClock([float(t) for t in range(100)])
    monitor = ResourceMonitor(3, clock=clock)
    for _ in range(10):
        monitor.start_work()
        monitor.stop_work()
    assert len(monitor.intervals) == 3


def test_stop_without_start_is_ignored():
    monitor = ResourceMonitor(3)
    monitor.stop_work()
    assert len(monitor.intervals) == 0


def test_frequencies_update_and_normalize():
    stats = RunningSearchStatistics(maxsize=5)
    stats.update_frequencies(2)
    stats.update_frequencies(2)
    stats.update_frequencies(50)  # out of range
    stats.normalize_frequencies()
    assert stats.frequencies.tolist() == [1.0, 3.0, 1.0, 1.0, 1.0]
    assert stats.frequency_of(2) == pytest.approx(3.0 / 7.0)
    assert stats.frequency_of(0) == 0.0
    assert np.isclose(stats.normalized_frequencies.sum(), 1.0)


def test_move_window_shrinks_to_window_size_with_floor():
    stats = RunningSearchStatistics(maxsize=4, window_size=20)
    stats.frequencies[:] = [1.0, 10.0, 20.0, 9.0]
    stats.move_window()
    assert stats.frequencies.sum() == pytest.approx(20.0)
    assert np.all(stats.frequencies >= 1.0)


def test_move_window_noop_below_window():
    stats = RunningSearchStatistics(maxsize=3, window_size=100)
    stats.move_window()
    assert stats.frequencies.tolist() == [1.0, 1.0, 1.0]
