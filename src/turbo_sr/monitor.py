"""Occupancy tracking for the search controller."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Tuple


class ResourceMonitor:
    """Ring buffer of the controller's busy intervals.

    ``estimate_work_fraction`` reports how much of the recent wall-clock time
    the controller spent processing results rather than waiting for workers.
    """

    def __init__(self, num_intervals_to_store: int, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.absolute_start_time = clock()
        self.intervals: Deque[Tuple[float, float]] = deque(maxlen=max(1, num_intervals_to_store))
        self._work_start: float | None = None

    def start_work(self) -> None:
        self._work_start = self._clock()

    def stop_work(self) -> None:
        if self._work_start is None:
            return
        self.intervals.append((self._work_start, self._clock()))
        self._work_start = None

    def estimate_work_fraction(self) -> float:
        if len(self.intervals) < 2:
            return 0.0
        busy = sum(end - start for start, end in self.intervals)
        span = self.intervals[-1][1] - self.intervals[0][0]
        if span <= 0:
            return 0.0
        return busy / span
