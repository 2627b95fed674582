"""
Running statistics of the complexities explored by the search.

The histogram biases selection away from over-represented sizes
(adaptive parsimony). It is windowed so early history fades out.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

DEFAULT_WINDOW_SIZE = 100_000
SMALLEST_FREQUENCY_ALLOWED = 1.0
MAX_WINDOW_LOOPS = 1000


@dataclass(slots=True)
class RunningSearchStatistics:
    maxsize: int
    window_size: int = DEFAULT_WINDOW_SIZE
    frequencies: np.ndarray = field(init=False)
    normalized_frequencies: np.ndarray = field(init=False)

    def __post_init__(self) -> None:
        self.frequencies = np.ones(self.maxsize, dtype=float)
        self.normalized_frequencies = self.frequencies / self.frequencies.sum()

    def frequency_of(self, size: int) -> float:
        if 0 < size <= self.maxsize:
            return float(self.normalized_frequencies[size - 1])
        return 0.0

    def update_frequencies(self, size: int) -> None:
        if 0 < size <= len(self.frequencies):
            self.frequencies[size - 1] += 1

    def move_window(self) -> None:
        """Shrink the histogram back to ``window_size`` total counts.

        Counts are removed evenly from every size above the floor of one,
        so no size is ever forgotten entirely.
        """
        frequencies = self.frequencies
        total = frequencies.sum()
        if total <= self.window_size:
            return
        difference = total - self.window_size
        loops = 0
        while difference > 0:
            above_floor = frequencies > SMALLEST_FREQUENCY_ALLOWED
            remaining = int(above_floor.sum())
            if remaining == 0:
                break
            amount = min(difference / remaining, frequencies[above_floor].min() - SMALLEST_FREQUENCY_ALLOWED)
            frequencies[above_floor] -= amount
            subtracted = amount * remaining
            difference -= subtracted
            loops += 1
            if loops > MAX_WINDOW_LOOPS or subtracted < 1e-6:
                break

    def normalize_frequencies(self) -> None:
        self.normalized_frequencies = self.frequencies / self.frequencies.sum()
