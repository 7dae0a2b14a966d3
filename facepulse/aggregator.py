"""
Aggregation of raw heart-rate estimates.

Single spectral estimates jump around from one window to the next.  The
aggregator keeps the most recent raw values and reports their mean together
with min and max, so consumers see how uncertain the figure is.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional

import numpy as np

from facepulse.types import HeartRateEstimate


class Aggregator:
    """
    Parameters
    ----------
    window_size:
        Number of recent raw estimates kept.
    min_estimates:
        Estimates required before the result is marked valid.
    """

    def __init__(self, window_size: int = 10, min_estimates: int = 3) -> None:
        self.window_size = window_size
        self.min_estimates = min_estimates
        self._history: Deque[float] = deque(maxlen=window_size)

    def __len__(self) -> int:
        return len(self._history)

    def push(self, raw_bpm: Optional[float], timestamp: float) -> HeartRateEstimate:
        """
        Add *raw_bpm* (``None`` adds nothing) and return the current statistics.
        """
        if raw_bpm is not None and np.isfinite(raw_bpm):
            self._history.append(float(raw_bpm))
        return self.current(timestamp)

    def current(self, timestamp: float) -> HeartRateEstimate:
        count = len(self._history)
        if count == 0:
            return HeartRateEstimate(timestamp, 0.0, 0.0, 0.0, valid=False, count=0)
        values = np.fromiter(self._history, dtype=np.float64, count=count)
        low, high = float(values.min()), float(values.max())
        # Keep min <= mean <= max despite float rounding of the mean.
        mean = float(np.clip(values.mean(), low, high))
        return HeartRateEstimate(
            timestamp=timestamp,
            mean_bpm=mean,
            min_bpm=low,
            max_bpm=high,
            valid=count >= self.min_estimates,
            count=count,
        )

    def reset(self) -> None:
        self._history.clear()
