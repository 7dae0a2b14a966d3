"""
Bounded, resampling signal buffer.

Frames arrive at irregular, camera-driven intervals.  Raw samples are kept
as they come and resampled on demand onto a uniform grid, which the FFT
downstream needs.

Discontinuity markers split the buffer: nothing before the latest marker
is ever returned, so filters never run across a tracking loss or a long
gap.  Smaller disturbances (the ROI mask moving) are recorded per sample as
*jumps*; their level steps are removed from the raw samples with
:func:`facepulse.filters.denoise` before interpolation, since a grid point
between two raw samples would otherwise carry part of the step.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np

from facepulse.filters import denoise
from facepulse.types import SignalWindow

logger = logging.getLogger(__name__)

# Tolerance for float grid arithmetic (seconds).
_EPS = 1e-9


class SignalBuffer:
    """
    Parameters
    ----------
    sampling_frequency:
        Rate (Hz) of the uniform output grid.
    horizon:
        Seconds of raw samples kept; older samples are evicted.
    max_gap:
        A gap longer than this between two raw samples inserts a
        discontinuity marker instead of being interpolated.
    """

    def __init__(
        self,
        sampling_frequency: float = 30.0,
        horizon: float = 30.0,
        max_gap: float = 0.5,
    ) -> None:
        self.sampling_frequency = sampling_frequency
        self.horizon = horizon
        self.max_gap = max_gap

        self._times: Deque[float] = deque()
        self._values: Deque[float] = deque()
        self._jumps: Deque[bool] = deque()
        self._markers: Deque[float] = deque()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._values)

    @property
    def markers(self) -> list:
        return list(self._markers)

    @property
    def latest_time(self) -> Optional[float]:
        return self._times[-1] if self._times else None

    def append(self, timestamp: float, value: float, jump: bool = False) -> None:
        """
        Add a raw sample taken at *timestamp* seconds.

        A sample at the newest stored timestamp overwrites it; an older one
        is dropped.
        """
        if self._times:
            last = self._times[-1]
            if abs(timestamp - last) <= _EPS:
                self._values[-1] = float(value)
                self._jumps[-1] = self._jumps[-1] or jump
                return
            if timestamp < last:
                logger.debug("Dropping out-of-order sample at %.6f (< %.6f)", timestamp, last)
                return
            if timestamp - last > self.max_gap:
                logger.debug("Gap of %.3f s in signal; splitting", timestamp - last)
                self.mark_discontinuity(timestamp)

        self._times.append(float(timestamp))
        self._values.append(float(value))
        self._jumps.append(bool(jump))
        self._evict(timestamp)

    def mark_discontinuity(self, timestamp: float) -> None:
        """Samples before *timestamp* are not combined with later ones."""
        if self._markers and timestamp <= self._markers[-1]:
            return
        self._markers.append(float(timestamp))

    @property
    def segment_duration(self) -> float:
        """Duration of the current contiguous segment after resampling."""
        window = self.window()
        return 0.0 if window is None else window.duration

    def window(self, duration: Optional[float] = None) -> Optional[SignalWindow]:
        """
        Resample the current segment onto the uniform grid.

        Parameters
        ----------
        duration:
            Only the trailing *duration* seconds of the segment are used.

        Level steps at flagged raw samples are removed before resampling.
        Returns ``None`` when the segment holds fewer than two samples.
        """
        times = np.fromiter(self._times, dtype=np.float64, count=len(self._times))
        values = np.fromiter(self._values, dtype=np.float64, count=len(self._values))
        jumps = np.fromiter(self._jumps, dtype=bool, count=len(self._jumps))

        start_index = 0
        if self._markers:
            start_index = int(np.searchsorted(times, self._markers[-1] - _EPS, side="left"))
        if duration is not None and len(times):
            cutoff = times[-1] - duration
            start_index = max(start_index, int(np.searchsorted(times, cutoff - _EPS, side="left")))
        times, values, jumps = times[start_index:], values[start_index:], jumps[start_index:]

        if len(times) < 2:
            return None

        values = denoise(values, jumps)
        step = 1.0 / self.sampling_frequency
        count = int(np.floor((times[-1] - times[0]) * self.sampling_frequency + _EPS)) + 1
        grid = times[0] + np.arange(count) * step
        resampled = np.interp(grid, times, values)

        grid_jumps = np.zeros(count, dtype=bool)
        for t in times[jumps]:
            index = int(np.searchsorted(grid, t - _EPS, side="left"))
            if 0 < index < count:
                grid_jumps[index] = True

        return SignalWindow(
            times=grid,
            values=resampled,
            jumps=grid_jumps,
            sampling_frequency=self.sampling_frequency,
            steps_removed=True,
        )

    def clear(self) -> None:
        self._times.clear()
        self._values.clear()
        self._jumps.clear()
        self._markers.clear()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _evict(self, now: float) -> None:
        limit = now - self.horizon
        while self._times and self._times[0] < limit - _EPS:
            self._times.popleft()
            self._values.popleft()
            self._jumps.popleft()
        oldest = self._times[0] if self._times else now
        # A marker at or before the oldest sample no longer splits anything.
        while self._markers and self._markers[0] <= oldest:
            self._markers.popleft()
