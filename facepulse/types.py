"""
Value types shared by the pipeline stages.

All geometry is in image pixel coordinates, all times inside the pipeline
are seconds (the caller's integer timestamps are converted once, on entry).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

import numpy as np


class Rect(NamedTuple):
    """Axis-aligned rectangle ``(x, y, w, h)``."""

    x: int
    y: int
    w: int
    h: int

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    @property
    def area(self) -> int:
        return self.w * self.h

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.w / 2.0, self.y + self.h / 2.0

    def distance_to(self, other: "Rect") -> float:
        """Euclidean distance between the two centres."""
        (ax, ay), (bx, by) = self.center, other.center
        return float(np.hypot(ax - bx, ay - by))

    def inside(self, width: int, height: int) -> bool:
        """True if the rectangle lies fully within a ``width × height`` frame."""
        return (
            self.w > 0 and self.h > 0
            and self.x >= 0 and self.y >= 0
            and self.right <= width and self.bottom <= height
        )

    def clip(self, width: int, height: int) -> "Rect":
        """Intersection with the frame; may be degenerate (w or h == 0)."""
        x0 = min(max(self.x, 0), width)
        y0 = min(max(self.y, 0), height)
        x1 = min(max(self.right, 0), width)
        y1 = min(max(self.bottom, 0), height)
        return Rect(x0, y0, x1 - x0, y1 - y0)

    def expand(self, fraction: float) -> "Rect":
        """Grow by *fraction* of the size on every side."""
        dx = int(round(self.w * fraction))
        dy = int(round(self.h * fraction))
        return Rect(self.x - dx, self.y - dy, self.w + 2 * dx, self.h + 2 * dy)

    @classmethod
    def from_sequence(cls, values) -> "Rect":
        x, y, w, h = (int(v) for v in values)
        return cls(x, y, w, h)


class TrackingState(enum.Enum):
    SEARCHING = "searching"
    TRACKING = "tracking"
    LOST = "lost"


@dataclass(frozen=True)
class TrackedRegion:
    """
    Snapshot of the face track.

    ``box`` is the last selected face rectangle and is kept while the track
    coasts through missed detections; ``valid`` says whether it may be
    sampled in the current frame.
    """

    box: Optional[Rect] = None
    valid: bool = False
    state: TrackingState = TrackingState.SEARCHING
    updated_at: Optional[float] = None
    rescanned_at: Optional[float] = None
    misses: int = 0


@dataclass(frozen=True)
class EyeRegions:
    """
    Eye rectangles inside the face box.

    Convention: ``right`` is the subject's right eye, which appears on the
    image-left side of the face midline; ``left`` appears on the image-right
    side.
    """

    left: Optional[Rect] = None
    right: Optional[Rect] = None
    valid: bool = False

    @classmethod
    def invalid(cls) -> "EyeRegions":
        return cls()


@dataclass(frozen=True)
class SignalWindow:
    """
    Uniformly resampled signal segment.

    ``steps_removed`` is set when the level steps at ``jumps`` were already
    subtracted from the raw samples before resampling.
    """

    times: np.ndarray
    values: np.ndarray
    jumps: np.ndarray
    sampling_frequency: float
    steps_removed: bool = False

    def __len__(self) -> int:
        return len(self.values)

    @property
    def duration(self) -> float:
        """Time spanned from the first to the last sample, in seconds."""
        if len(self.values) < 2:
            return 0.0
        return (len(self.values) - 1) / self.sampling_frequency


@dataclass(frozen=True)
class Spectrum:
    """
    In-band power spectrum of one filtered window.

    ``peak_frequency`` is ``None`` when no in-band bin rises above the
    noise floor.
    """

    frequencies: np.ndarray
    power: np.ndarray
    peak_frequency: Optional[float] = None
    confidence: float = 0.0

    @property
    def bpm(self) -> Optional[float]:
        if self.peak_frequency is None:
            return None
        return self.peak_frequency * 60.0


@dataclass(frozen=True)
class HeartRateEstimate:
    timestamp: float
    mean_bpm: float
    min_bpm: float
    max_bpm: float
    valid: bool
    count: int = 0
