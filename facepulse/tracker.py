"""
Face region tracking.

The face detector keeps no state between calls and may report several
candidates per frame, including false positives.  :class:`RegionTracker`
turns that into one stable face box:

* while nothing is tracked, the largest candidate starts a track;
* while tracking, the candidate nearest (centre distance) to the current
  box wins, so the box does not jump between detections;
* a frame without candidates is a miss.  The box is kept for
  re-acquisition but is not sampled; ``lost_after_misses`` consecutive
  misses, or a box leaving the frame, drop the track (``LOST``);
* a full-frame rescan is forced every ``rescan_interval`` seconds to
  correct drift, otherwise detection is restricted to the area around the
  current box.

:class:`EyeLocator` finds the two eyes in the upper half of the face.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from facepulse.detector import Detector
from facepulse.types import EyeRegions, Rect, TrackedRegion, TrackingState

logger = logging.getLogger(__name__)


def select_nearest(candidates: Sequence[Rect], reference: Rect) -> Rect:
    """Candidate whose centre is closest to *reference*'s centre (first on ties)."""
    return min(candidates, key=reference.distance_to)


def select_largest(candidates: Sequence[Rect]) -> Rect:
    """Largest-area candidate (first on ties)."""
    return max(candidates, key=lambda rect: rect.area)


class RegionTracker:
    """
    Maintains the tracked face region across frames.

    Parameters
    ----------
    frame_size:
        (width, height) of the frames; boxes must stay inside it.
    rescan_interval:
        Seconds between forced full-frame detections.
    update_interval:
        Seconds between tracking updates (0 = every frame).
    lost_after_misses:
        Consecutive empty detections before the track is dropped.
    search_margin:
        Fraction of the box size added on each side of the search region.
    """

    def __init__(
        self,
        frame_size: Tuple[int, int],
        rescan_interval: float = 1.0,
        update_interval: float = 0.0,
        lost_after_misses: int = 5,
        search_margin: float = 0.25,
    ) -> None:
        self.width, self.height = frame_size
        self.rescan_interval = rescan_interval
        self.update_interval = update_interval
        self.lost_after_misses = lost_after_misses
        self.search_margin = search_margin
        self._region = TrackedRegion()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @property
    def region(self) -> TrackedRegion:
        return self._region

    @property
    def tracking(self) -> bool:
        return self._region.state is TrackingState.TRACKING

    def rescan_due(self, now: float) -> bool:
        """True when a tracked face has not been rescanned for ``rescan_interval``."""
        region = self._region
        if not self.tracking or region.rescanned_at is None:
            return False
        return now - region.rescanned_at >= self.rescan_interval

    def due(self, now: float) -> bool:
        """True when the detector has to run for this frame."""
        region = self._region
        if not self.tracking or not region.valid or region.updated_at is None:
            return True
        if self.rescan_due(now):
            return True
        return now - region.updated_at >= self.update_interval

    def search_region(self, now: float) -> Optional[Rect]:
        """Area to run the face detector on; ``None`` means the full frame."""
        region = self._region
        if not self.tracking or region.box is None or self.rescan_due(now):
            return None
        return region.box.expand(self.search_margin).clip(self.width, self.height)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, candidates: Sequence[Rect], now: float) -> TrackedRegion:
        """
        Fold one detector result into the track.

        *candidates* must come from a search over :meth:`search_region`
        evaluated for the same *now*.
        """
        previous = self._region
        full_scan = self.search_region(now) is None
        rescanned_at = now if full_scan else previous.rescanned_at
        candidates = list(candidates)

        if not candidates:
            self._region = self._miss(previous, now, rescanned_at)
            return self._region

        if self.tracking and previous.box is not None:
            box = select_nearest(candidates, previous.box)
        else:
            box = select_largest(candidates)

        if not box.inside(self.width, self.height):
            logger.info("Face box %s left the %dx%d frame; track lost",
                        tuple(box), self.width, self.height)
            self._region = TrackedRegion(
                state=TrackingState.LOST, updated_at=now, rescanned_at=rescanned_at
            )
            return self._region

        if not self.tracking:
            logger.info("Face acquired at %s", tuple(box))
        self._region = TrackedRegion(
            box=box,
            valid=True,
            state=TrackingState.TRACKING,
            updated_at=now,
            rescanned_at=rescanned_at,
            misses=0,
        )
        return self._region

    def reset(self) -> None:
        """Forget the current track."""
        self._region = TrackedRegion()

    def _miss(
        self, previous: TrackedRegion, now: float, rescanned_at: Optional[float]
    ) -> TrackedRegion:
        if not self.tracking:
            return TrackedRegion(
                state=TrackingState.SEARCHING, updated_at=now, rescanned_at=rescanned_at
            )
        misses = previous.misses + 1
        if misses >= self.lost_after_misses:
            logger.info("No face for %d consecutive detections; track lost", misses)
            return TrackedRegion(
                state=TrackingState.LOST, updated_at=now, rescanned_at=rescanned_at,
                misses=misses,
            )
        logger.debug("Face detection missed (%d/%d)", misses, self.lost_after_misses)
        return dataclasses.replace(
            previous, valid=False, updated_at=now, rescanned_at=rescanned_at,
            misses=misses,
        )


class EyeLocator:
    """
    Finds the eyes inside a face box.

    Parameters
    ----------
    right_eye_detector:
        Detector for the subject's right eye (image-left half of the face).
    left_eye_detector:
        Detector for the subject's left eye.  When omitted or identical to
        *right_eye_detector*, one search covers the whole upper half.
    """

    def __init__(
        self,
        right_eye_detector: Detector,
        left_eye_detector: Optional[Detector] = None,
    ) -> None:
        self.right_eye_detector = right_eye_detector
        self.left_eye_detector = left_eye_detector or right_eye_detector

    def locate(self, image: np.ndarray, face: Rect) -> EyeRegions:
        upper = Rect(face.x, face.y, face.w, face.h // 2)
        if self.left_eye_detector is self.right_eye_detector:
            candidates = self.right_eye_detector.detect(image, upper)
        else:
            half = upper.w // 2
            image_left = Rect(upper.x, upper.y, half, upper.h)
            image_right = Rect(upper.x + half, upper.y, upper.w - half, upper.h)
            candidates = (
                list(self.right_eye_detector.detect(image, image_left))
                + list(self.left_eye_detector.detect(image, image_right))
            )
        return self.assign(candidates, face)

    @staticmethod
    def assign(candidates: Sequence[Rect], face: Rect) -> EyeRegions:
        """
        Split *candidates* at the face midline into right/left eye.

        Image-left of the midline is the subject's right eye.  The largest
        candidate on each side is kept.
        """
        if len(candidates) < 2:
            return EyeRegions.invalid()
        midline = face.x + face.w / 2.0
        image_left: List[Rect] = [c for c in candidates if c.center[0] < midline]
        image_right: List[Rect] = [c for c in candidates if c.center[0] >= midline]
        if not image_left or not image_right:
            return EyeRegions.invalid()
        return EyeRegions(
            left=select_largest(image_right),
            right=select_largest(image_left),
            valid=True,
        )
