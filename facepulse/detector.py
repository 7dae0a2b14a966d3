"""
Object detectors for faces and eyes.

The pipeline only depends on the :class:`Detector` protocol: given an image
and an optional search region it returns candidate rectangles in image
coordinates, keeping no state between calls.  :class:`CascadeDetector`
implements it with an OpenCV Haar cascade.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from facepulse.types import Rect

logger = logging.getLogger(__name__)


class DetectorLoadError(RuntimeError):
    """A detector resource is missing or could not be loaded."""


class Detector(Protocol):
    def detect(
        self, image: np.ndarray, search_region: Optional[Rect] = None
    ) -> List[Rect]:
        ...


def resolve_cascade(name: str) -> str:
    """
    Return the path of cascade *name*.

    Existing paths are returned unchanged; bare file names are looked up in
    OpenCV's bundled ``haarcascades`` directory.
    """
    if os.path.isfile(name):
        return name
    bundled = os.path.join(cv2.data.haarcascades, os.path.basename(name))
    if os.path.isfile(bundled):
        return bundled
    raise DetectorLoadError(f"Cascade classifier not found: {name!r}")


class CascadeDetector:
    """
    Haar-cascade detector.

    Parameters
    ----------
    resource:
        Path or bundled file name of the cascade XML.
    scale_factor, min_neighbors:
        Forwarded to ``detectMultiScale``.
    min_size:
        Smallest object (width, height) reported, in pixels.
    """

    def __init__(
        self,
        resource: str,
        scale_factor: float = 1.1,
        min_neighbors: int = 2,
        min_size: Tuple[int, int] = (0, 0),
    ) -> None:
        self.path = resolve_cascade(resource)
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size

        try:
            self._classifier = cv2.CascadeClassifier(self.path)
        except cv2.error as exc:
            raise DetectorLoadError(f"Cannot load cascade {self.path!r}: {exc}") from exc
        if self._classifier.empty():
            raise DetectorLoadError(f"Cascade {self.path!r} is empty or invalid")
        logger.info("Loaded cascade %s", os.path.basename(self.path))

    def detect(
        self, image: np.ndarray, search_region: Optional[Rect] = None
    ) -> List[Rect]:
        """
        Detect objects in *image* (grayscale) within *search_region*.

        Rectangles are returned in full-image coordinates.
        """
        height, width = image.shape[:2]
        region = Rect(0, 0, width, height)
        if search_region is not None:
            region = search_region.clip(width, height)
        if region.w < self.min_size[0] or region.h < self.min_size[1]:
            return []
        if region.w == 0 or region.h == 0:
            return []

        crop = image[region.y:region.bottom, region.x:region.right]
        found = self._classifier.detectMultiScale(
            crop,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=self.min_size,
        )
        return offset_rects(found, region.x, region.y)


def offset_rects(found: Sequence, dx: int, dy: int) -> List[Rect]:
    """Convert raw ``(x, y, w, h)`` rows to :class:`Rect` shifted by (dx, dy)."""
    rects = []
    for row in found:
        x, y, w, h = (int(v) for v in row)
        rects.append(Rect(x + dx, y + dy, w, h))
    return rects
