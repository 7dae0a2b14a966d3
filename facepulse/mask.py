"""
Region-of-interest mask: the face rectangle minus the eye rectangles.

Eyes blink and move, which shows up as large intensity changes unrelated to
the pulse, so they are cut out of the sampled area.  If the eyes were not
found the whole face rectangle is used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from facepulse.types import EyeRegions, Rect


@dataclass(frozen=True, eq=False)
class ROIMask:
    """``uint8`` membership mask (255 inside, 0 outside), frame sized."""

    mask: np.ndarray

    @property
    def pixel_count(self) -> int:
        return int(np.count_nonzero(self.mask))

    @property
    def empty(self) -> bool:
        return self.pixel_count == 0

    def contains(self, x: int, y: int) -> bool:
        height, width = self.mask.shape
        if not (0 <= x < width and 0 <= y < height):
            return False
        return bool(self.mask[y, x])


class MaskBuilder:
    """
    Builds :class:`ROIMask` objects for a fixed frame size.

    :meth:`build` is a pure function of its inputs; :meth:`update` keeps
    the last result and only rebuilds when face or eyes changed.
    """

    def __init__(self, frame_size: Tuple[int, int]) -> None:
        self.width, self.height = frame_size
        self._inputs: Optional[Tuple[Optional[Rect], EyeRegions]] = None
        self._mask: Optional[ROIMask] = None

    @property
    def mask(self) -> Optional[ROIMask]:
        return self._mask

    def build(self, face: Optional[Rect], eyes: EyeRegions) -> Optional[ROIMask]:
        if face is None:
            return None
        data = np.zeros((self.height, self.width), dtype=np.uint8)
        box = face.clip(self.width, self.height)
        data[box.y:box.bottom, box.x:box.right] = 255
        if eyes.valid:
            for eye in (eyes.left, eyes.right):
                if eye is None:
                    continue
                cut = eye.clip(self.width, self.height)
                data[cut.y:cut.bottom, cut.x:cut.right] = 0
        return ROIMask(data)

    def update(self, face: Optional[Rect], eyes: EyeRegions) -> bool:
        """Rebuild the cached mask if the inputs changed; return True if it did."""
        inputs = (face, eyes)
        if inputs == self._inputs:
            return False
        self._inputs = inputs
        self._mask = self.build(face, eyes)
        return True

    def reset(self) -> None:
        self._inputs = None
        self._mask = None
