"""
Per-frame signal extraction.

One scalar per frame: the mean intensity of a single colour channel over
the ROI mask.  Green is the default since it is the most sensitive to
haemoglobin absorption changes.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from facepulse.mask import ROIMask

logger = logging.getLogger(__name__)


class SignalExtractor:
    """
    Parameters
    ----------
    channel:
        Index of the channel to average (1 = green for RGB and BGR frames).
    """

    def __init__(self, channel: int = 1) -> None:
        self.channel = channel
        self._mismatched = set()

    def extract(self, frame: np.ndarray, mask: Optional[ROIMask]) -> Optional[float]:
        """
        Return the mean of the configured channel inside *mask*.

        Returns ``None`` when there is no usable mask for this frame.
        """
        if mask is None or mask.empty:
            return None
        if frame.shape[:2] != mask.mask.shape:
            key = (frame.shape[:2], mask.mask.shape)
            if key not in self._mismatched:
                self._mismatched.add(key)
                logger.warning(
                    "Frame shape %s does not match mask shape %s; skipping such frames",
                    frame.shape[:2], mask.mask.shape,
                )
            return None
        if frame.ndim == 2:
            if self.channel != 0:
                return None
        elif self.channel >= frame.shape[2]:
            return None
        means = cv2.mean(frame, mask=mask.mask)
        return float(means[self.channel])
