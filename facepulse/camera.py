"""
Frame source for the host application.

Wraps OpenCV ``VideoCapture`` (webcam index or video file) and yields
``(color, gray, timestamp_us)`` tuples ready for
:meth:`facepulse.pipeline.HeartRatePipeline.process_frame`.

Live cameras are timestamped with the monotonic clock at capture; video
files use their own presentation timestamps so offline runs reproduce the
recorded timing.
"""

from __future__ import annotations

import logging
import time
from typing import Generator, Optional, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

Frame = Tuple[np.ndarray, np.ndarray, int]


class Webcam:
    """
    Thin wrapper around ``cv2.VideoCapture``.

    Parameters
    ----------
    source:
        Camera index or path of a video file.
    resolution:
        Requested (width, height) of live captures.  Frames of another size
        are resized to it.
    fps:
        Requested capture frame rate.

    Frames are never mirrored: the eye convention in
    :class:`facepulse.types.EyeRegions` assumes the camera's own view.
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
    ) -> None:
        self.source = source
        self.resolution = resolution
        self.fps = fps

        self._cap: Optional[cv2.VideoCapture] = None
        self._is_file = isinstance(source, str)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Initialise and start the capture."""
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open video source {self.source!r}")
        if not self._is_file:
            w, h = self.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cap = cap
        logger.info(
            "Capture opened – source=%r resolution=%s fps=%d",
            self.source, self.resolution, self.fps,
        )

    def close(self) -> None:
        """Stop and release the capture."""
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Capture closed.")

    # Context-manager support
    def __enter__(self) -> "Webcam":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> Optional[Frame]:
        """
        Capture a single frame.

        Returns
        -------
        tuple
            ``(bgr, gray, timestamp_us)``, or *None* on failure.
        """
        if self._cap is None:
            raise RuntimeError("Capture is not open.  Call open() first.")

        ok, frame = self._cap.read()
        if not ok:
            if not self._is_file:
                logger.warning("VideoCapture.read() returned False.")
            return None
        if self._is_file:
            timestamp = int(round(self._cap.get(cv2.CAP_PROP_POS_MSEC) * 1000.0))
        else:
            timestamp = time.monotonic_ns() // 1000

        w, h = self.resolution
        if frame.shape[1] != w or frame.shape[0] != h:
            frame = cv2.resize(frame, (w, h))
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        gray = cv2.equalizeHist(gray)
        return frame, gray, timestamp

    def frames(self) -> Generator[Frame, None, None]:
        """
        Yield frames until the source ends, the capture is closed or reads
        keep failing.

        Usage::

            with Webcam() as cam:
                for color, gray, timestamp in cam.frames():
                    pipeline.process_frame(color, gray, timestamp)
        """
        _null_streak = 0
        while self._cap is not None:
            frame = self.read_frame()
            if frame is None:
                if self._is_file:
                    logger.info("End of video.")
                    break
                _null_streak += 1
                if _null_streak >= 10:
                    logger.error(
                        "Camera returned 10 consecutive None frames – aborting."
                    )
                    break
                continue
            _null_streak = 0
            yield frame
