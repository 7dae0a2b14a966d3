"""
Per-frame orchestration of the rPPG pipeline.

Algorithm
---------
For every frame:

1. If the tracker is due (searching, coasting through misses, update or
   rescan interval elapsed), run the face detector, update the track,
   locate the eyes and rebuild the ROI mask when it changed.  Losing the
   track inserts a discontinuity marker into the signal buffer.
2. If a mask exists, append the mean channel value inside it to the
   signal buffer.
3. Every ``1 / estimation_rate`` seconds, provided the current contiguous
   segment is at least ``min_signal_duration`` long: resample, filter,
   estimate the spectral peak and aggregate.  A valid aggregate is
   reported to the observer.

The pipeline is synchronous and not reentrant: deliver one frame at a time.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import numpy as np

from facepulse.aggregator import Aggregator
from facepulse.config import PipelineConfig
from facepulse.detector import CascadeDetector, Detector
from facepulse.extractor import SignalExtractor
from facepulse.filters import make_filter
from facepulse.mask import MaskBuilder, ROIMask
from facepulse.signal_buffer import SignalBuffer
from facepulse.spectral import SpectralEstimator
from facepulse.tracker import EyeLocator, RegionTracker
from facepulse.types import (
    EyeRegions,
    HeartRateEstimate,
    Spectrum,
    TrackedRegion,
    TrackingState,
)

logger = logging.getLogger(__name__)

# observer(timestamp, mean_bpm, min_bpm, max_bpm); timestamp in caller units.
HeartRateObserver = Callable[[int, float, float, float], None]

_EPS = 1e-9


class HeartRatePipeline:
    """
    Heart-rate estimation from a stream of face video frames.

    Parameters
    ----------
    config:
        Pipeline settings; validated on construction.
    face_detector:
        Face :class:`~facepulse.detector.Detector`.
    right_eye_detector:
        Eye detector for the subject's right eye, or for both eyes when
        *left_eye_detector* is omitted.
    left_eye_detector:
        Optional separate detector for the subject's left eye.
    observer:
        Called with ``(timestamp, mean_bpm, min_bpm, max_bpm)`` whenever a
        valid aggregated estimate is available at an estimation tick.
    """

    def __init__(
        self,
        config: PipelineConfig,
        face_detector: Detector,
        right_eye_detector: Detector,
        left_eye_detector: Optional[Detector] = None,
        observer: Optional[HeartRateObserver] = None,
    ) -> None:
        self.config = config.validate()
        self.observer = observer
        frame_size = (config.frame_width, config.frame_height)

        self._face_detector = face_detector
        self._eye_locator = EyeLocator(right_eye_detector, left_eye_detector)
        self._tracker = RegionTracker(
            frame_size,
            rescan_interval=config.rescan_interval,
            update_interval=config.update_interval,
            lost_after_misses=config.lost_after_misses,
            search_margin=config.search_margin,
        )
        self._masks = MaskBuilder(frame_size)
        self._extractor = SignalExtractor(channel=config.channel)
        self._buffer = SignalBuffer(
            sampling_frequency=config.sampling_frequency,
            horizon=config.buffer_duration,
            max_gap=config.max_gap,
        )
        self._filter = make_filter(config)
        self._estimator = SpectralEstimator(
            sampling_frequency=config.sampling_frequency,
            bpm_low=config.min_bpm,
            bpm_high=config.max_bpm,
            min_fft_size=config.min_fft_size,
            noise_floor=config.noise_floor,
        )
        self._aggregator = Aggregator(
            window_size=config.aggregate_size,
            min_estimates=config.min_estimates,
        )
        self._log_level = logging.INFO if config.log else logging.DEBUG

        self._eyes = EyeRegions.invalid()
        self._mask_changed = False
        self._last_tick: Optional[float] = None
        self._last_report: Optional[float] = None
        self._last_spectrum: Optional[Spectrum] = None
        self._last_estimate: Optional[HeartRateEstimate] = None
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        observer: Optional[HeartRateObserver] = None,
    ) -> "HeartRatePipeline":
        """
        Build a pipeline with OpenCV cascade detectors.

        Raises :class:`~facepulse.detector.DetectorLoadError` if a cascade
        cannot be loaded.
        """
        config.validate()
        side = int(min(config.frame_width, config.frame_height) * config.min_face_fraction)
        face = CascadeDetector(config.face_classifier, min_size=(side, side))
        right_eye = CascadeDetector(config.right_eye_classifier)
        left_eye = None
        if config.left_eye_classifier != config.right_eye_classifier:
            left_eye = CascadeDetector(config.left_eye_classifier)
        return cls(config, face, right_eye, left_eye, observer=observer)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> "HeartRatePipeline":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def close(self) -> None:
        """Release all buffered state; the pipeline cannot be used afterwards."""
        if self._closed:
            return
        self.reset()
        self._tracker.reset()
        self._masks.reset()
        self._eyes = EyeRegions.invalid()
        self._closed = True
        logger.info("Pipeline closed.")

    def reset(self) -> None:
        """Clear the signal and the aggregated estimates, keep the track."""
        self._buffer.clear()
        self._aggregator.reset()
        self._last_tick = None
        self._last_report = None
        self._last_spectrum = None
        self._last_estimate = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def region(self) -> TrackedRegion:
        return self._tracker.region

    @property
    def eyes(self) -> EyeRegions:
        return self._eyes

    @property
    def mask(self) -> Optional[ROIMask]:
        return self._masks.mask if self._tracker.region.valid else None

    @property
    def buffer(self) -> SignalBuffer:
        return self._buffer

    @property
    def last_spectrum(self) -> Optional[Spectrum]:
        return self._last_spectrum

    @property
    def last_estimate(self) -> Optional[HeartRateEstimate]:
        return self._last_estimate

    def process_frame(self, color: np.ndarray, gray: np.ndarray, timestamp: int) -> None:
        """
        Feed one frame.

        Parameters
        ----------
        color:
            Colour image (H × W × C).
        gray:
            Grayscale version of the same frame, used for detection.
        timestamp:
            Capture time in ``config.time_base`` units, monotonic.
        """
        if self._closed:
            raise RuntimeError("Pipeline is closed.")
        now = timestamp * self.config.time_base

        if self._tracker.due(now):
            self._update_tracking(gray, now)

        mask = self.mask
        if mask is not None:
            value = self._extractor.extract(color, mask)
            if value is not None:
                self._buffer.append(now, value, jump=self._mask_changed)
                self._mask_changed = False

        if self._tick_due(now):
            self._last_tick = now
            self._estimate(timestamp, now)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_tracking(self, gray: np.ndarray, now: float) -> None:
        before = self._tracker.region
        search = self._tracker.search_region(now)
        if search is None and before.state is TrackingState.TRACKING:
            logger.debug("Full-frame rescan at %.3f s", now)
        candidates = self._face_detector.detect(gray, search)
        region = self._tracker.update(candidates, now)

        if region.state is TrackingState.LOST and before.state is TrackingState.TRACKING:
            self._buffer.mark_discontinuity(now)
            self._aggregator.reset()
            self._last_estimate = None

        if region.valid:
            self._eyes = self._eye_locator.locate(gray, region.box)
            face = region.box
        else:
            self._eyes = EyeRegions.invalid()
            face = None

        changed = self._masks.update(face, self._eyes)
        if changed and face is not None:
            self._mask_changed = True

    def _tick_due(self, now: float) -> bool:
        if self._last_tick is None:
            return True
        return now - self._last_tick >= 1.0 / self.config.estimation_rate - _EPS

    def _estimate(self, timestamp: int, now: float) -> None:
        window = self._buffer.window(self.config.buffer_duration)
        if window is None or window.duration < self.config.min_signal_duration - _EPS:
            logger.debug(
                "Signal too short for estimation (%.2f s)",
                0.0 if window is None else window.duration,
            )
            return

        filtered = self._filter.apply(window)
        spectrum = self._estimator.estimate(filtered)
        self._last_spectrum = spectrum
        raw_bpm = spectrum.bpm
        if raw_bpm is None:
            logger.debug("No spectral peak at %.3f s", now)
            return

        estimate = self._aggregator.push(raw_bpm, timestamp)
        self._last_estimate = estimate
        logger.log(
            self._log_level,
            "raw=%.1f BPM mean=%.1f min=%.1f max=%.1f conf=%.2f n=%d window=%.1f s",
            raw_bpm, estimate.mean_bpm, estimate.min_bpm, estimate.max_bpm,
            spectrum.confidence, estimate.count, window.duration,
        )

        if not estimate.valid or self.observer is None:
            return
        if (
            self._last_report is not None
            and now - self._last_report < self.config.report_interval - _EPS
        ):
            return
        self._last_report = now
        self.observer(timestamp, estimate.mean_bpm, estimate.min_bpm, estimate.max_bpm)
