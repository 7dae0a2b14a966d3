"""
Pipeline configuration.

Every tunable of the tracker, buffer, filters and estimator lives in one
:class:`PipelineConfig`.  Defaults follow the usual rPPG choices: green
channel, 42 – 240 BPM search band, 30 s signal horizon, one heart-rate
estimate per second.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

FILTER_METHODS = ("bandpass", "detrend_mean")
DETREND_METHODS = ("poly", "smoothness_priors", "moving_average")

# The buffer horizon must hold at least this many periods of the slowest
# heart rate in the band.
MIN_HORIZON_PERIODS = 3.0

# Haar cascades bundled with opencv-python (cv2.data.haarcascades).
DEFAULT_FACE_CLASSIFIER = "haarcascade_frontalface_alt.xml"
DEFAULT_LEFT_EYE_CLASSIFIER = "haarcascade_lefteye_2splits.xml"
DEFAULT_RIGHT_EYE_CLASSIFIER = "haarcascade_righteye_2splits.xml"


class ConfigError(ValueError):
    """Raised for an inconsistent :class:`PipelineConfig`."""


@dataclass(frozen=True)
class PipelineConfig:
    """
    Settings for :class:`facepulse.pipeline.HeartRatePipeline`.

    Parameters
    ----------
    frame_width, frame_height:
        Size of the incoming frames in pixels.
    time_base:
        Seconds per timestamp unit passed to ``process_frame``
        (default ``1e-6``: microseconds).
    sampling_frequency:
        Rate (Hz) of the uniform grid the signal is resampled onto.
    estimation_rate:
        Heart-rate estimates per second.  Independent of the frame rate.
    rescan_interval:
        Seconds between forced full-frame face detections while tracking.
    update_interval:
        Seconds between tracking updates around the current box
        (0 = every frame).  Between updates the box, and with it the ROI
        mask, stays fixed.
    lost_after_misses:
        Consecutive empty detections after which the track is dropped.
    search_margin:
        Fraction of the box size added on each side of the search region
        used for tracking updates.
    min_face_fraction:
        Minimum face size as a fraction of the shorter frame side.
    face_classifier, left_eye_classifier, right_eye_classifier:
        Cascade resource identifiers: a path, or a file name looked up in
        OpenCV's bundled cascade directory.  Equal eye classifiers mean a
        single detector searches both eyes.
    channel:
        Colour channel averaged over the ROI (1 = green in RGB and BGR).
    filter_method:
        ``"bandpass"`` (detrend + band-pass) or ``"detrend_mean"``
        (detrend + smoothing + mean-centring).
    detrend_method:
        ``"poly"``, ``"smoothness_priors"`` or ``"moving_average"``.
    detrend_order:
        Polynomial degree for ``"poly"``.
    detrend_lambda:
        Regularisation weight for ``"smoothness_priors"``.
    detrend_window:
        Moving-average length in seconds for ``"moving_average"``.
    smoothing_width:
        Moving-average width in samples of the ``detrend_mean`` pipeline
        (1 disables smoothing).
    filter_order:
        Butterworth order of the band-pass filter.
    min_bpm, max_bpm:
        Heart-rate band.  Used for the band-pass cutoffs and the spectral
        peak search.
    buffer_duration:
        Signal horizon in seconds.
    min_signal_duration:
        Minimum contiguous signal length before estimating.
    max_gap:
        Longer gaps between raw samples split the signal.
    min_fft_size:
        FFT length is zero-padded to at least this many points.
    noise_floor:
        Peak power at or below this value counts as "no peak".
    aggregate_size:
        Number of raw estimates in the rolling statistics window.
    min_estimates:
        Raw estimates required before an aggregate is valid.
    report_interval:
        Minimum seconds between observer notifications (0 = every tick).
    log:
        Log per-tick diagnostics at INFO instead of DEBUG.
    draw:
        Ask the host to outline the tracked boxes on its preview.
    """

    frame_width: int = 640
    frame_height: int = 480
    time_base: float = 1e-6
    sampling_frequency: float = 30.0
    estimation_rate: float = 1.0
    rescan_interval: float = 1.0
    update_interval: float = 1.0
    lost_after_misses: int = 5
    search_margin: float = 0.25
    min_face_fraction: float = 0.4
    face_classifier: str = DEFAULT_FACE_CLASSIFIER
    left_eye_classifier: str = DEFAULT_LEFT_EYE_CLASSIFIER
    right_eye_classifier: str = DEFAULT_RIGHT_EYE_CLASSIFIER
    channel: int = 1
    filter_method: str = "bandpass"
    detrend_method: str = "poly"
    detrend_order: int = 1
    detrend_lambda: float = 100.0
    detrend_window: float = 2.0
    smoothing_width: int = 3
    filter_order: int = 4
    min_bpm: float = 42.0
    max_bpm: float = 240.0
    buffer_duration: float = 30.0
    min_signal_duration: float = 5.0
    max_gap: float = 0.5
    min_fft_size: int = 2048
    noise_floor: float = 1e-10
    aggregate_size: int = 10
    min_estimates: int = 3
    report_interval: float = 0.0
    log: bool = False
    draw: bool = False

    @property
    def min_hz(self) -> float:
        return self.min_bpm / 60.0

    @property
    def max_hz(self) -> float:
        return self.max_bpm / 60.0

    def validate(self) -> "PipelineConfig":
        """Raise :class:`ConfigError` on inconsistent settings; return self."""
        positive = (
            "frame_width", "frame_height", "time_base", "sampling_frequency",
            "estimation_rate", "rescan_interval", "buffer_duration",
            "min_signal_duration", "max_gap", "lost_after_misses",
            "filter_order", "aggregate_size", "min_estimates",
            "smoothing_width", "min_fft_size", "detrend_window",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)!r}")
        if self.update_interval < 0 or self.report_interval < 0:
            raise ConfigError("update_interval and report_interval must be >= 0")
        if not 0 < self.min_bpm < self.max_bpm:
            raise ConfigError(
                f"expected 0 < min_bpm < max_bpm, got {self.min_bpm}, {self.max_bpm}"
            )
        if self.min_hz >= self.sampling_frequency / 2.0:
            raise ConfigError(
                f"min_bpm {self.min_bpm} is above the Nyquist limit of "
                f"{self.sampling_frequency} Hz sampling"
            )
        horizon = MIN_HORIZON_PERIODS / self.min_hz
        if self.buffer_duration < horizon:
            raise ConfigError(
                f"buffer_duration {self.buffer_duration} s cannot resolve "
                f"{self.min_bpm} BPM; need at least {horizon:.1f} s"
            )
        if self.min_signal_duration > self.buffer_duration:
            raise ConfigError("min_signal_duration exceeds buffer_duration")
        if self.min_estimates > self.aggregate_size:
            raise ConfigError("min_estimates exceeds aggregate_size")
        if self.filter_method not in FILTER_METHODS:
            raise ConfigError(
                f"filter_method must be one of {FILTER_METHODS}, got {self.filter_method!r}"
            )
        if self.detrend_method not in DETREND_METHODS:
            raise ConfigError(
                f"detrend_method must be one of {DETREND_METHODS}, got {self.detrend_method!r}"
            )
        if self.detrend_order < 0:
            raise ConfigError("detrend_order must be >= 0")
        if self.lost_after_misses < 1:
            raise ConfigError("lost_after_misses must be >= 1")
        if not 0.0 < self.min_face_fraction <= 1.0:
            raise ConfigError("min_face_fraction must be in (0, 1]")
        if self.search_margin < 0:
            raise ConfigError("search_margin must be >= 0")
        return self

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Return a validated copy with *changes* applied (``None`` values ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes).validate()
