"""
Denoising pipelines for a resampled signal window.

Two interchangeable pipelines, both returning a zero-mean array of the same
length as the window:

``detrend_mean``
    denoise → detrend → moving-average smoothing → mean-centre.
``bandpass``
    denoise → detrend → zero-phase Butterworth band-pass
    (default 0.7 – 4.0 Hz = 42 – 240 BPM) → mean-centre.

References
----------
- Tarvainen M.P. et al., "An advanced detrending method with application
  to HRV analysis." IEEE Trans. Biomed. Eng., 2002.
"""

from __future__ import annotations

import logging
from typing import Union

import numpy as np
from scipy import sparse
from scipy.ndimage import uniform_filter1d
from scipy.signal import butter, sosfiltfilt
from scipy.sparse.linalg import spsolve

from facepulse.config import ConfigError, PipelineConfig
from facepulse.types import SignalWindow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def denoise(values: np.ndarray, jumps: np.ndarray) -> np.ndarray:
    """
    Remove level steps at flagged samples.

    At every index ``i`` with ``jumps[i]`` set, the step ``x[i] - x[i-1]``
    is subtracted from ``x[i:]``, so a change of ROI does not look like a
    large transient to the filters.
    """
    out = np.asarray(values, dtype=np.float64).copy()
    for i in np.flatnonzero(jumps):
        if i == 0:
            continue
        out[i:] -= out[i] - out[i - 1]
    return out


def detrend_poly(values: np.ndarray, order: int = 1) -> np.ndarray:
    """Subtract a least-squares polynomial of degree *order*."""
    n = len(values)
    if n == 0:
        return np.asarray(values, dtype=np.float64)
    order = min(order, n - 1)
    x = np.linspace(-1.0, 1.0, n)
    coeffs = np.polynomial.polynomial.polyfit(x, values, order)
    return values - np.polynomial.polynomial.polyval(x, coeffs)


def detrend_smoothness_priors(values: np.ndarray, lam: float = 100.0) -> np.ndarray:
    """
    Smoothness-priors detrending (Tarvainen et al.).

    The trend solves ``(I + lam² D₂ᵀD₂) z = x`` with ``D₂`` the second
    difference operator; larger *lam* means a smoother trend.
    """
    n = len(values)
    if n < 3:
        return values - np.mean(values) if n else np.asarray(values, dtype=np.float64)
    identity = sparse.identity(n, format="csc")
    d2 = sparse.diags([1.0, -2.0, 1.0], [0, 1, 2], shape=(n - 2, n), format="csc")
    trend = spsolve(identity + lam ** 2 * (d2.T @ d2), values)
    return values - trend


def detrend_moving_average(values: np.ndarray, width: int) -> np.ndarray:
    """Subtract a centred moving average of *width* samples."""
    width = max(1, min(int(width), len(values)))
    return values - uniform_filter1d(values, size=width, mode="nearest")


def detrend(
    values: np.ndarray,
    method: str = "poly",
    order: int = 1,
    lam: float = 100.0,
    width: int = 60,
) -> np.ndarray:
    """Remove baseline drift from *values* with the named *method*."""
    values = np.asarray(values, dtype=np.float64)
    if method == "poly":
        return detrend_poly(values, order)
    if method == "smoothness_priors":
        return detrend_smoothness_priors(values, lam)
    if method == "moving_average":
        return detrend_moving_average(values, width)
    raise ConfigError(f"Unknown detrend method {method!r}")


def build_bandpass(
    fs: float, low_hz: float, high_hz: float, order: int = 4
) -> np.ndarray:
    """Construct a Butterworth bandpass filter (SOS form)."""
    nyq = fs / 2.0
    low = low_hz / nyq
    high = high_hz / nyq
    # Clamp to valid range
    low = max(1e-4, min(low, 0.999))
    high = max(low + 1e-4, min(high, 0.999))
    return butter(order, [low, high], btype="bandpass", output="sos")


def bandpass(values: np.ndarray, sos: np.ndarray) -> np.ndarray:
    """Zero-phase band-pass; short inputs use a reduced edge padding."""
    values = np.asarray(values, dtype=np.float64)
    if len(values) < 2:
        return values.copy()
    zeros_b = int((sos[:, 2] == 0).sum())
    zeros_a = int((sos[:, 5] == 0).sum())
    padlen = 3 * (2 * len(sos) + 1 - min(zeros_b, zeros_a))
    padlen = min(padlen, len(values) - 1)
    return sosfiltfilt(sos, values, padlen=padlen)


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------

class DetrendMeanFilter:
    """
    Denoise, detrend, smooth and mean-centre.

    Parameters
    ----------
    method, order, lam, window_seconds:
        Detrending settings, see :func:`detrend`.
    smoothing_width:
        Moving-average width in samples applied after detrending
        (1 = no smoothing).
    """

    name = "detrend_mean"

    def __init__(
        self,
        method: str = "poly",
        order: int = 1,
        lam: float = 100.0,
        window_seconds: float = 2.0,
        smoothing_width: int = 3,
    ) -> None:
        self.method = method
        self.order = order
        self.lam = lam
        self.window_seconds = window_seconds
        self.smoothing_width = smoothing_width

    def _detrend(self, window: SignalWindow) -> np.ndarray:
        values = window.values if window.steps_removed else denoise(window.values, window.jumps)
        width = int(round(self.window_seconds * window.sampling_frequency))
        return detrend(values, self.method, self.order, self.lam, width)

    def apply(self, window: SignalWindow) -> np.ndarray:
        out = self._detrend(window)
        if self.smoothing_width > 1 and len(out) > 1:
            out = uniform_filter1d(out, size=min(self.smoothing_width, len(out)), mode="nearest")
        return out - np.mean(out) if len(out) else out


class DetrendBandpassFilter(DetrendMeanFilter):
    """
    Denoise, detrend, band-pass and mean-centre.

    The band-pass is rebuilt only when the window's sampling frequency
    changes.
    """

    name = "bandpass"

    def __init__(
        self,
        low_hz: float = 0.7,
        high_hz: float = 4.0,
        filter_order: int = 4,
        method: str = "poly",
        order: int = 1,
        lam: float = 100.0,
        window_seconds: float = 2.0,
    ) -> None:
        super().__init__(method, order, lam, window_seconds, smoothing_width=1)
        self.low_hz = low_hz
        self.high_hz = high_hz
        self.filter_order = filter_order
        self._sos = None
        self._sos_fs = None

    def _filter_for(self, fs: float) -> np.ndarray:
        if self._sos is None or self._sos_fs != fs:
            self._sos = build_bandpass(fs, self.low_hz, self.high_hz, self.filter_order)
            self._sos_fs = fs
        return self._sos

    def apply(self, window: SignalWindow) -> np.ndarray:
        out = self._detrend(window)
        if len(out) == 0:
            return out
        out = bandpass(out, self._filter_for(window.sampling_frequency))
        return out - np.mean(out)


SignalFilter = Union[DetrendMeanFilter, DetrendBandpassFilter]


def make_filter(config: PipelineConfig) -> SignalFilter:
    """Build the pipeline selected by ``config.filter_method``."""
    if config.filter_method == "bandpass":
        return DetrendBandpassFilter(
            low_hz=config.min_hz,
            high_hz=config.max_hz,
            filter_order=config.filter_order,
            method=config.detrend_method,
            order=config.detrend_order,
            lam=config.detrend_lambda,
            window_seconds=config.detrend_window,
        )
    if config.filter_method == "detrend_mean":
        return DetrendMeanFilter(
            method=config.detrend_method,
            order=config.detrend_order,
            lam=config.detrend_lambda,
            window_seconds=config.detrend_window,
            smoothing_width=config.smoothing_width,
        )
    raise ConfigError(f"Unknown filter method {config.filter_method!r}")
