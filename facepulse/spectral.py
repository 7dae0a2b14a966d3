"""
Spectral heart-rate estimation.

The filtered window is Hann-windowed, zero-padded and transformed with a
real FFT.  Only bins inside the configured BPM band are considered for the
peak; everything else is discarded outright.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from scipy.signal import get_window

from facepulse.types import Spectrum

logger = logging.getLogger(__name__)


class SpectralEstimator:
    """
    Parameters
    ----------
    sampling_frequency:
        Sample rate (Hz) of the filtered windows.
    bpm_low, bpm_high:
        Heart-rate band searched for the peak.
    min_fft_size:
        Windows are zero-padded to at least this length (next power of two)
        for a finer frequency grid.
    noise_floor:
        Peak power at or below this value means "no peak".
    interpolate:
        Refine the peak with parabolic interpolation over the neighbouring
        in-band bins.
    """

    def __init__(
        self,
        sampling_frequency: float = 30.0,
        bpm_low: float = 42.0,
        bpm_high: float = 240.0,
        min_fft_size: int = 2048,
        noise_floor: float = 1e-10,
        interpolate: bool = True,
        window: str = "hann",
    ) -> None:
        self.sampling_frequency = sampling_frequency
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high
        self.min_fft_size = min_fft_size
        self.noise_floor = noise_floor
        self.interpolate = interpolate
        self.window = window

    @property
    def low_hz(self) -> float:
        return self.bpm_low / 60.0

    @property
    def high_hz(self) -> float:
        return self.bpm_high / 60.0

    def fft_size(self, n: int) -> int:
        size = max(n, self.min_fft_size, 1)
        return 1 << (size - 1).bit_length()

    def power_spectrum(self, signal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return the full one-sided ``(frequencies [Hz], power)`` spectrum."""
        signal = np.asarray(signal, dtype=np.float64)
        n = len(signal)
        if n == 0:
            return np.array([]), np.array([])
        tapered = signal * get_window(self.window, n, fftbins=False) if n > 1 else signal
        nfft = self.fft_size(n)
        freqs = np.fft.rfftfreq(nfft, d=1.0 / self.sampling_frequency)
        power = np.abs(np.fft.rfft(tapered, n=nfft)) ** 2
        return freqs, power

    def estimate(self, signal: np.ndarray) -> Spectrum:
        """
        Return the in-band :class:`Spectrum` of *signal*.

        The peak is the first maximum of the band (ties go to the lower
        frequency).
        """
        freqs, power = self.power_spectrum(signal)
        band_mask = (freqs >= self.low_hz) & (freqs <= self.high_hz)
        band_freqs = freqs[band_mask]
        band_power = power[band_mask]

        if len(band_power) == 0:
            logger.debug("No FFT bins inside %.2f – %.2f Hz", self.low_hz, self.high_hz)
            return Spectrum(band_freqs, band_power)

        peak_idx = int(np.argmax(band_power))
        peak_power = float(band_power[peak_idx])
        if not peak_power > self.noise_floor:
            logger.debug("Spectral peak %.3g below noise floor", peak_power)
            return Spectrum(band_freqs, band_power)

        peak_freq = float(band_freqs[peak_idx])
        # An equal right neighbour is a tie; the lower bin stands as is.
        if (
            self.interpolate
            and 0 < peak_idx < len(band_power) - 1
            and band_power[peak_idx + 1] < peak_power
        ):
            peak_freq += self._parabolic_offset(band_power, peak_idx) * (
                band_freqs[1] - band_freqs[0]
            )

        total = float(band_power.sum())
        confidence = peak_power / total if total > 0 else 0.0
        return Spectrum(band_freqs, band_power, peak_freq, confidence)

    @staticmethod
    def _parabolic_offset(power: np.ndarray, idx: int) -> float:
        """Sub-bin peak offset in (-0.5, 0.5) from a parabola through 3 bins."""
        alpha, beta, gamma = power[idx - 1], power[idx], power[idx + 1]
        denom = alpha - 2 * beta + gamma
        if denom == 0:
            return 0.0
        offset = 0.5 * (alpha - gamma) / denom
        return float(np.clip(offset, -0.5, 0.5))
