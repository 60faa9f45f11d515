"""
Feature Extractors Module

Per-frame feature extractors consumed by the frame pipeline. Each extractor
is a small stateful object with reset() and consume(frame) -> vector, built
once per run for a fixed sample rate and frame size.

DESIGN CONSTRAINTS:
- consume() is pure with respect to the frame: same frame -> same vector
- Vector length is fixed per extractor for the whole run
- Filterbanks and kernels are precomputed at construction
"""

import logging
from enum import Enum
from typing import Optional

import librosa
import numpy as np
from scipy import fft as scipy_fft
from scipy import sparse
from scipy.signal import windows

from segmenter.analysis_params import AnalysisConfig
from segmenter.errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

# Floor added before the log of mel energies
LOG_FLOOR: float = 1e-10


# =============================================================================
# FEATURE KINDS
# =============================================================================

class FeatureKind(str, Enum):
    """
    Feature families a run can enable.

    Members carry their configuration name as value so they can be used
    interchangeably with the strings stored in AnalysisConfig.extractors.
    """
    MFCC = 'mfcc'
    CQT = 'cqt'
    AUTOCORRELATION = 'autocorrelation'

    @classmethod
    def parse(cls, value) -> 'FeatureKind':
        """Resolve a member from a member or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())

    @property
    def skips_first_coefficient(self) -> bool:
        """Whether distances ignore index 0 (the energy-like coefficient)."""
        return self is not FeatureKind.AUTOCORRELATION

    def vector_length(self, cfg: AnalysisConfig, sample_rate: int) -> int:
        """
        Length of the vectors this kind produces under a configuration.

        Parameters:
            cfg: Analysis configuration
            sample_rate: Source sample rate in Hz

        Returns:
            Vector length
        """
        if self is FeatureKind.MFCC:
            return cfg.mfcc.n_coefficients
        if self is FeatureKind.CQT:
            return cqt_bin_count(cfg.cqt.bins_per_octave, cfg.band.lower_hz,
                                 cfg.band.upper_hz, sample_rate)
        return 1

    def create_extractor(self, cfg: AnalysisConfig, sample_rate: int) -> 'FeatureExtractor':
        """
        Build the extractor for this kind.

        Parameters:
            cfg: Analysis configuration
            sample_rate: Source sample rate in Hz

        Returns:
            A fresh FeatureExtractor
        """
        frame_size = cfg.frame.frame_size
        if self is FeatureKind.MFCC:
            return MFCCExtractor(
                sample_rate, frame_size,
                n_coefficients=cfg.mfcc.n_coefficients,
                n_mels=cfg.mfcc.n_mels,
                lower_hz=cfg.band.lower_hz,
                upper_hz=cfg.band.upper_hz
            )
        if self is FeatureKind.CQT:
            return ConstantQExtractor(
                sample_rate, frame_size,
                bins_per_octave=cfg.cqt.bins_per_octave,
                lower_hz=cfg.band.lower_hz,
                upper_hz=cfg.band.upper_hz,
                threshold=cfg.cqt.threshold
            )
        return AutoCorrelationExtractor(frame_size)


# =============================================================================
# EXTRACTORS
# =============================================================================

class FeatureExtractor:
    """
    Base class for per-frame extractors.

    CONTRACT:
    - Call reset() before processing a new source
    - consume(frame) takes exactly frame_size samples
    - Returned vectors are new float64 arrays of length vector_length
    """

    kind: FeatureKind

    def __init__(self, frame_size: int, vector_length: int) -> None:
        self.frame_size = frame_size
        self.vector_length = vector_length

    def reset(self) -> None:
        """Reset state to initial values."""

    def consume(self, frame: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _check_frame(self, frame: np.ndarray) -> np.ndarray:
        frame = np.asarray(frame, dtype=np.float64)
        if frame.shape != (self.frame_size,):
            raise ValueError(
                f"{self.kind.value} extractor expects {self.frame_size} samples, "
                f"got shape {frame.shape}"
            )
        return frame


def _clip_band(lower_hz: float, upper_hz: float, sample_rate: int):
    nyquist = sample_rate / 2.0
    upper = min(upper_hz, nyquist)
    if upper <= lower_hz:
        raise ConfigurationInvalid(
            f"Filter band [{lower_hz}, {upper_hz}] Hz is empty at sample rate {sample_rate}"
        )
    return lower_hz, upper


class MFCCExtractor(FeatureExtractor):
    """
    Mel-frequency cepstral coefficients of one frame.

    ALGORITHM:
    1. Hann window, power spectrum
    2. Triangular mel filterbank restricted to the filter band
    3. Natural log of band energies
    4. DCT type II (orthonormal), first n_coefficients kept
    """

    kind = FeatureKind.MFCC

    def __init__(self, sample_rate: int, frame_size: int, n_coefficients: int,
                 n_mels: int, lower_hz: float, upper_hz: float) -> None:
        super().__init__(frame_size, n_coefficients)
        fmin, fmax = _clip_band(lower_hz, upper_hz, sample_rate)
        self.n_coefficients = n_coefficients
        self.window = windows.hann(frame_size, sym=False)
        self.mel_filters = librosa.filters.mel(
            sr=sample_rate, n_fft=frame_size, n_mels=n_mels, fmin=fmin, fmax=fmax
        ).astype(np.float64)

    def consume(self, frame: np.ndarray) -> np.ndarray:
        frame = self._check_frame(frame)
        power = np.abs(scipy_fft.rfft(frame * self.window)) ** 2
        log_mel = np.log(self.mel_filters @ power + LOG_FLOOR)
        return scipy_fft.dct(log_mel, type=2, norm='ortho')[:self.n_coefficients]


def cqt_bin_count(bins_per_octave: int, lower_hz: float, upper_hz: float,
                  sample_rate: Optional[int] = None) -> int:
    """
    Number of constant-Q bins covering the filter band.

    Parameters:
        bins_per_octave: Bins per octave
        lower_hz: Lowest bin frequency in Hz
        upper_hz: Upper band edge in Hz
        sample_rate: Clips the band to Nyquist when given

    Returns:
        Bin count (>= 1)
    """
    if sample_rate is not None:
        lower_hz, upper_hz = _clip_band(lower_hz, upper_hz, sample_rate)
    return max(1, int(np.ceil(bins_per_octave * np.log2(upper_hz / lower_hz))))


class ConstantQExtractor(FeatureExtractor):
    """
    Constant-Q magnitude spectrum of one frame.

    Uses the spectral-kernel formulation: each bin's windowed complex
    exponential is transformed once, coefficients below `threshold` are
    dropped, and a frame is analyzed with one FFT plus a sparse product.

    For bin k: f_k = lower * 2^(k / bins_per_octave), window length
    N_k = Q * sr / f_k (clipped to the frame), Q = 1 / (2^(1/bins) - 1).
    """

    kind = FeatureKind.CQT

    def __init__(self, sample_rate: int, frame_size: int, bins_per_octave: int,
                 lower_hz: float, upper_hz: float, threshold: float) -> None:
        n_bins = cqt_bin_count(bins_per_octave, lower_hz, upper_hz, sample_rate)
        super().__init__(frame_size, n_bins)

        q = 1.0 / (2.0 ** (1.0 / bins_per_octave) - 1.0)
        freqs = lower_hz * 2.0 ** (np.arange(n_bins) / bins_per_octave)
        self.frequencies = freqs

        spectral = np.zeros((n_bins, frame_size), dtype=np.complex128)
        for k, f_k in enumerate(freqs):
            n_k = int(min(frame_size, np.ceil(q * sample_rate / f_k)))
            temporal = np.zeros(frame_size, dtype=np.complex128)
            start = (frame_size - n_k) // 2
            n = np.arange(n_k)
            temporal[start:start + n_k] = (
                windows.hann(n_k, sym=False) / n_k * np.exp(2j * np.pi * f_k * n / sample_rate)
            )
            spectral[k] = scipy_fft.fft(temporal)

        spectral[np.abs(spectral) < threshold] = 0.0
        # Conjugate transpose divided by frame size: X @ K gives the CQ bins
        self.kernel = sparse.csr_matrix(np.conj(spectral) / frame_size)
        logger.debug("CQT kernel: %d bins, %d non-zero taps", n_bins, self.kernel.nnz)

    def consume(self, frame: np.ndarray) -> np.ndarray:
        frame = self._check_frame(frame)
        spectrum = scipy_fft.fft(frame)
        return np.abs(self.kernel @ spectrum)


class AutoCorrelationExtractor(FeatureExtractor):
    """Lag-0 autocorrelation (mean energy) of one frame, as a length-1 vector."""

    kind = FeatureKind.AUTOCORRELATION

    def __init__(self, frame_size: int) -> None:
        super().__init__(frame_size, 1)

    def consume(self, frame: np.ndarray) -> np.ndarray:
        frame = self._check_frame(frame)
        return np.array([np.dot(frame, frame) / self.frame_size])
