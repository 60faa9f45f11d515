"""
Audio I/O Module

Handles audio loading, preprocessing, and frame-by-frame reading.
All operations are deterministic and reproducible.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

import librosa
import numpy as np

import config
from segmenter.errors import SourceUnavailable

logger = logging.getLogger(__name__)


class AudioSource:
    """
    Mono PCM source read sequentially in fixed-size frames.

    CONTRACT:
    - samples is a read-only 1D float32 array
    - total_frames is the source length in samples
    - read_frames() yields frame_size samples per frame, mirrored at the end
    """

    def __init__(self, samples: np.ndarray, sample_rate: int,
                 name: str = 'array', metadata: Optional[Dict] = None) -> None:
        samples = np.array(samples, dtype=np.float32)
        if samples.ndim != 1:
            raise SourceUnavailable(f"Expected mono samples, got shape {samples.shape}")
        if sample_rate <= 0:
            raise SourceUnavailable(f"Invalid sample rate: {sample_rate}")
        samples.setflags(write=False)
        self.samples = samples
        self.sample_rate = int(sample_rate)
        self.name = name
        self.metadata = metadata or {}

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def from_array(cls, samples: np.ndarray, sample_rate: int,
                   name: str = 'array') -> 'AudioSource':
        """Wrap an in-memory signal (multi-channel input is averaged to mono)."""
        samples = convert_to_mono(np.asarray(samples, dtype=np.float32))
        return cls(samples, sample_rate, name=name)

    @classmethod
    def from_file(cls, file_path: Union[str, Path],
                  target_sr: Optional[int] = None,
                  normalize: bool = True) -> 'AudioSource':
        """
        Decode an audio file into a source.

        Pipeline: load -> mono -> resample (optional) -> peak normalize (optional)

        Parameters:
            file_path: Path to audio file
            target_sr: Target sample rate (None = config default, which keeps native)
            normalize: Apply peak normalization

        Returns:
            AudioSource

        Raises:
            SourceUnavailable: If the file is missing or cannot be decoded
        """
        if target_sr is None:
            target_sr = config.TARGET_SAMPLE_RATE

        path = Path(file_path)
        if not path.exists():
            raise SourceUnavailable(f"Audio file not found: {path}")

        try:
            audio, sr = librosa.load(str(path), sr=None, mono=True)
        except Exception as e:
            raise SourceUnavailable(f"Cannot decode {path.name}: {e}") from e

        metadata = {'original_sr': int(sr), 'resampled': False}
        audio = audio.astype(np.float32)

        if target_sr is not None and sr != target_sr:
            audio = resample_audio(audio, sr, target_sr)
            sr = target_sr
            metadata['resampled'] = True

        if normalize:
            audio, factor = normalize_audio(audio)
            metadata['normalization_factor'] = float(factor)

        logger.info("Loaded %s: %.2fs at %d Hz", path.name, len(audio) / sr, sr)
        return cls(audio, sr, name=path.stem, metadata=metadata)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def total_frames(self) -> int:
        """Source length in samples."""
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Source duration in seconds."""
        return self.total_frames / self.sample_rate

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read_frames(self, frame_size: int, overlap: int) -> Iterator[np.ndarray]:
        """
        Yield consecutive frames from the start of the source.

        Frame i covers samples [i * hop, i * hop + frame_size), hop =
        frame_size - overlap. Frames overhanging the end are padded by
        reflecting the last samples, so the tail frame keeps the level of
        the signal rather than decaying to silence. Reading stops once a
        frame would start past the last sample.

        Parameters:
            frame_size: Samples per frame
            overlap: Samples shared between consecutive frames

        Yields:
            float32 arrays of length frame_size
        """
        hop = frame_size - overlap
        start = 0
        while start < self.total_frames:
            frame = self.samples[start:start + frame_size]
            if frame.shape[0] < frame_size:
                frame = np.pad(frame, (0, frame_size - frame.shape[0]), mode='reflect')
            yield frame
            start += hop


def convert_to_mono(audio: np.ndarray) -> np.ndarray:
    """
    Convert multi-channel audio to mono by averaging channels.

    Parameters:
        audio: Audio array (1D mono, or 2D in (samples, channels) or
            (channels, samples) layout)

    Returns:
        Mono audio array (1D)

    Raises:
        SourceUnavailable: If audio shape is unexpected
    """
    # Guard: already mono
    if audio.ndim == 1:
        return audio

    # Guard: unexpected shape
    if audio.ndim != 2:
        raise SourceUnavailable(f"Unexpected audio shape: {audio.shape}")

    # The longer axis holds the samples
    is_samples_first = audio.shape[0] >= audio.shape[1]
    return np.mean(audio, axis=1 if is_samples_first else 0)


def resample_audio(audio: np.ndarray, orig_sr: int, target_sr: int) -> np.ndarray:
    """
    Resample audio to target sample rate.

    Parameters:
        audio: Audio array
        orig_sr: Original sample rate (Hz)
        target_sr: Target sample rate (Hz)

    Returns:
        Resampled audio array
    """
    if orig_sr == target_sr:
        return audio
    return librosa.resample(audio, orig_sr=orig_sr, target_sr=target_sr).astype(np.float32)


def normalize_audio(audio: np.ndarray):
    """
    Peak-normalize audio so the max absolute value is 1.0.

    Parameters:
        audio: Audio array

    Returns:
        Tuple of (normalized_audio, normalization_factor)
    """
    peak = np.abs(audio).max() if audio.size else 0.0
    if peak == 0:
        # Silent audio
        return audio, 1.0
    factor = 1.0 / peak
    return (audio * factor).astype(np.float32), factor


def validate_audio(source: AudioSource, frame_size: int,
                   max_duration: Optional[float] = None) -> None:
    """
    Validate a source before analysis.

    Parameters:
        source: Source to validate
        frame_size: Samples per analysis frame
        max_duration: Maximum allowed duration in seconds (None = use config)

    Raises:
        SourceUnavailable: If the source cannot be analyzed
    """
    if max_duration is None:
        max_duration = config.MAX_TRACK_DURATION_SEC

    if source.total_frames == 0:
        raise SourceUnavailable("Audio source is empty")

    if not np.isfinite(source.samples).all():
        raise SourceUnavailable("Audio contains NaN or infinite values")

    if source.total_frames < frame_size:
        raise SourceUnavailable(
            f"Audio too short: {source.total_frames} samples, "
            f"at least one frame of {frame_size} samples required"
        )

    if source.duration > max_duration:
        raise SourceUnavailable(
            f"Audio duration ({source.duration:.1f}s) exceeds maximum "
            f"({max_duration:.1f}s)"
        )
