"""
Structure Detection Module

Picks nested macro/meso/micro boundaries from per-level novelty curves.

DESIGN CONSTRAINTS:
- Top-down: macro first, each finer level starts from every boundary of the
  closest coarser level and only adds to it (macro ⊆ meso ⊆ micro)
- A candidate is dropped when it lies closer than the level's minimum segment
  length to an existing boundary (track start and end included)
- Boundary time of frame i = i * duration / n_frames
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import signal as scipy_signal

from segmenter import timebase
from segmenter.analysis_params import LEVELS, DetectionParams
from segmenter.errors import NotYetComputed

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class Segment:
    """One interval between consecutive boundaries of a level."""
    start: float
    end: float
    level: str

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> Dict:
        return {
            'start_time': self.start,
            'end_time': self.end,
            'duration': self.duration,
            'level': self.level
        }


@dataclass(frozen=True)
class SegmentationResult:
    """
    Hierarchical segmentation of one track.

    Attributes:
        duration: Track duration in seconds
        n_frames: Frame count of the run
        frames: Boundary frame indices per level, ascending, without 0
        times: Boundary times per level in seconds
        segments: Consecutive-boundary intervals per level, covering [0, duration]

    The per-level mappings are read-only views, so a published result
    cannot be edited by its readers.
    """
    duration: float
    n_frames: int
    frames: Mapping[str, Tuple[int, ...]] = field(default_factory=dict)
    times: Mapping[str, Tuple[float, ...]] = field(default_factory=dict)
    segments: Mapping[str, Tuple[Segment, ...]] = field(default_factory=dict)

    def __post_init__(self):
        for name in ('frames', 'times', 'segments'):
            values = {level: tuple(items) for level, items in getattr(self, name).items()}
            object.__setattr__(self, name, MappingProxyType(values))

    @property
    def levels(self) -> Tuple[str, ...]:
        """Levels present in this result, coarsest first."""
        return tuple(level for level in LEVELS if level in self.frames)

    def _check_level(self, level: str) -> None:
        if level not in self.frames:
            raise NotYetComputed(f"Level '{level}' was not detected in this result")

    def boundaries(self, level: str) -> List[float]:
        """Boundary times of a level in seconds."""
        self._check_level(level)
        return list(self.times[level])

    def boundary_frames(self, level: str) -> List[int]:
        self._check_level(level)
        return list(self.frames[level])

    def segments_for(self, level: str) -> List[Segment]:
        self._check_level(level)
        return list(self.segments[level])

    def is_nested(self) -> bool:
        """True if every level's boundaries are contained in the next finer level."""
        present = self.levels
        return all(
            set(self.frames[coarse]) <= set(self.frames[fine])
            for coarse, fine in zip(present, present[1:])
        )

    def to_dict(self) -> Dict:
        return {
            'duration_sec': self.duration,
            'n_frames': self.n_frames,
            'levels': {
                level: {
                    'boundaries': list(self.times[level]),
                    'boundary_frames': list(self.frames[level]),
                    'segments': [s.to_dict() for s in self.segments[level]]
                }
                for level in self.levels
            }
        }


# =============================================================================
# PEAK PICKING
# =============================================================================

def detect_peaks_with_prominence(
    curve: np.ndarray,
    height: float,
    prominence_threshold: float,
    min_distance: int = 1
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Detect peaks in a curve with height and prominence filtering.

    Parameters:
        curve: 1D array
        height: Minimum peak value
        prominence_threshold: Minimum prominence for peaks
        min_distance: Minimum distance between peaks (frames)

    Returns:
        Tuple of (peak_indices, peak_values, prominences)
    """
    peaks, properties = scipy_signal.find_peaks(
        curve,
        height=height,
        prominence=prominence_threshold,
        distance=max(1, int(min_distance))
    )

    prominences = properties['prominences']
    peak_values = curve[peaks]

    return peaks, peak_values, prominences


def significance_threshold(curve: np.ndarray, k: float) -> float:
    """Height threshold mean + k * std of a novelty curve."""
    return float(np.mean(curve) + k * np.std(curve))


def min_segment_frames(half_width: int, fraction: float) -> int:
    """Minimum segment length in frames for a level (at least 1)."""
    return max(1, int(round(fraction * half_width)))


def refine_boundaries(
    base: Sequence[int],
    candidates: Sequence[int],
    strengths: Sequence[float],
    min_gap: int,
    n_frames: int
) -> List[int]:
    """
    Add candidate boundaries to an existing set without collapsing segments.

    Every base boundary is kept. Candidates are considered strongest first
    and accepted when at least `min_gap` frames away from every accepted
    boundary and from the track edges (frame 0 and n_frames).

    Parameters:
        base: Boundaries inherited from the coarser level
        candidates: Candidate frame indices
        strengths: Novelty value of each candidate
        min_gap: Minimum distance in frames
        n_frames: Frame count of the run

    Returns:
        Sorted list of boundary frames
    """
    accepted = sorted(set(int(b) for b in base))
    occupied = np.array([0] + accepted + [n_frames], dtype=np.int64)

    order = np.argsort(-np.asarray(strengths, dtype=np.float64), kind='stable')
    for idx in order:
        c = int(candidates[idx])
        if np.min(np.abs(occupied - c)) < min_gap:
            continue
        accepted.append(c)
        occupied = np.append(occupied, c)

    return sorted(accepted)


# =============================================================================
# DETECTION
# =============================================================================

def detect_level(
    curve: np.ndarray,
    base: Sequence[int],
    max_scale: float,
    threshold_std: float,
    prominence: float,
    min_gap: int
) -> List[int]:
    """
    Boundaries of one level refined on top of a coarser level.

    Parameters:
        curve: Novelty curve of the level
        base: Boundary frames of the closest coarser level
        max_scale: Similarity scale (prominence is a fraction of it)
        threshold_std: k in mean + k * std
        prominence: Minimum prominence as a fraction of max_scale
        min_gap: Minimum segment length in frames

    Returns:
        Sorted boundary frames
    """
    peaks, values, _ = detect_peaks_with_prominence(
        curve,
        height=significance_threshold(curve, threshold_std),
        prominence_threshold=prominence * max_scale,
        min_distance=min_gap
    )
    return refine_boundaries(base, peaks, values, min_gap, len(curve))


def build_result(frames: Mapping[str, Sequence[int]], n_frames: int,
                 duration_sec: float) -> SegmentationResult:
    """Attach times and segments to per-level boundary frames."""
    frames_out, times_out, segments_out = {}, {}, {}
    for level in LEVELS:
        if level not in frames:
            continue
        level_frames = tuple(int(f) for f in frames[level])
        times = tuple(
            timebase.frame_index_to_time(f, n_frames, duration_sec) for f in level_frames
        )
        frames_out[level] = level_frames
        times_out[level] = times
        segments_out[level] = tuple(
            Segment(start, end, level)
            for start, end in timebase.pair_boundaries(list(times), duration_sec)
        )
    return SegmentationResult(duration_sec, n_frames, frames_out, times_out, segments_out)


def detect_structure(
    curves: Mapping[str, np.ndarray],
    n_frames: int,
    duration_sec: float,
    max_scale: float,
    half_widths: Mapping[str, int],
    params: DetectionParams = DetectionParams(),
    inherited: Optional[Mapping[str, Sequence[int]]] = None
) -> SegmentationResult:
    """
    Detect nested boundaries for every level with a curve.

    This is the main entry point for structure detection.

    Parameters:
        curves: Novelty curve per enabled level
        n_frames: Frame count of the run
        duration_sec: Track duration in seconds
        max_scale: Similarity scale
        half_widths: Kernel half-width in frames per level
        params: Detection thresholds
        inherited: Boundary frames of levels without a curve that must be
            kept (from an earlier run on the same matrix)

    Returns:
        SegmentationResult
    """
    inherited = inherited or {}
    frames: Dict[str, List[int]] = {}
    base: List[int] = []

    for level in LEVELS:
        if level in curves:
            curve = np.asarray(curves[level], dtype=np.float64)
            if curve.shape != (n_frames,):
                raise ValueError(
                    f"{level} curve has shape {curve.shape}, expected ({n_frames},)"
                )
            min_gap = min_segment_frames(half_widths[level], params.min_segment_fraction)
            frames[level] = detect_level(
                curve, base, max_scale,
                threshold_std=params.threshold_std(level),
                prominence=params.prominence(level),
                min_gap=min_gap
            )
            logger.debug("%s: %d boundaries (min segment %d frames)",
                         level, len(frames[level]), min_gap)
        elif level in inherited:
            frames[level] = sorted(set(int(f) for f in inherited[level]) | set(base))
        else:
            continue
        base = frames[level]

    result = build_result(frames, n_frames, duration_sec)
    logger.info("Segmentation: %s", ', '.join(
        f"{level}={len(result.frames[level]) + 1} segments" for level in result.levels
    ))
    return result
