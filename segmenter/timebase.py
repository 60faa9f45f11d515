"""
Timebase Module - Canonical Frame Axis Utilities

Provides the deterministic frame count and the frame-index/time conversions
shared by every stage, and guarantees that all timestamps stay within track
duration bounds.

DESIGN CONSTRAINTS:
- duration_sec is the source of truth for boundary times
- Frame i starts at sample i * hop, hop = frame_size - overlap
- Frame count: n = ceil((total - frame_size) / (frame_size - overlap + 1)) + 1
- Boundary time of frame i: t[i] = i * duration / n, so t[i] < duration
- No config imports (explicit parameters only)
"""

from typing import List, Tuple

import numpy as np


# =============================================================================
# CONSTANTS
# =============================================================================

EPSILON_SEC: float = 1e-6  # Floating point tolerance for comparisons


# =============================================================================
# CORE FUNCTIONS
# =============================================================================

def compute_frame_count(total_samples: int, frame_size: int, overlap: int) -> int:
    """
    Compute the number of analysis frames for a source.

    CONTRACT:
    - Input: total_samples >= frame_size > overlap >= 0
    - Output: frame count >= 1
    - Deterministic

    Parameters:
        total_samples: Total source length in samples
        frame_size: Samples per frame
        overlap: Samples shared between consecutive frames

    Returns:
        Number of frames, or 0 if the source is shorter than one frame

    Raises:
        ValueError: If frame_size/overlap are inconsistent
    """
    if frame_size <= 0 or overlap < 0 or overlap >= frame_size:
        raise ValueError(
            f"Invalid framing: frame_size={frame_size}, overlap={overlap}"
        )
    if total_samples < frame_size:
        return 0

    # Integer ceiling avoids float rounding on very long sources
    numerator = total_samples - frame_size
    denominator = frame_size - overlap + 1
    return -(-numerator // denominator) + 1


def frame_start_sample(frame_idx: int, frame_size: int, overlap: int) -> int:
    """First sample of a frame."""
    return frame_idx * (frame_size - overlap)


def frames_per_second(n_frames: int, duration_sec: float) -> float:
    """
    Frame rate of a run.

    Parameters:
        n_frames: Frame count of the run
        duration_sec: Track duration in seconds

    Returns:
        Frames per second (0.0 for an empty run)
    """
    if n_frames <= 0 or duration_sec <= 0:
        return 0.0
    return n_frames / duration_sec


def seconds_to_frames(seconds: float, n_frames: int, duration_sec: float,
                      minimum: int = 1) -> int:
    """
    Convert a time span to a frame count at the run's frame rate.

    Parameters:
        seconds: Time span in seconds
        n_frames: Frame count of the run
        duration_sec: Track duration in seconds
        minimum: Lower bound of the result

    Returns:
        Rounded frame count, at least `minimum`
    """
    fps = frames_per_second(n_frames, duration_sec)
    return max(minimum, int(round(seconds * fps)))


def frame_index_to_time(frame_idx: int, n_frames: int, duration_sec: float) -> float:
    """
    Convert a frame index to a boundary time.

    Parameters:
        frame_idx: Frame index (0-based)
        n_frames: Frame count of the run
        duration_sec: Track duration in seconds

    Returns:
        Time in seconds, clamped to [0, duration_sec]
    """
    if n_frames <= 0:
        return 0.0
    time = frame_idx * duration_sec / n_frames
    clamped, _ = clamp_time(time, duration_sec)
    return clamped


def compute_frame_time_axis(n_frames: int, duration_sec: float) -> np.ndarray:
    """
    Time of every frame boundary.

    Parameters:
        n_frames: Frame count of the run
        duration_sec: Track duration in seconds

    Returns:
        Array of frame times (n_frames,), monotonically increasing, < duration
    """
    if n_frames <= 0:
        return np.array([], dtype=np.float64)
    return np.arange(n_frames, dtype=np.float64) * (duration_sec / n_frames)


# =============================================================================
# CLAMPING HELPERS
# =============================================================================

def clamp_time(time: float, duration_sec: float,
               epsilon: float = EPSILON_SEC) -> Tuple[float, bool]:
    """
    Clamp a timestamp to the valid range [0, duration_sec].

    Parameters:
        time: Timestamp in seconds
        duration_sec: Track duration in seconds
        epsilon: Tolerance for out-of-bounds detection

    Returns:
        Tuple of (clamped_time, was_clamped)
    """
    if time < 0:
        return 0.0, True
    if time > duration_sec + epsilon:
        return float(duration_sec), True
    return float(min(time, duration_sec)), False


def pair_boundaries(boundaries: List[float],
                    duration_sec: float) -> List[Tuple[float, float]]:
    """
    Turn ordered boundary times into consecutive segment intervals.

    The track start and end are implicit boundaries, so k interior
    boundaries always produce k + 1 segments covering [0, duration].

    Parameters:
        boundaries: Ordered boundary times in seconds
        duration_sec: Track duration in seconds

    Returns:
        List of (start, end) tuples
    """
    edges = [0.0]
    for t in boundaries:
        t, _ = clamp_time(t, duration_sec)
        if t - edges[-1] > EPSILON_SEC and duration_sec - t > EPSILON_SEC:
            edges.append(t)
    edges.append(float(duration_sec))
    return [(edges[k], edges[k + 1]) for k in range(len(edges) - 1)]


def is_valid_frame_index(frame_idx: int, n_frames: int) -> bool:
    return 0 <= frame_idx < n_frames
