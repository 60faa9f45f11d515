"""
Novelty Module - Checkerboard Kernel Correlation

Computes one novelty curve per segmentation level by sliding a Gaussian
tapered checkerboard kernel along the diagonal of the similarity matrix.

CONTRACT:
- Output: one float64 curve of length n_frames per level, values in [0, max_scale]
- Past half at frame i: [max(0, i - w), i); future half: [i, min(n, i + w))
- Only existing cells are used; each term is normalized by the kernel
  weight actually covered, so truncation at the edges adds no similarity
- Frame 0 (empty past half) has novelty 0
- Deterministic: same input -> same output
- Returned curves are read-only

ALGORITHM (per frame i):
    within = weighted mean of S over past x past and future x future cells
    cross  = weighted mean of S over past x future cells
    novelty[i] = max(0, within - cross)
Cell weights are g(a) * g(b), g a Gaussian of the offset from the boundary
between frames i - 1 and i, with std = taper * w.
"""

import logging
from typing import Dict, Iterable, Optional

import numpy as np

import config
from segmenter import timebase
from segmenter.analysis_params import LEVELS, NoveltyParams
from segmenter.similarity import SimilarityMatrix

logger = logging.getLogger(__name__)


def checkerboard_weights(half_width: int, taper: float = config.KERNEL_TAPER):
    """
    Full-size kernel weights for a given half-width.

    Parameters:
        half_width: Frames per kernel half (w >= 1)
        taper: Gaussian std relative to w

    Returns:
        Tuple of (same_half, cross_half) weight matrices, each (2w, 2w);
        row/column k corresponds to offset k - w from the current frame
    """
    offsets = np.arange(-half_width, half_width) + 0.5
    sigma = taper * half_width
    g = np.exp(-0.5 * (offsets / sigma) ** 2)
    weights = np.outer(g, g)

    past = offsets < 0
    same = past[:, None] == past[None, :]
    return np.where(same, weights, 0.0), np.where(same, 0.0, weights)


def compute_novelty_curve(matrix: SimilarityMatrix, half_width: int,
                          taper: float = config.KERNEL_TAPER,
                          band: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Novelty curve at one kernel scale.

    Parameters:
        matrix: Similarity matrix
        half_width: Kernel half-width in frames (clamped to >= 1)
        taper: Gaussian std relative to the half-width
        band: Optional precomputed matrix.diagonal_band(width) with width >= 2w

    Returns:
        Read-only (n_frames,) float64 array in [0, max_scale]
    """
    n = matrix.size
    w = max(1, int(half_width))
    novelty = np.zeros(n, dtype=np.float64)
    if n < 2:
        novelty.setflags(write=False)
        return novelty

    if band is None or band.shape[1] < min(2 * w, n):
        band = matrix.diagonal_band(2 * w)

    same_full, cross_full = checkerboard_weights(w, taper)

    # Gather template: cell (a, b) of a block starting at lo is
    # S(lo + max(a, b), lo + min(a, b)) = band[lo + max(a, b), |a - b|]
    rel = np.arange(2 * w)
    rows_t = np.maximum(rel[:, None], rel[None, :])
    lags_t = np.abs(rel[:, None] - rel[None, :])

    for i in range(1, n):
        lo = max(0, i - w)
        hi = min(n, i + w)
        m = hi - lo
        k0 = lo - (i - w)  # first kernel row used

        block = band[lo + rows_t[:m, :m], lags_t[:m, :m]]
        same = same_full[k0:k0 + m, k0:k0 + m]
        cross = cross_full[k0:k0 + m, k0:k0 + m]

        same_weight = same.sum()
        cross_weight = cross.sum()
        if cross_weight <= 0.0 or same_weight <= 0.0:
            continue

        within = np.sum(block * same) / same_weight
        across = np.sum(block * cross) / cross_weight
        novelty[i] = within - across

    np.clip(novelty, 0.0, matrix.max_scale, out=novelty)
    novelty.setflags(write=False)
    return novelty


def compute_level_curves(matrix: SimilarityMatrix, duration_sec: float,
                         params: NoveltyParams = NoveltyParams(),
                         levels: Iterable[str] = LEVELS) -> Dict[str, np.ndarray]:
    """
    Novelty curves for several levels sharing one diagonal band.

    Parameters:
        matrix: Similarity matrix
        duration_sec: Track duration in seconds (sets frames per second)
        params: Kernel half-widths in seconds and taper
        levels: Level names to compute

    Returns:
        Dict mapping level name to its novelty curve
    """
    widths_sec = params.get_widths()
    levels = list(levels)
    half_widths = {
        level: level_half_width(widths_sec[level], matrix.size, duration_sec)
        for level in levels
    }
    if not levels:
        return {}

    band = matrix.diagonal_band(2 * max(half_widths.values()))
    curves = {}
    for level in levels:
        curves[level] = compute_novelty_curve(matrix, half_widths[level], params.taper, band)
        logger.debug("%s novelty: half-width %d frames, peak %.1f",
                     level, half_widths[level], curves[level].max())
    return curves


def level_half_width(seconds: float, n_frames: int, duration_sec: float) -> int:
    """Kernel half-width in frames for a width in seconds (at least 1)."""
    return timebase.seconds_to_frames(seconds, n_frames, duration_sec, minimum=1)
