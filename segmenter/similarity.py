"""
Similarity Matrix Module

Blends per-kind frame distances into one normalized self-similarity matrix.

DESIGN CONSTRAINTS:
- Only the lower triangle including the diagonal is stored (packed rows,
  row i at offset i * (i + 1) / 2); (i, j) with j > i reads through symmetry
- Values lie in [0, max_scale], diagonal = max_scale, higher = more similar
- Published arrays are read-only; a new build replaces the matrix wholesale
- Parallel row ranges produce the same bits as one sequential pass

ALGORITHM:
1. Distance pass (parallel row ranges): per kind, d(i, j) for j <= i and the
   range's local min/max
2. Reduction: global min/max per kind
3. Normalization pass:
   score = max_scale - sum_k ((d_k - min_k) / (max_k - min_k)) * (max_scale / K)
   A kind with max_k == min_k contributes zero and emits DegenerateNormalization.
   Each kind's distance buffer is normalized in place and subtracted from
   the score array, so the pass allocates nothing beyond the result.

A set `abandon` event stops the build between row ranges with
AnalysisAbandoned.
"""

import logging
import os
import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

import config
from segmenter.errors import AnalysisAbandoned, DegenerateNormalization, InvalidFeatureRequest
from segmenter.extractors import FeatureKind

logger = logging.getLogger(__name__)


def packed_offset(row: int) -> int:
    """Start of a row in packed lower-triangular storage."""
    return row * (row + 1) // 2


def packed_size(n: int) -> int:
    """Number of stored cells of an n x n lower-triangular matrix."""
    return n * (n + 1) // 2


# =============================================================================
# MATRIX CONTAINER
# =============================================================================

class SimilarityMatrix:
    """
    Immutable symmetric similarity matrix backed by packed lower-triangular storage.

    Example:
        sim = build_similarity_matrix(features)
        sim[3, 1] == sim[1, 3]
        sim.row(3)  # similarities of frame 3 to frames 0..3
    """

    def __init__(self, packed: np.ndarray, size: int, max_scale: float) -> None:
        if packed.shape != (packed_size(size),):
            raise ValueError(
                f"Packed array of shape {packed.shape} does not hold a {size}x{size} matrix"
            )
        if packed.flags.writeable:
            packed = packed.copy()
            packed.setflags(write=False)
        self.packed = packed
        self.size = size
        self.max_scale = float(max_scale)

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, index: Tuple[int, int]) -> float:
        i, j = index
        if not (0 <= i < self.size and 0 <= j < self.size):
            raise IndexError(f"({i}, {j}) outside a {self.size}x{self.size} matrix")
        if j > i:
            i, j = j, i
        return float(self.packed[packed_offset(i) + j])

    def row(self, i: int) -> np.ndarray:
        """Stored cells of row i: similarities to frames 0..i (read-only view)."""
        if not (0 <= i < self.size):
            raise IndexError(f"Row {i} outside [0, {self.size})")
        start = packed_offset(i)
        return self.packed[start:start + i + 1]

    def diagonal(self) -> np.ndarray:
        idx = np.arange(self.size)
        return self.packed[packed_offset(idx) + idx]

    def to_dense(self) -> np.ndarray:
        """Full symmetric (size, size) array."""
        dense = np.zeros((self.size, self.size), dtype=self.packed.dtype)
        rows, cols = np.tril_indices(self.size)
        dense[rows, cols] = self.packed
        dense[cols, rows] = self.packed
        return dense

    def diagonal_band(self, width: int) -> np.ndarray:
        """
        Cells within `width` of the diagonal, indexed by lag.

        Parameters:
            width: Number of lags kept (lag 0 is the diagonal)

        Returns:
            (size, width) array with band[i, d] = S(i, i - d); cells with
            i - d < 0 do not exist and are 0
        """
        width = max(1, min(width, self.size))
        band = np.zeros((self.size, width), dtype=np.float64)
        for i in range(self.size):
            k = min(i + 1, width)
            band[i, :k] = self.row(i)[::-1][:k]
        return band


# =============================================================================
# DISTANCES
# =============================================================================

def row_distances(kind: FeatureKind, features: np.ndarray, i: int) -> np.ndarray:
    """
    Distances from frame i to frames 0..i for one kind.

    MFCC and CQT: Euclidean norm of coefficient differences, index 0 skipped.
    Autocorrelation: sqrt(|a_i[0] - a_j[0]|).

    Parameters:
        kind: Feature kind
        features: (n_frames, vector_length) array
        i: Row index

    Returns:
        (i + 1,) float64 array
    """
    if kind.skips_first_coefficient:
        diff = features[:i + 1, 1:] - features[i, 1:]
        return np.sqrt(np.sum(diff * diff, axis=1))
    return np.sqrt(np.abs(features[:i + 1, 0] - features[i, 0]))


def _distance_range(kinds: List[FeatureKind], features: List[np.ndarray],
                    out: List[np.ndarray], start: int, stop: int,
                    abandon: Optional[threading.Event] = None
                    ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fill packed distances of rows [start, stop) for every kind.

    Each call writes a disjoint slice of `out`, so ranges can run concurrently.

    Returns:
        Tuple of (local_min, local_max), one entry per kind
    """
    if abandon is not None and abandon.is_set():
        raise AnalysisAbandoned(f"Similarity build abandoned at row {start}")
    local_min = np.full(len(kinds), np.inf)
    local_max = np.full(len(kinds), -np.inf)
    for i in range(start, stop):
        offset = packed_offset(i)
        for k, kind in enumerate(kinds):
            d = row_distances(kind, features[k], i)
            out[k][offset:offset + i + 1] = d
            local_min[k] = min(local_min[k], d.min())
            local_max[k] = max(local_max[k], d.max())
    return local_min, local_max


def _row_ranges(n: int, rows_per_task: int) -> List[Tuple[int, int]]:
    return [(start, min(n, start + rows_per_task)) for start in range(0, n, rows_per_task)]


# =============================================================================
# BUILDER
# =============================================================================

def build_similarity_matrix(
    features: Mapping,
    max_scale: float = config.MAX_SCALE,
    n_workers: int = config.N_WORKERS,
    rows_per_task: int = config.ROWS_PER_TASK,
    epsilon: float = config.DEGENERATE_RANGE_EPSILON,
    abandon: Optional[threading.Event] = None
) -> SimilarityMatrix:
    """
    Blend per-kind distances into a normalized similarity matrix.

    Parameters:
        features: Mapping of FeatureKind (or name) to (n_frames, vector_length)
            arrays, in enabling order; all kinds share n_frames
        max_scale: Score of identical frames
        n_workers: Worker threads (0 = CPU count, 1 = sequential)
        rows_per_task: Rows per worker task
        epsilon: Min/max ranges at or below this are degenerate
        abandon: Event checked before each row range

    Returns:
        SimilarityMatrix

    Raises:
        InvalidFeatureRequest: If no kind is given or frame counts differ
        AnalysisAbandoned: If `abandon` is set during the distance pass
    """
    if not features:
        raise InvalidFeatureRequest("At least one feature kind is required")

    kinds = [FeatureKind.parse(kind) for kind in features]
    arrays = [np.asarray(features[key], dtype=np.float64) for key in features]
    arrays = [a.reshape(-1, 1) if a.ndim == 1 else a for a in arrays]

    n = arrays[0].shape[0]
    if n == 0:
        raise InvalidFeatureRequest("Feature sequences are empty")
    for kind, array in zip(kinds, arrays):
        if array.shape[0] != n:
            raise InvalidFeatureRequest(
                f"{kind.value} has {array.shape[0]} frames, expected {n}"
            )

    # Distance pass
    distances = [np.empty(packed_size(n), dtype=np.float64) for _ in kinds]
    ranges = _row_ranges(n, rows_per_task)
    if n_workers == 0:
        n_workers = os.cpu_count() or 1
    n_workers = min(n_workers, len(ranges))

    if n_workers <= 1:
        partials = [_distance_range(kinds, arrays, distances, start, stop, abandon)
                    for start, stop in ranges]
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            futures = [pool.submit(_distance_range, kinds, arrays, distances,
                                   start, stop, abandon)
                       for start, stop in ranges]
            try:
                partials = [future.result() for future in futures]
            except AnalysisAbandoned:
                for future in futures:
                    future.cancel()
                raise

    # Reduction
    d_min = np.min([p[0] for p in partials], axis=0)
    d_max = np.max([p[1] for p in partials], axis=0)

    # Normalization pass
    coefficient = max_scale / len(kinds)
    scores = np.full(packed_size(n), float(max_scale), dtype=np.float64)
    for k, kind in enumerate(kinds):
        value_range = d_max[k] - d_min[k]
        if value_range <= epsilon:
            message = (
                f"{kind.value} distances are constant ({d_min[k]:.6g}); "
                f"kind contributes nothing to the similarity matrix"
            )
            logger.warning(message)
            warnings.warn(message, DegenerateNormalization, stacklevel=2)
            continue
        d = distances[k]
        np.subtract(d, d_min[k], out=d)
        np.divide(d, value_range, out=d)
        np.multiply(d, coefficient, out=d)
        np.subtract(scores, d, out=scores)

    np.clip(scores, 0.0, max_scale, out=scores)
    idx = np.arange(n)
    scores[packed_offset(idx) + idx] = max_scale

    logger.info("Built %dx%d similarity matrix from %s (%d row ranges, %d workers)",
                n, n, ', '.join(kind.value for kind in kinds), len(ranges), max(n_workers, 1))

    scores.setflags(write=False)
    return SimilarityMatrix(scores, n, max_scale)


def similarity_summary(matrix: SimilarityMatrix) -> Dict[str, float]:
    """Basic statistics of the off-diagonal cells for reports."""
    if matrix.size < 2:
        return {'mean': matrix.max_scale, 'min': matrix.max_scale, 'max': matrix.max_scale}
    mask = np.ones(matrix.packed.shape[0], dtype=bool)
    idx = np.arange(matrix.size)
    mask[packed_offset(idx) + idx] = False
    cells = matrix.packed[mask]
    return {'mean': float(cells.mean()), 'min': float(cells.min()), 'max': float(cells.max())}
