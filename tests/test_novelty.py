"""
Novelty Curve Tests

Tests for the checkerboard kernel and novelty curves on matrices with a
known block structure.
"""

import pytest
import numpy as np

from segmenter.analysis_params import NoveltyParams
from segmenter.novelty import (
    checkerboard_weights,
    compute_level_curves,
    compute_novelty_curve,
    level_half_width,
)
from segmenter.similarity import SimilarityMatrix


def matrix_from_dense(dense, max_scale=1000.0):
    n = dense.shape[0]
    return SimilarityMatrix(dense[np.tril_indices(n)].astype(np.float64), n, max_scale)


def block_matrix(sizes, max_scale=1000.0, cross=0.0):
    """Blocks of full similarity along the diagonal, `cross` elsewhere."""
    labels = np.repeat(np.arange(len(sizes)), sizes)
    dense = np.where(labels[:, None] == labels[None, :], max_scale, cross)
    return matrix_from_dense(dense, max_scale)


class TestKernel:
    """Tests for checkerboard_weights."""

    def test_shapes(self):
        same, cross = checkerboard_weights(5, 0.5)
        assert same.shape == (10, 10)
        assert cross.shape == (10, 10)

    def test_halves_partition(self):
        """Every cell belongs to exactly one of the two kernels."""
        same, cross = checkerboard_weights(4, 0.5)
        assert np.all((same > 0) != (cross > 0))
        assert np.all(same[:4, 4:] == 0)
        assert np.all(cross[:4, :4] == 0)

    def test_symmetric_taper(self):
        same, cross = checkerboard_weights(6, 0.5)
        np.testing.assert_allclose(same, same.T)
        np.testing.assert_allclose(same, same[::-1, ::-1])
        assert cross[5, 6] > cross[0, 11]


class TestNoveltyCurve:
    """Tests for compute_novelty_curve."""

    def test_peak_at_block_boundary(self):
        matrix = block_matrix([30, 30])
        curve = compute_novelty_curve(matrix, half_width=10)
        assert int(np.argmax(curve)) == 30
        assert curve[30] == pytest.approx(1000.0)

    def test_first_frame_zero(self):
        curve = compute_novelty_curve(block_matrix([10, 10]), half_width=4)
        assert curve[0] == 0.0

    def test_flat_inside_blocks(self):
        """Frames whose kernel stays inside one block see no novelty."""
        curve = compute_novelty_curve(block_matrix([30, 30]), half_width=5)
        np.testing.assert_allclose(curve[1:25], 0.0, atol=1e-9)
        np.testing.assert_allclose(curve[36:], 0.0, atol=1e-9)

    def test_edges_not_biased(self):
        """Truncated kernels near the edges are normalized by their weight."""
        curve = compute_novelty_curve(block_matrix([40]), half_width=10)
        np.testing.assert_allclose(curve, 0.0, atol=1e-9)

    def test_range(self):
        rng = np.random.default_rng(0)
        dense = rng.uniform(0, 1000, size=(50, 50))
        dense = (dense + dense.T) / 2
        np.fill_diagonal(dense, 1000.0)
        curve = compute_novelty_curve(matrix_from_dense(dense), half_width=6)
        assert curve.shape == (50,)
        assert np.all(curve >= 0.0)
        assert np.all(curve <= 1000.0)

    def test_three_sections(self):
        curve = compute_novelty_curve(block_matrix([25, 25, 25], cross=200.0), half_width=8)
        top_two = sorted(np.argsort(curve)[-2:])
        assert top_two == [25, 50]

    def test_deterministic(self):
        matrix = block_matrix([20, 15, 25])
        np.testing.assert_array_equal(
            compute_novelty_curve(matrix, 6), compute_novelty_curve(matrix, 6)
        )

    def test_shared_band(self):
        """A wider precomputed band gives the same curve."""
        matrix = block_matrix([20, 20])
        band = matrix.diagonal_band(30)
        np.testing.assert_allclose(
            compute_novelty_curve(matrix, 5, band=band), compute_novelty_curve(matrix, 5)
        )

    def test_kernel_wider_than_track(self):
        curve = compute_novelty_curve(block_matrix([3, 3]), half_width=50)
        assert curve.shape == (6,)
        assert int(np.argmax(curve)) == 3

    def test_single_frame(self):
        curve = compute_novelty_curve(block_matrix([1]), half_width=3)
        np.testing.assert_array_equal(curve, [0.0])

    def test_curve_read_only(self):
        """Curves cannot be edited through a shared reference."""
        curve = compute_novelty_curve(block_matrix([10, 10]), half_width=4)
        with pytest.raises(ValueError):
            curve[10] = 0.0
        with pytest.raises(ValueError):
            compute_novelty_curve(block_matrix([1]), half_width=3)[0] = 1.0


class TestLevelCurves:
    """Tests for compute_level_curves."""

    def test_half_width(self):
        """100 frames over 50 s: 2 frames per second."""
        assert level_half_width(16.0, 100, 50.0) == 32
        assert level_half_width(0.1, 100, 50.0) == 1

    def test_curves_per_level(self):
        matrix = block_matrix([50, 50])
        params = NoveltyParams(macro_sec=20.0, meso_sec=8.0, micro_sec=2.0)
        curves = compute_level_curves(matrix, 100.0, params, ('macro', 'micro'))
        assert set(curves) == {'macro', 'micro'}
        for curve in curves.values():
            assert curve.shape == (100,)
            assert int(np.argmax(curve)) == 50

    def test_no_levels(self):
        assert compute_level_curves(block_matrix([5, 5]), 10.0, levels=()) == {}
