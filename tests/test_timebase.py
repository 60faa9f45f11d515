"""
Timebase Module Tests

Tests for frame count computation, frame/time conversion and boundary
pairing.
"""

import pytest
import numpy as np

from segmenter import timebase


class TestFrameCount:
    """Tests for compute_frame_count."""

    def test_exact_single_frame(self):
        """A source of exactly one frame yields one frame."""
        assert timebase.compute_frame_count(4096, 4096, 1024) == 1

    def test_formula(self):
        """n = ceil((total - F) / (F - overlap + 1)) + 1."""
        test_cases = [
            (10000, 4096, 1024),
            (44100 * 30, 4096, 1024),
            (22050 * 7, 2048, 512),
            (5000, 1000, 0),
        ]
        for total, frame_size, overlap in test_cases:
            expected = int(np.ceil((total - frame_size) / (frame_size - overlap + 1))) + 1
            assert timebase.compute_frame_count(total, frame_size, overlap) == expected

    def test_known_value(self):
        """(10000 - 4096) / 3073 = 1.92 -> 2, plus one."""
        assert timebase.compute_frame_count(10000, 4096, 1024) == 3

    def test_shorter_than_frame(self):
        """A source shorter than one frame has no frames."""
        assert timebase.compute_frame_count(4095, 4096, 1024) == 0
        assert timebase.compute_frame_count(0, 4096, 1024) == 0

    def test_deterministic_for_long_sources(self):
        """Integer arithmetic gives the same count on every call."""
        total = 44100 * 60 * 30
        counts = {timebase.compute_frame_count(total, 4096, 1024) for _ in range(5)}
        assert len(counts) == 1

    def test_invalid_framing(self):
        """Overlap must be smaller than the frame."""
        with pytest.raises(ValueError):
            timebase.compute_frame_count(10000, 4096, 4096)
        with pytest.raises(ValueError):
            timebase.compute_frame_count(10000, 0, 0)
        with pytest.raises(ValueError):
            timebase.compute_frame_count(10000, 4096, -1)


class TestFrameTimes:
    """Tests for frame index <-> time conversion."""

    def test_frame_start_sample(self):
        assert timebase.frame_start_sample(0, 4096, 1024) == 0
        assert timebase.frame_start_sample(3, 4096, 1024) == 3 * 3072

    def test_frame_index_to_time(self):
        """t = i * duration / n."""
        assert timebase.frame_index_to_time(50, 100, 20.0) == pytest.approx(10.0)
        assert timebase.frame_index_to_time(0, 100, 20.0) == 0.0

    def test_time_below_duration(self):
        """Every frame time stays strictly below the duration."""
        times = timebase.compute_frame_time_axis(100, 20.0)
        assert len(times) == 100
        assert times[-1] < 20.0
        assert np.all(np.diff(times) > 0)

    def test_empty_run(self):
        assert timebase.frame_index_to_time(3, 0, 20.0) == 0.0
        assert len(timebase.compute_frame_time_axis(0, 20.0)) == 0

    def test_seconds_to_frames(self):
        """10 frames per second: 2 seconds -> 20 frames."""
        assert timebase.seconds_to_frames(2.0, 100, 10.0) == 20

    def test_seconds_to_frames_minimum(self):
        """Very short spans still produce at least one frame."""
        assert timebase.seconds_to_frames(0.001, 100, 10.0) == 1
        assert timebase.seconds_to_frames(0.001, 100, 10.0, minimum=3) == 3


class TestClamping:
    """Tests for clamp_time and pair_boundaries."""

    def test_clamp_inside(self):
        t, clamped = timebase.clamp_time(5.0, 10.0)
        assert t == 5.0
        assert not clamped

    def test_clamp_negative(self):
        t, clamped = timebase.clamp_time(-1.0, 10.0)
        assert t == 0.0
        assert clamped

    def test_clamp_past_end(self):
        t, clamped = timebase.clamp_time(12.0, 10.0)
        assert t == 10.0
        assert clamped

    def test_clamp_within_epsilon(self):
        """Overshoot within epsilon is pulled back without being flagged."""
        t, clamped = timebase.clamp_time(10.0 + 1e-9, 10.0)
        assert t == 10.0
        assert not clamped

    def test_pair_boundaries_covers_track(self):
        """k interior boundaries make k + 1 segments over [0, duration]."""
        segments = timebase.pair_boundaries([2.0, 5.0, 7.5], 10.0)
        assert segments == [(0.0, 2.0), (2.0, 5.0), (5.0, 7.5), (7.5, 10.0)]

    def test_pair_boundaries_no_boundaries(self):
        assert timebase.pair_boundaries([], 10.0) == [(0.0, 10.0)]

    def test_pair_boundaries_drops_edges(self):
        """Boundaries at the track edges do not create empty segments."""
        segments = timebase.pair_boundaries([0.0, 4.0, 10.0], 10.0)
        assert segments == [(0.0, 4.0), (4.0, 10.0)]

    def test_valid_frame_index(self):
        assert timebase.is_valid_frame_index(0, 5)
        assert timebase.is_valid_frame_index(4, 5)
        assert not timebase.is_valid_frame_index(5, 5)
        assert not timebase.is_valid_frame_index(-1, 5)
