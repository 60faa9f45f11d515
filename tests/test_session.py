"""
Analysis Session Tests

Tests for the session lifecycle: callbacks, busy handling, published
results, the extraction fast path, clearing and abandoned runs.
"""

import pytest
import numpy as np

from segmenter.analysis_params import (
    AnalysisConfig,
    DetectionParams,
    FrameParams,
    LevelParams,
    MFCCParams,
    NoveltyParams,
)
from segmenter.audio_io import AudioSource
from segmenter.errors import (
    AnalysisAbandoned,
    ConfigurationInvalid,
    InvalidFeatureRequest,
    NotYetComputed,
    SessionBusy,
    SourceUnavailable,
)
from segmenter.session import AnalysisSession, SessionState, recommend_frame_size
from segmenter.synthetic import generate_section_contrast

SR = 22050


def fast_config(**changes):
    cfg = AnalysisConfig(
        extractors=('mfcc',),
        frame=FrameParams(frame_size=2048, overlap=512),
        mfcc=MFCCParams(n_coefficients=13, n_mels=26),
        novelty=NoveltyParams(macro_sec=4.0, meso_sec=2.0, micro_sec=1.0),
        n_workers=1
    )
    return cfg.with_changes(**changes)


@pytest.fixture(scope='module')
def contrast_source():
    audio, _ = generate_section_contrast(duration=16, sr=SR)
    return AudioSource.from_array(audio, SR, name='contrast')


@pytest.fixture
def short_source():
    return AudioSource.from_array(np.zeros(1000, dtype=np.float32), SR, name='short')


class TestBeforeRun:
    """Accessors before any run."""

    def test_initial_state(self):
        session = AnalysisSession()
        assert session.state is SessionState.IDLE
        assert not session.is_calculated

    def test_accessors_not_computed(self):
        session = AnalysisSession()
        with pytest.raises(NotYetComputed):
            session.similarity_matrix
        with pytest.raises(NotYetComputed):
            session.segmentation
        with pytest.raises(NotYetComputed):
            session.novelty_curves
        with pytest.raises(NotYetComputed):
            session.frame_count
        with pytest.raises(NotYetComputed):
            session.get_feature('mfcc', 0)
        with pytest.raises(NotYetComputed):
            session.summary()

    def test_wait_without_run(self):
        assert AnalysisSession().wait_for_features(timeout=0.01) is False

    def test_run_without_source(self):
        with pytest.raises(SourceUnavailable):
            AnalysisSession().run(analysis_config=fast_config())


class TestRun:
    """Tests for a successful run."""

    def test_publishes_results(self, contrast_source):
        session = AnalysisSession()
        result = session.run(contrast_source, fast_config())
        assert session.state is SessionState.DONE
        assert session.is_calculated
        assert session.segmentation is result
        assert session.similarity_matrix.size == session.frame_count
        assert set(session.novelty_curves) == {'macro', 'meso', 'micro'}
        assert session.wait_for_features(timeout=0.01)

    def test_constructor_source(self, contrast_source):
        session = AnalysisSession(contrast_source, fast_config())
        session.run()
        assert session.audio_source is contrast_source
        assert session.config == fast_config()

    def test_features_accessible(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        assert session.get_features('mfcc').shape == (session.frame_count, 13)
        assert session.get_feature('mfcc', 0).shape == (13,)

    def test_invalid_frame_index(self, contrast_source):
        """Index == frame_count is rejected and the state is kept."""
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        with pytest.raises(InvalidFeatureRequest):
            session.get_feature('mfcc', session.frame_count)
        with pytest.raises(InvalidFeatureRequest):
            session.get_feature('cqt', 0)
        assert session.state is SessionState.DONE

    def test_nested_result(self, contrast_source):
        session = AnalysisSession()
        result = session.run(contrast_source, fast_config())
        assert result.is_nested()
        assert result.levels == ('macro', 'meso', 'micro')

    def test_idempotent(self, contrast_source):
        session = AnalysisSession()
        first = session.run(contrast_source, fast_config())
        second = session.run(contrast_source, fast_config())
        assert first.frames == second.frames

    def test_parallel_matrix_matches(self, contrast_source):
        a = AnalysisSession()
        a.run(contrast_source, fast_config(n_workers=1))
        b = AnalysisSession()
        b.run(contrast_source, fast_config(n_workers=3, rows_per_task=16))
        np.testing.assert_array_equal(a.similarity_matrix.packed, b.similarity_matrix.packed)

    def test_run_with_defaults(self, contrast_source):
        """One-click preset: MFCC only with 4096/1024 framing."""
        session = AnalysisSession()
        result = session.run_with_defaults(contrast_source, lower_hz=60.0, upper_hz=7000.0)
        assert session.config.extractors == ('mfcc',)
        assert session.config.frame == FrameParams(4096, 1024)
        assert session.config.band.lower_hz == 60.0
        assert result.levels == ('macro', 'meso', 'micro')

    def test_summary(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        summary = session.summary()
        assert summary['track']['name'] == 'contrast'
        assert summary['parameters']['frame_size'] == 2048
        assert set(summary['kernel_half_width_frames']) == {'macro', 'meso', 'micro'}
        assert 'macro' in summary['segmentation']['levels']


class TestCallbacks:
    """Tests for calculation started/done notifications."""

    def test_order_and_count(self, contrast_source):
        events = []
        session = AnalysisSession(
            on_calculation_started=lambda: events.append('started'),
            on_calculation_done=lambda: events.append('done')
        )
        session.run(contrast_source, fast_config())
        assert events == ['started', 'done']

    def test_fired_on_failure(self, short_source):
        events = []
        session = AnalysisSession()
        session.add_started_callback(lambda: events.append('started'))
        session.add_done_callback(lambda: events.append('done'))
        with pytest.raises(SourceUnavailable):
            session.run(short_source, fast_config())
        assert events == ['started', 'done']
        assert session.state is SessionState.IDLE

    def test_rerun_from_callback_is_busy(self, contrast_source):
        session = AnalysisSession()
        errors = []

        def started():
            try:
                session.run(contrast_source, fast_config())
            except SessionBusy as e:
                errors.append(e)

        session.add_started_callback(started)
        session.run(contrast_source, fast_config())
        assert len(errors) == 1
        assert session.state is SessionState.DONE

    def test_clear_during_run_abandons(self, contrast_source):
        """clear() from a started callback stops the run before extraction."""
        events = []
        session = AnalysisSession()
        session.add_started_callback(lambda: events.append('started'))
        session.add_started_callback(session.clear)
        session.add_done_callback(lambda: events.append('done'))
        with pytest.raises(AnalysisAbandoned):
            session.run(contrast_source, fast_config())
        assert events == ['started', 'done']
        assert session.state is SessionState.IDLE
        assert not session.is_calculated
        assert session.audio_source is contrast_source
        assert session.config == fast_config()

    def test_clear_from_done_callback(self, contrast_source):
        """A clear after publication behaves like a clear after the run."""
        session = AnalysisSession(on_calculation_done=lambda: session.clear())
        result = session.run(contrast_source, fast_config())
        assert result.levels == ('macro', 'meso', 'micro')
        assert session.state is SessionState.IDLE
        assert not session.is_calculated


class TestFailures:
    """A failed run leaves the previous results untouched."""

    def test_previous_results_kept(self, contrast_source, short_source):
        session = AnalysisSession()
        result = session.run(contrast_source, fast_config())
        matrix = session.similarity_matrix
        with pytest.raises(SourceUnavailable):
            session.run(short_source, fast_config())
        assert session.state is SessionState.DONE
        assert session.segmentation is result
        assert session.similarity_matrix is matrix
        assert session.audio_source is contrast_source

    def test_invalid_config(self, contrast_source):
        session = AnalysisSession()
        with pytest.raises(ConfigurationInvalid):
            session.run(contrast_source, fast_config(extractors=()))
        assert session.state is SessionState.IDLE
        assert not session.is_calculated


class TestFastPath:
    """Reruns with unchanged extraction parameters reuse the matrix."""

    def test_detection_change_reuses_matrix(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        matrix = session.similarity_matrix
        session.run(contrast_source, fast_config(
            detection=DetectionParams(micro_threshold_std=1.0)
        ))
        assert session.similarity_matrix is matrix

    def test_extraction_change_rebuilds(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        matrix = session.similarity_matrix
        session.run(contrast_source, fast_config(frame=FrameParams(2048, 1024)))
        assert session.similarity_matrix is not matrix

    def test_other_source_rebuilds(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        matrix = session.similarity_matrix
        copy = AudioSource.from_array(contrast_source.samples, SR, name='copy')
        session.run(copy, fast_config())
        assert session.similarity_matrix is not matrix

    def test_disabled_level_inherited(self, contrast_source):
        """Levels switched off on a rerun keep their boundaries."""
        session = AnalysisSession()
        first = session.run(contrast_source, fast_config())
        second = session.run(contrast_source, fast_config(levels=LevelParams(macro=False)))
        assert second.frames['macro'] == first.frames['macro']
        assert second.is_nested()
        assert 'macro' not in session.novelty_curves

    def test_disabled_level_on_fresh_run(self, contrast_source):
        session = AnalysisSession()
        result = session.run(contrast_source, fast_config(levels=LevelParams(micro=False)))
        assert result.levels == ('macro', 'meso')
        with pytest.raises(NotYetComputed):
            result.boundaries('micro')


class TestClear:
    """Tests for clear()."""

    def test_clear(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        session.clear()
        assert session.state is SessionState.IDLE
        assert not session.is_calculated
        assert session.audio_source is contrast_source
        assert session.config == fast_config()
        with pytest.raises(NotYetComputed):
            session.similarity_matrix

    def test_run_after_clear(self, contrast_source):
        session = AnalysisSession()
        first = session.run(contrast_source, fast_config())
        session.clear()
        second = session.run()
        assert first.frames == second.frames


class TestFrameSizeRecommendation:
    """Tests for recommend_frame_size."""

    @pytest.mark.parametrize('duration, frame_size, expected', [
        (1000.0, 8192, 16384),
        (1000.0, 2048, 16384),
        (800.0, 4096, 8192),
        (400.0, 2048, 4096),
        (400.0, 4096, 4096),
        (100.0, 2048, 2048),
        (2000.0, 16384, 16384),
    ])
    def test_rules(self, duration, frame_size, expected):
        assert recommend_frame_size(duration, frame_size) == expected


class ClearingSource(AudioSource):
    """Source that clears a session after yielding a number of frames."""

    def __init__(self, samples, sample_rate, clear_after, name='clearing'):
        super().__init__(samples, sample_rate, name=name)
        self.clear_after = clear_after
        self.session = None
        self.frames_read = 0

    def read_frames(self, frame_size, overlap):
        for frame in super().read_frames(frame_size, overlap):
            if self.frames_read == self.clear_after:
                self.session.clear()
            self.frames_read += 1
            yield frame


class TestAbandon:
    """clear() during a run abandons it without publishing."""

    def make_source(self, contrast_source, clear_after=5):
        return ClearingSource(contrast_source.samples, SR, clear_after)

    def test_abandoned_mid_extraction(self, contrast_source):
        session = AnalysisSession()
        source = self.make_source(contrast_source)
        source.session = session
        with pytest.raises(AnalysisAbandoned):
            session.run(source, fast_config())
        assert source.frames_read == 6
        assert session.state is SessionState.IDLE
        assert not session.is_calculated
        assert session.audio_source is source
        assert not session.wait_for_features(timeout=0.01)
        with pytest.raises(NotYetComputed):
            session.similarity_matrix

    def test_previous_results_discarded(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        source = self.make_source(contrast_source)
        source.session = session
        with pytest.raises(AnalysisAbandoned):
            session.run(source, fast_config())
        with pytest.raises(NotYetComputed):
            session.segmentation
        with pytest.raises(NotYetComputed):
            session.novelty_curves

    def test_done_callback_fires(self, contrast_source):
        events = []
        session = AnalysisSession(on_calculation_done=lambda: events.append(session.state))
        source = self.make_source(contrast_source)
        source.session = session
        with pytest.raises(AnalysisAbandoned):
            session.run(source, fast_config())
        assert events == [SessionState.IDLE]

    def test_rerun_after_abandon(self, contrast_source):
        """The kept source and config run to completion on the next call."""
        session = AnalysisSession()
        source = self.make_source(contrast_source, clear_after=0)
        source.session = session
        with pytest.raises(AnalysisAbandoned):
            session.run(source, fast_config())
        source.clear_after = -1
        result = session.run()
        assert session.state is SessionState.DONE
        assert result.levels == ('macro', 'meso', 'micro')


class TestPublishedReadOnly:
    """Published curves and results cannot be edited by readers."""

    def test_novelty_curves_read_only(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        before = session.novelty_curves['macro'].copy()
        with pytest.raises(ValueError):
            session.novelty_curves['macro'][:] = -1.0
        np.testing.assert_array_equal(session.novelty_curves['macro'], before)

    def test_curves_dict_is_a_copy(self, contrast_source):
        session = AnalysisSession()
        session.run(contrast_source, fast_config())
        session.novelty_curves.pop('macro')
        assert 'macro' in session.novelty_curves

    def test_segmentation_read_only(self, contrast_source):
        session = AnalysisSession()
        result = session.run(contrast_source, fast_config())
        frames = result.frames['macro']
        with pytest.raises(TypeError):
            session.segmentation.frames['macro'] = ()
        with pytest.raises(TypeError):
            session.segmentation.times.clear()
        assert session.segmentation.frames['macro'] == frames
