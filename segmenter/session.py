"""
Analysis Session Module

Owns the configuration and the published results of one analysis, and
orchestrates extraction -> similarity matrix -> novelty -> detection.

STATE MACHINE:
    IDLE -> EXTRACTING -> MATRIX_BUILT -> SEGMENT_DETECTING -> DONE
    clear() returns to IDLE, keeping source and config. Called during a run it
    abandons the run at its next checkpoint (every frame, every row range,
    every stage change and publication).
    A rerun whose extraction parameters match the published matrix skips
    straight to SEGMENT_DETECTING.

CONTRACT:
- One run at a time per session; a concurrent run raises SessionBusy
- on_calculation_started / on_calculation_done fire exactly once per run,
  in that order, also when the run fails
- Results are published by swapping one reference at the end of a run; a
  failed run leaves the previous results and state untouched
- An abandoned run publishes nothing and raises AnalysisAbandoned
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

import config
from segmenter import audio_io, novelty, structure, timebase
from segmenter.analysis_params import AnalysisConfig, default_preset, validate_config
from segmenter.errors import AnalysisAbandoned, NotYetComputed, SessionBusy, SourceUnavailable
from segmenter.features import FeatureFramePipeline
from segmenter.similarity import SimilarityMatrix, build_similarity_matrix
from segmenter.structure import SegmentationResult

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = 'idle'
    EXTRACTING = 'extracting'
    MATRIX_BUILT = 'matrix_built'
    SEGMENT_DETECTING = 'segment_detecting'
    DONE = 'done'


@dataclass(frozen=True)
class _Published:
    """Snapshot of everything readers may see. Replaced, never mutated."""
    state: SessionState = SessionState.IDLE
    source: Optional[audio_io.AudioSource] = None
    config: Optional[AnalysisConfig] = None
    pipeline: Optional[FeatureFramePipeline] = None
    matrix: Optional[SimilarityMatrix] = None
    curves: Dict[str, np.ndarray] = field(default_factory=dict)
    half_widths: Dict[str, int] = field(default_factory=dict)
    result: Optional[SegmentationResult] = None


def recommend_frame_size(duration_sec: float, frame_size: int) -> int:
    """
    Frame size that keeps the similarity matrix affordable for long recordings.

    Rules are checked from the most to the least restrictive:
    <= 8192 over 16 min -> 16384, <= 4096 over 12 min -> 8192,
    <= 2048 over 6 min -> 4096.

    Parameters:
        duration_sec: Track duration in seconds
        frame_size: Requested frame size in samples

    Returns:
        Recommended frame size (the requested one when no rule applies)
    """
    for size_limit, duration_limit, recommended in config.FRAME_SIZE_GUARDS:
        if frame_size <= size_limit and duration_sec > duration_limit:
            return recommended
    return frame_size


class AnalysisSession:
    """
    Orchestrates one audio analysis and exposes its results.

    Example:
        session = AnalysisSession(on_calculation_done=lambda: print('done'))
        result = session.run(AudioSource.from_file('song.wav'), AnalysisConfig())
        result.boundaries('macro')
    """

    def __init__(self,
                 audio_source: Optional[audio_io.AudioSource] = None,
                 analysis_config: Optional[AnalysisConfig] = None,
                 on_calculation_started: Optional[Callable[[], None]] = None,
                 on_calculation_done: Optional[Callable[[], None]] = None) -> None:
        self._lock = threading.Lock()
        # Guards publication, state changes and _running against clear()
        self._publish_lock = threading.Lock()
        self._abandon = threading.Event()
        self._running = False
        self._published = _Published(source=audio_source, config=analysis_config)
        self._state = SessionState.IDLE
        self._started_callbacks: List[Callable[[], None]] = []
        self._done_callbacks: List[Callable[[], None]] = []
        self._active_pipeline: Optional[FeatureFramePipeline] = None
        if on_calculation_started is not None:
            self._started_callbacks.append(on_calculation_started)
        if on_calculation_done is not None:
            self._done_callbacks.append(on_calculation_done)

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def add_started_callback(self, callback: Callable[[], None]) -> None:
        self._started_callbacks.append(callback)

    def add_done_callback(self, callback: Callable[[], None]) -> None:
        self._done_callbacks.append(callback)

    def _fire(self, callbacks: List[Callable[[], None]]) -> None:
        for callback in list(callbacks):
            callback()

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    def run(self, audio_source: Optional[audio_io.AudioSource] = None,
            analysis_config: Optional[AnalysisConfig] = None) -> SegmentationResult:
        """
        Analyze a source synchronously and publish the results.

        Parameters:
            audio_source: Source to analyze (None = the session's current source)
            analysis_config: Configuration (None = current, or defaults)

        Returns:
            SegmentationResult

        Raises:
            SessionBusy: Another run holds the session
            AnalysisAbandoned: clear() was called before the run published
            ConfigurationInvalid: Configuration rejected
            SourceUnavailable: Source missing, too short or ended early
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusy("An analysis is already running on this session")

        with self._publish_lock:
            self._running = True
            self._abandon.clear()
        previous = self._published
        source = audio_source if audio_source is not None else previous.source
        cfg = analysis_config or previous.config or AnalysisConfig.from_defaults()
        try:
            self._fire(self._started_callbacks)
            published = self._compute(previous, source, cfg)
            with self._publish_lock:
                self._check_abandoned()
                self._published = published
                self._state = published.state
            return published.result
        except AnalysisAbandoned:
            with self._publish_lock:
                self._published = _Published(source=source, config=cfg)
                self._state = SessionState.IDLE
            logger.info("Analysis abandoned, session cleared")
            raise
        except Exception:
            with self._publish_lock:
                self._state = SessionState.IDLE if self._abandon.is_set() else previous.state
            raise
        finally:
            self._active_pipeline = None
            try:
                self._fire(self._done_callbacks)
            finally:
                with self._publish_lock:
                    self._running = False
                self._lock.release()

    def run_with_defaults(self, audio_source: audio_io.AudioSource,
                          lower_hz: float = config.LOWER_FILTER_FREQ,
                          upper_hz: float = config.UPPER_FILTER_FREQ) -> SegmentationResult:
        """
        One-click analysis: MFCC only, 4096/1024 framing, 40 mel filters,
        40 coefficients, all levels, within the given filter band.
        """
        return self.run(audio_source, default_preset(lower_hz, upper_hz))

    def _check_abandoned(self) -> None:
        if self._abandon.is_set():
            raise AnalysisAbandoned("Analysis abandoned by clear()")

    def _advance(self, state: SessionState) -> None:
        with self._publish_lock:
            self._check_abandoned()
            self._state = state

    def _compute(self, previous: _Published, source, cfg: AnalysisConfig) -> _Published:
        self._check_abandoned()
        validate_config(cfg)
        if source is None:
            raise SourceUnavailable("No audio source to analyze")
        audio_io.validate_audio(source, cfg.frame.frame_size)

        recommended = recommend_frame_size(source.duration, cfg.frame.frame_size)
        if recommended != cfg.frame.frame_size:
            logger.warning(
                "Frame size %d is small for a %.1f min recording, %d is recommended",
                cfg.frame.frame_size, source.duration / 60.0, recommended
            )

        fast_path = (
            previous.matrix is not None
            and previous.source is source
            and previous.config is not None
            and previous.config.extraction_key() == cfg.extraction_key()
        )

        if fast_path:
            logger.info("Extraction parameters unchanged, reusing similarity matrix")
            pipeline, matrix = previous.pipeline, previous.matrix
        else:
            self._advance(SessionState.EXTRACTING)
            pipeline = self._extract(source, cfg)
            matrix = build_similarity_matrix(
                pipeline.as_dict(),
                max_scale=cfg.max_scale,
                n_workers=cfg.n_workers,
                rows_per_task=cfg.rows_per_task,
                abandon=self._abandon
            )
            self._advance(SessionState.MATRIX_BUILT)

        self._advance(SessionState.SEGMENT_DETECTING)
        levels = cfg.levels.enabled()
        curves = novelty.compute_level_curves(matrix, source.duration, cfg.novelty, levels)
        half_widths = {
            level: novelty.level_half_width(seconds, matrix.size, source.duration)
            for level, seconds in cfg.novelty.get_widths().items()
        }

        inherited = {}
        if fast_path and previous.result is not None:
            inherited = {
                level: previous.result.frames[level]
                for level in previous.result.levels if level not in levels
            }

        result = structure.detect_structure(
            curves, matrix.size, source.duration, cfg.max_scale,
            half_widths, cfg.detection, inherited=inherited
        )

        return _Published(
            state=SessionState.DONE,
            source=source,
            config=cfg,
            pipeline=pipeline,
            matrix=matrix,
            curves=curves,
            half_widths=half_widths,
            result=result
        )

    def _extract(self, source, cfg: AnalysisConfig) -> FeatureFramePipeline:
        n_frames = timebase.compute_frame_count(
            source.total_frames, cfg.frame.frame_size, cfg.frame.overlap
        )
        if n_frames == 0:
            raise SourceUnavailable("Source shorter than one analysis frame")
        pipeline = FeatureFramePipeline(cfg, source.sample_rate, n_frames)
        self._active_pipeline = pipeline
        pipeline.run(source.read_frames(cfg.frame.frame_size, cfg.frame.overlap),
                     abandon=self._abandon)
        return pipeline

    def wait_for_features(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the features of the current run (or the last published
        run) are complete.

        Returns:
            True when features are complete, False on timeout or when there
            is nothing to wait for
        """
        pipeline = self._active_pipeline or self._published.pipeline
        if pipeline is None:
            return False
        return pipeline.wait(timeout)

    def clear(self) -> None:
        """
        Discard features, matrix, curves and results; keep source and config.

        During a run the results are dropped at once and the run is abandoned
        at its next checkpoint; run() then raises AnalysisAbandoned.
        """
        with self._publish_lock:
            previous = self._published
            self._published = _Published(source=previous.source, config=previous.config)
            self._state = SessionState.IDLE
            if self._running:
                self._abandon.set()
                logger.debug("Session cleared, abandoning the running analysis")
            else:
                logger.debug("Session cleared")

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_calculated(self) -> bool:
        return self._published.result is not None

    @property
    def audio_source(self) -> Optional[audio_io.AudioSource]:
        return self._published.source

    @property
    def config(self) -> Optional[AnalysisConfig]:
        return self._published.config

    @property
    def frame_count(self) -> int:
        published = self._published
        if published.pipeline is None:
            raise NotYetComputed("No features have been extracted")
        return published.pipeline.n_frames

    @property
    def similarity_matrix(self) -> SimilarityMatrix:
        matrix = self._published.matrix
        if matrix is None:
            raise NotYetComputed("Similarity matrix has not been computed")
        return matrix

    @property
    def novelty_curves(self) -> Dict[str, np.ndarray]:
        published = self._published
        if published.result is None:
            raise NotYetComputed("Novelty curves have not been computed")
        return dict(published.curves)

    @property
    def segmentation(self) -> SegmentationResult:
        result = self._published.result
        if result is None:
            raise NotYetComputed("Segmentation has not been computed")
        return result

    def get_features(self, kind) -> np.ndarray:
        """Full feature sequence of one enabled kind."""
        pipeline = self._published.pipeline
        if pipeline is None:
            raise NotYetComputed("No features have been extracted")
        return pipeline.get_features(kind)

    def get_feature(self, kind, frame_index: int) -> np.ndarray:
        """
        Vector of one kind at one frame.

        Raises:
            NotYetComputed: No extraction has been published
            InvalidFeatureRequest: Kind not enabled or index outside [0, frame_count)
        """
        pipeline = self._published.pipeline
        if pipeline is None:
            raise NotYetComputed("No features have been extracted")
        return pipeline.get_feature(kind, frame_index)

    def summary(self) -> Dict:
        """Run parameters and results as a JSON-ready dictionary."""
        published = self._published
        if published.result is None:
            raise NotYetComputed("Segmentation has not been computed")
        source = published.source
        return {
            'track': {
                'name': source.name,
                'duration_sec': source.duration,
                'sample_rate': source.sample_rate,
                'total_samples': source.total_frames,
            },
            'parameters': published.config.to_dict(),
            'kernel_half_width_frames': dict(published.half_widths),
            'segmentation': published.result.to_dict(),
        }
