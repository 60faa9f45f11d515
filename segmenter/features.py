"""
Feature Extraction Module

Drives frame-by-frame extraction over an audio source and collects one
vector per enabled extractor per frame index. All kinds are aligned to the
same frame grid.

DESIGN CONSTRAINTS:
- Frames are processed sequentially from frame 0, indices are dense
- Each frame goes through every enabled extractor exactly once, in enabling order
- Output containers are allocated before processing starts
- A set abandon event stops extraction before the next frame
- Completion is signalled through a threading.Event set only when every
  index is filled
"""

import logging
import threading
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from segmenter import timebase
from segmenter.analysis_params import AnalysisConfig
from segmenter.errors import (
    AnalysisAbandoned,
    InvalidFeatureRequest,
    NotYetComputed,
    SourceUnavailable,
)
from segmenter.extractors import FeatureExtractor, FeatureKind

logger = logging.getLogger(__name__)


class FeatureFramePipeline:
    """
    Per-run feature store fed by sequential extraction.

    CONTRACT:
    - features[kind] has shape (n_frames, vector_length) for each enabled kind
    - Frame i is readable once frames 0..i were added
    - get_features() is only available after completion
    - Not thread-safe for writers; readers may wait on the completion gate
    """

    def __init__(self, cfg: AnalysisConfig, sample_rate: int, n_frames: int,
                 extractors: Optional[Dict[FeatureKind, FeatureExtractor]] = None) -> None:
        if n_frames <= 0:
            raise SourceUnavailable("Source shorter than one analysis frame")

        self.cfg = cfg
        self.sample_rate = sample_rate
        self.n_frames = n_frames
        self.kinds: Tuple[FeatureKind, ...] = tuple(
            FeatureKind.parse(name) for name in cfg.extractors
        )

        if extractors is None:
            extractors = {kind: kind.create_extractor(cfg, sample_rate) for kind in self.kinds}
        missing = [kind.value for kind in self.kinds if kind not in extractors]
        if missing:
            raise InvalidFeatureRequest(f"No extractor supplied for: {missing}")
        self.extractors = {kind: extractors[kind] for kind in self.kinds}

        # Allocate one container per enabled kind before processing
        self._features: Dict[FeatureKind, np.ndarray] = {
            kind: np.zeros((n_frames, self.extractors[kind].vector_length), dtype=np.float64)
            for kind in self.kinds
        }
        self._filled = 0
        self._complete = threading.Event()

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def add_features(self, frame_idx: int, vectors: Dict[FeatureKind, np.ndarray]) -> None:
        """
        Store the vectors of the next frame.

        Parameters:
            frame_idx: Must equal the number of frames already stored
            vectors: One vector per enabled kind

        Raises:
            InvalidFeatureRequest: Out-of-order index, missing kind or bad length
        """
        if frame_idx != self._filled or frame_idx >= self.n_frames:
            raise InvalidFeatureRequest(
                f"Frame {frame_idx} out of sequence (next expected: {self._filled}, "
                f"frame count: {self.n_frames})"
            )
        for kind in self.kinds:
            if kind not in vectors:
                raise InvalidFeatureRequest(f"Frame {frame_idx} lacks a {kind.value} vector")
            vector = np.asarray(vectors[kind], dtype=np.float64)
            if vector.shape != self._features[kind].shape[1:]:
                raise InvalidFeatureRequest(
                    f"{kind.value} vector has shape {vector.shape}, "
                    f"expected {self._features[kind].shape[1:]}"
                )
            self._features[kind][frame_idx] = vector

        self._filled += 1
        if self._filled == self.n_frames:
            for array in self._features.values():
                array.setflags(write=False)
            self._complete.set()

    def process_frame(self, frame_idx: int, frame: np.ndarray) -> None:
        """Run one frame through every enabled extractor and store the result."""
        vectors = {kind: self.extractors[kind].consume(frame) for kind in self.kinds}
        self.add_features(frame_idx, vectors)

    def run(self, frames: Iterable[np.ndarray],
            abandon: Optional[threading.Event] = None) -> None:
        """
        Extract features from a frame sequence until every index is filled.

        Extra frames beyond n_frames are not read.

        Parameters:
            frames: Iterable of frame_size sample arrays, in order
            abandon: Event checked before each frame

        Raises:
            SourceUnavailable: If the sequence ends before n_frames frames
            AnalysisAbandoned: If `abandon` is set before the last frame
        """
        for extractor in self.extractors.values():
            extractor.reset()

        for frame in frames:
            if self._filled == self.n_frames:
                break
            if abandon is not None and abandon.is_set():
                raise AnalysisAbandoned(
                    f"Extraction abandoned after {self._filled} of {self.n_frames} frames"
                )
            self.process_frame(self._filled, frame)
            if self._filled % 500 == 0:
                logger.debug("Extracted %d/%d frames", self._filled, self.n_frames)

        if not self.is_complete:
            raise SourceUnavailable(
                f"Source ended after {self._filled} of {self.n_frames} frames"
            )
        logger.info("Extracted %d frames (%s)", self.n_frames,
                    ', '.join(kind.value for kind in self.kinds))

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @property
    def frames_filled(self) -> int:
        return self._filled

    @property
    def is_complete(self) -> bool:
        return self._complete.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every frame is extracted. Returns False on timeout."""
        return self._complete.wait(timeout)

    def _check_kind(self, kind) -> FeatureKind:
        try:
            kind = FeatureKind.parse(kind)
        except ValueError as e:
            raise InvalidFeatureRequest(f"Unknown feature kind: {kind!r}") from e
        if kind not in self._features:
            raise InvalidFeatureRequest(f"Feature kind '{kind.value}' is not enabled")
        return kind

    def get_feature(self, kind, frame_idx: int) -> np.ndarray:
        """
        Vector of one kind at one frame.

        Parameters:
            kind: FeatureKind or its name
            frame_idx: Frame index in [0, n_frames)

        Returns:
            Copy of the stored vector

        Raises:
            InvalidFeatureRequest: Kind not enabled, index out of range, or
                frame not extracted yet
        """
        kind = self._check_kind(kind)
        if not timebase.is_valid_frame_index(frame_idx, self.n_frames):
            raise InvalidFeatureRequest(
                f"Frame index {frame_idx} outside [0, {self.n_frames})"
            )
        if frame_idx >= self._filled:
            raise InvalidFeatureRequest(f"Frame {frame_idx} has not been extracted yet")
        return self._features[kind][frame_idx].copy()

    def get_features(self, kind) -> np.ndarray:
        """
        Full (n_frames, vector_length) sequence of one kind.

        Raises:
            InvalidFeatureRequest: Kind not enabled
            NotYetComputed: Extraction not complete
        """
        kind = self._check_kind(kind)
        if not self.is_complete:
            raise NotYetComputed("Feature extraction has not completed")
        return self._features[kind]

    def as_dict(self) -> Dict[FeatureKind, np.ndarray]:
        """All completed sequences keyed by kind, in enabling order."""
        if not self.is_complete:
            raise NotYetComputed("Feature extraction has not completed")
        return dict(self._features)


def extract_features(source, cfg: AnalysisConfig,
                     extractors: Optional[Dict[FeatureKind, FeatureExtractor]] = None
                     ) -> FeatureFramePipeline:
    """
    Extract every enabled feature kind from a source.

    This is the main entry point for feature extraction.

    Parameters:
        source: AudioSource (total_frames, sample_rate, read_frames)
        cfg: Analysis configuration
        extractors: Optional extractor overrides keyed by kind

    Returns:
        Completed FeatureFramePipeline

    Raises:
        SourceUnavailable: Source shorter than one frame or ended early
    """
    frame_size, overlap = cfg.frame.frame_size, cfg.frame.overlap
    n_frames = timebase.compute_frame_count(source.total_frames, frame_size, overlap)
    if n_frames == 0:
        raise SourceUnavailable(
            f"Source has {source.total_frames} samples, fewer than one frame "
            f"({frame_size})"
        )

    pipeline = FeatureFramePipeline(cfg, source.sample_rate, n_frames, extractors)
    pipeline.run(source.read_frames(frame_size, overlap))
    return pipeline
