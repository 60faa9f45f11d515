"""
Analysis Parameters Module - Run Configuration Snapshot

Every parameter that influences one analysis run, grouped by pipeline stage.
An AnalysisConfig is immutable: a session compares snapshots to decide which
stages must be recomputed.

USAGE:
    from segmenter.analysis_params import AnalysisConfig, FrameParams

    # Use defaults from config.py
    cfg = AnalysisConfig.from_defaults()

    # Override specific groups
    custom = AnalysisConfig(
        extractors=('mfcc', 'cqt'),
        frame=FrameParams(frame_size=2048, overlap=512)
    )
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Tuple

import config
from segmenter.errors import ConfigurationInvalid


# Names accepted in AnalysisConfig.extractors, in canonical order
KNOWN_EXTRACTORS: Tuple[str, ...] = ('mfcc', 'cqt', 'autocorrelation')

LEVELS: Tuple[str, ...] = ('macro', 'meso', 'micro')


@dataclass(frozen=True)
class FrameParams:
    """
    Frame slicing parameters.

    Attributes:
        frame_size: Samples per analysis frame (default 4096)
        overlap: Samples shared by consecutive frames (default 1024)
    """
    frame_size: int = config.FRAME_SIZE
    overlap: int = config.OVERLAP

    @property
    def hop(self) -> int:
        return config.get_hop_size(self.frame_size, self.overlap)


@dataclass(frozen=True)
class MFCCParams:
    """
    MFCC extractor parameters.

    Attributes:
        n_coefficients: Cepstral coefficients per frame (default 40)
        n_mels: Triangular mel filters (default 40)
    """
    n_coefficients: int = config.MFCC_COEFFICIENTS
    n_mels: int = config.MEL_FILTERS


@dataclass(frozen=True)
class CQTParams:
    """
    Constant-Q extractor parameters.

    Attributes:
        bins_per_octave: Frequency bins per octave (default 12)
        threshold: Kernel taps below this magnitude are dropped (default 0.0008)
    """
    bins_per_octave: int = config.CQT_BINS
    threshold: float = config.CQT_THRESHOLD


@dataclass(frozen=True)
class FilterBandParams:
    """
    Frequency band shared by the MFCC and CQT extractors.

    Attributes:
        lower_hz: Lower band edge in Hz (default 50)
        upper_hz: Upper band edge in Hz (default 8000)
    """
    lower_hz: float = config.LOWER_FILTER_FREQ
    upper_hz: float = config.UPPER_FILTER_FREQ


@dataclass(frozen=True)
class LevelParams:
    """Which segmentation levels are detected."""
    macro: bool = config.ENABLE_MACRO
    meso: bool = config.ENABLE_MESO
    micro: bool = config.ENABLE_MICRO

    def enabled(self) -> Tuple[str, ...]:
        """Enabled level names, coarsest first."""
        return tuple(name for name in LEVELS if getattr(self, name))


@dataclass(frozen=True)
class NoveltyParams:
    """
    Checkerboard kernel parameters.

    Attributes:
        macro_sec: Kernel half-width for the macro level in seconds (default 16)
        meso_sec: Kernel half-width for the meso level in seconds (default 6)
        micro_sec: Kernel half-width for the micro level in seconds (default 2)
        taper: Gaussian std relative to the half-width (default 0.5)
    """
    macro_sec: float = config.MACRO_KERNEL_SEC
    meso_sec: float = config.MESO_KERNEL_SEC
    micro_sec: float = config.MICRO_KERNEL_SEC
    taper: float = config.KERNEL_TAPER

    def get_widths(self) -> Dict[str, float]:
        """Get half-widths in seconds as dictionary keyed by level."""
        return {
            'macro': self.macro_sec,
            'meso': self.meso_sec,
            'micro': self.micro_sec
        }


@dataclass(frozen=True)
class DetectionParams:
    """
    Boundary picking parameters.

    Attributes:
        macro_threshold_std: Height threshold = mean + k * std (macro)
        meso_threshold_std: Same for meso
        micro_threshold_std: Same for micro
        macro_prominence: Minimum prominence as a fraction of max_scale (macro)
        meso_prominence: Same for meso
        micro_prominence: Same for micro
        min_segment_fraction: Minimum segment length relative to the level's
            kernel half-width
    """
    macro_threshold_std: float = config.MACRO_THRESHOLD_STD
    meso_threshold_std: float = config.MESO_THRESHOLD_STD
    micro_threshold_std: float = config.MICRO_THRESHOLD_STD
    macro_prominence: float = config.MACRO_PROMINENCE
    meso_prominence: float = config.MESO_PROMINENCE
    micro_prominence: float = config.MICRO_PROMINENCE
    min_segment_fraction: float = config.MIN_SEGMENT_FRACTION

    def threshold_std(self, level: str) -> float:
        return getattr(self, f'{level}_threshold_std')

    def prominence(self, level: str) -> float:
        return getattr(self, f'{level}_prominence')


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Complete analysis configuration aggregating all parameter groups.

    Example usage:
        cfg = AnalysisConfig()  # All defaults
        cfg = AnalysisConfig(levels=LevelParams(micro=False))  # Override specific params
    """
    extractors: Tuple[str, ...] = tuple(config.ENABLED_EXTRACTORS)
    frame: FrameParams = field(default_factory=FrameParams)
    mfcc: MFCCParams = field(default_factory=MFCCParams)
    cqt: CQTParams = field(default_factory=CQTParams)
    band: FilterBandParams = field(default_factory=FilterBandParams)
    levels: LevelParams = field(default_factory=LevelParams)
    novelty: NoveltyParams = field(default_factory=NoveltyParams)
    detection: DetectionParams = field(default_factory=DetectionParams)
    max_scale: float = config.MAX_SCALE
    n_workers: int = config.N_WORKERS
    rows_per_task: int = config.ROWS_PER_TASK

    def __post_init__(self):
        # Accept any iterable of names (or FeatureKind members) but store a tuple
        names = tuple(str(getattr(e, 'value', e)).lower() for e in self.extractors)
        object.__setattr__(self, 'extractors', names)

    @classmethod
    def from_defaults(cls) -> 'AnalysisConfig':
        """Build a configuration from the module constants in config.py."""
        return cls()

    def with_changes(self, **changes) -> 'AnalysisConfig':
        """Return a copy with top-level fields replaced."""
        return replace(self, **changes)

    def extraction_key(self) -> Tuple:
        """
        Key identifying everything that shapes features and the matrix.

        Two configs with equal keys produce identical feature vectors and
        similarity matrices for the same source, so only novelty and
        detection need to be recomputed between them.

        Returns:
            Hashable tuple
        """
        return (self.extractors, self.frame, self.mfcc, self.cqt, self.band,
                float(self.max_scale))

    def to_dict(self) -> Dict:
        """
        Export all parameters as a flat dictionary for JSON serialization.

        Returns:
            Dictionary with all parameter values
        """
        return {
            # Extraction
            'extractors': list(self.extractors),
            'frame_size': self.frame.frame_size,
            'overlap': self.frame.overlap,
            'hop': self.frame.hop,
            'mfcc_coefficients': self.mfcc.n_coefficients,
            'mel_filters': self.mfcc.n_mels,
            'cqt_bins_per_octave': self.cqt.bins_per_octave,
            'cqt_threshold': self.cqt.threshold,
            'lower_filter_hz': self.band.lower_hz,
            'upper_filter_hz': self.band.upper_hz,

            # Matrix
            'max_scale': self.max_scale,

            # Novelty
            'kernel_seconds': self.novelty.get_widths(),
            'kernel_taper': self.novelty.taper,

            # Detection
            'levels': list(self.levels.enabled()),
            'threshold_std': {lvl: self.detection.threshold_std(lvl) for lvl in LEVELS},
            'prominence': {lvl: self.detection.prominence(lvl) for lvl in LEVELS},
            'min_segment_fraction': self.detection.min_segment_fraction,
        }


# Default configuration instance
DEFAULT_CONFIG = AnalysisConfig()


def default_preset(lower_hz: float = config.LOWER_FILTER_FREQ,
                   upper_hz: float = config.UPPER_FILTER_FREQ) -> AnalysisConfig:
    """
    One-click preset: MFCC only, 4096/1024 framing, 40 mel filters,
    40 coefficients, every level enabled.

    Parameters:
        lower_hz: Lower band edge in Hz
        upper_hz: Upper band edge in Hz

    Returns:
        AnalysisConfig
    """
    return AnalysisConfig(
        extractors=('mfcc',),
        frame=FrameParams(frame_size=4096, overlap=1024),
        mfcc=MFCCParams(n_coefficients=40, n_mels=40),
        band=FilterBandParams(lower_hz=lower_hz, upper_hz=upper_hz),
        levels=LevelParams(macro=True, meso=True, micro=True),
    )


def validate_config(cfg: AnalysisConfig) -> bool:
    """
    Validate configuration parameters for consistency.

    Parameters:
        cfg: AnalysisConfig instance to validate

    Returns:
        True if config is valid

    Raises:
        ConfigurationInvalid: If configuration is invalid
    """
    if cfg.frame.frame_size <= 0:
        raise ConfigurationInvalid("frame_size must be positive")
    if cfg.frame.overlap < 0:
        raise ConfigurationInvalid("overlap must be non-negative")
    if cfg.frame.overlap >= cfg.frame.frame_size:
        raise ConfigurationInvalid(
            f"overlap ({cfg.frame.overlap}) must be smaller than frame_size "
            f"({cfg.frame.frame_size})"
        )

    if not cfg.extractors:
        raise ConfigurationInvalid("at least one extractor must be enabled")
    for name in cfg.extractors:
        if name not in KNOWN_EXTRACTORS:
            raise ConfigurationInvalid(
                f"unknown extractor '{name}', expected one of {KNOWN_EXTRACTORS}"
            )
    if len(set(cfg.extractors)) != len(cfg.extractors):
        raise ConfigurationInvalid("each extractor may be enabled only once")

    if cfg.mfcc.n_coefficients < 2:
        raise ConfigurationInvalid("n_coefficients must be >= 2")
    if cfg.mfcc.n_mels <= 0:
        raise ConfigurationInvalid("n_mels must be positive")
    if cfg.mfcc.n_coefficients > cfg.mfcc.n_mels:
        raise ConfigurationInvalid("n_coefficients cannot exceed n_mels")
    if cfg.cqt.bins_per_octave <= 0:
        raise ConfigurationInvalid("bins_per_octave must be positive")
    if cfg.cqt.threshold < 0:
        raise ConfigurationInvalid("cqt threshold must be non-negative")

    if not (0.0 <= cfg.band.lower_hz < cfg.band.upper_hz):
        raise ConfigurationInvalid(
            f"invalid filter band [{cfg.band.lower_hz}, {cfg.band.upper_hz}] Hz"
        )
    if 'cqt' in cfg.extractors and cfg.band.lower_hz <= 0:
        raise ConfigurationInvalid("constant-Q analysis needs lower_hz > 0")

    if cfg.max_scale <= 0:
        raise ConfigurationInvalid("max_scale must be positive")

    for level, width in cfg.novelty.get_widths().items():
        if width <= 0:
            raise ConfigurationInvalid(f"{level} kernel width must be positive")
    # Coarser levels need the wider kernels
    if not (cfg.novelty.macro_sec >= cfg.novelty.meso_sec >= cfg.novelty.micro_sec):
        raise ConfigurationInvalid(
            f"kernel widths must satisfy macro >= meso >= micro, got "
            f"{cfg.novelty.macro_sec}/{cfg.novelty.meso_sec}/{cfg.novelty.micro_sec} s"
        )
    if cfg.novelty.taper <= 0:
        raise ConfigurationInvalid("kernel taper must be positive")

    for level in LEVELS:
        if not (0.0 <= cfg.detection.prominence(level) <= 1.0):
            raise ConfigurationInvalid(f"{level} prominence must be in [0, 1]")
    if cfg.detection.min_segment_fraction < 0:
        raise ConfigurationInvalid("min_segment_fraction must be non-negative")

    if cfg.n_workers < 0:
        raise ConfigurationInvalid("n_workers must be >= 0")
    if cfg.rows_per_task <= 0:
        raise ConfigurationInvalid("rows_per_task must be positive")

    return True


# Validate default config on import
validate_config(DEFAULT_CONFIG)
