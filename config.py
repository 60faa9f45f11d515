"""
structure-segmenter - Configuration

All tunable parameters, thresholds, and constants with documentation.
Every default value includes rationale.
"""

from typing import Dict, List, Optional

# =============================================================================
# FRAME-LEVEL PARAMETERS
# =============================================================================

# Samples per analysis frame
# Why: 4096 samples at 44100 Hz ≈ 93ms, long enough for a stable spectral
#      envelope while keeping the O(frames²) matrix affordable for songs
FRAME_SIZE: int = 4096

# Samples shared between consecutive frames
# Why: 1024 samples = 25% overlap, hop of 3072 samples (~70ms) is fine enough
#      for structural boundaries, which live on a scale of seconds
OVERLAP: int = 1024

# Target sample rate for processing (Hz, None = keep native rate)
# Why: Decoded audio is analyzed at its native rate so that the filter band
#      below keeps its meaning in Hz
TARGET_SAMPLE_RATE: Optional[int] = None

# =============================================================================
# FEATURE EXTRACTOR PARAMETERS
# =============================================================================

# Extractors enabled by default, in processing order
# Why: MFCC alone captures timbre changes, which drive most section changes;
#      CQT and autocorrelation are opt-in refinements
ENABLED_EXTRACTORS: List[str] = ['mfcc']

# Number of MFCC coefficients per frame
# Why: 40 keeps the full cepstrum of 40 mel bands, coefficient 0 (energy) is
#      skipped during distance computation anyway
MFCC_COEFFICIENTS: int = 40

# Number of mel filters
# Why: 40 triangular filters is the classic speech/music front end resolution
MEL_FILTERS: int = 40

# Constant-Q bins per octave
# Why: 12 bins = one bin per semitone, enough to see harmonic changes
CQT_BINS: int = 12

# Magnitude below which constant-Q kernel coefficients are dropped
# Why: 0.0008 removes negligible kernel taps and keeps the kernel sparse
CQT_THRESHOLD: float = 0.0008

# Lower edge of the analysis filter band (Hz)
# Why: 50 Hz skips rumble below the lowest musically relevant fundamentals
LOWER_FILTER_FREQ: float = 50.0

# Upper edge of the analysis filter band (Hz)
# Why: 8000 Hz keeps the timbral range of most instruments and voices
UPPER_FILTER_FREQ: float = 8000.0

# =============================================================================
# SIMILARITY MATRIX PARAMETERS
# =============================================================================

# Similarity score of identical frames
# Why: 1000 gives three significant digits in integer-like units and matches
#      the score range consumers of the matrix expect
MAX_SCALE: float = 1000.0

# Ranges narrower than this are treated as degenerate (zero contribution)
# Why: Same 1e-8 guard used for every normalization in this project
DEGENERATE_RANGE_EPSILON: float = 1e-8

# Number of worker threads for matrix rows (0 = auto)
# Why: 0 uses the CPU count, rows are independent given complete features
N_WORKERS: int = 0

# Rows handed to one worker task
# Why: 256 rows amortize task overhead without starving workers on short tracks
ROWS_PER_TASK: int = 256

# =============================================================================
# NOVELTY PARAMETERS
# =============================================================================

# Checkerboard kernel half-width per level (seconds)
# Why: Macro sections (verse/chorus) last tens of seconds, meso phrases a few
#      bars, micro motifs about a bar at typical tempi
MACRO_KERNEL_SEC: float = 16.0
MESO_KERNEL_SEC: float = 6.0
MICRO_KERNEL_SEC: float = 2.0

# Standard deviation of the Gaussian taper relative to the kernel half-width
# Why: 0.5 keeps the center of the kernel dominant without zeroing its edges
KERNEL_TAPER: float = 0.5

# =============================================================================
# STRUCTURE DETECTION PARAMETERS
# =============================================================================

# Levels enabled by default
# Why: The full hierarchy is the main product of the analysis
ENABLE_MACRO: bool = True
ENABLE_MESO: bool = True
ENABLE_MICRO: bool = True

# Peak height threshold: mean + K * std of the level's novelty curve
# Why: Coarser levels should only keep clearly exceptional peaks
MACRO_THRESHOLD_STD: float = 1.0
MESO_THRESHOLD_STD: float = 0.5
MICRO_THRESHOLD_STD: float = 0.0

# Minimum peak prominence as a fraction of MAX_SCALE
# Why: Filters ripples of the novelty curve that are not structural changes
MACRO_PROMINENCE: float = 0.02
MESO_PROMINENCE: float = 0.01
MICRO_PROMINENCE: float = 0.005

# Minimum segment length as a fraction of the level's kernel half-width
# Why: A boundary closer than this to an existing one would collapse a segment
MIN_SEGMENT_FRACTION: float = 0.5

# =============================================================================
# RESOURCE GUARDS
# =============================================================================

# (frame size limit, duration limit in seconds, recommended frame size)
# Why: Matrix memory grows with frames², long recordings at small frame sizes
#      exhaust memory; checked from the most to the least restrictive rule
FRAME_SIZE_GUARDS: List[tuple] = [
    (8192, 16 * 60.0, 16384),
    (4096, 12 * 60.0, 8192),
    (2048, 6 * 60.0, 4096),
]

# Maximum track duration to process (seconds)
# Why: 30 minutes still fits in memory at the recommended frame sizes
MAX_TRACK_DURATION_SEC: float = 1800.0

# =============================================================================
# OUTPUT PARAMETERS
# =============================================================================

# JSON schema version
# Why: Versioning allows future format changes while maintaining compatibility
SCHEMA_VERSION: str = "1.0.0"

# Plot resolution (dots per inch)
# Why: 150 DPI is good balance of quality and file size for screen viewing
PLOT_DPI: int = 150

# Plot figure size (width, height in inches)
# Why: Square-ish matrix on top, three novelty rows below
PLOT_FIGSIZE: tuple = (12, 14)

# Colors per segmentation level in plots
LEVEL_COLORS: Dict[str, str] = {
    'macro': 'red',
    'meso': 'orange',
    'micro': 'green'
}

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_hop_size(frame_size: int = FRAME_SIZE, overlap: int = OVERLAP) -> int:
    """
    Calculate hop between frame starts.

    Parameters:
        frame_size: Samples per frame
        overlap: Samples shared between consecutive frames

    Returns:
        Hop size in samples
    """
    return frame_size - overlap


def validate_config() -> bool:
    """
    Validate configuration parameters for consistency.

    Returns:
        True if config is valid

    Raises:
        ValueError: If configuration is invalid
    """
    if FRAME_SIZE <= 0:
        raise ValueError("FRAME_SIZE must be positive")

    if not (0 <= OVERLAP < FRAME_SIZE):
        raise ValueError("OVERLAP must be in [0, FRAME_SIZE)")

    if not ENABLED_EXTRACTORS:
        raise ValueError("ENABLED_EXTRACTORS must name at least one extractor")

    if MFCC_COEFFICIENTS <= 1 or MEL_FILTERS <= 0 or CQT_BINS <= 0:
        raise ValueError("MFCC_COEFFICIENTS must be > 1, MEL_FILTERS and CQT_BINS positive")

    if not (0.0 <= LOWER_FILTER_FREQ < UPPER_FILTER_FREQ):
        raise ValueError("Filter band must satisfy 0 <= LOWER < UPPER")

    if MAX_SCALE <= 0:
        raise ValueError("MAX_SCALE must be positive")

    # Kernel widths must shrink from macro to micro
    if not (MACRO_KERNEL_SEC >= MESO_KERNEL_SEC >= MICRO_KERNEL_SEC > 0):
        raise ValueError("Kernel widths must satisfy MACRO >= MESO >= MICRO > 0")

    if not (0.0 < KERNEL_TAPER):
        raise ValueError("KERNEL_TAPER must be positive")

    for name, value in [('MACRO_PROMINENCE', MACRO_PROMINENCE),
                        ('MESO_PROMINENCE', MESO_PROMINENCE),
                        ('MICRO_PROMINENCE', MICRO_PROMINENCE)]:
        if not (0.0 <= value <= 1.0):
            raise ValueError(f"{name} must be in [0, 1]")

    if N_WORKERS < 0:
        raise ValueError("N_WORKERS must be >= 0")

    return True


# Validate on import
validate_config()
