"""
structure-segmenter - Source Modules

This package contains the core modules for hierarchical structure analysis:
- audio_io: Audio loading, preprocessing and frame reading
- extractors: Per-frame MFCC, constant-Q and autocorrelation extractors
- features: Sequential frame pipeline collecting feature vectors
- similarity: Packed self-similarity matrix
- novelty: Checkerboard novelty curves per level
- structure: Nested macro/meso/micro boundary detection
- session: Run orchestration, state and published results
- export: JSON and plot generation
"""

__version__ = "1.0.0"
