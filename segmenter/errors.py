"""
Errors Module

Typed failures raised by the analysis pipeline. All of them are recoverable
at the AnalysisSession boundary: a failed run leaves the session in its
previous valid state.
"""


class SegmenterError(Exception):
    """Base class for all analysis failures."""


class InvalidFeatureRequest(SegmenterError):
    """Frame index out of range, or feature kind not enabled / not extracted."""


class ConfigurationInvalid(SegmenterError, ValueError):
    """Analysis configuration rejected before any computation starts."""


class SourceUnavailable(SegmenterError):
    """Audio source cannot supply the expected number of frames."""


class NotYetComputed(SegmenterError):
    """Result accessor used before the producing stage completed."""


class SessionBusy(SegmenterError):
    """A run was requested while another run holds the session."""


class AnalysisAbandoned(SegmenterError):
    """A running analysis was stopped by clear(); nothing was published."""


class DegenerateNormalization(UserWarning):
    """
    Emitted when a feature kind has identical min and max distance.

    Not an exception: the kind's contribution to the similarity matrix is
    defined as zero and the run continues.
    """
