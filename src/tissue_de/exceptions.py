"""
Error taxonomy for the tissue expression analysis.

Every error is terminal for the run that raised it: inputs are fixed and
the computation is deterministic, so callers report and stop.
"""


class AnalysisError(Exception):
    """Base class for all analysis failures."""


class MalformedInput(AnalysisError, ValueError):
    """Input files or tables are structurally invalid."""


class SchemaMismatch(AnalysisError, ValueError):
    """Count matrix samples and metadata samples do not correspond."""


class InsufficientDonors(AnalysisError):
    """Fewer than two donors available for individual-pattern classification."""


class InsufficientReplicates(AnalysisError):
    """A tissue group has too few samples to estimate dispersion."""


class EmptyDenominator(AnalysisError, ZeroDivisionError):
    """A percentage was requested against an empty reference set."""
