"""
Exception types raised by the ED50 analysis pipeline.

All derive from ValueError so callers that already catch bad-input errors
keep working.
"""


class ED50AnalysisError(ValueError):
    """Base class for analysis errors."""


class ObservationError(ED50AnalysisError):
    """Observation table violates the input contract."""


class FitFailedError(ED50AnalysisError):
    """An ED50 was requested from a fit that did not converge."""


class MissingParameterError(ED50AnalysisError, KeyError):
    """A converged fit lacks the parameter the extractor expects."""

    def __str__(self) -> str:
        return ValueError.__str__(self)


class UnbalancedDesignError(ED50AnalysisError):
    """Batch-adjustment input does not meet the balance precondition."""
