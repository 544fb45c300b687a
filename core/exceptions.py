"""
Error taxonomy for the comparables pipeline.

Only CriteriaValidationError and ConfigurationError are expected to reach
callers of the library. The others are raised internally and converted into
degraded results by the component that owns the failure.
"""

from typing import List, Optional


class ComparablesError(Exception):
    """Base class for all comparables engine errors."""


class ConfigurationError(ComparablesError):
    """Raised when weights or thresholds are invalid at construction."""


class CriteriaValidationError(ComparablesError):
    """Raised when a subject property cannot produce usable search criteria."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Criteria validation failed: {'; '.join(errors)}")


class RetrievalError(ComparablesError):
    """Raised by a candidate retriever when the source cannot be queried."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(message)


class AggregationError(ComparablesError):
    """Raised by statistic helpers on empty or malformed input."""


class DecisionEngineError(ComparablesError):
    """Raised while evaluating section thresholds."""
