"""
System/AI section decisions driven by area data maturity.
"""

from .models import (
    Approach,
    AreaKeys,
    AreaMaturity,
    DecisionConfidence,
    DecisionSet,
    SectionDecision,
    SectionThreshold,
    normalize_area_key,
)
from .maturity import AreaMaturityRepository
from .engine import DEFAULT_SECTIONS, DecisionConfig, DecisionEngine

__all__ = [
    "Approach",
    "AreaKeys",
    "AreaMaturity",
    "DecisionConfidence",
    "DecisionSet",
    "SectionDecision",
    "SectionThreshold",
    "normalize_area_key",
    "AreaMaturityRepository",
    "DEFAULT_SECTIONS",
    "DecisionConfig",
    "DecisionEngine",
]
