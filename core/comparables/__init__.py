"""
Comparables pipeline.

criteria -> retrieval -> exclusions -> similarity -> selection
         -> market & quality aggregation -> section decisions
"""

from .config import (
    ComparablesConfig,
    ComparablesConfigBuilder,
    PriceBandConfig,
    QualityThresholds,
    QualityWeights,
    SimilarityThresholds,
    SimilarityWeights,
)
from .models import (
    Condition,
    DistanceSource,
    ListingType,
    LocationHint,
    PropertyRecord,
    RetrievedCandidate,
    ScoredCandidate,
    SearchCriteria,
)
from .criteria import CriteriaNormalizer
from .retriever import CandidateRetriever, HttpCandidateRetriever, InMemoryCandidateRetriever
from .exclusions import LocationExclusionFilter
from .similarity import SimilarityScorer
from .selection import ResultSelector, Selection
from .market import ChartData, MarketAggregator, MarketContext
from .quality import QualityAssessment, QualityAssessor
from .session import SessionCoordinator, TTLCache
from .service import AnalysisResult, AnalysisStatus, ComparableAnalysisService

__all__ = [
    "ComparablesConfig",
    "ComparablesConfigBuilder",
    "PriceBandConfig",
    "QualityThresholds",
    "QualityWeights",
    "SimilarityThresholds",
    "SimilarityWeights",
    "Condition",
    "DistanceSource",
    "ListingType",
    "LocationHint",
    "PropertyRecord",
    "RetrievedCandidate",
    "ScoredCandidate",
    "SearchCriteria",
    "CriteriaNormalizer",
    "CandidateRetriever",
    "HttpCandidateRetriever",
    "InMemoryCandidateRetriever",
    "LocationExclusionFilter",
    "SimilarityScorer",
    "ResultSelector",
    "Selection",
    "MarketAggregator",
    "ChartData",
    "MarketContext",
    "QualityAssessment",
    "QualityAssessor",
    "SessionCoordinator",
    "TTLCache",
    "AnalysisResult",
    "AnalysisStatus",
    "ComparableAnalysisService",
]
