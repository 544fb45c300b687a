"""
Comparables Engine - Core Business Logic

Pipeline:
1. Criteria normalization (listing type, authoritative price, price band)
2. Candidate retrieval (nearest-neighbour contract)
3. Location exclusions
4. Six-factor similarity scoring
5. Display selection + market and quality aggregation over the full set
6. System/AI section decisions from area data maturity
"""

from .exceptions import (
    AggregationError,
    ComparablesError,
    ConfigurationError,
    CriteriaValidationError,
    DecisionEngineError,
    RetrievalError,
)

from .comparables import (
    AnalysisResult,
    AnalysisStatus,
    CandidateRetriever,
    ComparableAnalysisService,
    ComparablesConfig,
    HttpCandidateRetriever,
    InMemoryCandidateRetriever,
    ListingType,
    LocationHint,
    PropertyRecord,
    ScoredCandidate,
    SearchCriteria,
    SessionCoordinator,
)

from .decisions import (
    Approach,
    AreaMaturityRepository,
    DecisionConfidence,
    DecisionConfig,
    DecisionEngine,
    SectionDecision,
)

__all__ = [
    # Errors
    "AggregationError",
    "ComparablesError",
    "ConfigurationError",
    "CriteriaValidationError",
    "DecisionEngineError",
    "RetrievalError",
    # Comparables pipeline
    "AnalysisResult",
    "AnalysisStatus",
    "CandidateRetriever",
    "ComparableAnalysisService",
    "ComparablesConfig",
    "HttpCandidateRetriever",
    "InMemoryCandidateRetriever",
    "ListingType",
    "LocationHint",
    "PropertyRecord",
    "ScoredCandidate",
    "SearchCriteria",
    "SessionCoordinator",
    # Section decisions
    "Approach",
    "AreaMaturityRepository",
    "DecisionConfidence",
    "DecisionConfig",
    "DecisionEngine",
    "SectionDecision",
]
