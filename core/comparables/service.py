"""
Comparable Analysis Service

Runs the full pipeline for one subject property:

    criteria -> retrieval -> location exclusions -> similarity scoring
    -> selection (display subset) + market & quality aggregation (full set)
    -> system/AI section decisions

Failures degrade into an AnalysisResult with an explanatory summary instead
of raising, so a report can always be produced.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from core.decisions.engine import DecisionEngine
from core.decisions.maturity import AreaMaturityRepository
from core.decisions.models import AreaKeys, DecisionSet
from core.exceptions import CriteriaValidationError, RetrievalError

from .config import ComparablesConfig
from .criteria import CriteriaNormalizer
from .exclusions import LocationExclusionFilter
from .market import ChartData, MarketAggregator, MarketContext, build_summary, terminology_for
from .models import LocationHint, PropertyRecord, ScoredCandidate, SearchCriteria
from .quality import QualityAssessment, QualityAssessor
from .retriever import CandidateRetriever
from .selection import RelaxationHook, ResultSelector, Selection
from .session import SessionCoordinator, intermediate_cache_key
from .similarity import SimilarityScorer


logger = logging.getLogger(__name__)


class AnalysisStatus(Enum):
    COMPLETE = "complete"
    INVALID_CRITERIA = "invalid_criteria"
    RETRIEVAL_FAILED = "retrieval_failed"
    NO_COMPARABLES = "no_comparables"


@dataclass
class AnalysisResult:
    """
    Output of one analysis run.

    comparables is the display subset (at most the display count);
    all_comparables is the full ranked set used for every statistic.
    """
    session_id: str
    subject: PropertyRecord
    status: AnalysisStatus
    summary: str
    criteria: Optional[SearchCriteria] = None
    comparables: List[ScoredCandidate] = field(default_factory=list)
    all_comparables: List[ScoredCandidate] = field(default_factory=list)
    market_context: Optional[MarketContext] = None
    chart_data: Optional[ChartData] = None
    quality_assessment: Optional[QualityAssessment] = None
    section_decisions: Optional[DecisionSet] = None
    errors: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    processing_ms: float = 0.0
    maturity_recorded: bool = False

    @property
    def total_found(self) -> int:
        return len(self.all_comparables)

    @property
    def is_degraded(self) -> bool:
        return self.status != AnalysisStatus.COMPLETE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "sessionId": self.session_id,
            "status": self.status.value,
            "summary": self.summary,
            "criteria": self.criteria.to_dict() if self.criteria else None,
            "comparables": [c.to_dict() for c in self.comparables],
            "allComparables": [c.to_dict() for c in self.all_comparables],
            "totalFound": self.total_found,
            "displayCount": len(self.comparables),
            "marketContext": self.market_context.to_dict() if self.market_context else None,
            "chartData": self.chart_data.to_dict() if self.chart_data else None,
            "qualityAssessment": (
                self.quality_assessment.to_dict() if self.quality_assessment else None
            ),
            "sectionDecisions": (
                self.section_decisions.to_dict() if self.section_decisions else None
            ),
            "errors": list(self.errors),
            "timestamp": self.timestamp.isoformat(),
            "processingMs": round(self.processing_ms, 1),
        }


@dataclass
class _ComparablesStage:
    """Retrieval and scoring output held in the intermediate cache."""
    criteria: SearchCriteria
    selection: Selection


class ComparableAnalysisService:
    """
    Comparable analysis pipeline.

    Args:
        retriever: Candidate source
        coordinator: Session lock table and caches (one per process)
        decision_engine: Section router; created without maturity if omitted
        maturity: Area maturity counters, read for the quality bonus
        config: Weights, thresholds and display settings
        executor: Optional executor to fan per-candidate scoring out over
        relaxation: Hook called when fewer than display_count candidates exist
    """

    def __init__(
        self,
        retriever: CandidateRetriever,
        coordinator: Optional[SessionCoordinator] = None,
        decision_engine: Optional[DecisionEngine] = None,
        maturity: Optional[AreaMaturityRepository] = None,
        config: Optional[ComparablesConfig] = None,
        executor: Optional[Executor] = None,
        relaxation: Optional[RelaxationHook] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._config = config or ComparablesConfig()
        self._retriever = retriever
        self._coordinator = coordinator or SessionCoordinator()
        self._maturity = maturity
        self._decisions = decision_engine or DecisionEngine(repository=maturity)
        self._executor = executor
        self._record_lock = threading.Lock()

        self._normalizer = CriteriaNormalizer(
            price_bands=self._config.price_bands,
            radius_km=self._config.search_radius_km,
        )
        self._exclusions = LocationExclusionFilter(self._config.location_exclusions)
        self._scorer = SimilarityScorer(self._config.weights, self._config.thresholds)
        self._selector = ResultSelector(self._config.display_count, relaxation)
        self._market = MarketAggregator()
        self._quality = QualityAssessor(
            self._config.quality_weights,
            self._config.quality_thresholds,
            self._config.maturity_bonus,
            clock=clock,
        )

    @property
    def coordinator(self) -> SessionCoordinator:
        return self._coordinator

    @property
    def decision_engine(self) -> DecisionEngine:
        return self._decisions

    # =========================================================================
    # Entry Points
    # =========================================================================

    async def analyze(
        self,
        session_id: str,
        subject: PropertyRecord,
        location_hint: Optional[LocationHint] = None,
    ) -> AnalysisResult:
        """
        Analyze a subject property for a session.

        At most one analysis runs per session; concurrent callers share it
        and completed results are served from the 24 hour cache. The
        synchronous pipeline runs in a worker thread.
        """
        return await self._coordinator.run(
            session_id,
            lambda: asyncio.to_thread(self.run_pipeline, subject, location_hint, session_id),
            should_cache=lambda result: not result.is_degraded,
        )

    def run_pipeline(
        self,
        subject: PropertyRecord,
        location_hint: Optional[LocationHint] = None,
        session_id: str = "",
    ) -> AnalysisResult:
        """Run the whole pipeline synchronously. Never raises for data problems."""
        started = time.perf_counter()
        logger.info(
            "Starting comparable analysis for %s (session %s)",
            subject.reference or subject.id,
            session_id or "-",
        )

        result = self._run(subject, location_hint, session_id)
        result.processing_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "Comparable analysis for %s finished: %s, %d comparables in %.0f ms",
            subject.reference or subject.id,
            result.status.value,
            result.total_found,
            result.processing_ms,
        )
        return result

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _run(
        self,
        subject: PropertyRecord,
        location_hint: Optional[LocationHint],
        session_id: str,
    ) -> AnalysisResult:
        try:
            criteria = self._normalizer.normalize(subject, location_hint)
        except CriteriaValidationError as e:
            return AnalysisResult(
                session_id=session_id,
                subject=subject,
                status=AnalysisStatus.INVALID_CRITERIA,
                summary=(
                    "Unable to search for comparables: insufficient property data "
                    f"({'; '.join(e.errors)})."
                ),
                section_decisions=self._decisions.make_decisions(subject),
                errors=list(e.errors),
            )

        try:
            stage = self._comparables_stage(session_id, subject, criteria)
        except RetrievalError as e:
            logger.warning("Candidate retrieval failed for %s: %s", subject.reference or subject.id, e)
            return AnalysisResult(
                session_id=session_id,
                subject=subject,
                status=AnalysisStatus.RETRIEVAL_FAILED,
                summary=(
                    "Comparable data is temporarily unavailable; the analysis "
                    "continues without comparables."
                ),
                criteria=criteria,
                section_decisions=self._decisions.make_decisions(criteria),
                errors=[str(e)],
            )

        selection = stage.selection
        if not selection.all:
            terms = terminology_for(criteria.listing_type)
            return AnalysisResult(
                session_id=session_id,
                subject=subject,
                status=AnalysisStatus.NO_COMPARABLES,
                summary=(
                    f"No comparable {terms.properties} found within "
                    f"{criteria.radius_km:g}km matching the property type and price range."
                ),
                criteria=criteria,
                quality_assessment=self._assess(criteria, []),
                section_decisions=self._decisions.make_decisions(criteria),
            )

        quality = self._assess(criteria, selection.all)
        market = self._market.aggregate(criteria, selection.all, quality.weights)
        decisions = self._decisions.make_decisions(criteria, quality)

        return AnalysisResult(
            session_id=session_id,
            subject=subject,
            status=AnalysisStatus.COMPLETE,
            summary=build_summary(criteria, selection.all, market),
            criteria=criteria,
            comparables=selection.display,
            all_comparables=selection.all,
            market_context=market,
            chart_data=self._market.chart_data(criteria, selection.all),
            quality_assessment=quality,
            section_decisions=decisions,
        )

    def _comparables_stage(
        self,
        session_id: str,
        subject: PropertyRecord,
        criteria: SearchCriteria,
    ) -> _ComparablesStage:
        key = intermediate_cache_key(session_id, subject)
        cached = self._coordinator.intermediate.get(key)
        if cached is not None and cached.criteria == criteria:
            logger.debug("Using cached comparables for session %s", session_id)
            return cached

        selection = self.find_comparables(criteria)
        stage = _ComparablesStage(criteria=criteria, selection=selection)
        if selection.all:
            self._coordinator.intermediate.set(key, stage)
        return stage

    def find_comparables(self, criteria: SearchCriteria) -> Selection:
        """
        Retrieve, filter, score and rank candidates.

        Raises:
            RetrievalError: If the candidate source fails
        """
        try:
            candidates = list(self._retriever.find_candidates(criteria))
        except RetrievalError:
            raise
        except Exception as e:
            source = type(self._retriever).__name__
            logger.exception("Candidate source %s failed", source)
            raise RetrievalError(str(e), source=source) from e
        if criteria.reference:
            candidates = [c for c in candidates if c.record.reference != criteria.reference]
        logger.info("Retrieved %d candidates", len(candidates))

        candidates = self._exclusions.apply(candidates, criteria)
        scored = self._scorer.score_all(criteria, candidates, executor=self._executor)
        return self._selector.select(criteria, scored)

    def _assess(self, criteria: SearchCriteria, candidates: List[ScoredCandidate]) -> QualityAssessment:
        n_comparables = n_analyses = 0
        if self._maturity is not None:
            maturity = self._maturity.lookup(AreaKeys.of(criteria))
            n_comparables, n_analyses = maturity.n_comparables, maturity.n_analyses
        return self._quality.assess(criteria, candidates, n_comparables, n_analyses)

    # =========================================================================
    # Post-analysis
    # =========================================================================

    def record_maturity(self, result: AnalysisResult) -> None:
        """
        Update area maturity counters from a completed analysis.

        Meant to run outside the request path (e.g. a background task).
        """
        if self._maturity is None or result.status != AnalysisStatus.COMPLETE:
            return
        # Cached results are handed to every requester; count them once
        with self._record_lock:
            if result.maturity_recorded:
                return
            result.maturity_recorded = True

        area_source = result.criteria or result.subject
        self._maturity.record_analysis(area_source)
        self._maturity.record_comparables(c.record for c in result.all_comparables)
