"""
Decision Engine

Decides, per report section, whether an automated ("system") computation
suffices or a narrative (AI) pass is needed, based on:

1. Area data quantity (historical comparables and analyses)
2. Comparable data quality
3. Section-specific thresholds

Decisions are cached per area for one hour and invalidated whenever that
area's maturity counters change. Subjects with no area names are not
cached. Never raises: any internal failure yields the all-AI fallback set.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from core.comparables.quality import QualityAssessment
from core.comparables.session import TTLCache
from core.exceptions import ConfigurationError, DecisionEngineError
from utils.formatting import format_percent

from .maturity import AreaMaturityRepository
from .models import (
    Approach,
    AreaKeys,
    AreaMaturity,
    DecisionConfidence,
    DecisionSet,
    SectionDecision,
    SectionThreshold,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

DECISION_CACHE_TTL = 60 * 60

FALLBACK_REASON = "Fallback due to system error"
NARRATIVE_REASON = "Always requires AI narrative/interpretation"

DEFAULT_SECTIONS: Dict[str, SectionThreshold] = {
    # Requires the most data for accurate trends
    "market_data": SectionThreshold(min_comparables=20, min_analyses=5, min_quality=0.7),
    "valuation": SectionThreshold(min_comparables=12, min_analyses=3, min_quality=0.6),
    "amenities": SectionThreshold(min_comparables=5, min_analyses=3, min_quality=0.5),
    "mobility": SectionThreshold(min_comparables=3, min_analyses=2, min_quality=0.5),
    # Narrative sections
    "location_advantages": SectionThreshold.narrative(),
    "investment_potential": SectionThreshold.narrative(),
    "market_outlook": SectionThreshold.narrative(),
    "executive_summary": SectionThreshold.narrative(),
    "recommendations": SectionThreshold.narrative(),
}


def _validate_threshold(section: str, threshold: SectionThreshold) -> Optional[str]:
    if threshold.always_ai:
        return None
    if threshold.min_comparables < 0 or threshold.min_analyses < 0:
        return f"{section}: minimum counts must be non-negative"
    if not 0.0 <= threshold.min_quality <= 1.0:
        return f"{section}: min_quality must be between 0 and 1"
    return None


@dataclass(frozen=True)
class DecisionConfig:
    """
    Section thresholds and confidence rules.

    A system route is high confidence when quality exceeds
    high_confidence_quality, or when the area's comparable count reaches
    high_confidence_margin times the section minimum.
    """
    sections: Mapping[str, SectionThreshold] = field(
        default_factory=lambda: dict(DEFAULT_SECTIONS)
    )
    cache_ttl_seconds: float = DECISION_CACHE_TTL
    high_confidence_quality: float = 0.8
    high_confidence_margin: float = 1.25
    basic_comparables_target: int = 20

    def __post_init__(self):
        if not self.sections:
            raise ConfigurationError("DecisionConfig needs at least one section")
        for section, threshold in self.sections.items():
            problem = _validate_threshold(section, threshold)
            if problem:
                raise ConfigurationError(problem)
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError("cache_ttl_seconds must be positive")
        if self.high_confidence_margin < 1.0:
            raise ConfigurationError("high_confidence_margin must be at least 1.0")


# =============================================================================
# Engine
# =============================================================================

class DecisionEngine:
    """
    Routes report sections to system or AI generation.

    Args:
        repository: Area maturity counters; without one every area is new
        config: Section thresholds and confidence rules
        clock: Monotonic clock for the decision cache
    """

    def __init__(
        self,
        repository: Optional[AreaMaturityRepository] = None,
        config: Optional[DecisionConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._repository = repository
        self._config = config or DecisionConfig()
        self._cache = TTLCache(self._config.cache_ttl_seconds, name="decisions", clock=clock)
        self._metrics = {
            "decisions": 0,
            "system_usage": 0,
            "ai_usage": 0,
            "cache_hits": 0,
            "fallbacks": 0,
        }
        self._metrics_lock = threading.Lock()

        if repository is not None:
            repository.add_listener(self.invalidate)

    @property
    def config(self) -> DecisionConfig:
        return self._config

    # =========================================================================
    # Section Decisions
    # =========================================================================

    def decide_section(
        self,
        section: str,
        threshold: SectionThreshold,
        n_comparables: int,
        n_analyses: int,
        quality_score: float,
    ) -> SectionDecision:
        """
        Decide the approach for one section.

        System iff all three minimums are met; otherwise AI with a reason
        listing each shortfall.

        Raises:
            DecisionEngineError: If the threshold is invalid
        """
        problem = _validate_threshold(section, threshold)
        if problem:
            raise DecisionEngineError(problem)

        if threshold.always_ai:
            return SectionDecision(Approach.AI, NARRATIVE_REASON, DecisionConfidence.HIGH)

        meets_quantity = n_comparables >= threshold.min_comparables
        meets_analyses = n_analyses >= threshold.min_analyses
        meets_quality = quality_score >= threshold.min_quality

        if meets_quantity and meets_analyses and meets_quality:
            margin_count = threshold.min_comparables * self._config.high_confidence_margin
            if (
                quality_score > self._config.high_confidence_quality
                or (threshold.min_comparables > 0 and n_comparables >= margin_count)
            ):
                confidence = DecisionConfidence.HIGH
            else:
                confidence = DecisionConfidence.MEDIUM
            return SectionDecision(
                Approach.SYSTEM,
                f"Sufficient data: {n_comparables} comps, {n_analyses} analyses, "
                f"{format_percent(quality_score * 100, 0)} quality",
                confidence,
            )

        missing = []
        if not meets_quantity:
            missing.append(f"need {threshold.min_comparables} comps (have {n_comparables})")
        if not meets_analyses:
            missing.append(f"need {threshold.min_analyses} analyses (have {n_analyses})")
        if not meets_quality:
            missing.append(
                f"need {format_percent(threshold.min_quality * 100, 0)} quality "
                f"(have {format_percent(quality_score * 100, 0)})"
            )

        return SectionDecision(
            Approach.AI,
            f"Insufficient data: {', '.join(missing)}",
            DecisionConfidence.MEDIUM if n_comparables > 0 else DecisionConfidence.LOW,
        )

    def basic_quality_score(self, subject: Any, n_comparables: int) -> float:
        """
        Quality score when no comparables were assessed.

        0.4 * maturity share + 0.3 location + 0.2 basic data + 0.1 detailed data.
        """
        has_location = bool(getattr(subject, "latitude", None) and getattr(subject, "longitude", None))
        has_basic = bool(getattr(subject, "bedrooms", None) and getattr(subject, "price", None))
        has_detailed = bool(getattr(subject, "build_area", None) and getattr(subject, "property_type", None))

        score = (
            0.4 * min(n_comparables / self._config.basic_comparables_target, 1.0)
            + 0.3 * has_location
            + 0.2 * has_basic
            + 0.1 * has_detailed
        )
        return min(score, 1.0)

    # =========================================================================
    # Decision Sets
    # =========================================================================

    def make_decisions(
        self,
        subject: Any,
        quality: Optional[QualityAssessment] = None,
    ) -> DecisionSet:
        """
        Decide every configured section for a subject.

        Args:
            subject: Search criteria or property record of the subject
            quality: Quality assessment of this run's comparables, if any

        Returns:
            DecisionSet; the all-AI fallback on any internal failure
        """
        started = time.perf_counter()
        try:
            keys = AreaKeys.of(subject)
            # Subjects without area names share no cache entry
            cached = self._cache.get(keys.primary) if keys.is_known else None
            if cached is not None:
                self._count("cache_hits")
                return cached

            maturity = self._lookup_maturity(keys)

            if quality is not None and quality.total_comparables > 0:
                quality_score = quality.overall_score
                quality_source = "assessment"
            else:
                quality_score = self.basic_quality_score(subject, maturity.n_comparables)
                quality_source = "basic"

            decisions = {
                section: self.decide_section(
                    section,
                    threshold,
                    maturity.n_comparables,
                    maturity.n_analyses,
                    quality_score,
                )
                for section, threshold in self._config.sections.items()
            }

            result = DecisionSet(
                decisions=decisions,
                area_keys=keys,
                maturity=maturity,
                quality_score=quality_score,
                quality_source=quality_source,
                processing_ms=(time.perf_counter() - started) * 1000,
            )
        except Exception:
            logger.exception("Error making system/AI decisions, falling back to AI")
            return self.fallback_decisions()

        if keys.is_known:
            self._cache.set(keys.primary, result)
        self._record_usage(result)
        logger.info(
            "System/AI decisions for %s: %d system, %d AI",
            keys.primary,
            len(result.system_sections),
            len(result.ai_sections),
        )
        return result

    def _lookup_maturity(self, keys: AreaKeys) -> AreaMaturity:
        if self._repository is None:
            return AreaMaturity.empty(keys.primary)
        try:
            return self._repository.lookup(keys)
        except Exception as e:
            raise DecisionEngineError(f"Maturity lookup failed for {keys.primary}: {e}") from e

    def fallback_decisions(self) -> DecisionSet:
        """All sections routed to AI with low confidence."""
        self._count("fallbacks")
        return DecisionSet(
            decisions={
                section: SectionDecision(Approach.AI, FALLBACK_REASON, DecisionConfidence.LOW)
                for section in self._config.sections
            },
            area_keys=None,
            maturity=None,
            quality_score=0.0,
            quality_source="fallback",
            fallback=True,
        )

    def _count(self, name: str) -> None:
        with self._metrics_lock:
            self._metrics[name] += 1

    def _record_usage(self, result: DecisionSet) -> None:
        with self._metrics_lock:
            self._metrics["decisions"] += 1
            self._metrics["system_usage"] += len(result.system_sections)
            self._metrics["ai_usage"] += len(result.ai_sections)

    # =========================================================================
    # Cache & Metrics
    # =========================================================================

    def invalidate(self, area_key: Optional[str] = None) -> None:
        """Drop cached decisions for one area key, or all when None."""
        if area_key is None:
            self._cache.clear()
        else:
            self._cache.delete(area_key)
        logger.debug("Invalidated cached decisions for %s", area_key or "all areas")

    def metrics(self) -> dict:
        """Usage metrics with system/AI share."""
        with self._metrics_lock:
            counts = dict(self._metrics)
        total = counts["system_usage"] + counts["ai_usage"]
        return {
            **counts,
            "system_percentage": round(counts["system_usage"] / total * 100, 1) if total else 0.0,
            "ai_percentage": round(counts["ai_usage"] / total * 100, 1) if total else 0.0,
            "cache": self._cache.stats(),
        }
