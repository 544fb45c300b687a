"""
Quality Assessor

Rates how trustworthy a comparable set is. Each candidate gets four
component scores (0-1):

    recency       0.25   step at 7/30/90/180 days, then exponential decay
    proximity     0.30   step at 0.5/1/2/5 km, then exponential decay
    similarity    0.35   scorer overall percent / 100
    completeness  0.10   share of key fields populated, +0.1 for media

Every cross-candidate average is weighted by the candidate's own overall
quality (floor 0.1), so strong comparables dominate the aggregate.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .config import MaturityBonusConfig, QualityThresholds, QualityWeights
from .models import ScoredCandidate, SearchCriteria


logger = logging.getLogger(__name__)


# Quality distribution bands on candidate overall score
EXCELLENT_QUALITY = 0.8
GOOD_QUALITY = 0.6
FAIR_QUALITY = 0.4

STRENGTH_THRESHOLD = 0.8
TOP_PERFORMER_COUNT = 3

# Cross-candidate averages never weight a candidate below this
MIN_AVERAGE_WEIGHT = 0.1


@dataclass
class CandidateQuality:
    """Component quality scores of one candidate."""
    candidate: ScoredCandidate
    recency: float
    proximity: float
    similarity: float
    completeness: float
    overall: float
    age_days: int

    @property
    def weight(self) -> float:
        """Weight of this candidate in cross-candidate averages."""
        return max(MIN_AVERAGE_WEIGHT, self.overall)

    @property
    def strengths(self) -> List[str]:
        strengths = []
        if self.recency >= STRENGTH_THRESHOLD:
            strengths.append("Fresh data")
        if self.proximity >= STRENGTH_THRESHOLD:
            strengths.append("Close location")
        if self.similarity >= STRENGTH_THRESHOLD:
            strengths.append("Similar property")
        if self.completeness >= STRENGTH_THRESHOLD:
            strengths.append("Complete information")
        return strengths

    def to_dict(self) -> dict:
        return {
            "reference": self.candidate.reference,
            "recency": round(self.recency, 3),
            "proximity": round(self.proximity, 3),
            "similarity": round(self.similarity, 3),
            "completeness": round(self.completeness, 3),
            "overall": round(self.overall, 3),
            "ageDays": self.age_days,
        }


@dataclass
class QualityRecommendation:
    level: str
    message: str
    confidence: str
    suggestion: str

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "message": self.message,
            "confidence": self.confidence,
            "suggestion": self.suggestion,
        }


def recommend(score: float) -> QualityRecommendation:
    """Quality recommendation for an overall score."""
    if score >= EXCELLENT_QUALITY:
        return QualityRecommendation(
            "excellent",
            "High-quality comparable data provides reliable analysis foundation.",
            "high",
            "Proceed with system-based analysis for optimal efficiency.",
        )
    if score >= GOOD_QUALITY:
        return QualityRecommendation(
            "good",
            "Good comparable data quality with some limitations.",
            "medium",
            "Consider AI enhancement for critical analysis sections.",
        )
    if score >= FAIR_QUALITY:
        return QualityRecommendation(
            "fair",
            "Moderate data quality may impact analysis accuracy.",
            "medium",
            "Use AI analysis for better interpretation of limited data.",
        )
    return QualityRecommendation(
        "poor",
        "Limited comparable data quality requires careful interpretation.",
        "low",
        "Recommend AI analysis and consider expanding search radius.",
    )


@dataclass
class QualityAssessment:
    """Aggregate quality of a comparable set."""
    overall_score: float
    breakdown: Dict[str, float]
    distribution: Dict[str, int]
    total_comparables: int
    average_distance_km: Optional[float]
    average_age_days: Optional[float]
    maturity_bonus: float
    recommendation: QualityRecommendation
    candidates: List[CandidateQuality] = field(default_factory=list)

    @property
    def adjusted_score(self) -> float:
        """Overall score with the maturity bonus applied, capped at 1."""
        return min(1.0, self.overall_score + self.maturity_bonus)

    @property
    def top_performers(self) -> List[CandidateQuality]:
        ranked = sorted(self.candidates, key=lambda q: q.overall, reverse=True)
        return ranked[:TOP_PERFORMER_COUNT]

    @property
    def weights(self) -> List[float]:
        """Per-candidate averaging weights, aligned with the assessed candidates."""
        return [q.weight for q in self.candidates]

    def to_dict(self) -> dict:
        return {
            "overallScore": round(self.overall_score, 3),
            "adjustedScore": round(self.adjusted_score, 3),
            "breakdown": {k: round(v, 3) for k, v in self.breakdown.items()},
            "details": {
                "totalComparables": self.total_comparables,
                "qualityDistribution": dict(self.distribution),
                "averageDistance": (
                    round(self.average_distance_km, 2)
                    if self.average_distance_km is not None else None
                ),
                "averageAge": (
                    round(self.average_age_days, 1)
                    if self.average_age_days is not None else None
                ),
                "topPerformers": [
                    {
                        "reference": q.candidate.reference,
                        "overallScore": round(q.overall, 3),
                        "strengths": q.strengths,
                    }
                    for q in self.top_performers
                ],
            },
            "maturityBonus": self.maturity_bonus,
            "recommendation": self.recommendation.to_dict(),
        }


class QualityAssessor:
    """
    Scores candidate quality and aggregates it into a QualityAssessment.

    Args:
        weights: Component weights (validated to sum to 1.0)
        thresholds: Recency and proximity step thresholds
        maturity: Maturity bonus tiers
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        weights: Optional[QualityWeights] = None,
        thresholds: Optional[QualityThresholds] = None,
        maturity: Optional[MaturityBonusConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._weights = weights or QualityWeights()
        self._thresholds = thresholds or QualityThresholds()
        self._maturity = maturity or MaturityBonusConfig()
        self._clock = clock

    # =========================================================================
    # Components
    # =========================================================================

    def age_days(self, candidate: ScoredCandidate) -> int:
        updated = candidate.record.last_updated
        if updated is None:
            return self._thresholds.unknown_age_days
        now = self._clock()
        if updated.tzinfo is not None and now.tzinfo is None:
            now = now.astimezone(timezone.utc)
        elif updated.tzinfo is None and now.tzinfo is not None:
            updated = updated.replace(tzinfo=now.tzinfo)
        return max(0, (now - updated).days)

    def recency_score(self, age_days: int) -> float:
        t = self._thresholds
        for limit, score in zip(t.recency_days, t.recency_scores):
            if age_days <= limit:
                return score
        decay = math.exp(-(age_days - t.recency_days[-1]) / t.recency_decay_days)
        return max(t.score_floor, t.recency_scores[-1] * decay)

    def proximity_score(self, candidate: ScoredCandidate) -> float:
        t = self._thresholds
        if not candidate.has_coordinates:
            return t.no_coordinates_score
        distance = candidate.distance_km
        for limit, score in zip(t.proximity_km, t.proximity_scores):
            if distance <= limit:
                return score
        decay = math.exp(-(distance - t.proximity_km[-1]) / t.proximity_decay_km)
        return max(t.score_floor, t.proximity_scores[-1] * decay)

    @staticmethod
    def similarity_score(candidate: ScoredCandidate) -> float:
        return max(0.0, min(1.0, candidate.overall_percent / 100.0))

    def completeness_score(self, candidate: ScoredCandidate) -> float:
        record = candidate.record
        fields = [
            candidate.price,
            record.build_area,
            record.bedrooms,
            record.bathrooms,
            record.property_type,
            record.latitude,
            record.longitude,
            record.last_updated,
        ]
        present = sum(1 for value in fields if value not in (None, ""))
        completeness = present / len(fields)
        if record.images:
            completeness += self._thresholds.media_bonus
        return min(completeness, 1.0)

    def score_candidate(self, candidate: ScoredCandidate) -> CandidateQuality:
        """Component and overall quality of one candidate."""
        age = self.age_days(candidate)
        recency = self.recency_score(age)
        proximity = self.proximity_score(candidate)
        similarity = self.similarity_score(candidate)
        completeness = self.completeness_score(candidate)

        w = self._weights
        overall = (
            w.recency * recency
            + w.proximity * proximity
            + w.similarity * similarity
            + w.completeness * completeness
        )
        return CandidateQuality(
            candidate=candidate,
            recency=recency,
            proximity=proximity,
            similarity=similarity,
            completeness=completeness,
            overall=overall,
            age_days=age,
        )

    # =========================================================================
    # Aggregation
    # =========================================================================

    def maturity_bonus(self, n_comparables: int, n_analyses: int) -> float:
        """Bonus for areas with a deep comparable and analysis history (max 0.2)."""
        bonus = 0.0
        for minimum, value in self._maturity.comparables_tiers:
            if n_comparables >= minimum:
                bonus += value
                break
        for minimum, value in self._maturity.analyses_tiers:
            if n_analyses >= minimum:
                bonus += value
                break
        return round(min(bonus, self._maturity.cap), 4)

    def assess(
        self,
        criteria: SearchCriteria,
        candidates: List[ScoredCandidate],
        n_comparables: int = 0,
        n_analyses: int = 0,
    ) -> QualityAssessment:
        """
        Assess the quality of a comparable set.

        Args:
            criteria: Subject criteria
            candidates: Full scored candidate set
            n_comparables: Historical comparable count of the area
            n_analyses: Historical analysis count of the area

        Returns:
            QualityAssessment (zero scores for an empty set)
        """
        bonus = self.maturity_bonus(n_comparables, n_analyses)

        if not candidates:
            return QualityAssessment(
                overall_score=0.0,
                breakdown={"recency": 0.0, "proximity": 0.0, "similarity": 0.0, "completeness": 0.0},
                distribution={"excellent": 0, "good": 0, "fair": 0, "poor": 0},
                total_comparables=0,
                average_distance_km=None,
                average_age_days=None,
                maturity_bonus=bonus,
                recommendation=recommend(0.0),
            )

        scored = [self.score_candidate(c) for c in candidates]

        breakdown = {
            "recency": self._weighted_average(scored, lambda q: q.recency),
            "proximity": self._weighted_average(scored, lambda q: q.proximity),
            "similarity": self._weighted_average(scored, lambda q: q.similarity),
            "completeness": self._weighted_average(scored, lambda q: q.completeness),
        }
        w = self._weights.as_dict()
        overall = min(1.0, sum(w[name] * value for name, value in breakdown.items()))

        with_distance = [q for q in scored if q.candidate.has_coordinates]
        average_distance = (
            self._weighted_average(with_distance, lambda q: q.candidate.distance_km)
            if with_distance else None
        )
        average_age = self._weighted_average(scored, lambda q: q.age_days)

        logger.debug(
            "Quality for %s: %.3f over %d candidates (bonus %.2f)",
            criteria.reference or "subject",
            overall,
            len(scored),
            bonus,
        )

        return QualityAssessment(
            overall_score=overall,
            breakdown=breakdown,
            distribution=self._distribution(scored),
            total_comparables=len(scored),
            average_distance_km=average_distance,
            average_age_days=average_age,
            maturity_bonus=bonus,
            recommendation=recommend(overall),
            candidates=scored,
        )

    @staticmethod
    def _weighted_average(scored: List[CandidateQuality], value: Callable[[CandidateQuality], float]) -> float:
        total_weight = sum(q.weight for q in scored)
        return sum(value(q) * q.weight for q in scored) / total_weight

    @staticmethod
    def _distribution(scored: List[CandidateQuality]) -> Dict[str, int]:
        distribution = {"excellent": 0, "good": 0, "fair": 0, "poor": 0}
        for q in scored:
            if q.overall >= EXCELLENT_QUALITY:
                distribution["excellent"] += 1
            elif q.overall >= GOOD_QUALITY:
                distribution["good"] += 1
            elif q.overall >= FAIR_QUALITY:
                distribution["fair"] += 1
            else:
                distribution["poor"] += 1
        return distribution
