"""
Similarity Scorer

Six-factor weighted similarity between the subject and each candidate:

    Factor       Weight   Max reasonable difference
    distance     0.40     10 km
    size         0.20     100% of subject build area
    condition    0.20     4 condition ranks (with nearby renovation rule)
    price        0.10     100% of subject price (condition adjusted)
    bedrooms     0.07     2 rooms
    bathrooms    0.03     2 rooms

Each factor is a penalty in 0..1 (lower is better). The weighted penalty is
turned into an overall percentage and a feature-overlap bonus of up to
5 points is added on top.
"""

import logging
from concurrent.futures import Executor
from typing import Iterable, List, Optional, Tuple

from .config import SimilarityThresholds, SimilarityWeights
from .geo import haversine_km, hierarchy_distance_km
from .models import (
    Condition,
    DistanceSource,
    PropertyRecord,
    RetrievedCandidate,
    ScoredCandidate,
    SearchCriteria,
)


logger = logging.getLogger(__name__)


# Penalties when condition data is missing
BOTH_CONDITIONS_MISSING_PENALTY = 0.5
ONE_CONDITION_MISSING_PENALTY = 0.7


def _percent(penalty: float) -> float:
    return round(max(0.0, 100.0 - penalty * 100.0), 1)


def feature_similarity(target: Iterable[str], candidate: Iterable[str]) -> float:
    """
    Jaccard similarity of two feature tag sets, as a 0-100 percentage.

    Two empty sets count as identical.
    """
    target_set = {str(f).strip().lower() for f in target}
    candidate_set = {str(f).strip().lower() for f in candidate}

    if not target_set and not candidate_set:
        return 100.0
    if not target_set or not candidate_set:
        return 0.0

    return len(target_set & candidate_set) / len(target_set | candidate_set) * 100


class SimilarityScorer:
    """
    Scores candidates against search criteria.

    score() is a pure function of (criteria, candidate), so candidates can be
    scored independently and in any order.
    """

    def __init__(
        self,
        weights: Optional[SimilarityWeights] = None,
        thresholds: Optional[SimilarityThresholds] = None,
    ):
        self._weights = weights or SimilarityWeights()
        self._thresholds = thresholds or SimilarityThresholds()

    @property
    def weights(self) -> SimilarityWeights:
        return self._weights

    def score_all(
        self,
        criteria: SearchCriteria,
        candidates: List[RetrievedCandidate],
        executor: Optional[Executor] = None,
    ) -> List[ScoredCandidate]:
        """
        Score every candidate.

        Args:
            criteria: Search criteria of the subject
            candidates: Retrieved candidates
            executor: Optional executor to fan scoring out over; results are
                joined in input order

        Returns:
            Scored candidates, same order as the input
        """
        if executor is None:
            return [self.score(criteria, c) for c in candidates]
        return list(executor.map(lambda c: self.score(criteria, c), candidates))

    def score(self, criteria: SearchCriteria, candidate: RetrievedCandidate) -> ScoredCandidate:
        """Calculate all factor scores and the overall percentage for one candidate."""
        record = candidate.record
        distance_km, source = self.resolve_distance(criteria, candidate)
        price = record.price_for(criteria.listing_type)

        distance_penalty = min(distance_km / self._thresholds.max_distance_km, 1.0)
        size_penalty = self._relative_penalty(criteria.build_area, record.build_area)
        price_penalty = self._price_penalty(criteria, record, price)
        bedroom_penalty = self._room_penalty(
            criteria.bedrooms, record.bedrooms, self._thresholds.max_bedroom_diff
        )
        bathroom_penalty = self._room_penalty(
            criteria.bathrooms, record.bathrooms, self._thresholds.max_bathroom_diff
        )
        condition_penalty = self.condition_penalty(
            criteria.condition_rating if criteria.condition else None,
            record.condition_rating if record.condition else None,
            distance_km,
            target_given=bool(criteria.condition),
            candidate_given=bool(record.condition),
        )

        feature_bonus = (
            feature_similarity(criteria.features, record.features)
            / 100.0
            * self._thresholds.max_feature_bonus
        )

        w = self._weights
        weighted_penalty = (
            distance_penalty * w.distance
            + size_penalty * w.size
            + condition_penalty * w.condition
            + price_penalty * w.price
            + bedroom_penalty * w.bedrooms
            + bathroom_penalty * w.bathrooms
        )

        base_percent = max(0.0, 100.0 - weighted_penalty * 100.0)
        overall_percent = min(100.0, base_percent + feature_bonus)

        return ScoredCandidate(
            record=record,
            price=price,
            distance_km=round(distance_km, 2),
            distance_source=source,
            distance_percent=_percent(distance_penalty),
            size_percent=self._factor_percent(criteria.build_area, record.build_area, size_penalty),
            price_percent=self._factor_percent(criteria.price, price, price_penalty),
            bedroom_percent=_percent(bedroom_penalty),
            bathroom_percent=_percent(bathroom_penalty),
            condition_percent=_percent(condition_penalty),
            feature_bonus=round(feature_bonus, 1),
            weighted_penalty=weighted_penalty,
            overall_percent=round(overall_percent, 1),
        )

    # =========================================================================
    # Distance
    # =========================================================================

    @staticmethod
    def resolve_distance(
        criteria: SearchCriteria,
        candidate: RetrievedCandidate,
    ) -> Tuple[float, DistanceSource]:
        """
        Distance to the candidate in km and how it was obtained.

        Prefers the retriever's value, then the great-circle distance, then
        the area-hierarchy proxy.
        """
        if candidate.distance_km is not None:
            return max(0.0, candidate.distance_km), DistanceSource.RETRIEVER

        record = candidate.record
        if criteria.has_coordinates and record.has_coordinates:
            return (
                haversine_km(criteria.latitude, criteria.longitude, record.latitude, record.longitude),
                DistanceSource.HAVERSINE,
            )

        return (
            hierarchy_distance_km(
                criteria.urbanization, criteria.suburb, criteria.city,
                record.urbanization, record.suburb, record.city,
            ),
            DistanceSource.HIERARCHY,
        )

    # =========================================================================
    # Factor Penalties
    # =========================================================================

    @staticmethod
    def _relative_penalty(target: Optional[float], value: Optional[float]) -> float:
        """Relative difference to target, capped at 1. Missing data is a full penalty."""
        if not target or not value:
            return 1.0
        return min(abs(target - value) / target, 1.0)

    @staticmethod
    def _factor_percent(target: Optional[float], value: Optional[float], penalty: float) -> float:
        # Missing data shows as 0% rather than the 0% implied by a full penalty
        if not target or not value:
            return 0.0
        return _percent(penalty)

    def _price_penalty(
        self,
        criteria: SearchCriteria,
        record: PropertyRecord,
        price: Optional[float],
    ) -> float:
        """
        Relative price difference, relaxed by the condition gap.

        A renovation project is expected to be cheaper than a finished home,
        so part of the price gap is explained by condition.
        """
        if not criteria.price or not price:
            return 1.0

        price_diff = abs(criteria.price - price) / criteria.price
        adjustment = self.condition_price_adjustment(
            criteria.condition_rating, record.condition_rating
        )
        return min(max(0.0, price_diff - adjustment), 1.0)

    def condition_price_adjustment(
        self,
        target: Optional[Condition],
        candidate: Optional[Condition],
    ) -> float:
        """
        Share of a price difference explained by condition (0 to 0.3).
        """
        if target is None or candidate is None:
            return 0.0
        gap = abs(target.value_multiplier - candidate.value_multiplier)
        return min(
            gap * self._thresholds.condition_price_factor,
            self._thresholds.condition_price_cap,
        )

    @staticmethod
    def _room_penalty(target: Optional[int], value: Optional[int], max_diff: int) -> float:
        diff = abs((target or 0) - (value or 0))
        return min(diff / max_diff, 1.0)

    def condition_penalty(
        self,
        target: Optional[Condition],
        candidate: Optional[Condition],
        distance_km: float,
        target_given: bool = True,
        candidate_given: bool = True,
    ) -> float:
        """
        Condition penalty (0-1, lower is better).

        Nearby (within 2 km) comparables get special treatment:
        - identical condition is a perfect match
        - a fixer-upper reveals the pre-renovation baseline, so it is a
          strong comparable
        - a small condition gap is still a good match

        Unrecognised ratings count as "good".
        """
        if not target_given and not candidate_given:
            return BOTH_CONDITIONS_MISSING_PENALTY
        if not target_given or not candidate_given:
            return ONE_CONDITION_MISSING_PENALTY

        target = target or Condition.GOOD
        candidate = candidate or Condition.GOOD
        gap = abs(target.rank - candidate.rank)

        t = self._thresholds
        if distance_km <= t.renovation_comparable_km:
            if gap == 0:
                return 0.0
            if candidate.is_fixer_upper:
                return t.renovation_comparable_penalty
            if gap <= t.nearby_condition_gap:
                return t.nearby_condition_penalty

        return min(gap / t.max_condition_rank_gap, 1.0)
