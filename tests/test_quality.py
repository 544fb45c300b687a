"""
Tests for the Quality Assessor.

Verifies:
- Recency and proximity step functions with exponential decay
- Completeness with media bonus
- Quality-weighted cross-candidate averages
- Distribution, top performers and recommendations
- Maturity bonus tiers and cap
"""

import math

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comparables.models import (
    DistanceSource,
    ListingType,
    PropertyRecord,
    ScoredCandidate,
    SearchCriteria,
)
from core.comparables.quality import QualityAssessor, recommend


NOW = datetime(2024, 6, 1, 12, 0, 0)

CRITERIA = SearchCriteria(
    listing_type=ListingType.SALE,
    price_field="sale_price",
    property_type="villa",
    latitude=36.51,
    longitude=-4.88,
    price=900_000,
    build_area=250,
    reference="SUBJ",
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def assessor():
    return QualityAssessor(clock=lambda: NOW)


@pytest.fixture
def make_scored():
    """Factory fixture for scored candidates."""
    def _create(
        ref="C1",
        distance_km=0.3,
        source=DistanceSource.HAVERSINE,
        overall=90.0,
        age_days=3,
        images=("a.jpg",),
        **record_overrides,
    ) -> ScoredCandidate:
        data = dict(
            id=ref,
            reference=ref,
            property_type="villa",
            is_sale=True,
            sale_price=900_000,
            latitude=36.51,
            longitude=-4.88,
            build_area=250,
            bedrooms=4,
            bathrooms=3,
            images=images,
            last_updated=NOW - timedelta(days=age_days) if age_days is not None else None,
        )
        data.update(record_overrides)
        record = PropertyRecord(**data)
        return ScoredCandidate(
            record=record,
            price=record.sale_price,
            distance_km=distance_km,
            distance_source=source,
            distance_percent=0.0,
            size_percent=0.0,
            price_percent=0.0,
            bedroom_percent=0.0,
            bathroom_percent=0.0,
            condition_percent=0.0,
            feature_bonus=0.0,
            weighted_penalty=0.0,
            overall_percent=overall,
        )
    return _create


# =============================================================================
# Test: Components
# =============================================================================

class TestRecency:
    """Tests for the recency step function."""

    @pytest.mark.parametrize("age,expected", [
        (0, 1.0),
        (7, 1.0),
        (8, 0.8),
        (30, 0.8),
        (90, 0.6),
        (180, 0.4),
        (360, 0.4 * math.exp(-1)),
        (1000, 0.1),
    ])
    def test_recency_score(self, assessor, age, expected):
        assert assessor.recency_score(age) == pytest.approx(expected)

    def test_unknown_age(self, assessor, make_scored):
        assert assessor.age_days(make_scored(age_days=None)) == 365

    def test_timezone_aware_timestamp(self, assessor, make_scored):
        candidate = make_scored(last_updated=datetime(2024, 5, 22, tzinfo=timezone.utc))
        assert assessor.recency_score(assessor.age_days(candidate)) == 0.8


class TestProximity:
    """Tests for the proximity step function."""

    @pytest.mark.parametrize("distance,expected", [
        (0.3, 1.0),
        (1.0, 0.85),
        (1.5, 0.65),
        (3.0, 0.45),
        (15.0, 0.45 * math.exp(-1)),
        (100.0, 0.1),
    ])
    def test_proximity_score(self, assessor, make_scored, distance, expected):
        candidate = make_scored(distance_km=distance)
        assert assessor.proximity_score(candidate) == pytest.approx(expected)

    def test_no_coordinates(self, assessor, make_scored):
        candidate = make_scored(distance_km=1.0, source=DistanceSource.HIERARCHY)
        assert assessor.proximity_score(candidate) == 0.5


class TestCompleteness:
    """Tests for the completeness score."""

    def test_full_record_with_media(self, assessor, make_scored):
        assert assessor.completeness_score(make_scored()) == 1.0

    def test_full_record_without_media(self, assessor, make_scored):
        assert assessor.completeness_score(make_scored(images=())) == 1.0

    def test_sparse_record(self, assessor, make_scored):
        candidate = make_scored(
            images=(), age_days=None, latitude=None, longitude=None,
            build_area=None, bedrooms=None, bathrooms=None,
        )
        # price and property type only
        assert assessor.completeness_score(candidate) == 0.25

    def test_media_bonus(self, assessor, make_scored):
        candidate = make_scored(age_days=None, latitude=None, longitude=None, build_area=None)
        assert assessor.completeness_score(candidate) == pytest.approx(0.6)


class TestScoreCandidate:
    """Tests for per-candidate overall quality."""

    def test_overall_is_weighted_sum(self, assessor, make_scored):
        quality = assessor.score_candidate(make_scored())

        assert quality.recency == 1.0
        assert quality.proximity == 1.0
        assert quality.similarity == 0.9
        assert quality.completeness == 1.0
        assert quality.overall == pytest.approx(0.25 + 0.30 + 0.35 * 0.9 + 0.10)

    def test_strengths(self, assessor, make_scored):
        quality = assessor.score_candidate(make_scored())
        assert quality.strengths == [
            "Fresh data", "Close location", "Similar property", "Complete information"
        ]


# =============================================================================
# Test: Assessment
# =============================================================================

class TestAssess:
    """Tests for the aggregate assessment."""

    def test_weighted_averages(self, assessor, make_scored):
        strong = make_scored("A")
        weak = make_scored(
            "B", distance_km=5.0, source=DistanceSource.HIERARCHY, overall=50.0,
            age_days=None, images=(), latitude=None, longitude=None,
        )
        qa = assessor.score_candidate(strong)
        qb = assessor.score_candidate(weak)
        total = qa.weight + qb.weight

        assessment = assessor.assess(CRITERIA, [strong, weak])

        assert assessment.breakdown["recency"] == pytest.approx(
            (qa.recency * qa.weight + qb.recency * qb.weight) / total
        )
        assert assessment.breakdown["proximity"] == pytest.approx(
            (1.0 * qa.weight + 0.5 * qb.weight) / total
        )
        assert assessment.average_distance_km == pytest.approx(0.3)
        assert assessment.average_age_days == pytest.approx(
            (3 * qa.weight + 365 * qb.weight) / total
        )
        assert assessment.total_comparables == 2
        assert assessment.weights == [qa.weight, qb.weight]

    def test_overall_from_breakdown(self, assessor, make_scored):
        assessment = assessor.assess(CRITERIA, [make_scored("A"), make_scored("B", overall=60.0)])

        expected = (
            0.25 * assessment.breakdown["recency"]
            + 0.30 * assessment.breakdown["proximity"]
            + 0.35 * assessment.breakdown["similarity"]
            + 0.10 * assessment.breakdown["completeness"]
        )
        assert assessment.overall_score == pytest.approx(expected)
        assert 0.0 <= assessment.overall_score <= 1.0

    def test_distribution_and_top_performers(self, assessor, make_scored):
        candidates = [
            make_scored("A"),
            make_scored("B", overall=95.0),
            make_scored("C", distance_km=20.0, overall=10.0, age_days=400, images=()),
            make_scored("D", overall=70.0),
        ]

        assessment = assessor.assess(CRITERIA, candidates)

        assert sum(assessment.distribution.values()) == 4
        assert assessment.distribution["excellent"] == 3
        top = [q.candidate.reference for q in assessment.top_performers]
        assert top == ["B", "A", "D"]

    def test_empty_set(self, assessor):
        assessment = assessor.assess(CRITERIA, [])

        assert assessment.overall_score == 0.0
        assert assessment.total_comparables == 0
        assert assessment.average_distance_km is None
        assert assessment.recommendation.level == "poor"

    def test_bonus_reported_separately(self, assessor, make_scored):
        assessment = assessor.assess(CRITERIA, [make_scored()], n_comparables=60, n_analyses=25)

        assert assessment.maturity_bonus == pytest.approx(0.2)
        assert assessment.adjusted_score == pytest.approx(min(1.0, assessment.overall_score + 0.2))

    def test_to_dict(self, assessor, make_scored):
        data = assessor.assess(CRITERIA, [make_scored()]).to_dict()

        assert data["details"]["totalComparables"] == 1
        assert data["details"]["topPerformers"][0]["reference"] == "C1"
        assert data["recommendation"]["level"] == "excellent"


# =============================================================================
# Test: Maturity Bonus & Recommendation
# =============================================================================

class TestMaturityBonus:
    """Tests for the area maturity bonus."""

    @pytest.mark.parametrize("comparables,analyses,expected", [
        (0, 0, 0.0),
        (19, 9, 0.0),
        (20, 0, 0.05),
        (20, 10, 0.1),
        (50, 0, 0.1),
        (49, 19, 0.1),
        (50, 20, 0.2),
        (500, 500, 0.2),
    ])
    def test_tiers(self, assessor, comparables, analyses, expected):
        assert assessor.maturity_bonus(comparables, analyses) == pytest.approx(expected)


class TestRecommendation:
    """Tests for recommendation levels."""

    @pytest.mark.parametrize("score,level,confidence", [
        (0.85, "excellent", "high"),
        (0.65, "good", "medium"),
        (0.45, "fair", "medium"),
        (0.2, "poor", "low"),
    ])
    def test_levels(self, score, level, confidence):
        recommendation = recommend(score)
        assert recommendation.level == level
        assert recommendation.confidence == confidence
