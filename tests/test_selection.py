"""
Tests for the Result Selector.

Verifies:
- Display list is capped, the full set is not
- Ranking by overall similarity, nearest first on ties
- Relaxation hook is called only when too few candidates were found
"""

import pytest
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
from core.comparables.selection import ResultSelector


# =============================================================================
# Test Fixtures
# =============================================================================

CRITERIA = SearchCriteria(
    listing_type=ListingType.SALE,
    price_field="sale_price",
    property_type="villa",
    city="Marbella",
    price=900_000,
)


@pytest.fixture
def make_scored():
    """Factory fixture for scored candidates with a given overall score."""
    def _create(ref: str, overall: float, distance_km: float = 1.0) -> ScoredCandidate:
        return ScoredCandidate(
            record=PropertyRecord(id=ref, reference=ref, property_type="villa"),
            price=900_000,
            distance_km=distance_km,
            distance_source=DistanceSource.RETRIEVER,
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
# Test: Selection
# =============================================================================

class TestSelect:
    """Tests for display capping and ranking."""

    def test_display_capped_all_kept(self, make_scored):
        candidates = [make_scored(f"C{i}", 50.0 + i) for i in range(15)]

        selection = ResultSelector().select(CRITERIA, candidates)

        assert len(selection.display) == 12
        assert selection.total_found == 15
        assert len(selection.all) >= len(selection.display)

    def test_sorted_descending(self, make_scored):
        candidates = [make_scored(f"C{i}", score) for i, score in enumerate([40.0, 90.0, 70.0])]

        selection = ResultSelector().select(CRITERIA, candidates)

        assert [c.overall_percent for c in selection.all] == [90.0, 70.0, 40.0]

    def test_ties_broken_by_distance(self, make_scored):
        candidates = [make_scored("FAR", 80.0, 5.0), make_scored("NEAR", 80.0, 0.5)]

        selection = ResultSelector().select(CRITERIA, candidates)

        assert [c.reference for c in selection.display] == ["NEAR", "FAR"]

    def test_display_is_prefix_of_all(self, make_scored):
        candidates = [make_scored(f"C{i}", float(i)) for i in range(20)]
        selection = ResultSelector(display_count=5).select(CRITERIA, candidates)

        assert selection.display == selection.all[:5]

    def test_empty(self):
        selection = ResultSelector().select(CRITERIA, [])
        assert selection.display == []
        assert selection.total_found == 0


# =============================================================================
# Test: Relaxation Hook
# =============================================================================

class TestRelaxation:
    """Tests for the relaxation hook."""

    def test_hook_called_when_too_few(self, make_scored):
        calls = []

        def hook(criteria, candidates, display_count):
            calls.append((len(candidates), display_count))
            return candidates + [make_scored("EXTRA", 99.0)]

        selection = ResultSelector(relaxation=hook).select(
            CRITERIA, [make_scored("C1", 60.0)]
        )

        assert calls == [(1, 12)]
        assert [c.reference for c in selection.all] == ["EXTRA", "C1"]

    def test_hook_not_called_when_enough(self, make_scored):
        calls = []

        def hook(criteria, candidates, display_count):
            calls.append(1)
            return candidates

        ResultSelector(display_count=2, relaxation=hook).select(
            CRITERIA, [make_scored("C1", 60.0), make_scored("C2", 70.0)]
        )

        assert calls == []

    def test_default_hook_returns_unchanged(self, make_scored):
        candidates = [make_scored("C1", 60.0)]
        selection = ResultSelector().select(CRITERIA, candidates)

        assert selection.all == candidates
