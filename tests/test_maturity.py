"""
Tests for the Area Maturity Repository.

Verifies:
- Analysis counter increments per primary area
- Comparable counter keeps the greatest group size seen
- Lookup order (primary -> suburb -> city)
- Reset of one area and of all areas
- JSON persistence survives a restart; a corrupt file starts empty
- Listeners are told which area changed
"""

import logging

import pytest
from datetime import datetime
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.comparables.models import PropertyRecord
from core.decisions.maturity import AreaMaturityRepository
from core.decisions.models import AreaKeys, normalize_area_key


NOW = datetime(2024, 6, 1, 12, 0, 0)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def repository():
    return AreaMaturityRepository(clock=lambda: NOW)


@pytest.fixture
def make_record():
    """Factory fixture for records in a given area."""
    counter = {"n": 0}

    def _create(urbanization=None, suburb=None, city="Marbella") -> PropertyRecord:
        counter["n"] += 1
        return PropertyRecord(
            id=f"R{counter['n']}",
            urbanization=urbanization,
            suburb=suburb,
            city=city,
        )
    return _create


# =============================================================================
# Test: Area Keys
# =============================================================================

class TestAreaKeys:
    """Tests for area key normalization."""

    def test_normalize_area_key(self):
        assert normalize_area_key("Nueva Andalucia") == "nueva_andalucia"
        assert normalize_area_key("San Pedro-Alcántara") == "san_pedro_alc_ntara"
        assert normalize_area_key(None) is None

    def test_primary_is_most_specific(self):
        keys = AreaKeys.for_location(None, "Puerto Banus", "Marbella")

        assert keys.primary == "puerto_banus"
        assert keys.area_type == "suburb"
        assert keys.lookup_order == ["puerto_banus", "marbella"]

    def test_unknown_area(self):
        keys = AreaKeys.for_location(None, None, None)
        assert keys.primary == "unknown"
        assert keys.lookup_order == ["unknown"]


# =============================================================================
# Test: Counters
# =============================================================================

class TestCounters:
    """Tests for counter updates."""

    def test_record_analysis_increments(self, repository, make_record):
        subject = make_record(urbanization="Nueva Andalucia")

        repository.record_analysis(subject)
        area = repository.record_analysis(subject)

        assert area.n_analyses == 2
        assert area.area_name == "Nueva Andalucia"
        assert area.area_type == "urbanization"
        assert area.last_analysis_run == NOW
        assert area.has_data

    def test_comparables_keep_greatest(self, repository, make_record):
        def batch(n):
            return [make_record(urbanization="La Quinta") for _ in range(n)]

        repository.record_comparables(batch(3))
        assert repository.get("La Quinta").n_comparables == 3

        repository.record_comparables(batch(2))
        assert repository.get("La Quinta").n_comparables == 3

        repository.record_comparables(batch(5))
        assert repository.get("la_quinta").n_comparables == 5

    def test_comparables_grouped_by_area(self, repository, make_record):
        records = [
            make_record(urbanization="La Quinta"),
            make_record(urbanization="La Quinta"),
            make_record(suburb="Puerto Banus"),
        ]

        updated = repository.record_comparables(records)

        assert set(updated) == {"la_quinta", "puerto_banus"}
        assert updated["la_quinta"].n_comparables == 2
        assert updated["puerto_banus"].n_comparables == 1

    def test_no_records_no_change(self, repository):
        assert repository.record_comparables([]) == {}
        assert len(repository) == 0


# =============================================================================
# Test: Lookup
# =============================================================================

class TestLookup:
    """Tests for hierarchical lookup."""

    def test_falls_back_to_suburb(self, repository, make_record):
        repository.record_analysis(make_record(suburb="Marbella East"))
        keys = AreaKeys.for_location("Los Monteros", "Marbella East", "Marbella")

        area = repository.lookup(keys)

        assert area.area_key == "marbella_east"
        assert area.n_analyses == 1

    def test_falls_back_to_city(self, repository, make_record):
        repository.record_analysis(make_record(city="Marbella"))
        keys = AreaKeys.for_location("Los Monteros", "Marbella East", "Marbella")

        assert repository.lookup(keys).area_key == "marbella"

    def test_primary_preferred(self, repository, make_record):
        repository.record_analysis(make_record(city="Marbella"))
        repository.record_analysis(make_record(urbanization="Los Monteros"))
        keys = AreaKeys.for_location("Los Monteros", None, "Marbella")

        assert repository.lookup(keys).area_key == "los_monteros"

    def test_unrecorded_area_is_empty(self, repository):
        area = repository.lookup(AreaKeys.for_location("Sierra Blanca", None, None))

        assert area.area_key == "sierra_blanca"
        assert area.n_comparables == 0
        assert area.has_data is False

    def test_get_unknown(self, repository):
        assert repository.get("Nowhere") is None


# =============================================================================
# Test: Reset
# =============================================================================

class TestReset:
    """Tests for counter reset."""

    def test_reset_one_area(self, repository, make_record):
        repository.record_analysis(make_record(urbanization="La Quinta"))
        repository.record_analysis(make_record(urbanization="Los Monteros"))

        assert repository.reset("La Quinta") == 1
        assert repository.get("La Quinta") is None
        assert repository.get("Los Monteros") is not None

    def test_reset_all(self, repository, make_record):
        repository.record_analysis(make_record(urbanization="La Quinta"))
        repository.record_analysis(make_record(urbanization="Los Monteros"))

        assert repository.reset() == 2
        assert len(repository) == 0

    def test_reset_unknown_area(self, repository):
        assert repository.reset("Nowhere") == 0


# =============================================================================
# Test: Persistence & Listeners
# =============================================================================

class TestPersistence:
    """Tests for JSON file persistence."""

    def test_survives_restart(self, tmp_path, make_record):
        path = tmp_path / "maturity.json"
        repository = AreaMaturityRepository(persist_path=str(path), clock=lambda: NOW)
        repository.record_analysis(make_record(urbanization="La Quinta"))
        repository.record_comparables([make_record(urbanization="La Quinta")] * 4)

        reloaded = AreaMaturityRepository(persist_path=str(path))
        area = reloaded.get("La Quinta")

        assert area.n_analyses == 1
        assert area.n_comparables == 4
        assert area.updated_at == NOW

    def test_corrupt_file_starts_empty(self, tmp_path, caplog):
        path = tmp_path / "maturity.json"
        path.write_text("{not json")

        with caplog.at_level(logging.WARNING):
            repository = AreaMaturityRepository(persist_path=str(path))

        assert len(repository) == 0
        assert "Could not load area maturity data" in caplog.text


class TestListeners:
    """Tests for change notification."""

    def test_listener_receives_area_key(self, repository, make_record):
        changes = []
        repository.add_listener(changes.append)

        repository.record_analysis(make_record(urbanization="La Quinta"))
        repository.reset()

        assert changes == ["la_quinta", None]

    def test_failing_listener_does_not_block_update(self, repository, make_record):
        def broken(area_key):
            raise RuntimeError("listener down")

        repository.add_listener(broken)
        area = repository.record_analysis(make_record(urbanization="La Quinta"))

        assert area.n_analyses == 1
