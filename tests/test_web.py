"""
Tests for the FastAPI application.

Verifies:
- Health endpoints
- Analysis endpoint runs the pipeline and caches the result per session
- Invalid subjects get a 422 with the degraded result body
- Maturity counters are updated after a completed analysis
- Maturity, decision metrics and cache stats endpoints
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from core.comparables import InMemoryCandidateRetriever, PropertyRecord
from core.decisions import AreaMaturityRepository
from utils.config import Config
from web.app import create_app


# =============================================================================
# Test Fixtures
# =============================================================================

SUBJECT = {
    "reference": "SUBJ",
    "property_type": "villa",
    "is_sale": True,
    "sale_price": 900000,
    "latitude": 36.51,
    "longitude": -4.88,
    "urbanization": "Nueva Andalucia",
    "city": "Marbella",
    "build_area": 250,
    "bedrooms": 4,
    "bathrooms": 3,
    "condition": "good",
    "features": ["pool", "garden"],
}


def _villas():
    return [
        PropertyRecord(
            id=f"V{i}",
            reference=f"V{i}",
            property_type="villa",
            is_sale=True,
            sale_price=700_000 + i * 28_000,
            latitude=36.51 + 0.002 * i,
            longitude=-4.88,
            urbanization="Nueva Andalucia",
            city="Marbella",
            build_area=240 + i,
            bedrooms=4,
            bathrooms=3,
            condition="good",
        )
        for i in range(15)
    ]


@pytest.fixture
def repository():
    return AreaMaturityRepository()


@pytest.fixture
def client(tmp_path, repository):
    config = Config(data_dir=str(tmp_path), property_api_url=None)
    app = create_app(
        config=config,
        retriever=InMemoryCandidateRetriever(_villas()),
        repository=repository,
    )
    return TestClient(app)


# =============================================================================
# Test: Health
# =============================================================================

class TestHealth:
    """Tests for health endpoints."""

    def test_root(self, client):
        assert client.get("/").json() == {"status": "ok"}

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_api_health(self, client):
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"


# =============================================================================
# Test: Analysis
# =============================================================================

class TestAnalysisEndpoint:
    """Tests for running and fetching analyses."""

    def test_run_analysis(self, client):
        response = client.post("/api/analysis/s1", json={"property": SUBJECT})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert data["displayCount"] == 12
        assert data["totalFound"] == 15
        assert data["marketContext"]["stats"]["sampleSize"] == 15
        assert data["sectionDecisions"]["decisions"]["market_data"]["approach"] == "ai"

    def test_cached_analysis_fetchable(self, client):
        posted = client.post("/api/analysis/s1", json={"property": SUBJECT}).json()

        response = client.get("/api/analysis/s1")

        assert response.status_code == 200
        assert response.json()["timestamp"] == posted["timestamp"]

    def test_unknown_session_404(self, client):
        assert client.get("/api/analysis/nope").status_code == 404

    def test_invalidate(self, client):
        client.post("/api/analysis/s1", json={"property": SUBJECT})

        response = client.delete("/api/analysis/s1")

        assert response.json() == {"session_id": "s1", "invalidated": True}
        assert client.get("/api/analysis/s1").status_code == 404

    def test_invalid_subject_422(self, client):
        subject = {"reference": "BAD", "is_sale": True, "sale_price": 900000}

        response = client.post("/api/analysis/s2", json={"property": subject})

        assert response.status_code == 422
        data = response.json()
        assert data["status"] == "invalid_criteria"
        assert data["errors"]

    def test_location_hint(self, client):
        subject = {k: v for k, v in SUBJECT.items() if k not in ("latitude", "longitude")}
        body = {"property": subject, "location_hint": {"latitude": 36.51, "longitude": -4.88}}

        data = client.post("/api/analysis/s3", json=body).json()

        assert data["criteria"]["latitude"] == 36.51
        assert data["totalFound"] == 15


# =============================================================================
# Test: Maturity & Metrics
# =============================================================================

class TestMaturityEndpoints:
    """Tests for maturity counters and metrics."""

    def test_counters_recorded_after_analysis(self, client, repository):
        client.post("/api/analysis/s1", json={"property": SUBJECT})
        client.post("/api/analysis/s1", json={"property": SUBJECT})

        response = client.get("/api/maturity/nueva_andalucia")

        assert response.status_code == 200
        data = response.json()
        assert data["n_analyses"] == 1
        assert data["n_comparables"] == 15

    def test_unknown_area_404(self, client):
        assert client.get("/api/maturity/nowhere").status_code == 404

    def test_reset(self, client):
        client.post("/api/analysis/s1", json={"property": SUBJECT})

        response = client.post("/api/maturity/reset", json={"area": "Nueva Andalucia"})

        assert response.json() == {"area": "Nueva Andalucia", "removed": 1}
        assert client.get("/api/maturity/nueva_andalucia").status_code == 404

    def test_reset_all(self, client):
        client.post("/api/analysis/s1", json={"property": SUBJECT})

        assert client.post("/api/maturity/reset", json={}).json()["removed"] == 1

    def test_decision_metrics(self, client):
        client.post("/api/analysis/s1", json={"property": SUBJECT})

        data = client.get("/api/decisions/metrics").json()

        assert data["decisions"] == 1
        assert data["ai_usage"] == 9

    def test_cache_stats(self, client):
        client.post("/api/analysis/s1", json={"property": SUBJECT})
        client.post("/api/analysis/s1", json={"property": SUBJECT})

        data = client.get("/api/cache/stats").json()

        assert data["computations"] == 1
        assert data["results"]["hits"] == 1
        assert data["in_flight"] == 0
