"""
FastAPI application for the comparables engine.

Exposes the analysis pipeline per session, area maturity counters, decision
metrics and cache statistics. Production deployment configuration via
environment variables.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.comparables import (
    AnalysisStatus,
    CandidateRetriever,
    ComparableAnalysisService,
    ComparablesConfig,
    HttpCandidateRetriever,
    InMemoryCandidateRetriever,
    LocationHint,
    PropertyRecord,
    SessionCoordinator,
)
from core.decisions import AreaMaturityRepository, DecisionConfig, DecisionEngine
from utils.config import Config


logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


# =============================================================================
# Environment Configuration
# =============================================================================

IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:8000"]


# =============================================================================
# API Request Models
# =============================================================================

class SubjectPropertyInput(BaseModel):
    """Subject property as posted by the report builder."""
    id: Optional[str] = None
    reference: str = ""
    property_type: Optional[str] = None
    is_sale: bool = False
    is_long_term: bool = False
    is_short_term: bool = False
    sale_price: Optional[float] = None
    monthly_price: Optional[float] = None
    weekly_price_from: Optional[float] = None
    weekly_price_to: Optional[float] = None
    price: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    address: str = ""
    build_area: Optional[float] = None
    plot_area: Optional[float] = None
    terrace_area: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    condition: Optional[str] = None
    features: List[str] = []
    images: List[str] = []

    def to_record(self) -> PropertyRecord:
        return PropertyRecord.from_dict(self.model_dump(exclude_none=True))


class LocationHintInput(BaseModel):
    """Location resolved upstream (geocoder)."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None

    def to_hint(self) -> LocationHint:
        return LocationHint(**self.model_dump())


class AnalysisRequest(BaseModel):
    property: SubjectPropertyInput
    location_hint: Optional[LocationHintInput] = None


class MaturityResetRequest(BaseModel):
    area: Optional[str] = None  # None resets every area


# =============================================================================
# Wiring
# =============================================================================

def build_retriever(config: Config) -> CandidateRetriever:
    """Remote API when configured, else the JSON export in the data directory."""
    if config.property_api_url:
        logger.info("Using property API at %s", config.property_api_url)
        return HttpCandidateRetriever(config.property_api_url, timeout=config.request_timeout)

    path = Path(config.properties_file)
    if path.exists():
        return InMemoryCandidateRetriever.from_json_file(path)

    logger.warning("No property source configured (%s missing); searches will find nothing", path)
    return InMemoryCandidateRetriever([])


def build_comparables_config(config: Config) -> ComparablesConfig:
    return (
        ComparablesConfig.builder()
        .with_search_radius(config.search_radius_km)
        .with_display_count(config.display_count)
        .with_luxury_threshold(config.luxury_threshold)
        .build()
    )


def create_app(
    config: Optional[Config] = None,
    retriever: Optional[CandidateRetriever] = None,
    repository: Optional[AreaMaturityRepository] = None,
    coordinator: Optional[SessionCoordinator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or Config.load()

    app = FastAPI(
        title="Comparables Engine",
        description="Comparable property analysis with system/AI section routing",
        version=APP_VERSION,
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
        debug=config.debug and not IS_PRODUCTION,
    )

    # Healthchecks first: no dependencies, no IO
    @app.get("/", include_in_schema=False)
    def root():
        return {"status": "ok"}

    @app.get("/health", include_in_schema=False)
    def health():
        return {"status": "healthy"}

    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )

    # Components are per application; nothing is shared across apps
    repository = repository if repository is not None else AreaMaturityRepository(config.maturity_file)
    coordinator = coordinator or SessionCoordinator(
        intermediate_ttl=config.intermediate_cache_ttl,
        result_ttl=config.result_cache_ttl,
    )
    engine = DecisionEngine(
        repository=repository,
        config=DecisionConfig(cache_ttl_seconds=config.decision_cache_ttl),
    )
    service = ComparableAnalysisService(
        retriever=retriever or build_retriever(config),
        coordinator=coordinator,
        decision_engine=engine,
        maturity=repository,
        config=build_comparables_config(config),
    )
    app.state.service = service
    app.state.repository = repository

    # ==========================================================================
    # Analysis
    # ==========================================================================

    @app.post("/api/analysis/{session_id}")
    async def run_analysis(session_id: str, request: AnalysisRequest, background_tasks: BackgroundTasks):
        """
        Analyze a subject property for a session.

        Concurrent requests for one session share a single computation;
        completed analyses are served from cache for 24 hours. Maturity
        counters are updated after the response is sent.
        """
        hint = request.location_hint.to_hint() if request.location_hint else None
        result = await service.analyze(session_id, request.property.to_record(), hint)

        if result.status == AnalysisStatus.COMPLETE:
            background_tasks.add_task(service.record_maturity, result)

        status_code = 422 if result.status == AnalysisStatus.INVALID_CRITERIA else 200
        return JSONResponse(result.to_dict(), status_code=status_code)

    @app.get("/api/analysis/{session_id}")
    async def get_analysis(session_id: str):
        """Return a cached analysis for link sharing."""
        result = coordinator.cached_result(session_id)
        if result is None:
            raise HTTPException(status_code=404, detail="No cached analysis for this session")
        return result.to_dict()

    @app.delete("/api/analysis/{session_id}")
    async def invalidate_analysis(session_id: str):
        return {"session_id": session_id, "invalidated": coordinator.invalidate(session_id)}

    # ==========================================================================
    # Maturity & Decisions
    # ==========================================================================

    @app.get("/api/maturity/{area}")
    async def get_maturity(area: str):
        maturity = repository.get(area)
        if maturity is None:
            raise HTTPException(status_code=404, detail=f"No maturity data for area: {area}")
        return maturity.to_dict()

    @app.post("/api/maturity/reset")
    async def reset_maturity(request: MaturityResetRequest):
        removed = repository.reset(request.area)
        return {"area": request.area, "removed": removed}

    @app.get("/api/decisions/metrics")
    async def decision_metrics():
        return engine.metrics()

    @app.get("/api/cache/stats")
    async def cache_stats():
        return coordinator.stats()

    @app.get("/api/health")
    async def api_health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": APP_VERSION,
            "environment": "production" if IS_PRODUCTION else "development",
        }

    logger.info("Comparables engine app created")
    return app


# Create app instance for uvicorn
app = create_app()
