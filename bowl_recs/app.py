from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from .analytics.aggregator import compute_analytics
from .catalog.data_store import InMemoryCatalog
from .llm.groq_client import GroqPersonalizationProvider
from .recommendations.coordinator import RecommendationCoordinator
from .recommendations.models import (
    Allergen,
    DietaryRestriction,
    PersonalizationHealth,
    ProteinPreference,
    RecommendationRequest,
    RecommendationResult,
)


def build_coordinator() -> RecommendationCoordinator:
    """Wire the default engine: local catalog plus Groq personalization."""
    catalog = InMemoryCatalog()
    return RecommendationCoordinator(
        personalization=GroqPersonalizationProvider(catalog.bowls),
        catalog=catalog,
    )


def get_coordinator(request: Request) -> RecommendationCoordinator:
    return request.app.state.coordinator


def create_app(coordinator: RecommendationCoordinator | None = None) -> FastAPI:
    logging.getLogger("bowl_recs").setLevel(os.environ.get("BOWL_RECS_LOG_LEVEL", "INFO").upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.coordinator.aclose()

    app = FastAPI(title="Bowl Recommendation API", version="1.0.0", lifespan=lifespan)
    app.state.coordinator = coordinator or build_coordinator()

    # ── Public endpoints ─────────────────────────────────────────────────

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/personalization", response_model=PersonalizationHealth)
    async def personalization_health(
        engine: RecommendationCoordinator = Depends(get_coordinator),
    ) -> PersonalizationHealth:
        return await engine.personalization_health()

    @app.get("/metadata")
    def metadata() -> dict:
        return {
            "dietary_restrictions": [r.value for r in DietaryRestriction],
            "allergens": [a.value for a in Allergen],
            "protein_preferences": [p.value for p in ProteinPreference],
        }

    @app.post("/recommendations", response_model=RecommendationResult)
    async def recommendations(
        body: RecommendationRequest,
        engine: RecommendationCoordinator = Depends(get_coordinator),
    ) -> RecommendationResult:
        return await engine.resolve(body)

    # ── Admin endpoints ──────────────────────────────────────────────────

    @app.get("/cache/stats")
    def cache_stats(engine: RecommendationCoordinator = Depends(get_coordinator)) -> dict:
        return engine.stats()

    @app.get("/analytics")
    def analytics(engine: RecommendationCoordinator = Depends(get_coordinator)) -> dict:
        return compute_analytics(engine.events.events())

    return app


app = create_app()
