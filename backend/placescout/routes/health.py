# backend/placescout/routes/health.py
"""
Liveness endpoint with vector store and cache stats.
"""

import logging

from fastapi import APIRouter, Depends, Response

from ..api.dependencies.services import get_services
from ..core.constants import API_VERSION, BRAND_NAME
from ..schemas.api import HealthResponse
from ..services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response, services: ServiceContainer = Depends(get_services)
) -> HealthResponse:
    response.headers["Cache-Control"] = "no-store"
    status = "healthy"
    try:
        store = (await services.store.collection_stats()).model_dump(mode="json")
    except Exception as e:
        logger.error(f"Vector store health check failed: {e}")
        store = {"error": str(e)}
        status = "degraded"

    return HealthResponse(
        status=status,
        service=f"{BRAND_NAME} API",
        version=API_VERSION,
        checks={
            "vector_store": store,
            "cache": services.cache.stats(),
            "providers": services.health_monitor.system_summary()["overall"],
        },
    )
