# backend/placescout/api/dependencies/services.py
"""
Service dependencies for the routes.

Services are built once by the composition root and live on ``app.state``;
these functions hand them to endpoints via ``Depends``.
"""

from fastapi import Depends, Request

from ...core.exceptions import ServiceException
from ...services.container import ServiceContainer
from ...services.ingestion.pipeline import IngestionPipeline
from ...services.providers.health_monitor import ProviderHealthMonitor
from ...services.search.unified_search_service import UnifiedSearchService


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ServiceException("Services are not initialized")
    return services


def get_search_service(
    services: ServiceContainer = Depends(get_services),
) -> UnifiedSearchService:
    return services.search


def get_ingestion_pipeline(
    services: ServiceContainer = Depends(get_services),
) -> IngestionPipeline:
    return services.ingestion


def get_health_monitor(
    services: ServiceContainer = Depends(get_services),
) -> ProviderHealthMonitor:
    return services.health_monitor
