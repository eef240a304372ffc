# backend/placescout/main.py
"""
FastAPI application.

Run with: uvicorn placescout.main:app (from backend/).
"""
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from .core.config import get_settings, is_running_tests
from .core.constants import API_DESCRIPTION, API_TITLE, API_VERSION, BRAND_NAME
from .core.request_context import attach_operation_id_filter
from .errors import register_error_handlers
from .middleware.prometheus_middleware import PrometheusMiddleware
from .middleware.request_id import RequestIdMiddleware
from .routes import health, ingest, prometheus, providers, search
from .services.container import ServiceContainer, build_services

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - [%(operation_id)s] %(message)s",
)
attach_operation_id_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build (unless injected), validate and start services; stop them on shutdown."""
    logger.info(f"{BRAND_NAME} API starting up...")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    services: Optional[ServiceContainer] = getattr(app.state, "services", None)
    if services is None:
        services = build_services(get_settings())
        app.state.services = services

    await services.startup()
    try:
        yield
    finally:
        logger.info(f"{BRAND_NAME} API shutting down...")
        await services.shutdown()


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=app_lifespan,
    )
    if services is not None:
        app.state.services = services

    register_error_handlers(app)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(search.router, prefix="/api/search")
    app.include_router(ingest.router, prefix="/api/ingest")
    app.include_router(providers.router, prefix="/api/providers")
    app.include_router(health.router, prefix="/api")
    app.include_router(prometheus.router)
    return app


app = create_app()
