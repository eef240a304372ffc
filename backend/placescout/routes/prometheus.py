# backend/placescout/routes/prometheus.py
"""
Prometheus metrics endpoint.

Public, unauthenticated scrape target serving the placescout_ registry.
"""

from fastapi import APIRouter, Response

from ..monitoring.prometheus_metrics import PrometheusMetrics

router = APIRouter(tags=["monitoring"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=PrometheusMetrics.get_metrics(),
        media_type=PrometheusMetrics.get_content_type(),
        headers={"Cache-Control": "no-store"},
    )
