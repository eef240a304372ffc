# backend/placescout/routes/providers.py
"""
Provider health endpoints: status, manual checks and enable/disable.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..api.dependencies.services import get_health_monitor
from ..core.exceptions import NotFoundException
from ..schemas.api import ProviderEnabledRequest, ProviderHealthResponse
from ..services.providers.health_monitor import ProviderHealthMonitor

router = APIRouter(tags=["providers"])


def _health_response(monitor: ProviderHealthMonitor) -> ProviderHealthResponse:
    statuses = sorted(monitor.all_statuses().values(), key=lambda status: status.tier)
    return ProviderHealthResponse(
        summary=monitor.system_summary(),
        providers=[status.to_dict() for status in statuses],
        last_reorder=monitor.last_reorder.to_dict() if monitor.last_reorder else None,
    )


@router.get("/health", response_model=ProviderHealthResponse)
async def provider_health(
    monitor: ProviderHealthMonitor = Depends(get_health_monitor),
) -> ProviderHealthResponse:
    return _health_response(monitor)


@router.post("/health/check", response_model=ProviderHealthResponse)
async def run_health_check(
    monitor: ProviderHealthMonitor = Depends(get_health_monitor),
) -> ProviderHealthResponse:
    await monitor.run_cycle()
    return _health_response(monitor)


@router.post("/{name}/enabled")
async def set_provider_enabled(
    name: str,
    body: ProviderEnabledRequest,
    monitor: ProviderHealthMonitor = Depends(get_health_monitor),
) -> Dict[str, Any]:
    if monitor.get_status(name) is None:
        raise NotFoundException(f"Unknown provider {name}")
    event = monitor.set_enabled(name, body.enabled)
    return {
        "name": name,
        "enabled": body.enabled,
        "order": monitor.current_order(),
        "reorder": event.to_dict() if event else None,
    }
