"""Factory for place providers."""

import logging
from typing import Dict, List, Optional

from ...core.config import Settings
from ...core.constants import (
    PROVIDER_AI_FALLBACK,
    PROVIDER_GEOAPIFY,
    PROVIDER_MOCK,
    PROVIDER_OPENSTREETMAP,
    PROVIDER_OPENTRIPMAP,
    PROVIDER_RAPIDAPI,
)
from .ai_fallback_provider import AIFallbackProvider
from .base import PlaceProvider
from .geoapify_provider import GeoapifyProvider
from .mock_provider import MockPlaceProvider
from .openstreetmap_provider import OpenStreetMapProvider
from .opentripmap_provider import OpenTripMapProvider
from .rapidapi_provider import RapidAPIProvider

logger = logging.getLogger(__name__)


def create_place_provider(name: str, settings: Settings) -> Optional[PlaceProvider]:
    key = name.strip().lower()
    provider: PlaceProvider
    if key == PROVIDER_GEOAPIFY:
        provider = GeoapifyProvider(settings.secret("geoapify_api_key"))
    elif key == PROVIDER_OPENTRIPMAP:
        provider = OpenTripMapProvider(settings.secret("opentripmap_api_key"))
    elif key == PROVIDER_OPENSTREETMAP:
        provider = OpenStreetMapProvider(settings.overpass_url)
    elif key == PROVIDER_RAPIDAPI:
        provider = RapidAPIProvider(
            settings.secret("rapidapi_key"),
            host=settings.rapidapi_host,
            geocoding_api_key=settings.secret("geoapify_api_key"),
        )
    elif key == PROVIDER_AI_FALLBACK:
        provider = AIFallbackProvider(settings.secret("openai_api_key"), model=settings.fallback_model)
    elif key == PROVIDER_MOCK:
        provider = MockPlaceProvider()
    else:
        logger.warning(f"Unknown place provider '{name}' ignored")
        return None
    return provider


def create_place_providers(settings: Settings) -> Dict[str, PlaceProvider]:
    """Providers named in PLACE_PROVIDERS, keyed by provider name."""
    providers: Dict[str, PlaceProvider] = {}
    for name in settings.provider_names:
        provider = create_place_provider(name, settings)
        if provider is None:
            continue
        if not provider.is_configured:
            logger.warning(f"Place provider '{provider.name}' registered without credentials")
        providers[provider.name] = provider
    return providers


def default_tier_order(settings: Settings, available: List[str]) -> List[str]:
    """Configured priority order, then any remaining providers, fallback last."""
    fallback = settings.fallback_provider
    order = [n for n in settings.priority_order if n in available and n != fallback]
    order += [n for n in available if n not in order and n != fallback]
    if fallback in available:
        order.append(fallback)
    return order
