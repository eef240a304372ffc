"""Provider-agnostic place source interfaces."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
import json
import logging
from typing import Any, AsyncIterator, Iterable, List, Optional

import httpx

from ...core.exceptions import (
    ProviderAuthError,
    ProviderResponseError,
    ProviderTransientError,
    provider_error_for_status,
)
from ...schemas.places import RawPlaceRecord
from ..geo import parse_coordinates

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT_S = 10.0


class PlaceProvider(ABC):
    """
    One external source of places.

    ``fetch`` returns an empty list when the source has nothing, and raises
    the provider error taxonomy (transient / rate-limit / auth / response)
    on failure so the retry executor can classify it.
    """

    name: str = "provider"
    requires_location_name: bool = False
    supports_probe: bool = True

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def fetch(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        category_hint: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> List[RawPlaceRecord]:
        pass

    async def probe(self, timeout_s: float) -> bool:
        """Lightweight availability check. Providers without one override supports_probe."""
        return True

    @asynccontextmanager
    async def http(self, timeout_s: float = DEFAULT_HTTP_TIMEOUT_S) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            yield client

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
        **kwargs: Any,
    ) -> Any:
        """Send a request and decode JSON, mapping failures onto provider errors."""
        try:
            async with self.http(timeout_s) as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTransientError(self.name, f"timeout: {exc}") from exc
        except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            raise ProviderTransientError(self.name, f"network error: {exc}") from exc
        if resp.status_code >= 400:
            raise provider_error_for_status(self.name, resp.status_code, resp.text)
        try:
            return resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProviderResponseError(self.name, "response is not JSON") from exc

    def require_credential(self, value: Optional[str], label: str) -> str:
        if not value:
            raise ProviderAuthError(self.name, f"{label} is not configured")
        return value

    def build_record(
        self,
        *,
        name: Any,
        lat: Any,
        lon: Any,
        category: Any = "",
        address: Any = "",
        rating: Any = None,
        description: Any = None,
        image: Any = None,
        source_id: Any = None,
        tags: Iterable[str] = (),
    ) -> Optional[RawPlaceRecord]:
        """Normalize one provider item; None when it has no usable name or coordinates."""
        clean_name = str(name).strip() if name else ""
        if not clean_name:
            return None
        coordinates = parse_coordinates(lat, lon)
        if coordinates is None:
            logger.debug(f"{self.name}: dropping '{clean_name}' with unusable coordinates")
            return None
        return RawPlaceRecord(
            name=clean_name,
            category=str(category or ""),
            address=str(address or ""),
            coordinates=coordinates,
            rating=_to_rating(rating),
            description=str(description).strip() if description else None,
            image=str(image) if image else None,
            source=self.name,
            source_id=str(source_id) if source_id is not None else None,
            tags=[t for t in tags if t],
        )


def _to_rating(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    return rating if rating == rating else None
