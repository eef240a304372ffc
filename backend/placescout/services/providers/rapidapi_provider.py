"""RapidAPI Travel Places provider (GraphQL, name-based)."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ...core.constants import PROVIDER_RAPIDAPI
from ...schemas.places import RawPlaceRecord
from ..canonical import normalize_category
from .base import PlaceProvider

logger = logging.getLogger(__name__)

_GRAPHQL_CATEGORIES: Dict[str, str] = {
    "attraction": '"CULTURE", "HISTORY"',
    "nature": '"NATURE"',
    "entertainment": '"CULTURE"',
}
_DEFAULT_GRAPHQL_CATEGORIES = '"NATURE", "CULTURE", "HISTORY"'


class RapidAPIProvider(PlaceProvider):
    """
    Travel Places is queried by a named location: the name is geocoded first
    and the GraphQL search runs around the geocoded center. Queries that only
    carry coordinates are skipped by the cascade.
    """

    name = PROVIDER_RAPIDAPI
    requires_location_name = True

    def __init__(
        self,
        api_key: Optional[str],
        host: str = "travel-places.p.rapidapi.com",
        geocoding_api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        limit: int = 50,
    ) -> None:
        super().__init__(client)
        self.api_key = api_key
        self.host = host
        self.geocoding_api_key = geocoding_api_key
        self.limit = limit

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def fetch(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        category_hint: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> List[RawPlaceRecord]:
        api_key = self.require_credential(self.api_key, "RAPIDAPI_KEY")
        center_lat, center_lon = lat, lon
        if location_name:
            geocoded = await self._geocode(location_name)
            if geocoded is not None:
                center_lat, center_lon = geocoded

        categories = _DEFAULT_GRAPHQL_CATEGORIES
        if category_hint:
            categories = _GRAPHQL_CATEGORIES.get(
                normalize_category(category_hint), _DEFAULT_GRAPHQL_CATEGORIES
            )
        query = (
            "query { getPlaces("
            f"categories: [{categories}], lat: {center_lat}, lng: {center_lon}, "
            f"maxDistMeters: {int(radius_m)}, limit: {self.limit}"
            ") { id name lat lng abstract distance categories } }"
        )
        data = await self.request_json(
            "POST",
            f"https://{self.host}/",
            json={"query": query},
            headers={
                "x-rapidapi-key": api_key,
                "x-rapidapi-host": self.host,
                "Content-Type": "application/json",
            },
        )
        items = ((data or {}).get("data") or {}).get("getPlaces") or []

        places: List[RawPlaceRecord] = []
        for item in items:
            item_categories = [str(c).lower() for c in item.get("categories") or []]
            record = self.build_record(
                name=item.get("name"),
                lat=item.get("lat"),
                lon=item.get("lng"),
                category=item_categories[0] if item_categories else "attraction",
                address=location_name or "",
                description=item.get("abstract"),
                source_id=item.get("id"),
                tags=item_categories,
            )
            if record is not None:
                places.append(record)
        return places

    async def probe(self, timeout_s: float) -> bool:
        if not self.api_key:
            return False
        data = await self.request_json(
            "POST",
            f"https://{self.host}/",
            json={"query": "query { getPlaces(lat: 48.8584, lng: 2.2945, maxDistMeters: 500, limit: 1) { name } }"},
            headers={"x-rapidapi-key": self.api_key, "x-rapidapi-host": self.host},
            timeout_s=timeout_s,
        )
        return isinstance(data, dict) and "data" in data

    async def _geocode(self, location_name: str) -> Optional[Tuple[float, float]]:
        if not self.geocoding_api_key:
            return None
        data: Any = await self.request_json(
            "GET",
            "https://api.geoapify.com/v1/geocode/search",
            params={"text": location_name, "limit": 1, "apiKey": self.geocoding_api_key},
        )
        features = (data or {}).get("features") or []
        if not features:
            logger.info(f"RapidAPI: could not geocode '{location_name}', using query center")
            return None
        coords = (features[0].get("geometry") or {}).get("coordinates") or []
        if len(coords) < 2:
            return None
        return float(coords[1]), float(coords[0])
