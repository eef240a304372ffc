"""Geoapify Places API provider."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ...core.constants import PROVIDER_GEOAPIFY
from ...schemas.places import RawPlaceRecord
from ..canonical import normalize_category
from .base import PlaceProvider

logger = logging.getLogger(__name__)

_DEFAULT_CATEGORIES = "tourism.sights,tourism.attraction,entertainment,leisure.park,catering.restaurant"

_CATEGORY_HINTS: Dict[str, str] = {
    "attraction": "tourism.sights,tourism.attraction",
    "restaurant": "catering.restaurant,catering.cafe",
    "hotel": "accommodation.hotel,accommodation.guest_house",
    "shopping": "commercial.shopping_mall,commercial.marketplace",
    "entertainment": "entertainment",
    "nature": "natural,leisure.park",
    "transport": "public_transport",
}


class GeoapifyProvider(PlaceProvider):
    name = PROVIDER_GEOAPIFY

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        limit: int = 50,
    ) -> None:
        super().__init__(client)
        self.api_key = api_key
        self.base_url = "https://api.geoapify.com/v2/places"
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
        api_key = self.require_credential(self.api_key, "GEOAPIFY_API_KEY")
        params = {
            "categories": self._categories_for(category_hint),
            "filter": f"circle:{lon},{lat},{int(radius_m)}",
            "bias": f"proximity:{lon},{lat}",
            "limit": self.limit,
            "apiKey": api_key,
        }
        data = await self.request_json("GET", self.base_url, params=params)
        features = data.get("features") if isinstance(data, dict) else None
        if not features:
            return []

        places: List[RawPlaceRecord] = []
        for feature in features:
            record = self._parse_feature(feature)
            if record is not None:
                places.append(record)
        logger.debug(f"Geoapify returned {len(places)} usable places of {len(features)}")
        return places

    async def probe(self, timeout_s: float) -> bool:
        if not self.api_key:
            return False
        params = {
            "categories": "tourism.sights",
            "filter": "circle:2.2945,48.8584,1000",
            "limit": 1,
            "apiKey": self.api_key,
        }
        data = await self.request_json("GET", self.base_url, params=params, timeout_s=timeout_s)
        return isinstance(data, dict) and "features" in data

    def _parse_feature(self, feature: Dict[str, Any]) -> Optional[RawPlaceRecord]:
        props = feature.get("properties") or {}
        geometry = feature.get("geometry") or {}
        coords = geometry.get("coordinates") or [props.get("lon"), props.get("lat")]
        if not isinstance(coords, (list, tuple)) or len(coords) < 2:
            return None
        categories: List[str] = list(props.get("categories") or [])
        return self.build_record(
            name=props.get("name"),
            lat=coords[1],
            lon=coords[0],
            category=categories[0] if categories else "",
            address=props.get("formatted") or props.get("address_line2") or "",
            rating=props.get("rating"),
            description=(props.get("datasource") or {}).get("raw", {}).get("description"),
            source_id=props.get("place_id"),
            tags=categories,
        )

    @staticmethod
    def _categories_for(category_hint: Optional[str]) -> str:
        if not category_hint:
            return _DEFAULT_CATEGORIES
        return _CATEGORY_HINTS.get(normalize_category(category_hint), _DEFAULT_CATEGORIES)
