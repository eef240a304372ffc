"""OpenTripMap radius search provider."""

from typing import Any, Dict, List, Optional

import httpx

from ...core.constants import PROVIDER_OPENTRIPMAP
from ...schemas.places import RawPlaceRecord
from ..canonical import normalize_category
from .base import PlaceProvider

_KINDS_BY_CATEGORY: Dict[str, str] = {
    "attraction": "interesting_places",
    "restaurant": "foods",
    "hotel": "accomodations",
    "shopping": "shops",
    "entertainment": "amusements",
    "nature": "natural",
    "transport": "transport",
}


class OpenTripMapProvider(PlaceProvider):
    name = PROVIDER_OPENTRIPMAP

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        limit: int = 50,
    ) -> None:
        super().__init__(client)
        self.api_key = api_key
        self.base_url = "https://api.opentripmap.com/0.1/en/places"
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
        api_key = self.require_credential(self.api_key, "OPENTRIPMAP_API_KEY")
        params: Dict[str, Any] = {
            "radius": int(radius_m),
            "lat": lat,
            "lon": lon,
            "rate": 2,
            "format": "json",
            "limit": self.limit,
            "apikey": api_key,
        }
        if category_hint:
            kinds = _KINDS_BY_CATEGORY.get(normalize_category(category_hint))
            if kinds:
                params["kinds"] = kinds
        data = await self.request_json("GET", f"{self.base_url}/radius", params=params)
        if not isinstance(data, list):
            return []

        places: List[RawPlaceRecord] = []
        for item in data:
            point = item.get("point") or {}
            kinds = str(item.get("kinds") or "")
            record = self.build_record(
                name=item.get("name"),
                lat=point.get("lat"),
                lon=point.get("lon"),
                category=kinds.split(",")[0] if kinds else "",
                rating=_rating_from_rate(item.get("rate")),
                source_id=item.get("xid"),
                tags=[k for k in kinds.split(",") if k],
            )
            if record is not None:
                places.append(record)
        return places

    async def probe(self, timeout_s: float) -> bool:
        if not self.api_key:
            return False
        data = await self.request_json(
            "GET",
            f"{self.base_url}/radius",
            params={
                "radius": 500,
                "lat": 48.8584,
                "lon": 2.2945,
                "limit": 1,
                "format": "json",
                "apikey": self.api_key,
            },
            timeout_s=timeout_s,
        )
        return isinstance(data, list)


def _rating_from_rate(rate: Any) -> Optional[float]:
    """OpenTripMap popularity rate (1-3, 'h' suffix for heritage) scaled onto 0-5."""
    if rate is None:
        return None
    digits = str(rate).rstrip("h")
    try:
        value = int(digits)
    except ValueError:
        return None
    if value <= 0:
        return None
    return round(min(value, 3) / 3 * 5, 1)
