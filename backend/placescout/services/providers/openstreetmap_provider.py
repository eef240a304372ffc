"""OpenStreetMap provider backed by the Overpass API (no credentials)."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ...core.constants import PROVIDER_OPENSTREETMAP
from ...schemas.places import RawPlaceRecord
from ..canonical import normalize_category
from .base import PlaceProvider

logger = logging.getLogger(__name__)

_DEFAULT_TAGS = ("tourism", "historic", "leisure", "amenity")

_TAGS_BY_CATEGORY: Dict[str, tuple] = {
    "attraction": ("tourism", "historic"),
    "restaurant": ('amenity~"restaurant|cafe|fast_food|bar"',),
    "hotel": ('tourism~"hotel|hostel|guest_house|motel"',),
    "shopping": ("shop",),
    "entertainment": ("leisure", 'amenity~"cinema|theatre|nightclub"'),
    "nature": ("natural", 'leisure~"park|nature_reserve|garden"'),
    "transport": ("public_transport",),
}

_ADDRESS_KEYS = ("addr:housenumber", "addr:street", "addr:city")


class OpenStreetMapProvider(PlaceProvider):
    name = PROVIDER_OPENSTREETMAP

    def __init__(
        self,
        overpass_url: str = "https://overpass-api.de/api/interpreter",
        client: Optional[httpx.AsyncClient] = None,
        limit: int = 60,
    ) -> None:
        super().__init__(client)
        self.overpass_url = overpass_url
        self.limit = limit

    async def fetch(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        category_hint: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> List[RawPlaceRecord]:
        query = self.build_query(lat, lon, radius_m, category_hint)
        data = await self.request_json(
            "POST",
            self.overpass_url,
            content=query,
            headers={"Content-Type": "text/plain"},
            timeout_s=30.0,
        )
        elements = data.get("elements") if isinstance(data, dict) else None
        if not elements:
            return []

        places: List[RawPlaceRecord] = []
        for element in elements:
            record = self._parse_element(element)
            if record is not None:
                places.append(record)
        return places

    async def probe(self, timeout_s: float) -> bool:
        data = await self.request_json(
            "POST",
            self.overpass_url,
            content="[out:json][timeout:5];node(1);out;",
            headers={"Content-Type": "text/plain"},
            timeout_s=timeout_s,
        )
        return isinstance(data, dict) and "elements" in data

    def build_query(
        self, lat: float, lon: float, radius_m: float, category_hint: Optional[str] = None
    ) -> str:
        tags = _DEFAULT_TAGS
        if category_hint:
            tags = _TAGS_BY_CATEGORY.get(normalize_category(category_hint), _DEFAULT_TAGS)
        around = f"(around:{int(radius_m)},{lat},{lon})"
        clauses = []
        for tag in tags:
            selector = f"[{tag}][name]"
            clauses.append(f"node{selector}{around};")
            clauses.append(f"way{selector}{around};")
        body = "\n  ".join(clauses)
        return f"[out:json][timeout:25];\n(\n  {body}\n);\nout center {self.limit};"

    def _parse_element(self, element: Dict[str, Any]) -> Optional[RawPlaceRecord]:
        tags: Dict[str, Any] = element.get("tags") or {}
        center = element.get("center") or {}
        lat = element.get("lat", center.get("lat"))
        lon = element.get("lon", center.get("lon"))
        kind = ""
        for key in ("tourism", "historic", "amenity", "leisure", "shop", "natural"):
            if tags.get(key):
                kind = f"{key}.{tags[key]}"
                break
        address = tags.get("addr:full") or " ".join(
            str(tags[k]) for k in _ADDRESS_KEYS if tags.get(k)
        )
        image = tags.get("image")
        return self.build_record(
            name=tags.get("name:en") or tags.get("name"),
            lat=lat,
            lon=lon,
            category=kind or "place",
            address=address,
            description=tags.get("description"),
            image=image if isinstance(image, str) and image.startswith("http") else None,
            source_id=f"{element.get('type', 'node')}/{element.get('id')}",
            tags=[kind] if kind else [],
        )
