"""Mock place provider for local development and unit tests (no network calls)."""

import hashlib
import math
from typing import List, Optional, Sequence

from ...core.constants import PROVIDER_MOCK
from ...schemas.places import RawPlaceRecord
from .base import PlaceProvider

_SAMPLE = (
    ("Old Town Square", "tourism.sights", 4.7),
    ("City Museum", "entertainment.museum", 4.5),
    ("Riverside Park", "leisure.park", 4.3),
    ("Corner Bistro", "catering.restaurant", 4.1),
    ("Grand Hotel", "accommodation.hotel", 4.4),
    ("Central Market", "commercial.marketplace", 3.9),
)


class MockPlaceProvider(PlaceProvider):
    """
    Deterministic places spread around the query point.

    ``records`` overrides the generated set; ``fail_with`` makes every fetch
    raise, which is how tests simulate an unhealthy source.
    """

    name = PROVIDER_MOCK

    def __init__(
        self,
        name: Optional[str] = None,
        records: Optional[Sequence[RawPlaceRecord]] = None,
        count: int = len(_SAMPLE),
        fail_with: Optional[Exception] = None,
        requires_location_name: bool = False,
        supports_probe: bool = True,
        probe_result: bool = True,
    ) -> None:
        super().__init__(None)
        if name:
            self.name = name
        self.records = list(records) if records is not None else None
        self.count = count
        self.fail_with = fail_with
        self.requires_location_name = requires_location_name
        self.supports_probe = supports_probe
        self.probe_result = probe_result
        self.calls = 0
        self.probes = 0

    async def fetch(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        category_hint: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> List[RawPlaceRecord]:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if self.records is not None:
            return [r.model_copy() for r in self.records]
        return self._generate(lat, lon, radius_m)

    async def probe(self, timeout_s: float) -> bool:
        self.probes += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.probe_result

    def _generate(self, lat: float, lon: float, radius_m: float) -> List[RawPlaceRecord]:
        places: List[RawPlaceRecord] = []
        for index in range(self.count):
            base_name, category, rating = _SAMPLE[index % len(_SAMPLE)]
            name = base_name if index < len(_SAMPLE) else f"{base_name} {index // len(_SAMPLE) + 1}"
            seed = int(hashlib.sha256(f"{self.name}:{name}".encode()).hexdigest()[:8], 16)
            # Spread points on a ring at 20-60% of the radius
            angle = (seed % 360) * math.pi / 180
            dist = radius_m * (0.2 + (seed % 40) / 100)
            d_lat = (dist * math.cos(angle)) / 111_320
            d_lon = (dist * math.sin(angle)) / (111_320 * max(math.cos(math.radians(lat)), 0.01))
            record = self.build_record(
                name=name,
                lat=round(lat + d_lat, 6),
                lon=round(lon + d_lon, 6),
                category=category,
                address=f"{index + 1} Mock Street",
                rating=rating,
                description=f"{name}, a sample place from the {self.name} provider.",
                source_id=f"{self.name}:{index}",
                tags=[category],
            )
            if record is not None:
                places.append(record)
        return places
