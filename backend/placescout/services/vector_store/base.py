# backend/placescout/services/vector_store/base.py
"""
Vector store contract for canonical places.

The store is the only durable shared resource of the pipeline. Upserts
are idempotent because place ids are derived from the record itself.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
import math
from typing import List, Optional, Sequence

from pydantic import BaseModel

from ...core.constants import DEDUP_FINAL_SIMILARITY, INGEST_DUPLICATE_RADIUS_M
from ...schemas.places import CanonicalPlace, Coordinates, StoredPlace, utcnow
from ..canonical import matches_categories, matches_sources
from ..search.dedup import name_similarity


@dataclass
class PlaceFilters:
    """Payload filters applied together with the geo / vector query."""

    categories: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    min_rating: Optional[float] = None

    def matches(self, place: CanonicalPlace) -> bool:
        if not matches_categories(place, self.categories):
            return False
        if not matches_sources(place, self.sources):
            return False
        if self.min_rating is not None and (place.rating or 0.0) < self.min_rating:
            return False
        return True


class CollectionStats(BaseModel):
    count: int
    last_updated: Optional[datetime] = None
    vector_size: int


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class VectorStore(ABC):
    """Geo-indexed, vector-searchable place collection."""

    def __init__(self, vector_size: int) -> None:
        self.vector_size = vector_size
        self._last_updated: Optional[datetime] = None

    @abstractmethod
    async def ensure_collection(self) -> int:
        """Create the collection if needed; returns its configured vector size."""

    @abstractmethod
    async def upsert(self, place_id: str, vector: List[float], place: CanonicalPlace) -> None:
        """Insert or replace the point ``place_id``."""

    @abstractmethod
    async def get(self, place_id: str) -> Optional[CanonicalPlace]:
        ...

    @abstractmethod
    async def geo_radius_query(
        self,
        center: Coordinates,
        radius_m: float,
        filters: Optional[PlaceFilters] = None,
        limit: int = 100,
    ) -> List[StoredPlace]:
        """Places within ``radius_m`` of ``center``, nearest first."""

    @abstractmethod
    async def search(
        self,
        vector: List[float],
        *,
        center: Optional[Coordinates] = None,
        radius_m: Optional[float] = None,
        filters: Optional[PlaceFilters] = None,
        limit: int = 20,
        min_score: float = 0.0,
    ) -> List[StoredPlace]:
        """Places by cosine similarity to ``vector``, best first."""

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def optimize(self) -> bool:
        """Best-effort index maintenance; True when the store accepted it."""

    async def close(self) -> None:
        return None

    async def find_nearby_duplicate(
        self,
        center: Coordinates,
        name: str,
        radius_m: float = INGEST_DUPLICATE_RADIUS_M,
        similarity: float = DEDUP_FINAL_SIMILARITY,
    ) -> Optional[StoredPlace]:
        """Closest stored place within ``radius_m`` whose name is similar to ``name``."""
        nearby = await self.geo_radius_query(center, radius_m, limit=50)
        for hit in nearby:
            if name_similarity(hit.place.name, name) >= similarity:
                return hit
        return None

    async def collection_stats(self) -> CollectionStats:
        return CollectionStats(
            count=await self.count(),
            last_updated=self._last_updated,
            vector_size=self.vector_size,
        )

    def _touch(self) -> None:
        self._last_updated = utcnow()
