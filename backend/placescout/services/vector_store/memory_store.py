# backend/placescout/services/vector_store/memory_store.py
"""
In-process vector store for local development and tests.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ...core.exceptions import StorageError
from ...schemas.places import CanonicalPlace, Coordinates, StoredPlace
from ..geo import distance_m
from .base import PlaceFilters, VectorStore, cosine_similarity

logger = logging.getLogger(__name__)


class InMemoryVectorStore(VectorStore):
    """Dict-backed store: cosine similarity and haversine radius filtering."""

    def __init__(self, vector_size: int = 384) -> None:
        super().__init__(vector_size)
        self._points: Dict[str, Tuple[List[float], CanonicalPlace]] = {}
        self._lock = asyncio.Lock()
        self.optimize_calls = 0

    async def ensure_collection(self) -> int:
        return self.vector_size

    async def upsert(self, place_id: str, vector: List[float], place: CanonicalPlace) -> None:
        if len(vector) != self.vector_size:
            raise StorageError(
                f"Vector for {place_id} has {len(vector)} dims, collection expects {self.vector_size}"
            )
        async with self._lock:
            stored = place.model_copy(deep=True, update={"id": place_id, "embedding": list(vector)})
            self._points[place_id] = (list(vector), stored)
            self._touch()

    async def get(self, place_id: str) -> Optional[CanonicalPlace]:
        point = self._points.get(place_id)
        return point[1].model_copy(deep=True) if point else None

    async def geo_radius_query(
        self,
        center: Coordinates,
        radius_m: float,
        filters: Optional[PlaceFilters] = None,
        limit: int = 100,
    ) -> List[StoredPlace]:
        hits: List[StoredPlace] = []
        for _, place in self._points.values():
            gap = distance_m(center, place.coordinates)
            if gap > radius_m:
                continue
            if filters is not None and not filters.matches(place):
                continue
            hits.append(StoredPlace(place=place.model_copy(deep=True), distance_m=gap))
        hits.sort(key=lambda hit: hit.distance_m or 0.0)
        return hits[:limit]

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
        hits: List[StoredPlace] = []
        for stored_vector, place in self._points.values():
            gap = distance_m(center, place.coordinates) if center is not None else None
            if gap is not None and radius_m is not None and gap > radius_m:
                continue
            if filters is not None and not filters.matches(place):
                continue
            score = cosine_similarity(vector, stored_vector)
            if score < min_score:
                continue
            hits.append(StoredPlace(place=place.model_copy(deep=True), score=score, distance_m=gap))
        hits.sort(key=lambda hit: hit.score or 0.0, reverse=True)
        return hits[:limit]

    async def count(self) -> int:
        return len(self._points)

    async def optimize(self) -> bool:
        self.optimize_calls += 1
        logger.info(f"In-memory store holds {len(self._points)} points; nothing to optimize")
        return True
