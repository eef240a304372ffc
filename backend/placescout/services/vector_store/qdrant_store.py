# backend/placescout/services/vector_store/qdrant_store.py
"""
Qdrant-backed vector store.

The collection uses cosine distance with payload indexes on ``coords``
(geo), ``category`` and ``source`` (keyword). Every call runs through the
RetryExecutor; failures surface as StorageError.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    GeoPoint,
    GeoRadius,
    MatchAny,
    OptimizersConfigDiff,
    PayloadSchemaType,
    PointStruct,
    Range,
    VectorParams,
)

from ...core.config import Settings
from ...core.exceptions import StorageError
from ...schemas.places import CanonicalPlace, Coordinates, StoredPlace
from ..geo import distance_m
from ..search.retry import RetryConfig, RetryExecutor
from .base import PlaceFilters, VectorStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_KEYWORD_INDEXES = ("category", "source")

# Category filters also match tags by substring, so they are applied client-side
_CATEGORY_OVERFETCH = 3


class QdrantVectorStore(VectorStore):
    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str,
        vector_size: int,
        executor: Optional[RetryExecutor] = None,
        timeout_s: float = 10.0,
    ) -> None:
        super().__init__(vector_size)
        self.client = client
        self.collection_name = collection_name
        self.executor = executor or RetryExecutor(RetryConfig(max_retries=2, initial_delay_s=0.5))
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(
        cls, settings: Settings, executor: Optional[RetryExecutor] = None
    ) -> "QdrantVectorStore":
        client = AsyncQdrantClient(url=settings.qdrant_url, api_key=settings.secret("qdrant_api_key"))
        return cls(
            client,
            collection_name=settings.qdrant_collection,
            vector_size=settings.embedding_dim,
            executor=executor,
        )

    async def _call(self, operation: str, func: Callable[..., Awaitable[T]], **kwargs: Any) -> T:
        try:
            return await self.executor.execute(
                f"qdrant.{operation}", func, timeout_s=self.timeout_s, **kwargs
            )
        except Exception as e:
            logger.error(
                f"Qdrant {operation} failed on {self.collection_name}: {e}",
                extra={"event": "vector_store_error", "op": operation},
            )
            raise StorageError(
                f"Vector store {operation} failed: {e}",
                details={"operation": operation, "collection": self.collection_name},
            ) from e

    async def ensure_collection(self) -> int:
        exists = await self._call(
            "collection_exists", self.client.collection_exists, collection_name=self.collection_name
        )
        if not exists:
            logger.info(
                f"Creating collection {self.collection_name} ({self.vector_size} dims, cosine)"
            )
            await self._call(
                "create_collection",
                self.client.create_collection,
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
                optimizers_config=OptimizersConfigDiff(indexing_threshold=20000),
            )
            await self._call(
                "create_payload_index",
                self.client.create_payload_index,
                collection_name=self.collection_name,
                field_name="coords",
                field_schema=PayloadSchemaType.GEO,
            )
            for field_name in _KEYWORD_INDEXES:
                await self._call(
                    "create_payload_index",
                    self.client.create_payload_index,
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
            return self.vector_size

        info = await self._call(
            "get_collection", self.client.get_collection, collection_name=self.collection_name
        )
        vectors = info.config.params.vectors
        if isinstance(vectors, dict):
            vectors = next(iter(vectors.values()))
        size = int(vectors.size)
        logger.info(f"Collection {self.collection_name} exists with vector size {size}")
        return size

    async def upsert(self, place_id: str, vector: List[float], place: CanonicalPlace) -> None:
        payload = place.model_copy(update={"id": place_id}).payload()
        await self._call(
            "upsert",
            self.client.upsert,
            collection_name=self.collection_name,
            points=[PointStruct(id=place_id, vector=vector, payload=payload)],
            wait=True,
        )
        self._touch()

    async def get(self, place_id: str) -> Optional[CanonicalPlace]:
        records = await self._call(
            "retrieve",
            self.client.retrieve,
            collection_name=self.collection_name,
            ids=[place_id],
            with_payload=True,
            with_vectors=False,
        )
        if not records:
            return None
        return CanonicalPlace.from_payload(records[0].payload or {})

    async def geo_radius_query(
        self,
        center: Coordinates,
        radius_m: float,
        filters: Optional[PlaceFilters] = None,
        limit: int = 100,
    ) -> List[StoredPlace]:
        points, _ = await self._call(
            "scroll",
            self.client.scroll,
            collection_name=self.collection_name,
            scroll_filter=self._build_filter(center, radius_m, filters),
            limit=self._fetch_limit(limit, filters),
            with_payload=True,
            with_vectors=False,
        )
        hits: List[StoredPlace] = []
        for point in points:
            place = CanonicalPlace.from_payload(point.payload or {})
            if filters is not None and not filters.matches(place):
                continue
            hits.append(StoredPlace(place=place, distance_m=distance_m(center, place.coordinates)))
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
        results = await self._call(
            "query_points",
            self.client.query_points,
            collection_name=self.collection_name,
            query=vector,
            query_filter=self._build_filter(center, radius_m, filters),
            limit=self._fetch_limit(limit, filters),
            score_threshold=min_score,
            with_payload=True,
            with_vectors=False,
        )
        hits: List[StoredPlace] = []
        for point in results.points:
            place = CanonicalPlace.from_payload(point.payload or {})
            if filters is not None and not filters.matches(place):
                continue
            gap = distance_m(center, place.coordinates) if center is not None else None
            hits.append(StoredPlace(place=place, score=point.score, distance_m=gap))
        return hits[:limit]

    async def count(self) -> int:
        result = await self._call(
            "count", self.client.count, collection_name=self.collection_name, exact=True
        )
        return int(result.count)

    async def optimize(self) -> bool:
        await self._call(
            "update_collection",
            self.client.update_collection,
            collection_name=self.collection_name,
            optimizers_config=OptimizersConfigDiff(indexing_threshold=10000),
        )
        logger.info(f"Requested index optimization for {self.collection_name}")
        return True

    async def close(self) -> None:
        await self.client.close()

    def _build_filter(
        self,
        center: Optional[Coordinates],
        radius_m: Optional[float],
        filters: Optional[PlaceFilters],
    ) -> Optional[Filter]:
        conditions: List[FieldCondition] = []
        if center is not None and radius_m is not None:
            conditions.append(
                FieldCondition(
                    key="coords",
                    geo_radius=GeoRadius(
                        center=GeoPoint(lat=center.lat, lon=center.lon), radius=radius_m
                    ),
                )
            )
        if filters is not None:
            if filters.sources:
                conditions.append(FieldCondition(key="source", match=MatchAny(any=filters.sources)))
            if filters.min_rating is not None:
                conditions.append(FieldCondition(key="rating", range=Range(gte=filters.min_rating)))
        return Filter(must=conditions) if conditions else None

    @staticmethod
    def _fetch_limit(limit: int, filters: Optional[PlaceFilters]) -> int:
        if filters is not None and filters.categories:
            return limit * _CATEGORY_OVERFETCH
        return limit
