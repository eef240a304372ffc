# backend/placescout/services/search/unified_search_service.py
"""
Unified search: local cache, then the vector store, then a synchronous
ingestion fallback when the store holds too little for the area.

Every call returns a SearchResult, even when the store or the providers
fail; the error and a suggestion travel in the result.
"""
from __future__ import annotations

import asyncio
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime
import logging
import time
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from ...core.config import Settings
from ...core.constants import (
    CATEGORY_ATTRACTION,
    CATEGORY_ENTERTAINMENT,
    CATEGORY_HOTEL,
    CATEGORY_NATURE,
    CATEGORY_RESTAURANT,
    CATEGORY_SHOPPING,
)
from ...core.request_context import operation_scope
from ...schemas.pipeline import AggregationQuery, SearchQuery, SearchResult
from ...schemas.places import Coordinates, PlaceView, StoredPlace, utcnow
from .. import metrics
from ..base import BaseService
from ..canonical import data_type_for_categories, rating_then_name_key, to_view
from ..geo import distance_m, within_radius
from ..ingestion.pipeline import IngestionPipeline
from ..vector_store.base import PlaceFilters, VectorStore
from .embedding_service import EmbeddingGenerator, is_zero_vector
from .local_cache import LocalCache

logger = logging.getLogger(__name__)

PLACE_CATEGORIES = [
    CATEGORY_ATTRACTION,
    CATEGORY_NATURE,
    CATEGORY_ENTERTAINMENT,
    CATEGORY_SHOPPING,
]

POPULAR_QUERIES_KEEP = 50


@dataclass
class SearchServiceConfig:
    default_limit: int = 20
    default_radius_m: float = 5000.0
    min_similarity: float = 0.5
    slow_query_s: float = 5.0
    slow_query_keep: int = 20
    fallback_enabled: bool = True
    insufficient_ratio: float = 0.5
    store_fetch_limit: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchServiceConfig":
        return cls(
            default_limit=settings.search_default_limit,
            default_radius_m=settings.search_default_radius_m,
            min_similarity=settings.search_min_similarity,
            slow_query_s=settings.search_slow_query_s,
            slow_query_keep=settings.search_slow_query_keep,
            fallback_enabled=settings.search_fallback_enabled,
        )


@dataclass
class SlowQuery:
    query: str
    latitude: float
    longitude: float
    elapsed_s: float
    at: datetime


class SearchAnalytics:
    """Rolling search statistics for one process."""

    def __init__(self, slow_query_keep: int = 20) -> None:
        self.total_searches = 0
        self.cache_hits = 0
        self.total_results = 0
        self.slow_queries: Deque[SlowQuery] = deque(maxlen=slow_query_keep)
        self.popular: Counter = Counter()

    def record(self, query: SearchQuery, result: SearchResult, slow_threshold_s: float) -> None:
        self.total_searches += 1
        self.total_results += result.total
        if result.from_cache:
            self.cache_hits += 1
        label = query_label(query)
        self.popular[label] += 1
        if result.elapsed_s > slow_threshold_s:
            self.slow_queries.append(
                SlowQuery(label, query.latitude, query.longitude, result.elapsed_s, utcnow())
            )
            logger.warning(
                f"Slow search {label!r} took {result.elapsed_s:.2f}s",
                extra={"event": "slow_search", "elapsed_s": result.elapsed_s},
            )

    def snapshot(self) -> Dict[str, Any]:
        total = self.total_searches
        return {
            "total_searches": total,
            "cache_hits": self.cache_hits,
            "cache_hit_rate": (self.cache_hits / total) if total else 0.0,
            "average_result_count": (self.total_results / total) if total else 0.0,
            "slow_queries": [
                {**asdict(slow), "at": slow.at.isoformat()} for slow in self.slow_queries
            ],
            "popular_queries": [
                {"query": label, "count": count}
                for label, count in self.popular.most_common(POPULAR_QUERIES_KEEP)
            ],
        }


def query_label(query: SearchQuery) -> str:
    if query.query:
        return query.query.lower()
    if query.categories:
        return ",".join(sorted(query.categories))
    return "(nearby)"


def cache_variant(query: SearchQuery) -> str:
    """Everything in the normalized query except the geo bucket."""
    text = (query.query or "").strip().lower()
    rating = "" if query.min_rating is None else f"{query.min_rating:g}"
    return ";".join(
        [
            f"q={text}",
            f"c={','.join(sorted(query.categories))}",
            f"s={','.join(sorted(query.sources))}",
            f"l={query.limit}",
            f"o={query.offset}",
            f"r={rating}",
            f"sort={query.sort_by}",
        ]
    )


def suggestion_for(query: SearchQuery, total: int) -> Optional[str]:
    if total == 0:
        if query.categories:
            return "Try searching without category filters or expand your search radius"
        if query.radius_m < 10_000:
            return "Try expanding your search radius to find more results"
        return "Try a broader search term or check the spelling"
    if total < 5 and query.radius_m < 20_000:
        return f"Expand search radius to {int(query.radius_m * 2)}m for more results"
    return None


class UnifiedSearchService(BaseService):
    def __init__(
        self,
        store: VectorStore,
        cache: LocalCache,
        embeddings: EmbeddingGenerator,
        ingestion: Optional[IngestionPipeline] = None,
        config: Optional[SearchServiceConfig] = None,
    ) -> None:
        super().__init__()
        self.store = store
        self.cache = cache
        self.embeddings = embeddings
        self.ingestion = ingestion
        self.config = config or SearchServiceConfig()
        self.analytics = SearchAnalytics(self.config.slow_query_keep)

    @BaseService.measure_operation("search")
    async def search(self, query: SearchQuery) -> SearchResult:
        with operation_scope():
            started = time.perf_counter()
            variant = cache_variant(query)

            entry, found = self.cache.get(query.latitude, query.longitude, query.radius_m, variant)
            if found and entry is not None:
                center = Coordinates(lat=query.latitude, lon=query.longitude)
                # A nearby wider-radius entry may hold places outside this radius
                views = [
                    view
                    for view in entry.payload
                    if within_radius(center, Coordinates(lat=view.point.lat, lon=view.point.lon), query.radius_m)
                ]
                result = self._build_result(query, views, started, from_cache=True)
                self._finish(query, result, "cache")
                return result

            error: Optional[str] = None
            hits: List[StoredPlace] = []
            try:
                hits = await self._query_store(query)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(
                    f"Vector store query failed: {error}",
                    extra={"event": "search_store_failed"},
                )

            fallback_used = False
            if self._insufficient(query, hits):
                fallback_used = True
                hits, error = await self._fallback(query, hits, error)

            views = self._rank(query, hits)
            result = self._build_result(
                query, views, started, fallback_used=fallback_used, error=error
            )
            if views:
                self.cache.set(
                    query.latitude,
                    query.longitude,
                    query.radius_m,
                    views,
                    data_type=data_type_for_categories(query.categories),
                    source="fallback" if fallback_used else "store",
                    variant=variant,
                )
            self._finish(query, result, "fallback" if fallback_used else "store")
            return result

    def _insufficient(self, query: SearchQuery, hits: Sequence[StoredPlace]) -> bool:
        if self.ingestion is None or not self.config.fallback_enabled:
            return False
        return len(hits) < self.config.insufficient_ratio * query.limit

    async def _fallback(
        self, query: SearchQuery, hits: List[StoredPlace], error: Optional[str]
    ) -> Tuple[List[StoredPlace], Optional[str]]:
        assert self.ingestion is not None
        logger.info(
            f"Store returned {len(hits)} places (< {self.config.insufficient_ratio} x {query.limit}); "
            "running live ingestion"
        )
        ingestion = await self.ingestion.ingest_for_location(
            AggregationQuery(
                latitude=query.latitude,
                longitude=query.longitude,
                radius_m=query.radius_m,
                location_name=query.location_name,
                categories=query.categories,
                sources=query.sources,
                limit=max(50, query.offset + query.limit),
            )
        )
        if not ingestion.success:
            logger.warning(
                f"Fallback ingestion failed, serving existing results: {ingestion.error}",
                extra={"event": "search_fallback_failed"},
            )
            return hits, ingestion.error or error

        try:
            return await self._query_store(query), None
        except Exception as e:
            logger.error(f"Vector store re-query failed: {e}", extra={"event": "search_store_failed"})
            return hits, str(e) or type(e).__name__

    async def _query_store(self, query: SearchQuery) -> List[StoredPlace]:
        center = Coordinates(lat=query.latitude, lon=query.longitude)
        filters = PlaceFilters(
            categories=query.categories, sources=query.sources, min_rating=query.min_rating
        )
        limit = max(query.offset + query.limit, self.config.store_fetch_limit)
        if query.query:
            vector = await self.embeddings.embed_query(query.query)
            if not is_zero_vector(vector):
                return await self.store.search(
                    vector,
                    center=center,
                    radius_m=query.radius_m,
                    filters=filters,
                    limit=limit,
                    min_score=self.config.min_similarity,
                )
            logger.info("No query embedding available, falling back to geo search")
        return await self.store.geo_radius_query(center, query.radius_m, filters, limit=limit)

    def _rank(self, query: SearchQuery, hits: Sequence[StoredPlace]) -> List[PlaceView]:
        center = Coordinates(lat=query.latitude, lon=query.longitude)
        ordered = list(hits)
        if query.sort_by == "rating":
            ordered.sort(key=lambda hit: rating_then_name_key(hit.place))
        elif query.sort_by == "distance":
            ordered.sort(key=lambda hit: distance_m(center, hit.place.coordinates))
        elif query.sort_by == "name":
            ordered.sort(key=lambda hit: hit.place.name.lower())
        return [
            to_view(
                hit.place,
                distance_m=(
                    hit.distance_m
                    if hit.distance_m is not None
                    else distance_m(center, hit.place.coordinates)
                ),
                score=hit.score,
            )
            for hit in ordered
        ]

    def _build_result(
        self,
        query: SearchQuery,
        views: Sequence[PlaceView],
        started: float,
        *,
        from_cache: bool = False,
        fallback_used: bool = False,
        error: Optional[str] = None,
    ) -> SearchResult:
        page = list(views[query.offset : query.offset + query.limit])
        total = len(views)
        return SearchResult(
            places=page,
            from_cache=from_cache,
            fallback_used=fallback_used,
            sources=sorted({view.source for view in views}),
            suggestion=suggestion_for(query, total),
            total=total,
            elapsed_s=time.perf_counter() - started,
            error=error,
        )

    def _finish(self, query: SearchQuery, result: SearchResult, path: str) -> None:
        metrics.record_search(path, result.elapsed_s * 1000, len(result.places))
        self.analytics.record(query, result, self.config.slow_query_s)
        logger.info(
            f"Search served from {path}: {len(result.places)}/{result.total} places "
            f"in {result.elapsed_s:.2f}s"
        )

    # Conveniences

    def _typed_query(
        self,
        latitude: float,
        longitude: float,
        categories: List[str],
        radius_m: Optional[float],
        query: Optional[str],
        limit: Optional[int],
    ) -> SearchQuery:
        return SearchQuery(
            latitude=latitude,
            longitude=longitude,
            radius_m=radius_m or self.config.default_radius_m,
            query=query,
            categories=categories,
            limit=limit or self.config.default_limit,
        )

    async def search_places(
        self,
        latitude: float,
        longitude: float,
        radius_m: Optional[float] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        return await self.search(
            self._typed_query(latitude, longitude, PLACE_CATEGORIES, radius_m, query, limit)
        )

    async def search_hotels(
        self,
        latitude: float,
        longitude: float,
        radius_m: Optional[float] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        return await self.search(
            self._typed_query(latitude, longitude, [CATEGORY_HOTEL], radius_m, query, limit)
        )

    async def search_restaurants(
        self,
        latitude: float,
        longitude: float,
        radius_m: Optional[float] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        return await self.search(
            self._typed_query(latitude, longitude, [CATEGORY_RESTAURANT], radius_m, query, limit)
        )

    async def explore_location(
        self, latitude: float, longitude: float, radius_m: Optional[float] = None
    ) -> Dict[str, SearchResult]:
        """Places, hotels and restaurants around a point, fetched concurrently."""
        places, hotels, restaurants = await asyncio.gather(
            self.search_places(latitude, longitude, radius_m),
            self.search_hotels(latitude, longitude, radius_m),
            self.search_restaurants(latitude, longitude, radius_m),
        )
        return {"places": places, "hotels": hotels, "restaurants": restaurants}

    def get_analytics(self) -> Dict[str, Any]:
        snapshot = self.analytics.snapshot()
        snapshot["cache"] = self.cache.stats()
        return snapshot

    def reset_analytics(self) -> None:
        self.analytics = SearchAnalytics(self.config.slow_query_keep)
