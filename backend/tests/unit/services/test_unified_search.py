# backend/tests/unit/services/test_unified_search.py
"""Cache, vector store and ingestion fallback behind one search call."""
from typing import List

import pytest

from placescout.core.exceptions import ProviderAuthError, StorageError
from placescout.schemas.pipeline import SearchQuery
from placescout.schemas.places import CanonicalPlace
from placescout.services.canonical import to_canonical
from placescout.services.ingestion.pipeline import IngestionPipeline
from placescout.services.providers.mock_provider import MockPlaceProvider
from placescout.services.search.local_cache import LocalCache
from placescout.services.search.unified_search_service import (
    UnifiedSearchService,
    cache_variant,
    suggestion_for,
)
from placescout.services.vector_store.memory_store import InMemoryVectorStore
from tests._utils.places import (
    CENTER_LAT,
    CENTER_LON,
    TEST_DIM,
    build_aggregator,
    make_place,
    make_records,
)


class BrokenStore(InMemoryVectorStore):
    async def geo_radius_query(self, center, radius_m, filters=None, limit=100):
        raise StorageError("qdrant unavailable")


async def _seed(store, embeddings, places: List[CanonicalPlace]) -> None:
    for place in places:
        vector = await embeddings.embed_place(place)
        await store.upsert(place.id, vector, place)


def _places(count: int, **kwargs) -> List[CanonicalPlace]:
    return [to_canonical(record) for record in make_records("geoapify", count, **kwargs)]


def _query(**overrides) -> SearchQuery:
    return SearchQuery(**{"latitude": CENTER_LAT, "longitude": CENTER_LON, "radius_m": 5000, **overrides})


def _ingestion(executor, store, embeddings, provider: MockPlaceProvider) -> IngestionPipeline:
    return IngestionPipeline(
        build_aggregator({provider.name: provider}, executor), store, embeddings
    )


class TestSearch:
    @pytest.mark.asyncio
    async def test_serves_from_store_then_cache(self, store, embeddings):
        await _seed(store, embeddings, _places(15))
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        first = await service.search(_query())
        second = await service.search(_query())

        assert (first.total, first.from_cache, first.fallback_used) == (15, False, False)
        assert first.sources == ["geoapify"]
        assert second.from_cache is True
        assert [p.place_id for p in second.places] == [p.place_id for p in first.places]

    @pytest.mark.asyncio
    async def test_geo_results_are_nearest_first(self, store, embeddings):
        await _seed(store, embeddings, _places(5))
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        result = await service.search(_query())

        distances = [p.distance_m for p in result.places]
        assert distances == sorted(distances)

    @pytest.mark.asyncio
    async def test_pagination(self, store, embeddings):
        await _seed(store, embeddings, _places(15))
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        page = await service.search(_query(limit=10, offset=10))

        assert page.total == 15
        assert len(page.places) == 5

    @pytest.mark.asyncio
    async def test_sort_by_rating_and_name(self, store, embeddings):
        places = [
            make_place("Beta Museum", rating=3.1),
            make_place("Alpha Garden", lat=CENTER_LAT + 0.01, rating=4.9),
            make_place("Gamma Tower", lat=CENTER_LAT + 0.02, rating=None),
        ]
        await _seed(store, embeddings, places)
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        by_rating = await service.search(_query(sort_by="rating"))
        by_name = await service.search(_query(sort_by="name"))

        assert [p.name for p in by_rating.places] == ["Alpha Garden", "Beta Museum", "Gamma Tower"]
        assert [p.name for p in by_name.places] == ["Alpha Garden", "Beta Museum", "Gamma Tower"]
        assert by_name.from_cache is False

    @pytest.mark.asyncio
    async def test_text_query_uses_vector_similarity(self, store, embeddings):
        louvre = make_place("Louvre", description="Art museum")
        await _seed(store, embeddings, [louvre])
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        result = await service.search(_query(query="Louvre attraction Art museum 1 Main Street"))

        assert result.places[0].name == "Louvre"
        assert result.places[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_cache_hit_is_trimmed_to_the_requested_radius(self, store, embeddings):
        inner = make_place("Inner Plaza", lat=CENTER_LAT + 0.01)
        outer = make_place("Outer Lake", lat=CENTER_LAT + 0.07)
        await _seed(store, embeddings, [inner, outer])
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        wide = await service.search(_query(radius_m=10000))
        narrow = await service.search(_query(radius_m=5000))

        assert wide.total == 2
        assert narrow.from_cache is True
        assert [p.name for p in narrow.places] == ["Inner Plaza"]

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_not_raised(self, embeddings):
        service = UnifiedSearchService(BrokenStore(TEST_DIM), LocalCache(), embeddings)

        result = await service.search(_query())

        assert result.places == []
        assert "qdrant unavailable" in result.error
        assert result.suggestion == "Try expanding your search radius to find more results"

    @pytest.mark.asyncio
    async def test_empty_results_are_not_cached(self, store, embeddings):
        cache = LocalCache()
        service = UnifiedSearchService(store, cache, embeddings)

        await service.search(_query())

        assert len(cache) == 0


class TestFallbackIngestion:
    @pytest.mark.asyncio
    async def test_sparse_store_triggers_live_ingestion(self, executor, store, embeddings):
        provider = MockPlaceProvider(name="geoapify", records=make_records("geoapify", 20))
        service = UnifiedSearchService(
            store, LocalCache(), embeddings, ingestion=_ingestion(executor, store, embeddings, provider)
        )

        result = await service.search(_query())

        assert result.fallback_used is True
        assert result.total == 20
        assert result.error is None
        assert provider.calls == 1
        assert await store.count() == 20

    @pytest.mark.asyncio
    async def test_enough_stored_places_skip_ingestion(self, executor, store, embeddings):
        await _seed(store, embeddings, _places(12))
        provider = MockPlaceProvider(name="geoapify", records=make_records("geoapify", 20))
        service = UnifiedSearchService(
            store, LocalCache(), embeddings, ingestion=_ingestion(executor, store, embeddings, provider)
        )

        result = await service.search(_query(limit=20))

        assert result.fallback_used is False
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_failed_ingestion_keeps_existing_results(self, executor, store, embeddings):
        await _seed(store, embeddings, _places(2))
        provider = MockPlaceProvider(
            name="geoapify", fail_with=ProviderAuthError("geoapify", "bad key", 401)
        )
        service = UnifiedSearchService(
            store, LocalCache(), embeddings, ingestion=_ingestion(executor, store, embeddings, provider)
        )

        result = await service.search(_query())

        assert result.fallback_used is True
        assert result.total == 2
        assert result.error is not None
        assert result.suggestion == "Expand search radius to 10000m for more results"


class TestConveniencesAndAnalytics:
    @pytest.mark.asyncio
    async def test_typed_searches_filter_categories(self, store, embeddings):
        hotel = make_place("Grand Hotel", category="accommodation.hotel")
        bistro = make_place("Corner Bistro", lat=CENTER_LAT + 0.005, category="catering.restaurant")
        park = make_place("Riverside Park", lat=CENTER_LAT + 0.01, category="natural.water")
        await _seed(store, embeddings, [hotel, bistro, park])
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        explored = await service.explore_location(CENTER_LAT, CENTER_LON)

        assert [p.name for p in explored["hotels"].places] == ["Grand Hotel"]
        assert [p.name for p in explored["restaurants"].places] == ["Corner Bistro"]
        assert [p.name for p in explored["places"].places] == ["Riverside Park"]
        assert explored["hotels"].places[0].item_type == "hotel"

    @pytest.mark.asyncio
    async def test_analytics_snapshot(self, store, embeddings):
        await _seed(store, embeddings, _places(3))
        service = UnifiedSearchService(store, LocalCache(), embeddings)

        await service.search(_query())
        await service.search(_query())
        analytics = service.get_analytics()

        assert analytics["total_searches"] == 2
        assert analytics["cache_hits"] == 1
        assert analytics["cache_hit_rate"] == 0.5
        assert analytics["average_result_count"] == 3.0
        assert analytics["popular_queries"] == [{"query": "(nearby)", "count": 2}]
        assert analytics["cache"]["hits"] == 1

        service.reset_analytics()
        assert service.get_analytics()["total_searches"] == 0


class TestHelpers:
    def test_suggestions(self):
        assert suggestion_for(_query(categories=["hotel"]), 0) == (
            "Try searching without category filters or expand your search radius"
        )
        assert suggestion_for(_query(), 0) == "Try expanding your search radius to find more results"
        assert suggestion_for(_query(radius_m=15000), 0) == (
            "Try a broader search term or check the spelling"
        )
        assert suggestion_for(_query(), 3) == "Expand search radius to 10000m for more results"
        assert suggestion_for(_query(radius_m=25000), 3) is None
        assert suggestion_for(_query(), 12) is None

    def test_cache_variant_covers_filters(self):
        base = cache_variant(_query())
        assert cache_variant(_query(query="Museum")) != base
        assert cache_variant(_query(categories=["hotel"])) != base
        assert cache_variant(_query(min_rating=4)) != base
        assert cache_variant(_query(sort_by="name")) != base
        assert cache_variant(_query(query=" museum ")) == cache_variant(_query(query="MUSEUM"))
