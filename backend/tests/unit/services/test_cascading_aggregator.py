# backend/tests/unit/services/test_cascading_aggregator.py
"""Tiered cascade: early stop, failure isolation, timeouts and skipping rules."""
import asyncio
from typing import List, Optional

import pytest

from placescout.core.exceptions import AggregationError, ProviderAuthError
from placescout.schemas.pipeline import AggregationQuery
from placescout.schemas.places import RawPlaceRecord
from placescout.services.providers.base import PlaceProvider
from placescout.services.providers.mock_provider import MockPlaceProvider
from placescout.services.search.deadline import Deadline
from tests._utils.places import CENTER_LAT, CENTER_LON, build_aggregator, make_records


def _query(**overrides) -> AggregationQuery:
    return AggregationQuery(latitude=CENTER_LAT, longitude=CENTER_LON, radius_m=5000, **overrides)


def _provider(name: str, count: int, lon_shift: float = 0.0, **kwargs) -> MockPlaceProvider:
    return MockPlaceProvider(
        name=name, records=make_records(name, count, lon=CENTER_LON + lon_shift), **kwargs
    )


class HangingProvider(PlaceProvider):
    """Never answers within any reasonable timeout."""

    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name
        self.calls = 0

    async def fetch(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        category_hint: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> List[RawPlaceRecord]:
        self.calls += 1
        await asyncio.sleep(10)
        return []


class FixedTierSource:
    def __init__(self, order: List[str]) -> None:
        self.order = order

    def current_order(self) -> List[str]:
        return list(self.order)


class TestCascade:
    @pytest.mark.asyncio
    async def test_stops_once_threshold_is_reached(self, executor):
        a, b, c = _provider("a", 20), _provider("b", 20, 0.01), _provider("c", 20, 0.02)
        aggregator = build_aggregator({"a": a, "b": b, "c": c}, executor)

        result = await aggregator.aggregate(_query())

        assert result.sources_used == ["a"]
        assert (a.calls, b.calls, c.calls) == (1, 0, 0)
        assert len(result.places) == 20

    @pytest.mark.asyncio
    async def test_keeps_going_until_enough_results(self, executor):
        a, b, c = _provider("a", 5), _provider("b", 5, 0.01), _provider("c", 10, 0.02)
        aggregator = build_aggregator({"a": a, "b": b, "c": c}, executor)

        result = await aggregator.aggregate(_query())

        assert result.sources_used == ["a", "b", "c"]
        assert len(result.places) == 20
        assert result.total_raw_found == 20

    @pytest.mark.asyncio
    async def test_failed_provider_does_not_stop_the_cascade(self, executor):
        broken = _provider("a", 5, fail_with=ProviderAuthError("a", "bad key", 401))
        healthy = _provider("b", 16)
        aggregator = build_aggregator({"a": broken, "b": healthy}, executor)

        result = await aggregator.aggregate(_query())

        assert result.sources_used == ["b"]
        assert "a" in result.failed
        assert broken.calls == 1

    @pytest.mark.asyncio
    async def test_all_providers_failing_raises(self, executor):
        providers = {
            name: _provider(name, 5, fail_with=ProviderAuthError(name, "bad key", 401))
            for name in ("a", "b")
        }
        aggregator = build_aggregator(providers, executor)

        with pytest.raises(AggregationError) as exc_info:
            await aggregator.aggregate(_query())

        assert set(exc_info.value.failures) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_empty_results_are_not_failures(self, executor):
        aggregator = build_aggregator({"a": _provider("a", 0)}, executor)

        result = await aggregator.aggregate(_query())

        assert result.places == []
        assert result.sources_used == []
        assert result.failed == {}

    @pytest.mark.asyncio
    async def test_location_name_providers_are_skipped_without_one(self, executor):
        named = _provider("a", 5, requires_location_name=True)
        other = _provider("b", 5, 0.01)
        aggregator = build_aggregator({"a": named, "b": other}, executor)

        result = await aggregator.aggregate(_query())
        assert result.skipped == ["a"]
        assert named.calls == 0

        await aggregator.aggregate(_query(location_name="Paris"))
        assert named.calls == 1

    @pytest.mark.asyncio
    async def test_source_filter_limits_providers(self, executor):
        a, b = _provider("a", 5), _provider("b", 5, 0.01)
        aggregator = build_aggregator({"a": a, "b": b}, executor)

        result = await aggregator.aggregate(_query(sources=["b"]))

        assert a.calls == 0
        assert result.sources_used == ["b"]
        assert {place.source for place in result.places} == {"b"}

    @pytest.mark.asyncio
    async def test_tier_source_controls_order_and_disabled_providers(self, executor):
        a, b = _provider("a", 20), _provider("b", 20, 0.01)
        aggregator = build_aggregator({"a": a, "b": b}, executor)
        aggregator.set_tier_source(FixedTierSource(["b"]))

        result = await aggregator.aggregate(_query())

        assert result.sources_used == ["b"]
        assert result.skipped == ["a"]
        assert a.calls == 0

    @pytest.mark.asyncio
    async def test_cross_provider_duplicates_are_removed(self, executor):
        a = _provider("a", 5)
        twin = MockPlaceProvider(name="b", records=make_records("b", 5, prefix="A"))
        aggregator = build_aggregator({"a": a, "b": twin}, executor)

        result = await aggregator.aggregate(_query())

        assert len(result.places) == 5
        assert result.duplicates_removed == 5
        assert {place.source for place in result.places} == {"a"}

    @pytest.mark.asyncio
    async def test_per_provider_cap_and_query_limit(self, executor):
        aggregator = build_aggregator(
            {"a": _provider("a", 30)}, executor, max_results_per_api=25
        )

        capped = await aggregator.aggregate(_query())
        limited = await aggregator.aggregate(_query(limit=10))

        assert len(capped.places) == 25
        assert len(limited.places) == 10

    @pytest.mark.asyncio
    async def test_results_sorted_by_rating_then_name(self, executor):
        records = make_records("a", 3)
        records[0].rating = 3.0
        records[1].rating = None
        records[2].rating = 4.9
        aggregator = build_aggregator({"a": MockPlaceProvider(name="a", records=records)}, executor)

        result = await aggregator.aggregate(_query())

        assert [p.rating for p in result.places] == [4.9, 3.0, None]

    @pytest.mark.asyncio
    async def test_exhaustive_calls_every_provider(self, executor):
        a, b = _provider("a", 20), _provider("b", 20, 0.01)
        aggregator = build_aggregator({"a": a, "b": b}, executor)

        result = await aggregator.aggregate(_query(exhaustive=True, limit=100))

        assert (a.calls, b.calls) == (1, 1)
        assert sorted(result.sources_used) == ["a", "b"]
        assert len(result.places) == 40


class TestCascadeTimeouts:
    @pytest.mark.asyncio
    async def test_hanging_provider_does_not_block_the_next_tier(self, executor):
        hanging, healthy = HangingProvider("a"), _provider("b", 20)
        aggregator = build_aggregator(
            {"a": hanging, "b": healthy}, executor, timeout_per_api_s=0.05, deadline_s=5.0
        )

        result = await aggregator.aggregate(_query())

        assert hanging.calls >= 1
        assert healthy.calls == 1
        assert result.sources_used == ["b"]
        assert len(result.places) == 20
        assert "a" in result.failed

    @pytest.mark.asyncio
    async def test_timeouts_alone_return_an_empty_result(self, executor):
        aggregator = build_aggregator(
            {"a": HangingProvider("a")}, executor, timeout_per_api_s=0.05, deadline_s=5.0
        )

        result = await aggregator.aggregate(_query())

        assert result.places == []
        assert "a" in result.failed

    @pytest.mark.asyncio
    async def test_expired_caller_deadline_calls_no_provider(self, executor):
        a, b = _provider("a", 20), _provider("b", 20, 0.01)
        aggregator = build_aggregator({"a": a, "b": b}, executor)

        result = await aggregator.aggregate(_query(), deadline=Deadline(0.0))

        assert (a.calls, b.calls) == (0, 0)
        assert result.places == []
        assert set(result.failed) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_exhaustive_round_tolerates_a_hanging_provider(self, executor):
        hanging, healthy = HangingProvider("a"), _provider("b", 20)
        aggregator = build_aggregator(
            {"a": hanging, "b": healthy}, executor, timeout_per_api_s=0.05, deadline_s=5.0
        )

        result = await aggregator.aggregate(_query(exhaustive=True))

        assert result.sources_used == ["b"]
        assert len(result.places) == 20
