# backend/tests/unit/services/test_place_providers.py
"""Provider adapters against canned HTTP and model responses."""
import json
from types import SimpleNamespace

import httpx
import pytest

from placescout.core.config import Settings
from placescout.core.exceptions import (
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTransientError,
)
from placescout.services.providers.ai_fallback_provider import AIFallbackProvider
from placescout.services.providers.factory import create_place_providers, default_tier_order
from placescout.services.providers.geoapify_provider import GeoapifyProvider
from placescout.services.providers.openstreetmap_provider import OpenStreetMapProvider
from placescout.services.providers.opentripmap_provider import (
    OpenTripMapProvider,
    _rating_from_rate,
)
from placescout.services.providers.rapidapi_provider import RapidAPIProvider

LAT, LON = 48.8566, 2.3522


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _feature(name, lat, lon, **props):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": {"name": name, **props},
    }


class TestGeoapify:
    @pytest.mark.asyncio
    async def test_parses_features_and_drops_unusable_ones(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json={
                    "features": [
                        _feature(
                            "Louvre",
                            48.8606,
                            2.3376,
                            categories=["entertainment.museum", "tourism.sights"],
                            formatted="Rue de Rivoli, Paris",
                            place_id="abc",
                        ),
                        _feature(None, 48.86, 2.33),
                        _feature("Null Island Cafe", 0, 0),
                    ]
                },
            )

        provider = GeoapifyProvider("key", client=_client(handler))
        places = await provider.fetch(LAT, LON, 5000, category_hint="restaurant")

        assert [p.name for p in places] == ["Louvre"]
        louvre = places[0]
        assert louvre.source == "geoapify"
        assert louvre.category == "entertainment.museum"
        assert louvre.address == "Rue de Rivoli, Paris"
        assert louvre.source_id == "abc"
        assert seen["params"]["filter"] == f"circle:{LON},{LAT},5000"
        assert seen["params"]["categories"] == "catering.restaurant,catering.cafe"

    @pytest.mark.asyncio
    async def test_missing_key_is_an_auth_error(self):
        provider = GeoapifyProvider(None)
        assert provider.is_configured is False
        with pytest.raises(ProviderAuthError):
            await provider.fetch(LAT, LON, 1000)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error",
        [
            (429, ProviderRateLimitError),
            (503, ProviderTransientError),
            (401, ProviderAuthError),
            (404, ProviderResponseError),
        ],
    )
    async def test_http_status_mapping(self, status, error):
        provider = GeoapifyProvider("key", client=_client(lambda r: httpx.Response(status, text="no")))
        with pytest.raises(error):
            await provider.fetch(LAT, LON, 1000)

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_response_error(self):
        provider = GeoapifyProvider(
            "key", client=_client(lambda r: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(ProviderResponseError):
            await provider.fetch(LAT, LON, 1000)

    @pytest.mark.asyncio
    async def test_network_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = GeoapifyProvider("key", client=_client(handler))
        with pytest.raises(ProviderTransientError):
            await provider.fetch(LAT, LON, 1000)


class TestOpenTripMap:
    def test_rate_scaling(self):
        assert _rating_from_rate("3h") == 5.0
        assert _rating_from_rate(1) == 1.7
        assert _rating_from_rate(0) is None
        assert _rating_from_rate("x") is None

    @pytest.mark.asyncio
    async def test_parses_radius_results(self):
        payload = [
            {
                "xid": "W123",
                "name": "Notre-Dame",
                "rate": "3h",
                "kinds": "religion,cathedrals,architecture",
                "point": {"lat": 48.853, "lon": 2.3499},
            },
            {"xid": "W124", "name": "", "point": {"lat": 48.85, "lon": 2.35}},
        ]
        provider = OpenTripMapProvider("key", client=_client(lambda r: httpx.Response(200, json=payload)))

        places = await provider.fetch(LAT, LON, 2000)

        assert len(places) == 1
        assert places[0].rating == 5.0
        assert places[0].category == "religion"
        assert places[0].tags == ["religion", "cathedrals", "architecture"]


class TestOpenStreetMap:
    def test_query_targets_category_tags(self):
        query = OpenStreetMapProvider().build_query(LAT, LON, 1000, "hotel")
        assert f"(around:1000,{LAT},{LON})" in query
        assert 'tourism~"hotel|hostel|guest_house|motel"' in query
        assert query.startswith("[out:json]")

    @pytest.mark.asyncio
    async def test_parses_nodes_and_way_centers(self):
        payload = {
            "elements": [
                {
                    "type": "node",
                    "id": 1,
                    "lat": 48.8584,
                    "lon": 2.2945,
                    "tags": {"name": "Eiffel Tower", "tourism": "attraction", "image": "http://x/e.jpg"},
                },
                {
                    "type": "way",
                    "id": 2,
                    "center": {"lat": 48.8462, "lon": 2.3372},
                    "tags": {
                        "name": "Jardin du Luxembourg",
                        "leisure": "park",
                        "addr:street": "Rue de Vaugirard",
                        "addr:city": "Paris",
                    },
                },
            ]
        }
        provider = OpenStreetMapProvider(client=_client(lambda r: httpx.Response(200, json=payload)))

        places = await provider.fetch(LAT, LON, 5000)

        assert [p.name for p in places] == ["Eiffel Tower", "Jardin du Luxembourg"]
        assert places[0].category == "tourism.attraction"
        assert places[0].image == "http://x/e.jpg"
        assert places[1].coordinates.lat == 48.8462
        assert places[1].address == "Rue de Vaugirard Paris"
        assert places[1].source_id == "way/2"


class TestRapidAPI:
    @pytest.mark.asyncio
    async def test_geocodes_the_location_name_first(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.geoapify.com":
                return httpx.Response(
                    200, json={"features": [{"geometry": {"coordinates": [2.2945, 48.8584]}}]}
                )
            seen["query"] = json.loads(request.content)["query"]
            seen["key"] = request.headers["x-rapidapi-key"]
            return httpx.Response(
                200,
                json={
                    "data": {
                        "getPlaces": [
                            {
                                "id": "p1",
                                "name": "Champ de Mars",
                                "lat": 48.8556,
                                "lng": 2.2986,
                                "abstract": "Public green space",
                                "categories": ["PARK"],
                            }
                        ]
                    }
                },
            )

        provider = RapidAPIProvider("rk", geocoding_api_key="gk", client=_client(handler))

        places = await provider.fetch(LAT, LON, 2000, location_name="Eiffel Tower")

        assert provider.requires_location_name is True
        assert "lat: 48.8584" in seen["query"]
        assert seen["key"] == "rk"
        assert places[0].name == "Champ de Mars"
        assert places[0].tags == ["park"]
        assert places[0].address == "Eiffel Tower"


class FakeCompletions:
    def __init__(self, content: str) -> None:
        self.content = content
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_openai(content: str):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestAIFallback:
    @pytest.mark.asyncio
    async def test_keeps_generated_places_inside_the_radius(self):
        content = json.dumps(
            {
                "places": [
                    {"name": "Sainte-Chapelle", "category": "church", "lat": 48.8554, "lon": 2.345},
                    {"name": "Versailles", "category": "palace", "lat": 48.8049, "lon": 2.1204},
                    {"name": "", "lat": 48.85, "lon": 2.35},
                ]
            }
        )
        client, completions = _fake_openai(content)
        provider = AIFallbackProvider(None, client=client)

        places = await provider.fetch(LAT, LON, 3000, location_name="Paris")

        assert provider.is_configured is True
        assert provider.supports_probe is False
        assert [p.name for p in places] == ["Sainte-Chapelle"]
        assert places[0].tags == ["generated"]
        assert completions.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_non_json_answer_is_a_response_error(self):
        client, _ = _fake_openai("Sorry, I cannot help with that.")
        with pytest.raises(ProviderResponseError):
            await AIFallbackProvider(None, client=client).fetch(LAT, LON, 3000)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        [
            json.dumps([{"name": "Louvre", "lat": 48.8606, "lon": 2.3376}]),
            json.dumps({"places": ["Louvre", "Orsay"]}),
            json.dumps({"places": {"name": "Louvre"}}),
        ],
    )
    async def test_wrong_answer_shape_is_a_response_error(self, content):
        client, _ = _fake_openai(content)
        with pytest.raises(ProviderResponseError):
            await AIFallbackProvider(None, client=client).fetch(LAT, LON, 3000)

    @pytest.mark.asyncio
    async def test_answer_without_places_is_empty(self):
        client, _ = _fake_openai(json.dumps({"places": []}))
        assert await AIFallbackProvider(None, client=client).fetch(LAT, LON, 3000) == []


class TestFactory:
    def test_registers_known_providers_only(self):
        settings = Settings(place_providers="geoapify, mock, bogus")
        providers = create_place_providers(settings)
        assert list(providers) == ["geoapify", "mock"]

    def test_default_tier_order_puts_fallback_last(self):
        settings = Settings(aggregator_priority_order="opentripmap,geoapify")
        order = default_tier_order(settings, ["ai-fallback", "geoapify", "openstreetmap", "opentripmap"])
        assert order == ["opentripmap", "geoapify", "openstreetmap", "ai-fallback"]
