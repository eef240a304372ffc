# backend/tests/unit/services/test_embedding_service.py
"""Embedding generation never raises; failures degrade to a zero vector."""
import asyncio
from typing import List

import pytest

from placescout.services.search.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from placescout.services.search.embedding_provider import MockEmbeddingProvider
from placescout.services.search.embedding_service import EmbeddingGenerator, is_zero_vector
from tests._utils.places import TEST_DIM, make_place


class BrokenProvider:
    def __init__(self) -> None:
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        raise RuntimeError("embedding API unavailable")


class SlowProvider:
    async def embed(self, text: str) -> List[float]:
        await asyncio.sleep(1)
        return [1.0] * TEST_DIM


class FlakyProvider:
    """Drops the first connection, then answers."""

    def __init__(self) -> None:
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        if self.calls == 1:
            raise ConnectionError("connection reset by peer")
        return [1.0] * TEST_DIM


class WrongSizeProvider:
    async def embed(self, text: str) -> List[float]:
        return [1.0] * (TEST_DIM + 1)


class CountingProvider(MockEmbeddingProvider):
    def __init__(self, dimensions: int) -> None:
        super().__init__(dimensions)
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        return await super().embed(text)


class TestMockEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self):
        provider = MockEmbeddingProvider(TEST_DIM)
        first = await provider.embed("museum")
        again = await provider.embed("museum")
        other = await provider.embed("beach")
        assert first == again
        assert first != other
        assert sum(x * x for x in first) == pytest.approx(1.0)


class TestEmbeddingGenerator:
    @pytest.mark.asyncio
    async def test_embeds_with_configured_dimension(self, embeddings):
        vector = await embeddings.embed("art museum")
        assert len(vector) == TEST_DIM
        assert not is_zero_vector(vector)

    @pytest.mark.asyncio
    async def test_blank_text_is_zero_vector(self, embeddings):
        assert await embeddings.embed("   ") == [0.0] * TEST_DIM

    @pytest.mark.asyncio
    async def test_provider_error_yields_zero_vector(self):
        generator = EmbeddingGenerator(BrokenProvider(), dimensions=TEST_DIM)
        assert await generator.embed("museum") == [0.0] * TEST_DIM

    @pytest.mark.asyncio
    async def test_timeout_yields_zero_vector(self):
        generator = EmbeddingGenerator(SlowProvider(), dimensions=TEST_DIM, timeout_s=0.01)
        assert is_zero_vector(await generator.embed("museum"))

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, executor, recording_sleep, usage):
        provider = FlakyProvider()
        generator = EmbeddingGenerator(provider, dimensions=TEST_DIM, executor=executor)

        vector = await generator.embed("museum")

        assert vector == [1.0] * TEST_DIM
        assert provider.calls == 2
        assert recording_sleep.delays == [0.01]
        snapshot = usage.snapshot("embedding")
        assert snapshot.retry_attempts == 1
        assert snapshot.success_rate == 1.0

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self, executor, recording_sleep):
        provider = BrokenProvider()
        generator = EmbeddingGenerator(provider, dimensions=TEST_DIM, executor=executor)

        assert is_zero_vector(await generator.embed("museum"))
        assert provider.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_wrong_dimension_yields_zero_vector(self):
        generator = EmbeddingGenerator(WrongSizeProvider(), dimensions=TEST_DIM)
        assert await generator.embed("museum") == [0.0] * TEST_DIM

    @pytest.mark.asyncio
    async def test_open_circuit_skips_the_provider(self):
        provider = BrokenProvider()
        breaker = CircuitBreaker(
            name="embedding-test",
            config=CircuitBreakerConfig(failure_threshold=2, timeout_seconds=60.0),
        )
        generator = EmbeddingGenerator(provider, dimensions=TEST_DIM, circuit=breaker)

        for _ in range(4):
            assert is_zero_vector(await generator.embed("museum"))

        assert breaker.state == CircuitState.OPEN
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_query_embeddings_are_memoized(self):
        provider = CountingProvider(TEST_DIM)
        generator = EmbeddingGenerator(provider, dimensions=TEST_DIM)

        first = await generator.embed_query("Art  Museum")
        second = await generator.embed_query("art museum")

        assert first == second
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_place_embedding_uses_place_text(self, embeddings):
        place = make_place("Louvre", description="Art museum")
        expected = await embeddings.embed("Louvre attraction Art museum 1 Main Street")
        assert await embeddings.embed_place(place) == expected
