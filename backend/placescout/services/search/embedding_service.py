# backend/placescout/services/search/embedding_service.py
"""
Embedding generation for places (index-time) and queries (search-time).

Provider calls run through the RetryExecutor (operation "embedding")
inside the circuit breaker. ``embed`` never raises: provider errors,
timeouts, an open circuit or a vector of the wrong size all degrade to a
zero vector of the configured dimension. Callers treat a zero vector as
"no semantic signal".
"""
from __future__ import annotations

from collections import OrderedDict
import hashlib
import logging
from typing import List, Optional, Sequence

from ...schemas.places import CanonicalPlace
from .. import metrics
from ..canonical import embedding_text
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitOpenError
from .embedding_provider import EmbeddingProvider
from .retry import RetryConfig, RetryExecutor

logger = logging.getLogger(__name__)

QUERY_CACHE_SIZE = 512

# One quick retry with a short backoff per embedding call
EMBEDDING_RETRY = RetryConfig(max_retries=1, initial_delay_s=0.1, max_delay_s=0.5)


def is_zero_vector(vector: Sequence[float]) -> bool:
    return not any(vector)


class EmbeddingGenerator:
    """
    Responsibilities:
    - Place embedding text and vectors (ingestion)
    - Query vectors (search), memoized in a small LRU
    - Zero-vector fallback on any failure
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        dimensions: int,
        timeout_s: float = 2.0,
        circuit: Optional[CircuitBreaker] = None,
        executor: Optional[RetryExecutor] = None,
    ) -> None:
        self.provider = provider
        self.dimensions = dimensions
        self.timeout_s = timeout_s
        self.circuit = circuit or CircuitBreaker(
            name="embedding", config=CircuitBreakerConfig(failure_threshold=3, timeout_seconds=60.0)
        )
        self.executor = executor or RetryExecutor(EMBEDDING_RETRY)
        self._query_cache: "OrderedDict[str, List[float]]" = OrderedDict()

    def zero_vector(self) -> List[float]:
        return [0.0] * self.dimensions

    async def embed(self, text: str) -> List[float]:
        """Vector for ``text``; a zero vector when generation fails."""
        normalized = " ".join(text.split())
        if not normalized:
            return self.zero_vector()
        try:
            vector = await self.circuit.call(self._embed_with_retry, normalized)
        except CircuitOpenError:
            metrics.record_embedding_fallback("circuit_open")
            logger.warning("Embedding circuit is OPEN, using zero vector")
            return self.zero_vector()
        except Exception as e:
            metrics.record_embedding_fallback(type(e).__name__)
            logger.error(f"Embedding generation failed, using zero vector: {e}")
            return self.zero_vector()

        if len(vector) != self.dimensions:
            metrics.record_embedding_fallback("dimension_mismatch")
            logger.error(
                f"Embedding provider returned {len(vector)} dims, expected {self.dimensions}"
            )
            return self.zero_vector()
        return vector

    async def embed_place(self, place: CanonicalPlace) -> List[float]:
        return await self.embed(embedding_text(place))

    async def embed_query(self, query: str) -> List[float]:
        """Search-time embedding; successful vectors are memoized."""
        normalized = " ".join(query.lower().split())
        key = hashlib.sha256(normalized.encode()).hexdigest()[:16]
        cached = self._query_cache.get(key)
        if cached is not None:
            self._query_cache.move_to_end(key)
            return list(cached)
        vector = await self.embed(normalized)
        if not is_zero_vector(vector):
            self._query_cache[key] = vector
            while len(self._query_cache) > QUERY_CACHE_SIZE:
                self._query_cache.popitem(last=False)
        return vector

    async def _embed_with_retry(self, text: str) -> List[float]:
        vector = await self.executor.execute(
            "embedding", self.provider.embed, text, timeout_s=self.timeout_s
        )
        return list(vector)
