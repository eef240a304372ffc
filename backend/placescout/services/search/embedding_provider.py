# backend/placescout/services/search/embedding_provider.py
"""
Embedding provider abstraction for place vectors.
Supports OpenAI (production) and mock (testing) providers.
"""
from __future__ import annotations

import hashlib
import logging
import random
from typing import List, Optional, Protocol

from openai import AsyncOpenAI

from ...core.config import Settings

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Interface for embedding providers."""

    async def embed(self, text: str) -> List[float]:
        ...

    def get_model_name(self) -> str:
        ...

    def get_dimensions(self) -> int:
        ...


class OpenAIEmbeddingProvider:
    """
    Production embedding provider using the OpenAI API.

    ``dimensions`` is passed through so text-embedding-3 models return
    vectors sized for the place collection.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 384,
        api_key: Optional[str] = None,
        timeout_s: float = 2.0,
        max_retries: int = 0,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self._client: Optional[AsyncOpenAI] = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy client so a missing key only fails on first use."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                timeout=self.timeout_s,
                max_retries=self.max_retries,
            )
        return self._client

    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self.dimensions,
        )
        return list(response.data[0].embedding)

    def get_model_name(self) -> str:
        return self.model

    def get_dimensions(self) -> int:
        return self.dimensions


class MockEmbeddingProvider:
    """
    Deterministic mock embeddings for tests and local development.

    Same text always yields the same unit vector; different texts yield
    different vectors.
    """

    def __init__(self, dimensions: int = 384) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        return self._generate_embedding(text)

    def _generate_embedding(self, text: str) -> List[float]:
        text_hash = hashlib.sha256(text.lower().encode()).hexdigest()
        rng = random.Random(int(text_hash[:8], 16))
        embedding = [rng.gauss(0, 1) for _ in range(self.dimensions)]
        magnitude = sum(x**2 for x in embedding) ** 0.5
        return [x / magnitude for x in embedding]

    def get_model_name(self) -> str:
        return "mock-embedding"

    def get_dimensions(self) -> int:
        return self.dimensions


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Provider selected by EMBEDDING_PROVIDER, sized by EMBEDDING_DIM."""
    if settings.embedding_provider == "mock":
        logger.info(f"Using mock embedding provider ({settings.embedding_dim} dims)")
        return MockEmbeddingProvider(dimensions=settings.embedding_dim)
    return OpenAIEmbeddingProvider(
        model=settings.embedding_model,
        dimensions=settings.embedding_dim,
        api_key=settings.secret("openai_api_key"),
        timeout_s=settings.embedding_timeout_s,
    )
