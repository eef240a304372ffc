# backend/placescout/services/container.py
"""
Composition root.

Builds every long-lived collaborator once, wires them together and hands
them to the FastAPI app via ``app.state``. Tests call ``build_services``
with fakes for providers, store and embeddings.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from ..core.config import Settings
from ..core.exceptions import ConfigurationError
from ..monitoring.provider_usage import ProviderUsageTracker
from .ingestion.pipeline import IngestionConfig, IngestionPipeline
from .providers.base import PlaceProvider
from .providers.factory import create_place_providers, default_tier_order
from .providers.health_monitor import HealthMonitorConfig, ProviderHealthMonitor
from .search.cascading_aggregator import CascadeConfig, CascadingAggregator
from .search.embedding_provider import EmbeddingProvider, create_embedding_provider
from .search.embedding_service import EMBEDDING_RETRY, EmbeddingGenerator
from .search.local_cache import CacheConfig, LocalCache
from .search.retry import RetryConfig, RetryExecutor
from .search.unified_search_service import SearchServiceConfig, UnifiedSearchService
from .vector_store.base import VectorStore
from .vector_store.memory_store import InMemoryVectorStore
from .vector_store.qdrant_store import QdrantVectorStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    usage: ProviderUsageTracker
    executor: RetryExecutor
    providers: Dict[str, PlaceProvider]
    aggregator: CascadingAggregator
    cache: LocalCache
    embeddings: EmbeddingGenerator
    store: VectorStore
    ingestion: IngestionPipeline
    search: UnifiedSearchService
    health_monitor: ProviderHealthMonitor

    async def startup(self) -> None:
        """
        Validate the store against the embedding size and start background work.

        Raises:
            ConfigurationError: EMBEDDING_DIM differs from the collection's vector size
        """
        vector_size = await self.store.ensure_collection()
        if vector_size != self.embeddings.dimensions:
            raise ConfigurationError(
                f"EMBEDDING_DIM={self.embeddings.dimensions} does not match the vector store "
                f"collection size {vector_size}",
                details={"embedding_dim": self.embeddings.dimensions, "vector_size": vector_size},
            )
        self.health_monitor.start()
        logger.info(
            f"Services started: providers {self.health_monitor.current_order()}, "
            f"vector size {vector_size}"
        )

    async def shutdown(self) -> None:
        await self.health_monitor.stop()
        await self.store.close()
        logger.info("Services stopped")


def build_vector_store(settings: Settings, executor: RetryExecutor) -> VectorStore:
    if settings.vector_store == "memory":
        return InMemoryVectorStore(vector_size=settings.embedding_dim)
    return QdrantVectorStore.from_settings(settings, executor=executor)


def build_services(
    settings: Settings,
    *,
    providers: Optional[Mapping[str, PlaceProvider]] = None,
    store: Optional[VectorStore] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ServiceContainer:
    usage = ProviderUsageTracker()
    executor = RetryExecutor(RetryConfig.from_settings(settings), usage=usage, sleep=sleep)
    place_providers = dict(providers) if providers is not None else create_place_providers(settings)

    health_monitor = ProviderHealthMonitor(
        place_providers,
        usage,
        config=HealthMonitorConfig.from_settings(settings),
        initial_order=default_tier_order(settings, list(place_providers)),
    )
    aggregator = CascadingAggregator(
        place_providers,
        executor,
        config=CascadeConfig.from_settings(settings),
        tier_source=health_monitor,
    )

    embeddings = EmbeddingGenerator(
        embedding_provider or create_embedding_provider(settings),
        dimensions=settings.embedding_dim,
        timeout_s=settings.embedding_timeout_s,
        executor=RetryExecutor(EMBEDDING_RETRY, usage=usage, sleep=sleep),
    )
    vector_store = store or build_vector_store(settings, executor)
    cache = LocalCache(CacheConfig.from_settings(settings))

    ingestion = IngestionPipeline(
        aggregator,
        vector_store,
        embeddings,
        config=IngestionConfig.from_settings(settings),
        sleep=sleep,
    )
    search = UnifiedSearchService(
        vector_store,
        cache,
        embeddings,
        ingestion=ingestion,
        config=SearchServiceConfig.from_settings(settings),
    )

    logger.info(
        f"Built services with {len(place_providers)} providers, "
        f"{type(vector_store).__name__}, {embeddings.provider.get_model_name()} embeddings"
    )
    return ServiceContainer(
        settings=settings,
        usage=usage,
        executor=executor,
        providers=place_providers,
        aggregator=aggregator,
        cache=cache,
        embeddings=embeddings,
        store=vector_store,
        ingestion=ingestion,
        search=search,
        health_monitor=health_monitor,
    )
