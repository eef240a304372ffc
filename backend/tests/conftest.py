# backend/tests/conftest.py
"""
Shared fixtures: a no-wait retry executor, the in-memory vector store and
deterministic embeddings.
"""
import os

import pytest

os.environ.setdefault("CI", "1")
os.environ.setdefault("EMBEDDING_PROVIDER", "mock")
os.environ.setdefault("VECTOR_STORE", "memory")
os.environ.setdefault("HEALTH_MONITOR_ENABLED", "false")

from placescout.core.config import reset_settings  # noqa: E402
from placescout.monitoring.provider_usage import ProviderUsageTracker  # noqa: E402
from placescout.services.search.embedding_provider import MockEmbeddingProvider  # noqa: E402
from placescout.services.search.embedding_service import EmbeddingGenerator  # noqa: E402
from placescout.services.search.retry import RetryConfig, RetryExecutor  # noqa: E402
from placescout.services.vector_store.memory_store import InMemoryVectorStore  # noqa: E402
from tests._utils.places import TEST_DIM, RecordingSleep  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def usage() -> ProviderUsageTracker:
    return ProviderUsageTracker()


@pytest.fixture
def executor(usage, recording_sleep) -> RetryExecutor:
    return RetryExecutor(
        RetryConfig(max_retries=2, initial_delay_s=0.01, max_delay_s=0.05),
        usage=usage,
        sleep=recording_sleep,
    )


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore(vector_size=TEST_DIM)


@pytest.fixture
def embeddings() -> EmbeddingGenerator:
    return EmbeddingGenerator(MockEmbeddingProvider(TEST_DIM), dimensions=TEST_DIM)
