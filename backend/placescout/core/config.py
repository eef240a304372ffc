# backend/placescout/core/config.py
"""
Process-wide settings for PlaceScout.

Values come from environment variables (and ``backend/.env`` outside CI).
Components never read these directly in hot paths; each builds its own
small config dataclass via ``from_settings`` so tests can construct them
without touching the environment.
"""
import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import PROVIDER_AI_FALLBACK

logger = logging.getLogger(__name__)

_BACKEND_ROOT = Path(__file__).resolve().parents[2]

if not os.getenv("CI"):
    load_dotenv(_BACKEND_ROOT / ".env", override=False)


def is_running_tests() -> bool:
    """PYTEST_CURRENT_TEST is set by pytest for the duration of each test."""
    return os.getenv("PYTEST_CURRENT_TEST") is not None


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Provider credentials and endpoints
    geoapify_api_key: Optional[SecretStr] = Field(default=None, alias="GEOAPIFY_API_KEY")
    opentripmap_api_key: Optional[SecretStr] = Field(default=None, alias="OPENTRIPMAP_API_KEY")
    rapidapi_key: Optional[SecretStr] = Field(default=None, alias="RAPIDAPI_KEY")
    rapidapi_host: str = Field(default="travel-places.p.rapidapi.com", alias="RAPIDAPI_HOST")
    overpass_url: str = Field(
        default="https://overpass-api.de/api/interpreter", alias="OVERPASS_URL"
    )
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    fallback_model: str = Field(default="gpt-4o-mini", alias="FALLBACK_MODEL")
    place_providers: str = Field(
        default=f"geoapify,opentripmap,openstreetmap,rapidapi,{PROVIDER_AI_FALLBACK}",
        alias="PLACE_PROVIDERS",
        description="Comma-separated adapters to register, by name",
    )

    # Embeddings
    embedding_provider: Literal["openai", "mock"] = Field(
        default="openai", alias="EMBEDDING_PROVIDER"
    )
    embedding_model: str = Field(default="text-embedding-3-small", alias="EMBEDDING_MODEL")
    embedding_dim: int = Field(default=384, alias="EMBEDDING_DIM", gt=0)
    embedding_timeout_s: float = Field(default=2.0, alias="EMBEDDING_TIMEOUT_S", gt=0)

    # Local cache
    cache_max_age_seconds: int = Field(default=1800, alias="CACHE_MAX_AGE_SECONDS", gt=0)
    cache_max_entries: int = Field(default=50, alias="CACHE_MAX_ENTRIES", gt=0)
    cache_radius_tolerance_m: float = Field(
        default=1000.0, alias="CACHE_RADIUS_TOLERANCE_M", ge=0
    )
    cache_ttl_places_seconds: int = Field(default=7200, alias="CACHE_TTL_PLACES_SECONDS", gt=0)
    cache_ttl_hotels_seconds: int = Field(default=14400, alias="CACHE_TTL_HOTELS_SECONDS", gt=0)
    cache_ttl_restaurants_seconds: int = Field(
        default=3600, alias="CACHE_TTL_RESTAURANTS_SECONDS", gt=0
    )

    # Cascading aggregator
    aggregator_min_results_threshold: int = Field(
        default=15, alias="AGGREGATOR_MIN_RESULTS_THRESHOLD", ge=1
    )
    aggregator_max_results_per_api: int = Field(
        default=25, alias="AGGREGATOR_MAX_RESULTS_PER_API", ge=1
    )
    aggregator_timeout_per_api_s: float = Field(
        default=8.0, alias="AGGREGATOR_TIMEOUT_PER_API_S", gt=0
    )
    aggregator_priority_order: str = Field(
        default="rapidapi,geoapify,opentripmap,openstreetmap",
        alias="AGGREGATOR_PRIORITY_ORDER",
    )
    aggregator_deadline_s: float = Field(default=30.0, alias="AGGREGATOR_DEADLINE_S", gt=0)
    fallback_provider: str = Field(default=PROVIDER_AI_FALLBACK, alias="FALLBACK_PROVIDER")

    # Retry executor
    retry_max_retries: int = Field(default=3, alias="RETRY_MAX_RETRIES", ge=0)
    retry_initial_delay_s: float = Field(default=1.0, alias="RETRY_INITIAL_DELAY_S", ge=0)
    retry_max_delay_s: float = Field(default=30.0, alias="RETRY_MAX_DELAY_S", ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, alias="RETRY_BACKOFF_MULTIPLIER", ge=1)

    # Provider health monitor
    health_monitor_enabled: bool = Field(default=True, alias="HEALTH_MONITOR_ENABLED")
    health_check_interval_s: float = Field(default=300.0, alias="HEALTH_CHECK_INTERVAL_S", gt=0)
    health_check_timeout_s: float = Field(default=10.0, alias="HEALTH_CHECK_TIMEOUT_S", gt=0)
    health_critical_success_rate: float = Field(
        default=0.5, alias="HEALTH_CRITICAL_SUCCESS_RATE", ge=0, le=1
    )
    health_critical_response_ms: float = Field(
        default=8000.0, alias="HEALTH_CRITICAL_RESPONSE_MS", gt=0
    )
    health_warning_success_rate: float = Field(
        default=0.7, alias="HEALTH_WARNING_SUCCESS_RATE", ge=0, le=1
    )
    health_warning_response_ms: float = Field(
        default=3000.0, alias="HEALTH_WARNING_RESPONSE_MS", gt=0
    )

    # Vector store
    vector_store: Literal["qdrant", "memory"] = Field(default="qdrant", alias="VECTOR_STORE")
    qdrant_url: str = Field(default="http://localhost:6333", alias="QDRANT_URL")
    qdrant_api_key: Optional[SecretStr] = Field(default=None, alias="QDRANT_API_KEY")
    qdrant_collection: str = Field(default="places", alias="QDRANT_COLLECTION")

    # Ingestion
    ingestion_batch_size: int = Field(default=100, alias="INGESTION_BATCH_SIZE", ge=1)
    ingestion_min_quality_score: float = Field(
        default=30.0, alias="INGESTION_MIN_QUALITY_SCORE", ge=0, le=100
    )
    ingestion_optimize_threshold: int = Field(
        default=1000, alias="INGESTION_OPTIMIZE_THRESHOLD", ge=1
    )
    ingestion_enable_optimization: bool = Field(
        default=True, alias="INGESTION_ENABLE_OPTIMIZATION"
    )
    ingestion_job_retention_hours: float = Field(
        default=24.0, alias="INGESTION_JOB_RETENTION_HOURS", gt=0
    )
    ingestion_max_retries: int = Field(default=3, alias="INGESTION_MAX_RETRIES", ge=0)
    ingestion_retry_delay_s: float = Field(default=5.0, alias="INGESTION_RETRY_DELAY_S", ge=0)

    # Unified search
    search_default_limit: int = Field(default=20, alias="SEARCH_DEFAULT_LIMIT", ge=1)
    search_default_radius_m: float = Field(default=5000.0, alias="SEARCH_DEFAULT_RADIUS_M", gt=0)
    search_min_similarity: float = Field(default=0.5, alias="SEARCH_MIN_SIMILARITY", ge=0, le=1)
    search_slow_query_s: float = Field(default=5.0, alias="SEARCH_SLOW_QUERY_S", gt=0)
    search_slow_query_keep: int = Field(default=20, alias="SEARCH_SLOW_QUERY_KEEP", ge=1)
    search_fallback_enabled: bool = Field(default=True, alias="SEARCH_FALLBACK_ENABLED")

    @field_validator("fallback_provider")
    @classmethod
    def _normalize_fallback(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def provider_names(self) -> List[str]:
        return _split_csv(self.place_providers)

    @property
    def priority_order(self) -> List[str]:
        return _split_csv(self.aggregator_priority_order)

    def secret(self, name: str) -> Optional[str]:
        """Plain value of a SecretStr field, or None when unset/blank."""
        value = getattr(self, name, None)
        if value is None:
            return None
        raw = value.get_secret_value() if isinstance(value, SecretStr) else str(value)
        return raw.strip() or None


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests)."""
    global _settings
    _settings = None
