# backend/placescout/services/metrics.py
"""
Prometheus metrics for the place pipeline.

Provides observability for:
- Provider calls, latency and retries
- Local cache hits, misses and evictions
- Ingestion outcomes
- Search paths and latency
- Provider health and tier order
"""
from __future__ import annotations

from typing import Dict, Sequence

from prometheus_client import Counter, Gauge, Histogram

from ..monitoring.prometheus_metrics import REGISTRY

# Provider / retry executor
OPERATION_CALLS = Counter(
    "placescout_operation_calls_total",
    "Calls made through the retry executor by operation and outcome",
    ["operation", "outcome"],
    registry=REGISTRY,
)

OPERATION_LATENCY = Histogram(
    "placescout_operation_latency_ms",
    "Latency of retry-executor calls in milliseconds (all attempts)",
    ["operation"],
    registry=REGISTRY,
    buckets=[25, 50, 100, 250, 500, 1000, 2000, 4000, 8000, 16000],
)

RETRY_ATTEMPTS = Counter(
    "placescout_retry_attempts_total",
    "Retries scheduled after a transient failure",
    ["operation", "error_type"],
    registry=REGISTRY,
)

PROVIDER_RESULTS = Histogram(
    "placescout_provider_results",
    "Places returned per provider call",
    ["provider"],
    registry=REGISTRY,
    buckets=[0, 1, 5, 10, 15, 25, 50, 100],
)

# Local cache
CACHE_HIT = Counter(
    "placescout_cache_hit_total",
    "Local cache hits by data type and match kind",
    ["data_type", "match"],
    registry=REGISTRY,
)

CACHE_MISS = Counter(
    "placescout_cache_miss_total",
    "Local cache misses",
    registry=REGISTRY,
)

CACHE_EVICTIONS = Counter(
    "placescout_cache_evictions_total",
    "Local cache entries removed by reason",
    ["reason"],
    registry=REGISTRY,
)

CACHE_ENTRIES = Gauge(
    "placescout_cache_entries",
    "Current local cache entry count",
    registry=REGISTRY,
)

# Ingestion
INGESTION_RECORDS = Counter(
    "placescout_ingestion_records_total",
    "Ingested records by outcome",
    ["outcome"],
    registry=REGISTRY,
)

INGESTION_JOBS = Counter(
    "placescout_ingestion_jobs_total",
    "Ingestion jobs by terminal status",
    ["status"],
    registry=REGISTRY,
)

EMBEDDING_FALLBACKS = Counter(
    "placescout_embedding_fallback_total",
    "Embedding requests answered with a zero vector",
    ["reason"],
    registry=REGISTRY,
)

# Search
SEARCH_REQUESTS = Counter(
    "placescout_search_requests_total",
    "Search requests by serving path",
    ["path"],
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "placescout_search_latency_ms",
    "Search latency in milliseconds",
    ["path"],
    registry=REGISTRY,
    buckets=[10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

SEARCH_RESULT_COUNT = Histogram(
    "placescout_search_result_count",
    "Number of places returned per search",
    registry=REGISTRY,
    buckets=[0, 1, 5, 10, 20, 50, 100],
)

# Health monitor
PROVIDER_HEALTH = Gauge(
    "placescout_provider_health_status",
    "Provider health (0=healthy, 1=warning, 2=critical, 3=down)",
    ["provider"],
    registry=REGISTRY,
)

PROVIDER_TIER = Gauge(
    "placescout_provider_tier",
    "Provider priority tier (1 = tried first)",
    ["provider"],
    registry=REGISTRY,
)

TIER_REORDERS = Counter(
    "placescout_provider_tier_reorders_total",
    "Provider tier reorder events",
    registry=REGISTRY,
)

_HEALTH_LEVELS: Dict[str, int] = {"healthy": 0, "warning": 1, "critical": 2, "down": 3}


def record_operation(
    operation: str, success: bool, latency_ms: float, error_type: str | None = None
) -> None:
    outcome = "success" if success else (error_type or "error")
    OPERATION_CALLS.labels(operation=operation, outcome=outcome).inc()
    OPERATION_LATENCY.labels(operation=operation).observe(latency_ms)


def record_retry(operation: str, error_type: str) -> None:
    RETRY_ATTEMPTS.labels(operation=operation, error_type=error_type).inc()


def record_provider_results(provider: str, count: int) -> None:
    PROVIDER_RESULTS.labels(provider=provider).observe(count)


def record_cache_hit(data_type: str, match: str) -> None:
    CACHE_HIT.labels(data_type=data_type, match=match).inc()


def record_cache_miss() -> None:
    CACHE_MISS.inc()


def record_cache_eviction(reason: str, count: int = 1) -> None:
    if count > 0:
        CACHE_EVICTIONS.labels(reason=reason).inc(count)


def set_cache_entries(count: int) -> None:
    CACHE_ENTRIES.set(count)


def record_ingestion(stored: int, updated: int, skipped: int, errors: int) -> None:
    for outcome, count in (
        ("stored", stored),
        ("updated", updated),
        ("skipped", skipped),
        ("error", errors),
    ):
        if count:
            INGESTION_RECORDS.labels(outcome=outcome).inc(count)


def record_ingestion_job(status: str) -> None:
    INGESTION_JOBS.labels(status=status).inc()


def record_embedding_fallback(reason: str) -> None:
    EMBEDDING_FALLBACKS.labels(reason=reason).inc()


def record_search(path: str, latency_ms: float, result_count: int) -> None:
    SEARCH_REQUESTS.labels(path=path).inc()
    SEARCH_LATENCY.labels(path=path).observe(latency_ms)
    SEARCH_RESULT_COUNT.observe(result_count)


def record_provider_health(provider: str, status: str) -> None:
    PROVIDER_HEALTH.labels(provider=provider).set(_HEALTH_LEVELS.get(status, 3))


def record_tier_order(order: Sequence[str], reordered: bool) -> None:
    for tier, provider in enumerate(order, start=1):
        PROVIDER_TIER.labels(provider=provider).set(tier)
    if reordered:
        TIER_REORDERS.inc()


__all__ = [
    "record_operation",
    "record_retry",
    "record_provider_results",
    "record_cache_hit",
    "record_cache_miss",
    "record_cache_eviction",
    "set_cache_entries",
    "record_ingestion",
    "record_ingestion_job",
    "record_embedding_fallback",
    "record_search",
    "record_provider_health",
    "record_tier_order",
]
