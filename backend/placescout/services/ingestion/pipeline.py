# backend/placescout/services/ingestion/pipeline.py
"""
Ingestion pipeline: aggregate a location, gate on data quality, embed and
persist every place in the vector store.

Jobs move pending -> running -> completed | failed; terminal states are
immutable. An aggregation failure fails the job and is reported in the
result. A single record that cannot be stored only increments ``errors``.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from ...core.config import Settings
from ...core.exceptions import InvalidJobTransition
from ...core.request_context import operation_scope
from ...core.ulid_helper import generate_ulid
from ...schemas.pipeline import (
    AggregationQuery,
    AggregationResult,
    IngestionJob,
    IngestionResult,
    JobStatus,
)
from ...schemas.places import CanonicalPlace, utcnow
from .. import metrics
from ..base import BaseService
from ..geo import is_valid_coordinates
from ..search.cascading_aggregator import CascadingAggregator
from ..search.deadline import Deadline
from ..search.dedup import fill_missing
from ..search.embedding_service import EmbeddingGenerator
from ..vector_store.base import VectorStore
from .quality import DataQualityAssessor

logger = logging.getLogger(__name__)

MAX_HEALTHY_RETAINED_JOBS = 100

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
}


@dataclass
class IngestionConfig:
    batch_size: int = 100
    min_quality_score: float = 30.0
    optimize_threshold: int = 1000
    enable_optimization: bool = True
    job_retention_hours: float = 24.0
    max_retries: int = 3
    retry_delay_s: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestionConfig":
        return cls(
            batch_size=settings.ingestion_batch_size,
            min_quality_score=settings.ingestion_min_quality_score,
            optimize_threshold=settings.ingestion_optimize_threshold,
            enable_optimization=settings.ingestion_enable_optimization,
            job_retention_hours=settings.ingestion_job_retention_hours,
            max_retries=settings.ingestion_max_retries,
            retry_delay_s=settings.ingestion_retry_delay_s,
        )


@dataclass
class _StoreCounters:
    stored: int = 0
    updated: int = 0
    duplicates_skipped: int = 0
    errors: int = 0
    warnings: List[str] = field(default_factory=list)


class IngestionPipeline(BaseService):
    def __init__(
        self,
        aggregator: CascadingAggregator,
        store: VectorStore,
        embeddings: EmbeddingGenerator,
        config: Optional[IngestionConfig] = None,
        assessor: Optional[DataQualityAssessor] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__()
        self.aggregator = aggregator
        self.store = store
        self.embeddings = embeddings
        self.config = config or IngestionConfig()
        self.assessor = assessor or DataQualityAssessor()
        self._sleep = sleep
        self._clock = clock
        self._jobs: Dict[str, IngestionJob] = {}

    # Job bookkeeping

    def _transition(
        self,
        job: IngestionJob,
        status: JobStatus,
        *,
        result: Optional[IngestionResult] = None,
        error: Optional[str] = None,
    ) -> None:
        if status not in _ALLOWED_TRANSITIONS.get(job.status, set()):
            raise InvalidJobTransition(
                f"Job {job.id} cannot move from {job.status.value} to {status.value}",
                details={"job_id": job.id, "from": job.status.value, "to": status.value},
            )
        job.status = status
        if status.is_terminal:
            job.end_time = self._clock()
            job.result = result
            job.error = error
            metrics.record_ingestion_job(status.value)

    def get_job(self, job_id: str) -> Optional[IngestionJob]:
        return self._jobs.get(job_id)

    def list_jobs(self) -> List[IngestionJob]:
        """Retained jobs, newest first."""
        return sorted(self._jobs.values(), key=lambda job: job.start_time, reverse=True)

    def cleanup_jobs(self, older_than_hours: Optional[float] = None) -> int:
        """Drop terminal jobs that finished before the retention cutoff."""
        hours = self.config.job_retention_hours if older_than_hours is None else older_than_hours
        cutoff = self._clock() - timedelta(hours=hours)
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status.is_terminal and (job.end_time or job.start_time) < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
        if stale:
            logger.info(f"Cleaned up {len(stale)} ingestion jobs older than {hours}h")
        return len(stale)

    # Ingestion

    @BaseService.measure_operation("ingest_for_location")
    async def ingest_for_location(
        self, query: AggregationQuery, deadline: Optional[Deadline] = None
    ) -> IngestionResult:
        """Aggregate ``query`` and persist the places; never raises for pipeline failures."""
        self.cleanup_jobs()
        job = IngestionJob(id=generate_ulid(), params=query, start_time=self._clock())
        self._jobs[job.id] = job

        with operation_scope(job.id):
            started = time.perf_counter()
            self._transition(job, JobStatus.RUNNING)
            logger.info(
                f"Ingestion job {job.id} started for ({query.latitude}, {query.longitude}) "
                f"radius {query.radius_m}m"
            )

            try:
                aggregation = await self.aggregator.aggregate(query, deadline)
            except Exception as e:
                message = str(e) or type(e).__name__
                result = IngestionResult(
                    job_id=job.id,
                    success=False,
                    error=message,
                    elapsed_s=time.perf_counter() - started,
                )
                self._transition(job, JobStatus.FAILED, result=result, error=message)
                logger.error(
                    f"Ingestion job {job.id} failed during aggregation: {message}",
                    extra={"event": "ingestion_failed", "job_id": job.id},
                )
                return result

            result = await self._ingest_aggregation(job.id, aggregation, started)
            self._transition(job, JobStatus.COMPLETED, result=result)
            metrics.record_ingestion(
                result.stored, result.updated, result.duplicates_skipped, result.errors
            )
            logger.info(
                f"Ingestion job {job.id} completed: {result.stored} stored, {result.updated} updated, "
                f"{result.duplicates_skipped} skipped, {result.errors} errors "
                f"in {result.elapsed_s:.2f}s"
            )
            return result

    async def _ingest_aggregation(
        self, job_id: str, aggregation: AggregationResult, started: float
    ) -> IngestionResult:
        base = dict(
            job_id=job_id,
            total_found=len(aggregation.places),
            sources_used=aggregation.sources_used,
        )
        if not aggregation.places:
            return IngestionResult(**base, elapsed_s=time.perf_counter() - started)

        quality = self.assessor.assess_batch(aggregation.places)
        if quality.score < self.config.min_quality_score:
            warning = (
                f"Data quality too low ({quality.score:.1f} < {self.config.min_quality_score:.1f}); "
                "batch not ingested"
            )
            logger.warning(
                warning,
                extra={
                    "event": "quality_rejected",
                    "job_id": job_id,
                    "score": quality.score,
                    "issues": quality.issue_counts,
                },
            )
            return IngestionResult(
                **base,
                quality_score=quality.score,
                quality_rejected=True,
                warnings=[warning],
                elapsed_s=time.perf_counter() - started,
            )

        counters = await self._store_places(aggregation.places)
        optimized = False
        if self.config.enable_optimization and counters.stored > self.config.optimize_threshold:
            logger.info(f"Large batch ({counters.stored} new places), optimizing collection")
            try:
                optimized = await self.store.optimize()
            except Exception as e:
                counters.warnings.append(f"Collection optimization failed: {e}")
                logger.warning(
                    f"Collection optimization failed: {e}",
                    extra={"event": "optimize_failed", "job_id": job_id},
                )

        return IngestionResult(
            **base,
            stored=counters.stored,
            updated=counters.updated,
            duplicates_skipped=counters.duplicates_skipped,
            errors=counters.errors,
            quality_score=quality.score,
            optimized=optimized,
            warnings=counters.warnings,
            elapsed_s=time.perf_counter() - started,
        )

    async def _store_places(self, places: Sequence[CanonicalPlace]) -> _StoreCounters:
        counters = _StoreCounters()
        written: Set[str] = set()
        for place in places:
            lat, lon = place.coordinates.lat, place.coordinates.lon
            if not is_valid_coordinates(lat, lon):
                counters.errors += 1
                logger.warning(f"Skipping {place.name!r}: unusable coordinates ({lat}, {lon})")
                continue
            try:
                existing = await self.store.find_nearby_duplicate(place.coordinates, place.name)
                target_id = existing.place.id if existing is not None else place.id
                if target_id in written:
                    counters.duplicates_skipped += 1
                    continue

                vector = await self.embeddings.embed_place(place)
                record = place.model_copy(
                    deep=True,
                    update={"id": target_id, "embedding": vector, "last_updated": utcnow()},
                )
                if existing is not None:
                    fill_missing(record, existing.place)
                await self.store.upsert(target_id, vector, record)
            except Exception as e:
                counters.errors += 1
                logger.warning(
                    f"Failed to store {place.name!r}: {e}",
                    extra={"event": "record_store_failed", "place_id": place.id},
                )
                continue

            written.add(target_id)
            if existing is not None:
                counters.updated += 1
            else:
                counters.stored += 1
        return counters

    async def ingest_with_retry(
        self, query: AggregationQuery, deadline: Optional[Deadline] = None
    ) -> IngestionResult:
        """Re-run a failed ingestion with a linearly growing delay."""
        attempts = max(1, self.config.max_retries)
        result: Optional[IngestionResult] = None
        for attempt in range(1, attempts + 1):
            result = await self.ingest_for_location(query, deadline)
            if result.success:
                return result
            logger.warning(
                f"Ingestion attempt {attempt}/{attempts} failed: {result.error}",
                extra={"event": "ingestion_retry", "attempt": attempt},
            )
            if attempt < attempts:
                await self._sleep(self.config.retry_delay_s * attempt)
        assert result is not None
        return result

    async def bulk_ingest(self, queries: Sequence[AggregationQuery]) -> List[IngestionResult]:
        """Ingest many locations; batches run one after another, queries within a batch concurrently."""
        results: List[IngestionResult] = []
        size = self.config.batch_size
        for index in range(0, len(queries), size):
            batch = queries[index : index + size]
            logger.info(
                f"Bulk ingestion batch {index // size + 1}: {len(batch)} locations"
            )
            results.extend(await asyncio.gather(*(self.ingest_with_retry(q) for q in batch)))
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Bulk ingestion finished: {succeeded}/{len(results)} locations succeeded")
        return results

    # Introspection

    async def get_stats(self) -> Dict[str, Any]:
        by_status = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            by_status[job.status.value] += 1
        stats: Dict[str, Any] = {"jobs": {"total": len(self._jobs), **by_status}}
        try:
            stats["vector_store"] = (await self.store.collection_stats()).model_dump(mode="json")
        except Exception as e:
            logger.error(f"Could not read vector store stats: {e}")
            stats["vector_store"] = {"error": str(e)}
        return stats

    async def health_check(self) -> Dict[str, Any]:
        store_ok = True
        error: Optional[str] = None
        try:
            await self.store.count()
        except Exception as e:
            store_ok = False
            error = str(e)
        retained = len(self._jobs)
        healthy = store_ok and retained < MAX_HEALTHY_RETAINED_JOBS
        return {
            "healthy": healthy,
            "vector_store": "ok" if store_ok else "unavailable",
            "retained_jobs": retained,
            "error": error,
        }
