# backend/placescout/routes/ingest.py
"""
Ingestion API endpoints: run a location ingestion and inspect jobs.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from ..api.dependencies.services import get_ingestion_pipeline
from ..core.exceptions import NotFoundException
from ..schemas.api import IngestRequest
from ..schemas.pipeline import IngestionJob, IngestionResult
from ..services.ingestion.pipeline import IngestionPipeline

router = APIRouter(tags=["ingestion"])


@router.post("", response_model=IngestionResult)
async def ingest_location(
    body: IngestRequest,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
) -> IngestionResult:
    query = body.to_query()
    if body.retry:
        return await pipeline.ingest_with_retry(query)
    return await pipeline.ingest_for_location(query)


@router.get("/jobs", response_model=List[IngestionJob])
async def list_jobs(pipeline: IngestionPipeline = Depends(get_ingestion_pipeline)) -> List[IngestionJob]:
    return pipeline.list_jobs()


@router.get("/jobs/{job_id}", response_model=IngestionJob)
async def get_job(
    job_id: str, pipeline: IngestionPipeline = Depends(get_ingestion_pipeline)
) -> IngestionJob:
    job = pipeline.get_job(job_id)
    if job is None:
        raise NotFoundException(f"Ingestion job {job_id} not found")
    return job


@router.get("/stats")
async def ingestion_stats(
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
) -> Dict[str, Any]:
    stats = await pipeline.get_stats()
    stats["health"] = await pipeline.health_check()
    return stats
