# backend/placescout/schemas/pipeline.py
"""
Queries and results exchanged between the pipeline services.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .places import CanonicalPlace, PlaceView, utcnow

SortBy = Literal["relevance", "rating", "distance", "name"]


def _clean_list(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        item = value.strip().lower()
        if item and item not in seen:
            seen.append(item)
    return seen


class AggregationQuery(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_m: float = Field(default=5000.0, gt=0, le=100_000)
    location_name: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    limit: int = Field(default=50, ge=1, le=500)
    exhaustive: bool = False

    @field_validator("categories", "sources")
    @classmethod
    def _normalize(cls, value: List[str]) -> List[str]:
        return _clean_list(value)

    @property
    def category_hint(self) -> Optional[str]:
        return self.categories[0] if self.categories else None


class AggregationResult(BaseModel):
    places: List[CanonicalPlace] = Field(default_factory=list)
    sources_used: List[str] = Field(default_factory=list)
    total_raw_found: int = 0
    duplicates_removed: int = 0
    elapsed_s: float = 0.0
    failed: Dict[str, str] = Field(default_factory=dict)
    skipped: List[str] = Field(default_factory=list)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class IngestionResult(BaseModel):
    job_id: str
    success: bool = True
    stored: int = 0
    updated: int = 0
    duplicates_skipped: int = 0
    errors: int = 0
    total_found: int = 0
    sources_used: List[str] = Field(default_factory=list)
    quality_score: Optional[float] = None
    quality_rejected: bool = False
    optimized: bool = False
    elapsed_s: float = 0.0
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class IngestionJob(BaseModel):
    id: str
    params: AggregationQuery
    status: JobStatus = JobStatus.PENDING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    result: Optional[IngestionResult] = None
    error: Optional[str] = None


class SearchQuery(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_m: float = Field(default=5000.0, gt=0, le=100_000)
    query: Optional[str] = None
    location_name: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    limit: int = Field(default=20, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    min_rating: Optional[float] = Field(default=None, ge=0, le=5)
    sort_by: SortBy = "relevance"

    @field_validator("categories", "sources")
    @classmethod
    def _normalize(cls, value: List[str]) -> List[str]:
        return _clean_list(value)

    @field_validator("query", "location_name")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = " ".join(value.split())
        return value or None


class SearchResult(BaseModel):
    places: List[PlaceView] = Field(default_factory=list)
    from_cache: bool = False
    fallback_used: bool = False
    sources: List[str] = Field(default_factory=list)
    suggestion: Optional[str] = None
    total: int = 0
    elapsed_s: float = 0.0
    error: Optional[str] = None
