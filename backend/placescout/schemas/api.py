# backend/placescout/schemas/api.py
"""
Request and response bodies of the HTTP API (camelCase on the wire).
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .pipeline import AggregationQuery, SearchQuery, SortBy
from .places import PlaceView


class ApiModel(BaseModel):
    """Accepts both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


class SearchRequest(ApiModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_m: Optional[float] = Field(default=None, alias="radiusMeters", gt=0, le=100_000)
    query: Optional[str] = None
    location_name: Optional[str] = Field(default=None, alias="locationName")
    categories: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    min_rating: Optional[float] = Field(default=None, alias="minRating", ge=0, le=5)
    sort_by: SortBy = Field(default="relevance", alias="sortBy")

    def to_query(self, default_radius_m: float, default_limit: int) -> SearchQuery:
        return SearchQuery(
            latitude=self.latitude,
            longitude=self.longitude,
            radius_m=self.radius_m or default_radius_m,
            query=self.query,
            location_name=self.location_name,
            categories=self.categories,
            sources=self.sources,
            limit=self.limit or default_limit,
            offset=self.offset,
            min_rating=self.min_rating,
            sort_by=self.sort_by,
        )


class Pagination(ApiModel):
    offset: int
    limit: int
    has_more: bool = Field(alias="hasMore")


class SearchResponse(ApiModel):
    places: List[PlaceView]
    sources: List[str]
    from_cache: bool = Field(alias="fromCache")
    fallback_used: bool = Field(alias="fallbackUsed")
    message: Optional[str] = None
    error: Optional[str] = None
    total: int
    pagination: Pagination


class IngestRequest(ApiModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_m: float = Field(default=5000.0, alias="radiusMeters", gt=0, le=100_000)
    location_name: Optional[str] = Field(default=None, alias="locationName")
    categories: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    limit: int = Field(default=50, ge=1, le=500)
    exhaustive: bool = False
    retry: bool = False

    def to_query(self) -> AggregationQuery:
        return AggregationQuery(
            latitude=self.latitude,
            longitude=self.longitude,
            radius_m=self.radius_m,
            location_name=self.location_name,
            categories=self.categories,
            sources=self.sources,
            limit=self.limit,
            exhaustive=self.exhaustive,
        )


class ProviderEnabledRequest(ApiModel):
    enabled: bool


class ProviderHealthResponse(ApiModel):
    summary: Dict[str, Any]
    providers: List[Dict[str, Any]]
    last_reorder: Optional[Dict[str, Any]] = Field(default=None, alias="lastReorder")


class HealthResponse(ApiModel):
    status: str
    service: str
    version: str
    checks: Dict[str, Any]
