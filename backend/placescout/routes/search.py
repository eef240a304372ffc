# backend/placescout/routes/search.py
"""
Search API endpoints.

POST /api/search always answers with a result object; degraded paths
carry a message and an error string instead of failing the request.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..api.dependencies.services import get_search_service
from ..schemas.api import Pagination, SearchRequest, SearchResponse
from ..services.search.unified_search_service import UnifiedSearchService

router = APIRouter(tags=["search"])


@router.post("", response_model=SearchResponse)
async def search_places(
    body: SearchRequest,
    search_service: UnifiedSearchService = Depends(get_search_service),
) -> SearchResponse:
    """
    Find places around a coordinate.

    Served from the local cache when possible, otherwise from the vector
    store, falling back to a live provider ingestion when the store has
    too little for the area.
    """
    query = body.to_query(
        default_radius_m=search_service.config.default_radius_m,
        default_limit=search_service.config.default_limit,
    )
    result = await search_service.search(query)
    return SearchResponse(
        places=result.places,
        sources=result.sources,
        from_cache=result.from_cache,
        fallback_used=result.fallback_used,
        message=result.suggestion,
        error=result.error,
        total=result.total,
        pagination=Pagination(
            offset=query.offset,
            limit=query.limit,
            has_more=query.offset + len(result.places) < result.total,
        ),
    )


@router.get("/analytics")
async def search_analytics(
    search_service: UnifiedSearchService = Depends(get_search_service),
) -> Dict[str, Any]:
    return search_service.get_analytics()
