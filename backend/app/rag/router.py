"""RAG router — semantic search endpoints.

Endpoints:
    POST   /rag/search  — Search one or all knowledge bases
    GET    /rag/cache   — Result-cache statistics
    DELETE /rag/cache   — Clear the result cache
"""
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.errors import KnowledgeBaseError

from .schemas import (
    CacheClearResponse,
    CacheStatsResponse,
    SearchRequest,
    SearchResponse,
    to_search_response,
)
from .search import SearchParams, SearchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["rag"])

# ---------------------------------------------------------------------------
# Singleton search service management
# ---------------------------------------------------------------------------

_search_service: Optional[SearchService] = None


def get_search_service() -> Optional[SearchService]:
    """Return the global SearchService, or None if not configured."""
    return _search_service


def set_search_service(service: Optional[SearchService]) -> None:
    """Set (or clear) the global SearchService."""
    global _search_service
    _search_service = service


def _not_configured() -> JSONResponse:
    return JSONResponse({"error": "Search service not configured"}, status_code=503)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/search", response_model=SearchResponse)
def search(request: SearchRequest) -> SearchResponse | JSONResponse:
    """Search knowledge bases for chunks relevant to a query."""
    service = get_search_service()
    if service is None:
        logger.warning("[rag/search] Search service not configured — returning 503")
        return _not_configured()

    try:
        results = service.search(SearchParams(**request.model_dump()))
        return to_search_response(results)
    except KnowledgeBaseError as exc:
        logger.warning("[rag/search] %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)
    except Exception as exc:
        logger.exception("[rag/search] Search failed: %s", exc)
        return JSONResponse({"error": f"Search failed: {exc}"}, status_code=500)


@router.get("/cache", response_model=CacheStatsResponse)
def cache_stats() -> CacheStatsResponse | JSONResponse:
    service = get_search_service()
    if service is None:
        return _not_configured()
    return CacheStatsResponse(**service.cache_stats())


@router.delete("/cache", response_model=CacheClearResponse)
def clear_cache() -> CacheClearResponse | JSONResponse:
    service = get_search_service()
    if service is None:
        return _not_configured()
    return CacheClearResponse(cleared=service.clear_cache())
