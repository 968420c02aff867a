"""Pydantic schemas for the /rag search API."""
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """Request body for POST /rag/search."""

    query: str = Field(..., min_length=1, description="Natural language or code query")
    knowledgebase_name: Optional[str] = Field(
        default=None, description="Search only this knowledge base (all when omitted)"
    )
    chunk_type: Optional[str] = Field(default=None, description="e.g. 'function', 'table'")
    language: Optional[str] = Field(default=None, description="e.g. 'python', 'typescript'")
    document_type: Optional[str] = Field(default=None, description="e.g. 'pdf', 'markdown', 'code'")
    max_results: Optional[int] = Field(default=None, ge=1, le=500)
    exclude_tests: bool = False
    exclude_libraries: bool = False


class SearchResultItem(BaseModel):
    """A single search hit."""

    content: str
    file_path: str
    chunk_type: str
    similarity_score: float
    knowledgebase_name: str
    start_line: int = 0
    end_line: int = 0
    language: str = ""
    document_type: str = ""
    token_count: int = 0
    heading_path: List[str] = Field(default_factory=list)
    page_number: Optional[int] = None
    is_test: bool = False
    is_library: bool = False
    chunk_index: int = 0
    ingestion_timestamp: str = ""


class SearchResponse(BaseModel):
    results: List[SearchResultItem]
    total_results: int
    query_time_ms: int


class CacheStatsResponse(BaseModel):
    entries: int
    hits: int
    misses: int
    timeout_seconds: float


class CacheClearResponse(BaseModel):
    cleared: int


def to_search_response(results: Any) -> SearchResponse:
    """Build a response from ``app.rag.search.SearchResults``."""
    return SearchResponse(
        results=[SearchResultItem(**vars(r)) for r in results.results],
        total_results=results.total_results,
        query_time_ms=results.query_time_ms,
    )
