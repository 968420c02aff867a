"""Semantic search across knowledge bases with a TTL result cache.

A search embeds the query once, runs one nearest-neighbour query per target
knowledge base with equality filters pushed into the store, merges the hits,
converts cosine distance to a similarity score in ``[0, 1]`` and returns the
best ``max_results``.

Results are cached under a SHA-256 fingerprint of the normalised search
parameters.  Entries expire after ``cache_timeout_seconds`` and are removed
when read after expiry.  There is no size bound.  Concurrent misses for the
same key may both compute; the last writer wins.
"""
import hashlib
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from app.embeddings.service import EmbeddingService
from app.errors import EmbeddingNotReadyError, InvalidInputError, KnowledgeBaseError, SearchError
from app.knowledgebase.collections import CollectionClient, validate_name

from .models import is_placeholder
from .vector_store import FaissTable

logger = logging.getLogger(__name__)


@dataclass
class SearchParams:
    query: str
    knowledgebase_name: Optional[str] = None
    chunk_type: Optional[str] = None
    language: Optional[str] = None
    document_type: Optional[str] = None
    max_results: Optional[int] = None
    exclude_tests: bool = False
    exclude_libraries: bool = False


@dataclass
class SearchResult:
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
    heading_path: list[str] = field(default_factory=list)
    page_number: Optional[int] = None
    is_test: bool = False
    is_library: bool = False
    chunk_index: int = 0
    ingestion_timestamp: str = ""


@dataclass
class SearchResults:
    results: list[SearchResult]
    total_results: int
    query_time_ms: int


@dataclass
class _CacheEntry:
    results: SearchResults
    stored_at: float


def similarity_from_distance(distance: float) -> float:
    """Map cosine distance (0..2) onto a similarity in [0, 1]."""
    return max(0.0, min(1.0, 1.0 - distance / 2.0))


class SearchService:
    """Embeds queries, searches knowledge bases and caches results.

    Args:
        collections:           Knowledge-base table access.
        embedding_service:     Embedding service (must be initialised).
        default_max_results:   Used when a search does not set ``max_results``.
        cache_timeout_seconds: Cache entry lifetime; 0 disables reuse.
        clock:                 Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        collections: CollectionClient,
        embedding_service: EmbeddingService,
        default_max_results: int = 50,
        cache_timeout_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._collections = collections
        self._embedder = embedding_service
        self._default_max_results = default_max_results
        self._ttl = cache_timeout_seconds
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._cache_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def search(self, params: SearchParams) -> SearchResults:
        """Run (or serve from cache) a semantic search.

        Raises:
            InvalidInputError:       Blank query, bad name or ``max_results``.
            EmbeddingNotReadyError:  Embedding service not initialised.
            CollectionNotFoundError: Named knowledge base does not exist.
            SearchError:             Unexpected failure embedding the query.
        """
        normalised = self._normalise(params)
        key = self._fingerprint(normalised)

        cached = self._cache_get(key)
        if cached is not None:
            return cached

        started = time.monotonic()
        if not self._embedder.is_ready:
            raise EmbeddingNotReadyError("Embedding service is not initialised; cannot search")
        try:
            vector = self._embedder.embed_query(normalised.query)
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            raise SearchError(f"Failed to embed query: {exc}", cause=exc) from exc

        where = self._predicate(normalised)
        max_results = normalised.max_results
        hits: list[SearchResult] = []
        for kb_name, table in self._targets(normalised.knowledgebase_name):
            try:
                rows = table.search(vector).limit(max_results).where(where).to_list()
            except Exception as exc:
                logger.warning("[SearchService] Search in %s failed, skipping: %s", kb_name, exc)
                continue
            hits.extend(self._to_result(row, kb_name) for row in rows if not is_placeholder(row))

        # sorted() is stable, so equal scores keep per-table order.
        hits = sorted(hits, key=lambda r: r.similarity_score, reverse=True)[:max_results]
        results = SearchResults(
            results=hits,
            total_results=len(hits),
            query_time_ms=int((time.monotonic() - started) * 1000),
        )
        self._cache_put(key, results)
        logger.info(
            "[SearchService] query=%r kb=%s results=%d in %dms",
            normalised.query[:80], normalised.knowledgebase_name or "*", len(hits), results.query_time_ms,
        )
        return results

    def clear_cache(self) -> int:
        """Drop every cached result; returns the number of entries removed."""
        with self._cache_lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info("[SearchService] Cleared %d cached searches", count)
        return count

    def cache_stats(self) -> dict[str, Any]:
        with self._cache_lock:
            return {
                "entries": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "timeout_seconds": self._ttl,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _normalise(self, params: SearchParams) -> SearchParams:
        if not params.query or not params.query.strip():
            raise InvalidInputError("Query must not be empty")
        if params.knowledgebase_name is not None:
            validate_name(params.knowledgebase_name)
        max_results = self._default_max_results if params.max_results is None else params.max_results
        if max_results < 1:
            raise InvalidInputError(f"max_results must be >= 1, got {max_results}")
        return SearchParams(
            query=params.query,
            knowledgebase_name=params.knowledgebase_name,
            chunk_type=params.chunk_type or None,
            language=params.language or None,
            document_type=params.document_type or None,
            max_results=max_results,
            exclude_tests=bool(params.exclude_tests),
            exclude_libraries=bool(params.exclude_libraries),
        )

    @staticmethod
    def _fingerprint(params: SearchParams) -> str:
        canonical = json.dumps(asdict(params), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @staticmethod
    def _predicate(params: SearchParams) -> Optional[dict[str, Any]]:
        where: dict[str, Any] = {}
        if params.chunk_type:
            where["chunk_type"] = params.chunk_type
        if params.language:
            where["language"] = params.language
        if params.document_type:
            where["document_type"] = params.document_type
        if params.exclude_tests:
            where["is_test"] = False
        if params.exclude_libraries:
            where["is_library"] = False
        return where or None

    def _targets(self, name: Optional[str]) -> list[tuple[str, FaissTable]]:
        if name is not None:
            return [(name, self._collections.require(name))]

        targets: list[tuple[str, FaissTable]] = []
        for info in self._collections.list_collections():
            try:
                table = self._collections.open(info.name)
            except Exception as exc:
                logger.warning("[SearchService] Cannot open %s, skipping: %s", info.name, exc)
                continue
            if table is not None:
                targets.append((info.name, table))
        return targets

    @staticmethod
    def _to_result(row: dict[str, Any], kb_name: str) -> SearchResult:
        return SearchResult(
            content=str(row.get("content") or ""),
            file_path=str(row.get("file_path") or ""),
            chunk_type=str(row.get("chunk_type") or ""),
            similarity_score=similarity_from_distance(float(row.get("_distance", 2.0))),
            knowledgebase_name=kb_name,
            start_line=int(row.get("start_line") or 0),
            end_line=int(row.get("end_line") or 0),
            language=str(row.get("language") or ""),
            document_type=str(row.get("document_type") or ""),
            token_count=int(row.get("token_count") or 0),
            heading_path=list(row.get("heading_path") or []),
            page_number=row.get("page_number"),
            is_test=bool(row.get("is_test")),
            is_library=bool(row.get("is_library")),
            chunk_index=int(row.get("chunk_index") or 0),
            ingestion_timestamp=str(row.get("ingestion_timestamp") or ""),
        )

    def _cache_get(self, key: str) -> Optional[SearchResults]:
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() - entry.stored_at >= self._ttl:
                del self._cache[key]
                self._misses += 1
                logger.debug("[SearchService] Cache entry expired: %s", key[:12])
                return None
            self._hits += 1
        logger.debug("[SearchService] Cache hit: %s", key[:12])
        return entry.results

    def _cache_put(self, key: str, results: SearchResults) -> None:
        with self._cache_lock:
            self._cache[key] = _CacheEntry(results=results, stored_at=self._clock())
