"""Tests for SearchService: merging, filtering, scoring and the TTL cache."""
from unittest.mock import MagicMock

import pytest

from app.embeddings.service import EmbeddingService
from app.errors import (
    CollectionNotFoundError,
    EmbeddingNotReadyError,
    InvalidInputError,
)
from app.knowledgebase.service import KnowledgeBaseService
from app.rag.search import SearchParams, SearchService, similarity_from_distance

from conftest import HashEmbeddingProvider


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _store_texts(collections, provider: HashEmbeddingProvider, name: str, items: list[dict]) -> None:
    rows = []
    for i, item in enumerate(items):
        row = {
            "id": f"{name}_{i}",
            "vector": provider.vector(item["content"]),
            "file_path": f"f{i}.py",
            "chunk_type": "function",
            "language": "python",
            "document_type": "code",
            "is_test": False,
            "is_library": False,
            "chunk_index": i,
            "ingestion_timestamp": "2026-01-01T00:00:00+00:00",
        }
        row.update(item)
        rows.append(row)
    collections.create(name, rows)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def search(collections, embedding_service, clock) -> SearchService:
    return SearchService(collections, embedding_service, default_max_results=10, cache_timeout_seconds=60, clock=clock)


@pytest.fixture
def populated(collections, hash_provider):
    _store_texts(collections, hash_provider, "alpha", [
        {"content": "parse json config file"},
        {"content": "render html template", "is_test": True},
        {"content": "open database connection", "language": "java"},
    ])
    _store_texts(collections, hash_provider, "beta", [
        {"content": "parse yaml config file", "is_library": True},
        {"content": "send email notification", "chunk_type": "class"},
    ])


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

class TestSimilarity:
    @pytest.mark.parametrize("distance,expected", [(0.0, 1.0), (1.0, 0.5), (2.0, 0.0), (3.0, 0.0), (-1.0, 1.0)])
    def test_mapping(self, distance, expected):
        assert similarity_from_distance(distance) == pytest.approx(expected)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestSearch:
    def test_merges_all_knowledgebases_sorted(self, search, populated):
        results = search.search(SearchParams(query="parse config file"))
        scores = [r.similarity_score for r in results.results]
        assert scores == sorted(scores, reverse=True)
        assert {r.knowledgebase_name for r in results.results} == {"alpha", "beta"}
        assert results.results[0].content in {"parse json config file", "parse yaml config file"}
        assert results.total_results == len(results.results) == 5
        assert all(0.0 <= s <= 1.0 for s in scores)

    def test_single_knowledgebase(self, search, populated):
        results = search.search(SearchParams(query="config", knowledgebase_name="beta"))
        assert {r.knowledgebase_name for r in results.results} == {"beta"}

    def test_max_results_truncates(self, search, populated):
        results = search.search(SearchParams(query="config", max_results=2))
        assert len(results.results) == 2

    def test_filters(self, search, populated):
        assert {r.content for r in search.search(SearchParams(query="x", language="java")).results} == {
            "open database connection"
        }
        assert {r.content for r in search.search(SearchParams(query="x", chunk_type="class")).results} == {
            "send email notification"
        }
        no_tests = search.search(SearchParams(query="x", exclude_tests=True, exclude_libraries=True))
        contents = {r.content for r in no_tests.results}
        assert "render html template" not in contents
        assert "parse yaml config file" not in contents
        assert len(contents) == 3

    def test_placeholders_never_returned(self, search, collections, embedding_service, populated):
        KnowledgeBaseService(collections, embedding_service).create_empty("empty")
        results = search.search(SearchParams(query="config", max_results=50))
        assert "empty" not in {r.knowledgebase_name for r in results.results}
        empty_only = search.search(SearchParams(query="config", knowledgebase_name="empty"))
        assert empty_only.results == []

    def test_missing_knowledgebase_raises(self, search):
        with pytest.raises(CollectionNotFoundError):
            search.search(SearchParams(query="x", knowledgebase_name="nope"))

    def test_no_knowledgebases_returns_empty(self, search):
        results = search.search(SearchParams(query="anything"))
        assert results.results == []
        assert results.total_results == 0

    def test_blank_query_rejected(self, search):
        with pytest.raises(InvalidInputError):
            search.search(SearchParams(query="   "))

    def test_invalid_max_results_rejected(self, search):
        with pytest.raises(InvalidInputError):
            search.search(SearchParams(query="x", max_results=0))

    def test_not_ready_embedding_raises(self, collections):
        svc = SearchService(collections, EmbeddingService(HashEmbeddingProvider()))
        with pytest.raises(EmbeddingNotReadyError):
            svc.search(SearchParams(query="x"))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class TestSearchCache:
    def _spy(self, collections, embedding_service, clock, ttl=60):
        embedder = MagicMock(wraps=embedding_service)
        embedder.is_ready = True
        spied = MagicMock(wraps=collections)
        return SearchService(spied, embedder, cache_timeout_seconds=ttl, clock=clock), embedder, spied

    def test_repeat_within_ttl_hits_cache(self, collections, embedding_service, clock, populated):
        svc, embedder, spied = self._spy(collections, embedding_service, clock)
        first = svc.search(SearchParams(query="parse config"))
        clock.now += 30
        second = svc.search(SearchParams(query="parse config"))

        assert second is first
        assert embedder.embed_query.call_count == 1
        assert spied.list_collections.call_count == 1
        assert svc.cache_stats()["hits"] == 1

    def test_expired_entry_recomputes(self, collections, embedding_service, clock, populated):
        svc, embedder, _ = self._spy(collections, embedding_service, clock)
        svc.search(SearchParams(query="parse config"))
        clock.now += 61
        svc.search(SearchParams(query="parse config"))
        assert embedder.embed_query.call_count == 2

    def test_different_params_miss(self, collections, embedding_service, clock, populated):
        svc, embedder, _ = self._spy(collections, embedding_service, clock)
        svc.search(SearchParams(query="parse config"))
        svc.search(SearchParams(query="parse config", exclude_tests=True))
        assert embedder.embed_query.call_count == 2

    def test_default_max_results_shares_key(self, collections, embedding_service, clock, populated):
        svc, embedder, _ = self._spy(collections, embedding_service, clock)
        svc.search(SearchParams(query="parse config"))
        svc.search(SearchParams(query="parse config", max_results=50))
        assert embedder.embed_query.call_count == 1

    def test_zero_ttl_never_reuses(self, collections, embedding_service, clock, populated):
        svc, embedder, _ = self._spy(collections, embedding_service, clock, ttl=0)
        svc.search(SearchParams(query="parse config"))
        svc.search(SearchParams(query="parse config"))
        assert embedder.embed_query.call_count == 2

    def test_clear_cache(self, search, populated):
        search.search(SearchParams(query="a"))
        search.search(SearchParams(query="b"))
        assert search.clear_cache() == 2
        assert search.cache_stats()["entries"] == 0
