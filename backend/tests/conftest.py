"""Shared test fixtures and configuration for backend tests."""
import hashlib
import re

import pytest
from docling_core.transforms.chunker.tokenizer.base import BaseTokenizer
from fastapi.testclient import TestClient

from app.documents.chunker import DocumentChunker
from app.documents.hybrid import HybridChunker
from app.embeddings.provider import EmbeddingProvider
from app.embeddings.service import EmbeddingService
from app.knowledgebase.collections import CollectionClient
from app.main import app
from app.rag.vector_store import FaissVectorStore

TEST_DIM = 16

_WORD_RE = re.compile(r"[a-z0-9]+")


class HashEmbeddingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embedding: each word hashes to one bucket.

    Texts sharing words get similar vectors, which is enough to make
    search ordering predictable without loading a model.
    """

    def __init__(self, dim: int = TEST_DIM) -> None:
        self._dim = dim
        self.calls: list[list[str]] = []

    @property
    def model_id(self) -> str:
        return "hash-test"

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self._dim
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.sha256(word.encode()).hexdigest(), 16) % self._dim
            vec[bucket] += 1.0
        if not any(vec):
            vec[0] = 1.0
        return vec


class WordTokenizer(BaseTokenizer):
    """Counts whitespace-separated words; keeps docling chunking offline."""

    max_tokens: int = 512

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    def get_max_tokens(self) -> int:
        return self.max_tokens

    def get_tokenizer(self):
        return self.count_tokens


def make_document_chunker(timeout=None) -> DocumentChunker:
    hybrid = HybridChunker(tokenizer_factory=lambda max_tokens: WordTokenizer(max_tokens=max_tokens))
    return DocumentChunker(hybrid=hybrid, timeout=timeout)


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    The lifespan is not entered, so every service singleton stays whatever
    the test installs.
    """
    return TestClient(app)


@pytest.fixture
def hash_provider() -> HashEmbeddingProvider:
    return HashEmbeddingProvider()


@pytest.fixture
def embedding_service(hash_provider: HashEmbeddingProvider) -> EmbeddingService:
    """A ready EmbeddingService over the hash provider."""
    service = EmbeddingService(hash_provider)
    service.initialize()
    hash_provider.calls.clear()
    return service


@pytest.fixture
def vector_store(tmp_path) -> FaissVectorStore:
    return FaissVectorStore(data_dir=tmp_path / "vectors")


@pytest.fixture
def collections(vector_store: FaissVectorStore) -> CollectionClient:
    return CollectionClient(vector_store, schema_version="1.0.0")


@pytest.fixture
def document_chunker() -> DocumentChunker:
    """DocumentChunker running docling's HybridChunker with a word tokenizer."""
    return make_document_chunker()
