"""Embedding pipeline.

Local (sentence-transformers) and cloud (Bedrock) providers behind one
provider abstraction, a readiness-gated service and best-effort batching.
"""
from .provider import EmbeddingProvider
from .bedrock import BedrockEmbeddingProvider
from .local import SentenceTransformerEmbeddingProvider
from .batching import embed_in_batches
from .service import EmbeddingService, get_embedding_service, set_embedding_service

__all__ = [
    "EmbeddingProvider",
    "BedrockEmbeddingProvider",
    "SentenceTransformerEmbeddingProvider",
    "EmbeddingService",
    "embed_in_batches",
    "get_embedding_service",
    "set_embedding_service",
]
