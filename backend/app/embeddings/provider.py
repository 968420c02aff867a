"""Abstract EmbeddingProvider interface.

Every embedding back-end (local sentence-transformers, Bedrock, ...) must
implement this interface so the service layer stays provider-agnostic.
"""
from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers.

    Implementations must be thread-safe: ingestion and search may call
    ``embed()`` concurrently from FastAPI's thread-pool executor.
    """

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider-internal model identifier (used for logging)."""

    @property
    @abstractmethod
    def dim(self) -> int:
        """Dimensionality of the embedding vectors produced by this model."""

    @abstractmethod
    def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Args:
            texts: Non-empty list of strings to embed.
            input_type: Embedding input type hint.  Use ``"search_document"``
                        when ingesting and ``"search_query"`` when querying.

        Returns:
            Float vectors in input order.  A provider may return *fewer*
            vectors than texts when the backend drops items; callers must
            never assume equal lengths.

        Raises:
            Exception: On provider error (network, auth, model load, ...).
        """
