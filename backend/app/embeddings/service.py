"""EmbeddingService — readiness-gated orchestration over an EmbeddingProvider.

The provider must pass ``initialize()`` (a one-text probe) before any real
embedding call; until then every call raises ``EmbeddingNotReadyError``.
A module-level singleton is initialised in ``app/main.py`` from config.
"""
import logging
import threading
from typing import Optional

from app.errors import EmbeddingNotReadyError, InvalidInputError

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

_PROBE_TEXT = "readiness probe"

# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_service: Optional["EmbeddingService"] = None


def get_embedding_service() -> Optional["EmbeddingService"]:
    """Return the global EmbeddingService, or None if not yet initialised."""
    return _service


def set_embedding_service(service: Optional["EmbeddingService"]) -> None:
    """Set (or clear) the global EmbeddingService instance."""
    global _service
    _service = service


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class EmbeddingService:
    """Gates and delegates embedding calls to an EmbeddingProvider.

    Args:
        provider: Concrete embedding provider to use.
    """

    def __init__(self, provider: EmbeddingProvider) -> None:
        self._provider = provider
        self._ready = False
        self._dim = provider.dim
        self._init_lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    @property
    def dim(self) -> int:
        """Output dimensionality; the probed value once initialised."""
        return self._dim

    @property
    def is_ready(self) -> bool:
        return self._ready

    def initialize(self) -> None:
        """Probe the provider once and mark the service ready.

        Raises:
            EmbeddingNotReadyError: If the probe fails or returns no vector.
        """
        with self._init_lock:
            if self._ready:
                return
            try:
                vectors = self._provider.embed([_PROBE_TEXT], input_type="search_query")
            except Exception as exc:
                raise EmbeddingNotReadyError(
                    f"Embedding model {self.model_id} failed to initialise: {exc}", cause=exc
                ) from exc
            if not vectors:
                raise EmbeddingNotReadyError(
                    f"Embedding model {self.model_id} returned no vector for the readiness probe"
                )
            probed = len(vectors[0])
            if probed != self._provider.dim:
                logger.warning(
                    "[EmbeddingService] model=%s configured dim=%d but produces dim=%d; using %d",
                    self.model_id, self._provider.dim, probed, probed,
                )
            self._dim = probed
            self._ready = True
            logger.info("[EmbeddingService] Ready: model=%s dim=%d", self.model_id, self._dim)

    def _require_ready(self) -> None:
        if not self._ready:
            raise EmbeddingNotReadyError(
                f"Embedding service for model {self.model_id} is not initialised"
            )

    def embed_query(self, text: str) -> list[float]:
        """Embed a single search query.

        Raises:
            EmbeddingNotReadyError: Before ``initialize()`` has succeeded.
            InvalidInputError:      If ``text`` is blank.
        """
        self._require_ready()
        if not text or not text.strip():
            raise InvalidInputError("Query text must not be empty")
        vectors = self._provider.embed([text], input_type="search_query")
        if not vectors:
            raise ValueError(f"Embedding model {self.model_id} returned no vector for the query")
        return vectors[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed document texts; may return fewer vectors than texts."""
        self._require_ready()
        if not texts:
            return []
        logger.debug(
            "[EmbeddingService] embedding %d text(s) via provider=%s model=%s",
            len(texts), type(self._provider).__name__, self.model_id,
        )
        return self._provider.embed(texts, input_type="search_document")
