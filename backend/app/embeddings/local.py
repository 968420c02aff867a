"""Local embedding provider backed by sentence-transformers.

The model is loaded lazily on the first ``embed()`` call and cached for the
life of the provider, so constructing the provider is cheap.
"""
import logging
import threading
from typing import Optional

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "all-MiniLM-L6-v2"
DEFAULT_DIM = 384


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Embeds texts in-process with a sentence-transformers model.

    Vectors are L2-normalised by the model so inner product equals cosine
    similarity.

    Args:
        model_name: Hugging Face model name or local path.
        dim:        Expected vector dimensionality.
        cache_dir:  Optional model download cache directory.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        dim: int = DEFAULT_DIM,
        cache_dir: Optional[str] = None,
    ) -> None:
        self._model_name = model_name
        self._dim = dim
        self._cache_dir = cache_dir
        self._model = None
        self._load_lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self._model_name

    @property
    def dim(self) -> int:
        return self._dim

    def _get_model(self):
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("[embeddings/local] Loading model %s", self._model_name)
                self._model = SentenceTransformer(self._model_name, cache_folder=self._cache_dir)
        return self._model

    def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        model = self._get_model()
        arr = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [row.tolist() for row in arr]
