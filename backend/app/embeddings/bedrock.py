"""AWS Bedrock embedding provider (Cohere Embed models).

Request body sent to ``bedrock-runtime:invoke_model``::

    {"texts": [...], "input_type": "search_document", "truncate": "END"}

Both response shapes are accepted::

    {"embeddings": [[...], [...]]}             # Cohere Embed v3
    {"embeddings": {"float": [[...], [...]]}}  # Cohere Embed v4
"""
import json
import logging
from typing import Optional

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "cohere.embed-english-v3"
DEFAULT_DIM      = 1024
DEFAULT_REGION   = "us-east-1"

# Bedrock rejects over-long texts before Cohere's own truncation runs.
_COHERE_BEDROCK_MAX_CHARS = 2048


class BedrockEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by AWS Bedrock.

    Args:
        model_id:              Bedrock model ID.
        dim:                   Expected vector dimensionality.
        aws_access_key_id:     Access key; ``None`` uses the default chain.
        aws_secret_access_key: Secret key.
        aws_session_token:     Optional session token.
        region_name:           AWS region, defaults to ``us-east-1``.
    """

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL_ID,
        dim: int = DEFAULT_DIM,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        region_name: Optional[str] = None,
    ) -> None:
        self._model_id = model_id
        self._dim = dim
        self._access_key = aws_access_key_id
        self._secret_key = aws_secret_access_key
        self._session_token = aws_session_token
        self._region = region_name or DEFAULT_REGION
        self._client: Optional[object] = None

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def dim(self) -> int:
        return self._dim

    def _get_client(self) -> object:
        """Return a cached boto3 bedrock-runtime client."""
        if self._client is None:
            import boto3

            kwargs: dict = {"region_name": self._region}
            if self._access_key and self._secret_key:
                kwargs["aws_access_key_id"] = self._access_key
                kwargs["aws_secret_access_key"] = self._secret_key
            if self._session_token:
                kwargs["aws_session_token"] = self._session_token

            self._client = boto3.client("bedrock-runtime", **kwargs)
        return self._client

    def embed(self, texts: list[str], input_type: str = "search_document") -> list[list[float]]:
        client = self._get_client()

        clipped = [t[:_COHERE_BEDROCK_MAX_CHARS] for t in texts]
        n_clipped = sum(1 for t in texts if len(t) > _COHERE_BEDROCK_MAX_CHARS)
        if n_clipped:
            logger.debug(
                "[embeddings/bedrock] Truncated %d text(s) to %d chars",
                n_clipped, _COHERE_BEDROCK_MAX_CHARS,
            )

        body = json.dumps({"texts": clipped, "input_type": input_type, "truncate": "END"})
        response = client.invoke_model(
            modelId=self._model_id,
            body=body,
            contentType="application/json",
            accept="application/json",
        )
        data = json.loads(response["body"].read())

        raw = data.get("embeddings")
        if raw is None:
            raise ValueError(
                f"Unexpected Bedrock response, 'embeddings' key missing: {list(data.keys())}"
            )
        if isinstance(raw, dict):
            if "float" not in raw:
                raise ValueError(f"Unexpected nested embeddings format, keys: {list(raw.keys())}")
            vectors = raw["float"]
        else:
            vectors = raw

        if len(vectors) < len(texts):
            logger.warning(
                "[embeddings/bedrock] model=%s returned %d vectors for %d texts",
                self._model_id, len(vectors), len(texts),
            )
        return vectors[: len(texts)]
