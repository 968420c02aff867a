"""Best-effort batched embedding.

Texts are sent to the embedding service in fixed-size batches.  A batch
that raises is logged and dropped whole (no retry); a batch that comes back
short drops only the missing trailing positions.  The result pairs every
surviving vector with the index of its text in the input, so callers can
re-pair with their chunks instead of assuming equal lengths.
"""
import logging
from typing import Callable, Optional

from app.errors import EmbeddingNotReadyError

from .service import EmbeddingService

logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, int], None]


def embed_in_batches(
    service: EmbeddingService,
    texts: list[str],
    batch_size: int,
    on_batch: Optional[BatchCallback] = None,
) -> list[tuple[int, list[float]]]:
    """Embed *texts* in batches of *batch_size*.

    Args:
        service:    A ready EmbeddingService.
        texts:      Texts in source order.
        batch_size: Maximum texts per backend call (>= 1).
        on_batch:   Optional ``(batches_done, total_batches)`` callback.

    Returns:
        ``(original_index, vector)`` pairs in ascending index order.

    Raises:
        EmbeddingNotReadyError: Propagated; an unavailable backend is a
            run-level fault, not a per-batch one.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    total_batches = (len(texts) + batch_size - 1) // batch_size
    pairs: list[tuple[int, list[float]]] = []
    dropped = 0

    for batch_num, start in enumerate(range(0, len(texts), batch_size), start=1):
        batch = texts[start:start + batch_size]
        logger.info(
            "[embeddings/batching] Embedding batch %d/%d (%d texts)",
            batch_num, total_batches, len(batch),
        )
        try:
            vectors = service.embed_batch(batch)
        except EmbeddingNotReadyError:
            raise
        except Exception as exc:
            logger.error(
                "[embeddings/batching] Batch %d/%d failed, skipping %d texts: %s",
                batch_num, total_batches, len(batch), exc,
            )
            dropped += len(batch)
        else:
            if len(vectors) < len(batch):
                logger.warning(
                    "[embeddings/batching] Batch %d/%d returned %d of %d vectors",
                    batch_num, total_batches, len(vectors), len(batch),
                )
                dropped += len(batch) - len(vectors)
            for offset, vector in enumerate(vectors[: len(batch)]):
                if vector is None:
                    dropped += 1
                    continue
                pairs.append((start + offset, vector))

        if on_batch is not None:
            on_batch(batch_num, total_batches)

    if dropped:
        logger.warning(
            "[embeddings/batching] %d of %d texts were not embedded", dropped, len(texts),
        )
    return pairs
