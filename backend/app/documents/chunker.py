"""Document chunking: structure-aware first, fixed window as the guarantee.

The primary path hands the document to ``HybridChunker`` under a timeout.
If that path raises, times out, or produces nothing, the raw text is cut
with a sliding character window instead, so every non-blank document yields
chunks.  Both paths number chunks from 0.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

from app.rag.models import Chunk, ChunkType, estimate_tokens

from .hybrid import HybridChunker

logger = logging.getLogger(__name__)

_HEADING_PATH_KEYS = ("heading_path", "headings", "section_hierarchy")


@dataclass
class ChunkingOptions:
    max_tokens: int = 512
    chunk_size: int = 1000
    chunk_overlap: int = 200
    merge_peers: bool = True


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

def fallback_chunks(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> list[Chunk]:
    """Slide a ``chunk_size`` window over *text*, stepping ``chunk_size - chunk_overlap``.

    An overlap that would stop the window from advancing is ignored for
    that step.  The last window ends exactly at the end of the text.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    if chunk_overlap < 0:
        raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")
    if not text or not text.strip():
        return []

    chunks: list[Chunk] = []
    length = len(text)
    start = 0
    while True:
        end = min(start + chunk_size, length)
        content = text[start:end]
        chunks.append(
            Chunk(
                content=content,
                chunk_type=ChunkType.PARAGRAPH.value,
                token_count=estimate_tokens(content),
                has_context=False,
                chunk_index=len(chunks),
            )
        )
        if end >= length:
            break
        next_start = end - chunk_overlap
        start = next_start if next_start > start else end

    logger.debug("[DocumentChunker] Fallback produced %d chunks", len(chunks))
    return chunks


# ---------------------------------------------------------------------------
# Hybrid chunk post-processing
# ---------------------------------------------------------------------------

def detect_chunk_type(raw: dict[str, Any]) -> str:
    kind = str(raw.get("type") or "").lower()
    if "table" in kind:
        return ChunkType.TABLE.value
    if "heading" in kind or "title" in kind:
        return ChunkType.HEADING.value
    if "section" in kind:
        return ChunkType.SECTION.value
    if "list" in kind:
        return ChunkType.LIST.value
    if "code" in kind:
        return ChunkType.CODE.value
    return ChunkType.PARAGRAPH.value


def extract_heading_path(raw: dict[str, Any]) -> list[str]:
    """First non-empty list of strings among the known heading-path keys."""
    for key in _HEADING_PATH_KEYS:
        value = raw.get(key)
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            return list(value)
    return []


def _token_count(raw: dict[str, Any], content: str) -> int:
    reported = raw.get("token_count")
    if (
        isinstance(reported, (int, float))
        and not isinstance(reported, bool)
        and not math.isnan(reported)
        and reported >= 0
    ):
        return int(reported)
    return estimate_tokens(content)


def _page_number(raw: dict[str, Any]) -> Optional[int]:
    page = raw.get("page_number")
    if isinstance(page, int) and not isinstance(page, bool) and page >= 0:
        return page
    return None


def process_hybrid_chunks(raw_chunks: list[dict[str, Any]]) -> list[Chunk]:
    chunks: list[Chunk] = []
    for index, raw in enumerate(raw_chunks):
        content = str(raw.get("text") or raw.get("content") or "")
        chunks.append(
            Chunk(
                content=content,
                chunk_type=detect_chunk_type(raw),
                token_count=_token_count(raw, content),
                heading_path=extract_heading_path(raw),
                page_number=_page_number(raw),
                has_context=True,
                chunk_index=index,
            )
        )
    return chunks


def extract_text(content: str | dict[str, Any]) -> str:
    """Raw text of a document for the fallback path."""
    if isinstance(content, str):
        return content
    if not isinstance(content, dict):
        return ""
    for key in ("text", "content", "markdown"):
        value = content.get(key)
        if isinstance(value, str) and value:
            return value
    texts = content.get("texts")
    if isinstance(texts, list):
        return "\n\n".join(
            str(t.get("text")) for t in texts if isinstance(t, dict) and t.get("text")
        )
    return ""


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class DocumentChunker:
    """Chunks document content; see module docstring.

    Args:
        hybrid:  Structure-aware chunker; defaults to ``HybridChunker()``.
        timeout: Seconds to wait for the structure-aware path, or ``None``
                 to call it inline with no limit.
    """

    def __init__(self, hybrid: Optional[HybridChunker] = None, timeout: Optional[float] = 30.0) -> None:
        self._hybrid = hybrid or HybridChunker()
        self._timeout = timeout
        self._executor = (
            ThreadPoolExecutor(max_workers=2, thread_name_prefix="hybrid-chunker")
            if timeout is not None
            else None
        )

    def chunk(self, content: str | dict[str, Any], options: Optional[ChunkingOptions] = None) -> list[Chunk]:
        opts = options or ChunkingOptions()
        text = extract_text(content)
        if not text.strip():
            return []

        try:
            raw_chunks = self._run_hybrid(content, opts)
            if not raw_chunks:
                raise ValueError("structure-aware chunking returned no chunks")
            chunks = process_hybrid_chunks(raw_chunks)
        except Exception as exc:
            # Timeouts surface here too (concurrent.futures.TimeoutError).
            logger.warning(
                "[DocumentChunker] Hybrid chunking failed, falling back to fixed windows: %s", exc,
            )
            return fallback_chunks(text, opts.chunk_size, opts.chunk_overlap)

        logger.debug("[DocumentChunker] Hybrid chunking produced %d chunks", len(chunks))
        return chunks

    def _run_hybrid(self, content: str | dict[str, Any], opts: ChunkingOptions) -> list[dict[str, Any]]:
        if self._executor is None:
            return self._hybrid.chunk(content, opts.max_tokens, opts.merge_peers)
        future = self._executor.submit(self._hybrid.chunk, content, opts.max_tokens, opts.merge_peers)
        return future.result(timeout=self._timeout)
