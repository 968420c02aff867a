"""Structure-aware chunking through docling's ``HybridChunker``.

Input is either the docling JSON export of a converted document (a dict that
loads into ``DoclingDocument``) or markdown / plain text, which docling's own
markdown backend parses first.  docling walks the document tree, keeps
tables and lists as units, tracks the enclosing headings and, with
``merge_peers``, merges undersized neighbours that share those headings
while the tokenizer count stays within ``max_tokens``.

Output is a list of raw chunk dicts::

    {"text", "type", "token_count", "heading_path", "page_number"}

docling is an optional dependency (the ``documents`` extra); without it the
chunk call raises and ``DocumentChunker`` falls back to fixed windows.
"""
import logging
import threading
from io import BytesIO
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TOKENIZER_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# Keys the ingestion pipeline adds next to the docling export.
_NON_DOCLING_KEYS = frozenset({"markdown"})

# docling item label → chunk type
_LABEL_TYPES: dict[str, str] = {
    "title":          "heading",
    "section_header": "heading",
    "list_item":      "list",
    "code":           "code",
    "formula":        "code",
    "table":          "table",
    "document_index": "table",
}

TokenizerFactory = Callable[[int], Any]


def chunk_type_for(labels: list[str]) -> str:
    """Chunk type for a chunk made of items with these docling labels.

    A single kind maps directly; a table anywhere wins; any other mix is a
    section.
    """
    kinds = {_LABEL_TYPES.get(label, "paragraph") for label in labels}
    if not kinds:
        return "paragraph"
    if len(kinds) == 1:
        return kinds.pop()
    if "table" in kinds:
        return "table"
    return "section"


def _label(item: Any) -> str:
    label = getattr(item, "label", "")
    return str(getattr(label, "value", label) or "").lower()


def _first_page(doc_items: list[Any]) -> Optional[int]:
    for item in doc_items:
        for prov in getattr(item, "prov", None) or []:
            page = getattr(prov, "page_no", None)
            if isinstance(page, int) and not isinstance(page, bool):
                return page
    return None


class HybridChunker:
    """Adapter from docling's ``HybridChunker`` to raw chunk dicts.

    Args:
        tokenizer_model:   Hugging Face tokenizer used to count tokens.
        tokenizer_factory: ``max_tokens -> docling BaseTokenizer``; overrides
                           *tokenizer_model* when given.
    """

    def __init__(
        self,
        tokenizer_model: str = DEFAULT_TOKENIZER_MODEL,
        tokenizer_factory: Optional[TokenizerFactory] = None,
    ) -> None:
        self._tokenizer_model = tokenizer_model
        self._tokenizer_factory = tokenizer_factory
        self._chunkers: dict[tuple[int, bool], Any] = {}
        self._md_converter: Any = None
        self._lock = threading.Lock()

    def chunk(
        self,
        source: str | dict[str, Any],
        max_tokens: int = 512,
        merge_peers: bool = True,
    ) -> list[dict[str, Any]]:
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {max_tokens}")

        doc = self._load(source)
        chunker = self._chunker(max_tokens, merge_peers)
        tokenizer = chunker.tokenizer

        out: list[dict[str, Any]] = []
        for chunk in chunker.chunk(dl_doc=doc):
            doc_items = list(chunk.meta.doc_items or [])
            out.append({
                "text": chunk.text,
                "type": chunk_type_for([_label(item) for item in doc_items]),
                "token_count": tokenizer.count_tokens(chunk.text),
                "heading_path": list(chunk.meta.headings or []),
                "page_number": _first_page(doc_items),
            })

        logger.debug(
            "[HybridChunker] %s produced %d chunks (max_tokens=%d, merge_peers=%s)",
            doc.name, len(out), max_tokens, merge_peers,
        )
        return out

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self, source: str | dict[str, Any]):
        from docling_core.types.doc import DoclingDocument

        if isinstance(source, dict):
            payload = {k: v for k, v in source.items() if k not in _NON_DOCLING_KEYS}
            return DoclingDocument.model_validate(payload)

        from docling.datamodel.base_models import DocumentStream

        stream = DocumentStream(name="document.md", stream=BytesIO(source.encode("utf-8")))
        return self._markdown_converter().convert(stream).document

    def _markdown_converter(self):
        with self._lock:
            if self._md_converter is None:
                from docling.datamodel.base_models import InputFormat
                from docling.document_converter import DocumentConverter

                self._md_converter = DocumentConverter(allowed_formats=[InputFormat.MD])
            return self._md_converter

    def _chunker(self, max_tokens: int, merge_peers: bool):
        key = (max_tokens, merge_peers)
        with self._lock:
            chunker = self._chunkers.get(key)
            if chunker is None:
                from docling.chunking import HybridChunker as DoclingHybridChunker

                chunker = DoclingHybridChunker(tokenizer=self._tokenizer(max_tokens), merge_peers=merge_peers)
                self._chunkers[key] = chunker
                logger.info(
                    "[HybridChunker] Created docling chunker (max_tokens=%d, merge_peers=%s)",
                    max_tokens, merge_peers,
                )
            return chunker

    def _tokenizer(self, max_tokens: int):
        if self._tokenizer_factory is not None:
            return self._tokenizer_factory(max_tokens)
        from docling_core.transforms.chunker.tokenizer.huggingface import HuggingFaceTokenizer

        return HuggingFaceTokenizer.from_pretrained(model_name=self._tokenizer_model, max_tokens=max_tokens)
