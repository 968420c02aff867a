"""Structural code chunking over tree-sitter syntax trees.

One generic pre-order traversal consults the per-language tables in
``app.rag.languages``: every node whose type maps to a chunk type becomes a
chunk, and traversal keeps descending into it, so nested classes and
functions are extracted on their own as well as inside their parent.

A comment (or, for Python, a docstring-style string statement) sitting
immediately before a declaration is pulled into that declaration's chunk by
moving its start boundary earlier.  Line numbers are 1-based.
"""
import logging

from .languages import (
    COMMENT_NODE_TYPES,
    DOCSTRING_STATEMENTS,
    METHOD_PROMOTIONS,
    NODE_TYPE_MAPPINGS,
)
from .models import Chunk, ChunkType, estimate_tokens
from .parsing import parse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def chunk_code(content: str, file_path: str, language: str) -> list[Chunk]:
    """Parse *content* and return its structural chunks.

    Args:
        content:   Full source text.
        file_path: Relative path recorded on every chunk.
        language:  Language id (see ``app.rag.languages.EXT_TO_LANG``).

    Returns:
        Chunks in pre-order with ``chunk_index`` assigned from 0.  Empty or
        comment-only sources yield ``[]``.
    """
    if not content.strip():
        return []
    source = content.encode("utf-8")
    tree = parse(source, language)
    chunks = chunk_tree(tree.root_node, source, file_path, language)
    logger.debug(
        "Extracted %d chunks from %s (%s)", len(chunks), file_path, language,
    )
    return chunks


def chunk_tree(root, source: bytes, file_path: str, language: str) -> list[Chunk]:
    """Walk an already-parsed tree and emit chunks in pre-order."""
    mapping = NODE_TYPE_MAPPINGS.get(language)
    if mapping is None:
        raise ValueError(f"No chunk mapping for language: {language}")

    chunks: list[Chunk] = []
    stack = [root]
    while stack:
        node = stack.pop()
        chunk_type = mapping.get(node.type)
        if chunk_type is not None:
            chunk_type = _reclassify(node, chunk_type, language)
            chunks.append(_make_chunk(node, source, file_path, language, chunk_type))
        stack.extend(reversed(node.children))

    for i, chunk in enumerate(chunks):
        chunk.chunk_index = i
    return chunks


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _reclassify(node, chunk_type: str, language: str) -> str:
    promotion = METHOD_PROMOTIONS.get(language)
    if promotion is None:
        return chunk_type
    function_type, class_type = promotion
    if node.type != function_type:
        return chunk_type

    ancestor = node.parent
    while ancestor is not None:
        if ancestor.type == class_type:
            return ChunkType.METHOD.value
        ancestor = ancestor.parent
    return chunk_type


def _leading_context(node, language: str):
    """Return the comment/docstring node directly preceding *node*, if any."""
    prev = node.prev_sibling
    if prev is None:
        return None
    if prev.type in COMMENT_NODE_TYPES.get(language, ()):
        return prev

    docstring = DOCSTRING_STATEMENTS.get(language)
    if docstring is not None and prev.type == docstring[0]:
        children = prev.children
        if children and children[0].type == docstring[1]:
            return prev
    return None


def _make_chunk(node, source: bytes, file_path: str, language: str, chunk_type: str) -> Chunk:
    start_byte = node.start_byte
    start_row = node.start_point[0]

    context = _leading_context(node, language)
    if context is not None:
        start_byte = context.start_byte
        start_row = context.start_point[0]

    content = source[start_byte:node.end_byte].decode("utf-8", errors="replace")
    return Chunk(
        content=content,
        file_path=file_path,
        chunk_type=chunk_type,
        start_line=start_row + 1,
        end_line=node.end_point[0] + 1,
        language=language,
        token_count=estimate_tokens(content),
        has_context=context is not None,
    )
