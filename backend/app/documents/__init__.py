"""Document conversion and chunking."""
from .chunker import ChunkingOptions, DocumentChunker, fallback_chunks
from .converter import ConversionResult, DocumentConverter, DocumentMetadata, document_type_for
from .hybrid import HybridChunker

__all__ = [
    "ChunkingOptions",
    "ConversionResult",
    "DocumentChunker",
    "DocumentConverter",
    "DocumentMetadata",
    "HybridChunker",
    "document_type_for",
    "fallback_chunks",
]
