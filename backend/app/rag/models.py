"""Chunk model and stored-row layout shared by chunkers, ingestion and search."""
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class ChunkType(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    INTERFACE = "interface"
    FIELD = "field"
    PROPERTY = "property"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    SECTION = "section"
    TABLE = "table"
    LIST = "list"
    CODE = "code"


# Sentinel values marking the row that makes an empty collection detectable.
PLACEHOLDER_MARKER = "__PLACEHOLDER__"
PLACEHOLDER_CHUNK_TYPE = "placeholder"


@dataclass
class Chunk:
    """A retrievable unit of content with position and structure metadata.

    Code chunks use 1-based ``start_line``/``end_line``; document chunks
    leave them at 0 and carry ``heading_path``/``page_number`` instead.
    """

    content: str
    file_path: str = ""
    chunk_type: str = ChunkType.PARAGRAPH.value
    start_line: int = 0
    end_line: int = 0
    language: str = ""
    document_type: str = ""
    token_count: int = 0
    heading_path: list[str] = field(default_factory=list)
    page_number: Optional[int] = None
    has_context: bool = False
    is_test: bool = False
    is_library: bool = False
    chunk_index: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return (len(text) + 3) // 4


def placeholder_row(dim: int) -> dict[str, Any]:
    """Row written into a freshly created collection (never indexed)."""
    return {
        "id": PLACEHOLDER_MARKER,
        "vector": [0.0] * dim,
        "content": PLACEHOLDER_MARKER,
        "file_path": PLACEHOLDER_MARKER,
        "chunk_type": PLACEHOLDER_CHUNK_TYPE,
        "start_line": 0,
        "end_line": 0,
        "language": "",
        "document_type": PLACEHOLDER_CHUNK_TYPE,
        "token_count": 0,
        "heading_path": [PLACEHOLDER_MARKER],
        "page_number": None,
        "has_context": False,
        "is_test": False,
        "is_library": False,
        "chunk_index": -1,
        "ingestion_timestamp": "",
    }


def is_placeholder(row: dict[str, Any]) -> bool:
    return (
        row.get("content") == PLACEHOLDER_MARKER
        or row.get("file_path") == PLACEHOLDER_MARKER
        or row.get("chunk_type") == PLACEHOLDER_CHUNK_TYPE
    )
