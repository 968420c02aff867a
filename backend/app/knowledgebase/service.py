"""Knowledge-base lifecycle: create, list, inspect, rename and delete.

Placeholder rows (see ``app.rag.models.placeholder_row``) make a freshly
created knowledge base visible before its first ingestion; they are left
out of every count and listing here.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from app.embeddings.service import EmbeddingService
from app.errors import CollectionExistsError, InvalidInputError, KnowledgeBaseError, StorageError
from app.rag.models import is_placeholder, placeholder_row
from app.rag.vector_store import FaissTable

from .collections import CollectionClient, validate_name

logger = logging.getLogger(__name__)


@dataclass
class KnowledgeBaseInfo:
    name: str
    chunk_count: int = 0
    file_count: int = 0
    path: str = ""
    last_ingestion: Optional[str] = None


@dataclass
class KnowledgeBaseStats:
    name: str
    chunk_count: int = 0
    file_count: int = 0
    size_bytes: int = 0
    chunk_types: dict[str, int] = field(default_factory=dict)
    path: str = ""
    last_ingestion: Optional[str] = None


@dataclass
class DocumentInfo:
    file_path: str
    document_type: str = ""
    chunk_count: int = 0
    last_ingestion: Optional[str] = None
    size_bytes: int = 0


def _real_rows(table: FaissTable) -> list[dict[str, Any]]:
    return [row for row in table.rows() if not is_placeholder(row)]


def _latest(rows: list[dict[str, Any]], key: str = "ingestion_timestamp") -> Optional[str]:
    values = [row.get(key) for row in rows if row.get(key)]
    return max(values) if values else None


class KnowledgeBaseService:
    """Knowledge-base registry operations.

    Args:
        collections:       Knowledge-base table access.
        embedding_service: Source of the vector dimensionality for
                           placeholder rows.
    """

    def __init__(self, collections: CollectionClient, embedding_service: EmbeddingService) -> None:
        self._collections = collections
        self._embedder = embedding_service

    # ------------------------------------------------------------------
    # Create / list / stats
    # ------------------------------------------------------------------

    def create_empty(self, name: str) -> KnowledgeBaseInfo:
        """Create *name* holding only a placeholder row.

        Raises:
            InvalidInputError:     Invalid name.
            CollectionExistsError: The knowledge base already exists.
        """
        validate_name(name)
        self._collections.create(name, [placeholder_row(self._embedder.dim)])
        logger.info("[KnowledgeBaseService] Created empty knowledge base %s", name)
        return KnowledgeBaseInfo(name=name)

    def list_knowledgebases(self) -> list[KnowledgeBaseInfo]:
        """List every knowledge base; one unreadable table never fails the listing."""
        infos: list[KnowledgeBaseInfo] = []
        for entry in self._collections.list_collections():
            info = KnowledgeBaseInfo(name=entry.name)
            try:
                table = self._collections.open(entry.name)
                rows = _real_rows(table) if table is not None else []
                info.chunk_count = len(rows)
                info.file_count = len({row.get("file_path") for row in rows})
                if rows:
                    info.path = str(rows[0].get("_path") or "")
                info.last_ingestion = _latest(rows, "_last_ingestion")
            except Exception as exc:
                logger.warning("[KnowledgeBaseService] Could not read metadata for %s: %s", entry.name, exc)
            infos.append(info)
        return infos

    def get_stats(self, name: str) -> KnowledgeBaseStats:
        table = self._collections.require(name)
        rows = self._read(name, table)
        types = Counter(str(row.get("chunk_type") or "") for row in rows)
        return KnowledgeBaseStats(
            name=name,
            chunk_count=len(rows),
            file_count=len({row.get("file_path") for row in rows}),
            size_bytes=sum(len(row.get("content") or "") for row in rows),
            chunk_types=dict(types),
            path=str(rows[0].get("_path") or "") if rows else "",
            last_ingestion=_latest(rows, "_last_ingestion"),
        )

    def list_documents(self, name: str) -> list[DocumentInfo]:
        table = self._collections.require(name)
        docs: dict[str, DocumentInfo] = {}
        for row in self._read(name, table):
            path = str(row.get("file_path") or "")
            doc = docs.get(path)
            if doc is None:
                doc = docs[path] = DocumentInfo(file_path=path, document_type=str(row.get("document_type") or ""))
            doc.chunk_count += 1
            doc.size_bytes += len(row.get("content") or "")
            ts = row.get("ingestion_timestamp")
            if ts and (doc.last_ingestion is None or ts > doc.last_ingestion):
                doc.last_ingestion = ts
        return sorted(docs.values(), key=lambda d: d.file_path)

    # ------------------------------------------------------------------
    # Rename / delete
    # ------------------------------------------------------------------

    def rename(self, old_name: str, new_name: str) -> int:
        """Copy every row of *old_name* into *new_name*, then drop *old_name*.

        Not atomic: a crash between the copy and the drop leaves both
        knowledge bases in place.  Returns the number of rows copied.
        """
        validate_name(old_name)
        validate_name(new_name)
        if old_name == new_name:
            raise InvalidInputError("New name must differ from the current name")
        table = self._collections.require(old_name)
        if self._collections.exists(new_name):
            raise CollectionExistsError(new_name)

        renamed_at = datetime.now(timezone.utc).isoformat()
        try:
            rows = table.rows(include_vectors=True)
        except Exception as exc:
            raise StorageError(f"Failed to read knowledge base {old_name}: {exc}", cause=exc) from exc
        copied = len(rows)
        if not rows:
            # Every row was deleted; keep the new name detectable.
            rows = [placeholder_row(self._embedder.dim)]
        for row in rows:
            row["_renamed_from"] = old_name
            row["_renamed_at"] = renamed_at

        self._collections.create(new_name, rows)
        self._collections.drop(old_name)
        logger.info("[KnowledgeBaseService] Renamed %s -> %s (%d rows)", old_name, new_name, copied)
        return copied

    def delete(self, name: str) -> None:
        self._collections.drop(name)
        logger.info("[KnowledgeBaseService] Deleted knowledge base %s", name)

    def delete_document(self, name: str, file_path: str) -> int:
        """Remove every chunk of one document.  Returns rows removed.

        Raises:
            InvalidInputError: Empty path, or a path containing ``..`` or
                               starting with ``/``.
        """
        validate_name(name)
        if not file_path or not file_path.strip():
            raise InvalidInputError("Document path must not be empty")
        if ".." in file_path or file_path.startswith("/") or file_path.startswith("\\"):
            raise InvalidInputError(f"Invalid document path: {file_path}")

        table = self._collections.require(name)
        removed = self._delete(name, table, {"file_path": file_path})
        logger.info("[KnowledgeBaseService] Deleted %d chunks of %s from %s", removed, file_path, name)
        return removed

    def delete_chunk_set(self, name: str, ingestion_timestamp: str) -> int:
        """Remove every chunk written by one ingestion run.  Returns rows removed."""
        validate_name(name)
        if not ingestion_timestamp or not ingestion_timestamp.strip():
            raise InvalidInputError("Ingestion timestamp must not be empty")
        table = self._collections.require(name)
        removed = self._delete(name, table, {"ingestion_timestamp": ingestion_timestamp})
        logger.info(
            "[KnowledgeBaseService] Deleted %d chunks from %s ingested at %s", removed, name, ingestion_timestamp,
        )
        return removed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _read(name: str, table: FaissTable) -> list[dict[str, Any]]:
        try:
            return _real_rows(table)
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to read knowledge base {name}: {exc}", cause=exc) from exc

    @staticmethod
    def _delete(name: str, table: FaissTable, where: dict[str, Any]) -> int:
        try:
            return table.delete(where)
        except Exception as exc:
            raise StorageError(f"Failed to delete from knowledge base {name}: {exc}", cause=exc) from exc
