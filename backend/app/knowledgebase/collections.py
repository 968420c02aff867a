"""Logical knowledge-base names on top of the FAISS table store.

A knowledge base called ``docs`` lives in the table
``knowledgebase_docs_1_0_0`` (schema version with dots replaced).  Names
are validated up front so the mapping is lossless and every table name is
a safe directory name.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from app.errors import CollectionExistsError, CollectionNotFoundError, InvalidInputError, StorageError
from app.rag.vector_store import FaissTable, FaissVectorStore

logger = logging.getLogger(__name__)

TABLE_PREFIX = "knowledgebase_"
_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_TABLE_RE = re.compile(r"^knowledgebase_(.+)_\d+_\d+_\d+$")


def validate_name(name: str) -> str:
    """Return *name* if it is a valid knowledge-base name.

    Raises:
        InvalidInputError: Otherwise.
    """
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise InvalidInputError(
            f"Invalid knowledge base name {name!r}: use 1-64 letters, digits, '_' or '-'"
        )
    return name


@dataclass
class CollectionInfo:
    name: str
    table_name: str


class CollectionClient:
    """Maps knowledge-base names to tables and wraps store failures.

    Args:
        store:          Underlying FAISS table store.
        schema_version: Version tag baked into table names and rows.
    """

    def __init__(self, store: FaissVectorStore, schema_version: str = "1.0.0") -> None:
        self._store = store
        self._schema_version = schema_version

    @property
    def schema_version(self) -> str:
        return self._schema_version

    def table_name(self, name: str) -> str:
        validate_name(name)
        return f"{TABLE_PREFIX}{name}_{self._schema_version.replace('.', '_')}"

    def exists(self, name: str) -> bool:
        table = self.table_name(name)
        try:
            return self._store.table_exists(table)
        except Exception as exc:
            raise StorageError(f"Failed to check knowledge base {name}: {exc}", cause=exc) from exc

    def open(self, name: str) -> Optional[FaissTable]:
        """Return the table for *name*, or ``None`` if it does not exist."""
        table = self.table_name(name)
        try:
            if not self._store.table_exists(table):
                return None
            return self._store.open_table(table)
        except Exception as exc:
            raise StorageError(f"Failed to open knowledge base {name}: {exc}", cause=exc) from exc

    def require(self, name: str) -> FaissTable:
        table = self.open(name)
        if table is None:
            raise CollectionNotFoundError(name)
        return table

    def create(self, name: str, rows: list[dict[str, Any]]) -> FaissTable:
        """Create the collection from *rows* in one write, stamping provenance."""
        table = self.table_name(name)
        if self._store.table_exists(table):
            raise CollectionExistsError(name)
        created_at = datetime.now(timezone.utc).isoformat()
        stamped = [
            {
                **row,
                "_knowledgebase_name": name,
                "_schema_version": self._schema_version,
                "_created_at": row.get("_created_at") or created_at,
            }
            for row in rows
        ]
        try:
            return self._store.create_table(table, stamped)
        except Exception as exc:
            raise StorageError(f"Failed to create knowledge base {name}: {exc}", cause=exc) from exc

    def append(self, name: str, rows: list[dict[str, Any]]) -> int:
        table = self.require(name)
        created_at = datetime.now(timezone.utc).isoformat()
        stamped = [
            {
                **row,
                "_knowledgebase_name": name,
                "_schema_version": self._schema_version,
                "_created_at": created_at,
            }
            for row in rows
        ]
        try:
            return table.add(stamped)
        except Exception as exc:
            raise StorageError(f"Failed to write to knowledge base {name}: {exc}", cause=exc) from exc

    def drop(self, name: str) -> None:
        table = self.table_name(name)
        if not self._store.table_exists(table):
            raise CollectionNotFoundError(name)
        try:
            self._store.drop_table(table)
        except Exception as exc:
            raise StorageError(f"Failed to delete knowledge base {name}: {exc}", cause=exc) from exc

    def list_collections(self) -> list[CollectionInfo]:
        try:
            tables = self._store.table_names()
        except Exception as exc:
            raise StorageError(f"Failed to list knowledge bases: {exc}", cause=exc) from exc
        out: list[CollectionInfo] = []
        for table in tables:
            match = _TABLE_RE.match(table)
            if not match or not _NAME_RE.match(match.group(1)):
                continue
            # Tables from other schema versions are not readable here.
            if table != self.table_name(match.group(1)):
                continue
            out.append(CollectionInfo(name=match.group(1), table_name=table))
        return out
