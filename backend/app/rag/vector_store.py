"""FAISS-based table store for embedded chunk rows.

Each table is an ``IndexFlatIP`` over L2-normalised vectors (so the inner
product is cosine similarity) plus an ordered list of row dicts.  Tables
persist to ``<data_dir>/<table>/`` as ``index.faiss`` and a ``rows.json``
sidecar; both are written to temp files and swapped in with ``os.replace``
so a crash never leaves a half-written table behind.

Rows whose vector is all zeros are stored but never indexed: they are
visible to ``count_rows``/``query`` but can never be a search hit.

Queries use small builders so callers read like the store API they mimic::

    table.search(vec).where({"language": "python"}).limit(10).to_list()
    table.query().where({"file_path": "a.py"}).to_list()

Predicates are equality dicts evaluated store-side.

Thread safety: every table operation, including search, holds the
table's ``_lock``; the index is rebuilt on delete so reads must not race it.
"""
import json
import logging
import os
import re
import shutil
import threading
import uuid
from pathlib import Path
from typing import Any, Optional

import numpy as np

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Predicate = Optional[dict[str, Any]]

_TABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_INDEX_FILE = "index.faiss"
_ROWS_FILE = "rows.json"


def _matches(row: Row, where: Predicate) -> bool:
    if not where:
        return True
    return all(row.get(k) == v for k, v in where.items())


def _normalise(vecs: np.ndarray) -> np.ndarray:
    """L2-normalise each row in-place and return the array."""
    import faiss

    faiss.normalize_L2(vecs)
    return vecs


# ---------------------------------------------------------------------------
# Query builders
# ---------------------------------------------------------------------------

class VectorQuery:
    """Nearest-neighbour query; results carry ``_distance`` (cosine distance, 0..2)."""

    def __init__(self, table: "FaissTable", vector: list[float]) -> None:
        self._table = table
        self._vector = vector
        self._limit = 10
        self._where: Predicate = None

    def limit(self, n: int) -> "VectorQuery":
        self._limit = n
        return self

    def where(self, predicate: Predicate) -> "VectorQuery":
        self._where = predicate or None
        return self

    def to_list(self) -> list[Row]:
        return self._table._nearest(self._vector, self._limit, self._where)


class RowQuery:
    """Plain row scan in insertion order."""

    def __init__(self, table: "FaissTable") -> None:
        self._table = table
        self._limit: Optional[int] = None
        self._where: Predicate = None

    def limit(self, n: int) -> "RowQuery":
        self._limit = n
        return self

    def where(self, predicate: Predicate) -> "RowQuery":
        self._where = predicate or None
        return self

    def to_list(self) -> list[Row]:
        return self._table._scan(self._where, self._limit)


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

class FaissTable:
    """One named table: FAISS index plus ordered row sidecar.

    Args:
        name:     Table name (also the persistence directory name).
        dim:      Vector dimensionality shared by every row.
        data_dir: Table directory, or ``None`` for an in-memory table.
    """

    def __init__(self, name: str, dim: int, data_dir: Optional[Path] = None) -> None:
        import faiss

        self._name = name
        self._dim = dim
        self._data_dir = Path(data_dir) if data_dir else None
        self._index = faiss.IndexFlatIP(dim)
        self._rows: dict[str, Row] = {}
        self._order: list[str] = []    # all row ids, insertion order
        self._id_map: list[str] = []   # index position → row id
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def dim(self) -> int:
        return self._dim

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def count_rows(self, where: Predicate = None) -> int:
        with self._lock:
            if not where:
                return len(self._order)
            return sum(1 for rid in self._order if _matches(self._rows[rid], where))

    def search(self, vector: list[float]) -> VectorQuery:
        return VectorQuery(self, vector)

    def query(self) -> RowQuery:
        return RowQuery(self)

    def rows(self, include_vectors: bool = False) -> list[Row]:
        """Return copies of every row; optionally with their ``vector``."""
        with self._lock:
            out = [dict(self._rows[rid]) for rid in self._order]
            if include_vectors:
                positions = {rid: i for i, rid in enumerate(self._id_map)}
                for row in out:
                    pos = positions.get(row["id"])
                    if pos is None:
                        row["vector"] = [0.0] * self._dim
                    else:
                        row["vector"] = self._index.reconstruct(pos).tolist()
        return out

    def _scan(self, where: Predicate, limit: Optional[int]) -> list[Row]:
        with self._lock:
            out: list[Row] = []
            for rid in self._order:
                row = self._rows[rid]
                if _matches(row, where):
                    out.append(dict(row))
                    if limit is not None and len(out) >= limit:
                        break
            return out

    def _nearest(self, vector: list[float], limit: int, where: Predicate) -> list[Row]:
        if limit < 1:
            return []
        if len(vector) != self._dim:
            raise ValueError(
                f"Query vector has dim {len(vector)}, table {self._name} expects {self._dim}"
            )
        vec = _normalise(np.array([vector], dtype=np.float32))

        with self._lock:
            total = self._index.ntotal
            if total == 0:
                return []
            # Filtered queries scan the whole flat index so the predicate
            # cannot starve the result set.
            fetch_k = total if where else min(limit, total)
            scores, indices = self._index.search(vec, fetch_k)

            results: list[Row] = []
            for score, idx in zip(scores[0], indices[0]):
                if idx < 0:
                    continue
                row = self._rows.get(self._id_map[idx])
                if row is None or not _matches(row, where):
                    continue
                hit = dict(row)
                hit["_distance"] = float(min(2.0, max(0.0, 1.0 - float(score))))
                results.append(hit)
                if len(results) >= limit:
                    break
            return results

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def add(self, rows: list[Row]) -> int:
        """Append rows (each with a ``vector``) and persist.  Returns count added."""
        if not rows:
            return 0
        with self._lock:
            self._append(rows)
            self._save_locked()
        return len(rows)

    def delete(self, where: dict[str, Any]) -> int:
        """Delete rows matching the equality predicate.  Returns count removed."""
        import faiss

        if not where:
            raise ValueError("delete() requires a non-empty predicate")

        with self._lock:
            doomed = {rid for rid in self._order if _matches(self._rows[rid], where)}
            if not doomed:
                return 0

            keep_positions = [i for i, rid in enumerate(self._id_map) if rid not in doomed]
            if keep_positions:
                kept_vecs = np.vstack(
                    [self._index.reconstruct(i).reshape(1, -1) for i in keep_positions]
                )
            else:
                kept_vecs = np.empty((0, self._dim), dtype=np.float32)

            self._index = faiss.IndexFlatIP(self._dim)
            if kept_vecs.shape[0] > 0:
                self._index.add(kept_vecs)
            self._id_map = [self._id_map[i] for i in keep_positions]
            self._order = [rid for rid in self._order if rid not in doomed]
            for rid in doomed:
                self._rows.pop(rid, None)

            self._save_locked()
        logger.debug("[FaissTable] %s: deleted %d rows matching %s", self._name, len(doomed), where)
        return len(doomed)

    def _append(self, rows: list[Row]) -> None:
        """Validate and append rows; caller holds ``_lock``."""
        prepared: list[tuple[Row, np.ndarray]] = []
        seen: set[str] = set()
        for raw in rows:
            row = dict(raw)
            vector = row.pop("vector", None)
            if vector is None:
                raise ValueError(f"Row for table {self._name} has no vector")
            vec = np.asarray(vector, dtype=np.float32).reshape(-1)
            if vec.shape[0] != self._dim:
                raise ValueError(
                    f"Row vector has dim {vec.shape[0]}, table {self._name} expects {self._dim}"
                )
            rid = str(row.get("id") or uuid.uuid4().hex)
            if rid in self._rows or rid in seen:
                raise ValueError(f"Duplicate row id {rid!r} in table {self._name}")
            seen.add(rid)
            row["id"] = rid
            prepared.append((row, vec))

        indexable = [(row, vec) for row, vec in prepared if np.any(vec)]
        if indexable:
            mat = _normalise(np.vstack([vec.reshape(1, -1) for _, vec in indexable]))
            self._index.add(mat)
            self._id_map.extend(row["id"] for row, _ in indexable)
        for row, _ in prepared:
            self._rows[row["id"]] = row
            self._order.append(row["id"])

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save_locked(self) -> None:
        import faiss

        if self._data_dir is None:
            return
        self._data_dir.mkdir(parents=True, exist_ok=True)
        index_path = self._data_dir / _INDEX_FILE
        rows_path = self._data_dir / _ROWS_FILE

        tmp_index = index_path.with_suffix(".faiss.tmp")
        tmp_rows = rows_path.with_suffix(".json.tmp")
        faiss.write_index(self._index, str(tmp_index))
        payload = {
            "dim": self._dim,
            "id_map": self._id_map,
            "rows": [self._rows[rid] for rid in self._order],
        }
        tmp_rows.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp_index, index_path)
        os.replace(tmp_rows, rows_path)

    @classmethod
    def load(cls, name: str, data_dir: Path) -> "FaissTable":
        """Load a persisted table from *data_dir*."""
        import faiss

        payload = json.loads((data_dir / _ROWS_FILE).read_text(encoding="utf-8"))
        table = cls(name, int(payload["dim"]), data_dir)
        table._index = faiss.read_index(str(data_dir / _INDEX_FILE))
        table._id_map = list(payload["id_map"])
        for row in payload["rows"]:
            table._rows[row["id"]] = row
            table._order.append(row["id"])
        logger.debug(
            "[FaissTable] Loaded %s: %d rows, %d indexed",
            name, len(table._order), table._index.ntotal,
        )
        return table


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class FaissVectorStore:
    """Directory of named FAISS tables.

    Args:
        data_dir: Root directory for persisted tables, or ``None`` to keep
                  everything in memory (tests).
    """

    def __init__(self, data_dir: Optional[str | Path] = None) -> None:
        self._data_dir = Path(data_dir).expanduser() if data_dir else None
        self._tables: dict[str, FaissTable] = {}
        self._lock = threading.Lock()
        if self._data_dir is not None:
            self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Optional[Path]:
        return self._data_dir

    def _table_dir(self, name: str) -> Optional[Path]:
        if not _TABLE_NAME_RE.match(name):
            raise ValueError(f"Invalid table name: {name!r}")
        return self._data_dir / name if self._data_dir else None

    def table_names(self) -> list[str]:
        with self._lock:
            names = set(self._tables)
            if self._data_dir is not None and self._data_dir.exists():
                for child in self._data_dir.iterdir():
                    if child.is_dir() and (child / _ROWS_FILE).exists():
                        names.add(child.name)
        return sorted(names)

    def table_exists(self, name: str) -> bool:
        table_dir = self._table_dir(name)
        with self._lock:
            if name in self._tables:
                return True
            return table_dir is not None and (table_dir / _ROWS_FILE).exists()

    def open_table(self, name: str) -> FaissTable:
        """Return the named table.

        Raises:
            KeyError: If the table does not exist.
        """
        table_dir = self._table_dir(name)
        with self._lock:
            table = self._tables.get(name)
            if table is not None:
                return table
            if table_dir is None or not (table_dir / _ROWS_FILE).exists():
                raise KeyError(f"Table {name} not found")
            table = FaissTable.load(name, table_dir)
            self._tables[name] = table
            return table

    def create_table(self, name: str, rows: list[Row]) -> FaissTable:
        """Create a table from *rows* in a single write.

        The table's dimensionality is taken from the first row's vector.

        Raises:
            ValueError: If the table exists, *rows* is empty, or vectors
                        disagree on dimensionality.
        """
        if not rows:
            raise ValueError(f"Cannot create table {name} without rows")
        table_dir = self._table_dir(name)
        dim = len(rows[0].get("vector") or [])
        if dim == 0:
            raise ValueError(f"Cannot create table {name}: first row has no vector")

        with self._lock:
            exists = name in self._tables or (
                table_dir is not None and (table_dir / _ROWS_FILE).exists()
            )
            if exists:
                raise ValueError(f"Table {name} already exists")
            table = FaissTable(name, dim, table_dir)
            with table._lock:
                table._append(rows)
                table._save_locked()
            self._tables[name] = table

        logger.info("[FaissVectorStore] Created table %s: %d rows dim=%d", name, len(rows), dim)
        return table

    def drop_table(self, name: str) -> None:
        """Remove a table and its files.

        Raises:
            KeyError: If the table does not exist.
        """
        table_dir = self._table_dir(name)
        with self._lock:
            cached = self._tables.pop(name, None)
            on_disk = table_dir is not None and table_dir.exists()
            if cached is None and not on_disk:
                raise KeyError(f"Table {name} not found")
            if on_disk:
                shutil.rmtree(table_dir)
        logger.info("[FaissVectorStore] Dropped table %s", name)
