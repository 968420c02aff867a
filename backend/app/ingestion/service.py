"""Ingestion pipeline: scan → chunk → diff-previous → embed → store.

Every run fully replaces the target knowledge base.  The previous table is
counted during the diff phase but only dropped once embedding has finished,
so a run that dies before the store phase leaves the old data searchable.

Per-file problems (unreadable file, failed conversion, chunker error) are
recorded in ``IngestionStats.errors`` and the run continues.  Scan,
embedding-backend and storage faults abort the run with ``IngestionError``.

At most one run per knowledge base is active at a time; concurrent calls for
the same name queue on a per-name lock.
"""
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from app.documents.chunker import ChunkingOptions, DocumentChunker
from app.documents.converter import DocumentConverter
from app.embeddings.batching import embed_in_batches
from app.embeddings.service import EmbeddingService
from app.errors import (
    EmbeddingNotReadyError,
    IngestionError,
    KnowledgeBaseError,
    ScanError,
)
from app.knowledgebase.collections import CollectionClient, validate_name
from app.rag.chunker import chunk_code
from app.rag.models import PLACEHOLDER_CHUNK_TYPE, Chunk, placeholder_row

from .scanner import FileScanner, ScannedFile

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


class IngestionPhase(str, Enum):
    SCAN = "scan"
    CHUNK = "chunk"
    DIFF = "diff-previous"
    EMBED = "embed"
    STORE = "store"


@dataclass
class IngestionParams:
    path: str
    name: str
    respect_gitignore: Optional[bool] = None


@dataclass
class FileError:
    file_path: str
    error: str


@dataclass
class IngestionStats:
    total_files: int = 0
    supported_files: int = 0
    unsupported_files: dict[str, int] = field(default_factory=dict)
    chunks_created: int = 0
    chunks_skipped: int = 0
    previous_chunk_count: int = 0
    duration_ms: int = 0
    ingestion_timestamp: str = ""
    errors: list[FileError] = field(default_factory=list)


@dataclass
class FileIngestionResult:
    files_processed: int = 0
    chunks_created: int = 0
    errors: list[FileError] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ts_lock = threading.Lock()
_last_ts: Optional[datetime] = None


def next_ingestion_timestamp() -> str:
    """ISO-8601 UTC timestamp, strictly increasing within the process."""
    global _last_ts
    with _ts_lock:
        now = datetime.now(timezone.utc)
        if _last_ts is not None and now <= _last_ts:
            now = _last_ts + timedelta(microseconds=1)
        _last_ts = now
        return now.isoformat()


def file_labels(paths: list[Path]) -> list[str]:
    """Paths relative to the deepest directory that contains all of *paths*."""
    if not paths:
        return []
    base = Path(os.path.commonpath([str(p.parent) for p in paths]))
    return [p.relative_to(base).as_posix() for p in paths]


class _Progress:
    """Forwards progress, keeping ``current`` non-decreasing within a phase."""

    def __init__(self, callback: Optional[ProgressCallback]) -> None:
        self._callback = callback
        self._phase: Optional[str] = None
        self._current = 0

    def __call__(self, phase: IngestionPhase, current: int, total: int) -> None:
        if self._callback is None:
            return
        if phase.value != self._phase:
            self._phase = phase.value
            self._current = 0
        self._current = max(self._current, current)
        self._callback(phase.value, self._current, total)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class IngestionService:
    """Builds knowledge bases from directories or individual files.

    Args:
        collections:       Knowledge-base table access.
        embedding_service: Ready (or readiable) embedding service.
        scanner:           Directory scanner.
        converter:         Document converter for non-code files.
        document_chunker:  Chunker for converted documents.
        chunking_options:  Document chunking parameters.
        batch_size:        Embedding and storage batch size.
        max_file_size:     Files larger than this many bytes are skipped.
        respect_gitignore: Default for runs that do not specify it.
    """

    def __init__(
        self,
        collections: CollectionClient,
        embedding_service: EmbeddingService,
        scanner: Optional[FileScanner] = None,
        converter: Optional[DocumentConverter] = None,
        document_chunker: Optional[DocumentChunker] = None,
        chunking_options: Optional[ChunkingOptions] = None,
        batch_size: int = 100,
        max_file_size: Optional[int] = 1024 * 1024,
        respect_gitignore: bool = True,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._collections = collections
        self._embedder = embedding_service
        self._scanner = scanner or FileScanner()
        self._converter = converter or DocumentConverter()
        self._doc_chunker = document_chunker or DocumentChunker()
        self._chunking = chunking_options or ChunkingOptions()
        self._batch_size = batch_size
        self._max_file_size = max_file_size
        self._respect_gitignore = respect_gitignore
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    # ------------------------------------------------------------------
    # Full ingestion
    # ------------------------------------------------------------------

    def ingest(self, params: IngestionParams, progress: Optional[ProgressCallback] = None) -> IngestionStats:
        """Scan ``params.path`` and replace knowledge base ``params.name``.

        Raises:
            InvalidInputError: Invalid knowledge-base name.
            IngestionError:    Scan, embedding-backend or storage fault.
        """
        name = validate_name(params.name)
        lock = self._lock_for(name)
        if lock.locked():
            logger.info("[IngestionService] Waiting for running ingestion of %s", name)
        with lock:
            return self._ingest_locked(name, params, _Progress(progress))

    def _ingest_locked(self, name: str, params: IngestionParams, report: _Progress) -> IngestionStats:
        started = time.monotonic()
        timestamp = next_ingestion_timestamp()
        respect = self._respect_gitignore if params.respect_gitignore is None else params.respect_gitignore
        logger.info("[IngestionService] Ingesting %s from %s", name, params.path)

        # Scan
        report(IngestionPhase.SCAN, 0, 1)
        try:
            scan = self._scanner.scan(
                params.path,
                respect_gitignore=respect,
                max_file_size=self._max_file_size,
                skip_hidden=True,
            )
        except ScanError as exc:
            raise IngestionError(f"Scan failed: {exc.message}", phase=IngestionPhase.SCAN.value, cause=exc) from exc
        report(IngestionPhase.SCAN, 1, 1)
        self._log_unsupported(scan.files, scan.statistics.unsupported_by_extension)
        supported = [f for f in scan.files if f.supported]

        # Chunk
        chunks, errors = self._chunk_files(supported, report)
        logger.info(
            "[IngestionService] Chunked %d files into %d chunks (%d errors)",
            len(supported), len(chunks), len(errors),
        )

        # Diff-previous
        report(IngestionPhase.DIFF, 0, 1)
        previous = self._previous_count(name)
        report(IngestionPhase.DIFF, 1, 1)

        # Embed
        pairs = self._embed(chunks, report)

        # Store
        rows = self._build_rows(chunks, pairs, name, timestamp, str(Path(params.path).expanduser().resolve()))
        self._replace(name, rows, previous is not None, report)

        stats = IngestionStats(
            total_files=scan.statistics.total_files,
            supported_files=scan.statistics.supported_files,
            unsupported_files=dict(scan.statistics.unsupported_by_extension),
            chunks_created=len(rows),
            chunks_skipped=len(chunks) - len(rows),
            previous_chunk_count=previous or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
            ingestion_timestamp=timestamp,
            errors=errors,
        )
        logger.info(
            "[IngestionService] Ingested %s: files=%d/%d chunks=%d (previous=%d) errors=%d in %dms",
            name, stats.supported_files, stats.total_files, stats.chunks_created,
            stats.previous_chunk_count, len(errors), stats.duration_ms,
        )
        return stats

    # ------------------------------------------------------------------
    # Individual files
    # ------------------------------------------------------------------

    def ingest_files(
        self,
        name: str,
        files: list[str | Path],
        progress: Optional[ProgressCallback] = None,
    ) -> FileIngestionResult:
        """Chunk *files* and append them to knowledge base *name*.

        Unlike ``ingest`` this never replaces existing rows; the collection
        is created when missing and its placeholder row is removed.  Files
        are recorded relative to the deepest directory containing all of
        them (see ``file_labels``), so a single file keeps its base name.
        Files added by separate calls can still share a recorded path.
        """
        name = validate_name(name)
        report = _Progress(progress)
        with self._lock_for(name):
            timestamp = next_ingestion_timestamp()
            scanned: list[ScannedFile] = []
            errors: list[FileError] = []
            paths = [Path(raw).expanduser().resolve() for raw in files]
            for path, label in zip(paths, file_labels(paths)):
                try:
                    entry = self._scanner.classify(path, label)
                except OSError as exc:
                    errors.append(FileError(label, str(exc)))
                    continue
                if not entry.supported:
                    errors.append(FileError(label, f"Unsupported file type: {entry.extension or path.name}"))
                    continue
                scanned.append(entry)

            chunks, chunk_errors = self._chunk_files(scanned, report)
            errors.extend(chunk_errors)
            pairs = self._embed(chunks, report)
            rows = self._build_rows(chunks, pairs, name, timestamp, "")
            self._append(name, rows, report)

        failed = {e.file_path for e in chunk_errors}
        result = FileIngestionResult(
            files_processed=sum(1 for f in scanned if f.relative_path not in failed),
            chunks_created=len(rows),
            errors=errors,
        )
        logger.info(
            "[IngestionService] Added %d files (%d chunks) to %s, %d errors",
            result.files_processed, result.chunks_created, name, len(errors),
        )
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    @staticmethod
    def _log_unsupported(files: list[ScannedFile], by_ext: dict[str, int]) -> None:
        if not by_ext:
            return
        summary = ", ".join(f"{ext}: {count}" for ext, count in sorted(by_ext.items()))
        logger.warning("[IngestionService] Skipping %d unsupported files (%s)", sum(by_ext.values()), summary)
        for f in files:
            if not f.supported:
                logger.debug("[IngestionService] Unsupported: %s", f.relative_path)

    def _chunk_files(self, files: list[ScannedFile], report: _Progress) -> tuple[list[Chunk], list[FileError]]:
        chunks: list[Chunk] = []
        errors: list[FileError] = []
        total = len(files)
        report(IngestionPhase.CHUNK, 0, total)
        for done, scanned in enumerate(files, start=1):
            try:
                chunks.extend(self._chunk_one(scanned))
            except Exception as exc:
                logger.error("[IngestionService] Failed to process %s: %s", scanned.relative_path, exc)
                errors.append(FileError(scanned.relative_path, str(exc)))
            report(IngestionPhase.CHUNK, done, total)
        return chunks, errors

    def _chunk_one(self, scanned: ScannedFile) -> list[Chunk]:
        if scanned.kind == "code":
            text = Path(scanned.path).read_text(encoding="utf-8", errors="replace")
            file_chunks = chunk_code(text, scanned.relative_path, scanned.language)
            doc_type = "code"
        else:
            result = self._converter.convert(scanned.path)
            content: Any = result.text
            if result.structured_doc:
                content = dict(result.structured_doc)
                if result.text:
                    content["markdown"] = result.text
            file_chunks = self._doc_chunker.chunk(content, self._chunking)
            doc_type = scanned.document_type

        for chunk in file_chunks:
            chunk.file_path = scanned.relative_path
            chunk.document_type = doc_type
            chunk.is_test = scanned.is_test
            chunk.is_library = scanned.is_library
        return file_chunks

    def _previous_count(self, name: str) -> Optional[int]:
        """Real-row count of the existing table, or ``None`` if there is none."""
        try:
            table = self._collections.open(name)
            if table is None:
                return None
            total = table.count_rows()
            placeholders = table.count_rows({"chunk_type": PLACEHOLDER_CHUNK_TYPE})
        except KnowledgeBaseError as exc:
            raise IngestionError(
                f"Failed to inspect previous ingestion of {name}: {exc.message}",
                phase=IngestionPhase.DIFF.value, cause=exc,
            ) from exc
        logger.info("[IngestionService] %s has %d rows from a previous run", name, total - placeholders)
        return total - placeholders

    def _embed(self, chunks: list[Chunk], report: _Progress) -> list[tuple[int, list[float]]]:
        """Embed every chunk; partial loss is tolerated, total loss is not.

        Raises:
            IngestionError: Backend unavailable, or chunks existed but not a
                            single one was embedded.
        """
        total_batches = (len(chunks) + self._batch_size - 1) // self._batch_size
        report(IngestionPhase.EMBED, 0, total_batches)
        try:
            if not self._embedder.is_ready:
                self._embedder.initialize()
            pairs = embed_in_batches(
                self._embedder,
                [c.content for c in chunks],
                self._batch_size,
                on_batch=lambda done, total: report(IngestionPhase.EMBED, done, total),
            )
        except EmbeddingNotReadyError as exc:
            raise IngestionError(
                f"Embedding backend unavailable: {exc.message}",
                phase=IngestionPhase.EMBED.value, cause=exc,
            ) from exc
        if chunks and not pairs:
            raise IngestionError(
                f"Embedding backend failed for all {len(chunks)} chunks",
                phase=IngestionPhase.EMBED.value,
            )
        return pairs

    @staticmethod
    def _build_rows(
        chunks: list[Chunk],
        pairs: list[tuple[int, list[float]]],
        name: str,
        timestamp: str,
        source_root: str,
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for seq, (idx, vector) in enumerate(pairs):
            row = chunks[idx].to_dict()
            row.update(
                id=f"{name}_{timestamp}_{seq}",
                vector=vector,
                chunk_index=seq,
                ingestion_timestamp=timestamp,
                _path=source_root,
                _last_ingestion=timestamp,
            )
            rows.append(row)
        return rows

    def _replace(self, name: str, rows: list[dict[str, Any]], had_previous: bool, report: _Progress) -> None:
        total = len(rows)
        report(IngestionPhase.STORE, 0, total)
        try:
            if had_previous:
                self._collections.drop(name)
                logger.info("[IngestionService] Dropped previous data for %s", name)
            if not rows:
                self._collections.create(name, [placeholder_row(self._embedder.dim)])
                logger.warning("[IngestionService] No chunks stored for %s; kept it as an empty knowledge base", name)
                return
            for start in range(0, total, self._batch_size):
                batch = rows[start:start + self._batch_size]
                if start == 0:
                    self._collections.create(name, batch)
                else:
                    self._collections.append(name, batch)
                report(IngestionPhase.STORE, start + len(batch), total)
        except KnowledgeBaseError as exc:
            raise IngestionError(
                f"Failed to store chunks for {name}: {exc.message}",
                phase=IngestionPhase.STORE.value, cause=exc,
            ) from exc

    def _append(self, name: str, rows: list[dict[str, Any]], report: _Progress) -> None:
        total = len(rows)
        report(IngestionPhase.STORE, 0, total)
        if not rows:
            return
        try:
            table = self._collections.open(name)
            if table is not None:
                table.delete({"chunk_type": PLACEHOLDER_CHUNK_TYPE})
            for start in range(0, total, self._batch_size):
                batch = rows[start:start + self._batch_size]
                if table is None and start == 0:
                    self._collections.create(name, batch)
                else:
                    self._collections.append(name, batch)
                report(IngestionPhase.STORE, start + len(batch), total)
        except Exception as exc:
            raise IngestionError(
                f"Failed to store chunks for {name}: {exc}",
                phase=IngestionPhase.STORE.value, cause=exc,
            ) from exc
