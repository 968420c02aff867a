"""Document conversion to text (plus docling's structured JSON when available).

Plain text, markdown and HTML are read directly.  Every other supported
format goes through the ``docling`` command-line tool, which writes
``<stem>.md`` and ``<stem>.json`` into an output directory.

The CLI runs in its own process group so a timeout can take down the whole
tree (docling forks OCR and model workers): SIGTERM to the group first,
then SIGKILL once ``kill_grace_seconds`` have passed.
"""
import json
import logging
import os
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from app.errors import DocumentConversionError, DocumentConversionTimeout

logger = logging.getLogger(__name__)

EXT_TO_DOCUMENT_TYPE: dict[str, str] = {
    ".pdf":      "pdf",
    ".docx":     "docx",
    ".doc":      "docx",
    ".pptx":     "pptx",
    ".ppt":      "pptx",
    ".xlsx":     "xlsx",
    ".xls":      "xlsx",
    ".html":     "html",
    ".htm":      "html",
    ".md":       "markdown",
    ".markdown": "markdown",
    ".txt":      "text",
    ".mp3":      "audio",
    ".wav":      "audio",
    ".m4a":      "audio",
    ".flac":     "audio",
}
DIRECT_READ_TYPES = frozenset({"text", "markdown", "html"})


def document_type_for(path: str | Path) -> Optional[str]:
    return EXT_TO_DOCUMENT_TYPE.get(Path(path).suffix.lower())


@dataclass
class DocumentMetadata:
    title: str
    format: str
    page_count: Optional[int] = None
    word_count: int = 0
    has_images: bool = False
    has_tables: bool = False
    conversion_duration_ms: int = 0


@dataclass
class ConversionResult:
    text: str
    metadata: DocumentMetadata
    structured_doc: Optional[dict[str, Any]] = field(default=None)


class DocumentConverter:
    """Converts documents into text for chunking.

    Args:
        output_dir:         Directory for docling output; a fresh temp dir
                            per conversion when ``None``.
        timeout:            Seconds before the docling process tree is killed.
        kill_grace_seconds: Wait between SIGTERM and SIGKILL.
        command:            Executable name (overridable for tests).
    """

    def __init__(
        self,
        output_dir: Optional[str] = None,
        timeout: float = 30.0,
        kill_grace_seconds: float = 1.0,
        command: str = "docling",
    ) -> None:
        self._output_dir = Path(output_dir).expanduser() if output_dir else None
        self._timeout = timeout
        self._grace = kill_grace_seconds
        self._command = command

    def convert(self, path: str | Path) -> ConversionResult:
        """Convert *path* to text.

        Raises:
            DocumentConversionError:   Unsupported format or conversion failure.
            DocumentConversionTimeout: The docling CLI exceeded the timeout.
        """
        path = Path(path)
        started = time.monotonic()
        doc_type = document_type_for(path)
        if doc_type is None:
            raise DocumentConversionError(f"Unsupported document format: {path.suffix or path.name}")

        if doc_type in DIRECT_READ_TYPES:
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                raise DocumentConversionError(f"Failed to read document {path}: {exc}", cause=exc) from exc
            return ConversionResult(
                text=text,
                metadata=DocumentMetadata(
                    title=path.name,
                    format=doc_type,
                    word_count=len(text.split()),
                    conversion_duration_ms=int((time.monotonic() - started) * 1000),
                ),
            )

        if self._output_dir is not None:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            return self._convert_with_docling(path, doc_type, self._output_dir, started)
        with tempfile.TemporaryDirectory(prefix="kb-docling-") as tmp:
            return self._convert_with_docling(path, doc_type, Path(tmp), started)

    # ------------------------------------------------------------------
    # docling CLI
    # ------------------------------------------------------------------

    def _convert_with_docling(self, path: Path, doc_type: str, out_dir: Path, started: float) -> ConversionResult:
        args = [
            self._command,
            "--ocr",
            "--image-export-mode", "placeholder",
            str(path),
            "--to", "md",
            "--to", "json",
            "--output", str(out_dir),
        ]
        logger.info("[DocumentConverter] Converting %s (%s) via docling", path, doc_type)
        returncode, stderr = self._run(args)

        if returncode != 0:
            raise DocumentConversionError(
                f"docling exited with code {returncode} for {path}: {stderr[-500:]}"
            )
        if "failed to convert" in stderr.lower():
            raise DocumentConversionError(f"docling failed to convert {path}: {stderr[-500:]}")

        md_path = out_dir / f"{path.stem}.md"
        json_path = out_dir / f"{path.stem}.json"
        text = md_path.read_text(encoding="utf-8") if md_path.exists() else ""
        structured: Optional[dict[str, Any]] = None
        if json_path.exists():
            try:
                structured = json.loads(json_path.read_text(encoding="utf-8"))
            except ValueError as exc:
                logger.warning("[DocumentConverter] Unreadable docling JSON %s: %s", json_path, exc)
        if not text and structured is None:
            raise DocumentConversionError(f"docling produced no output for {path}")

        meta = structured or {}
        page_count = meta.get("page_count")
        if page_count is None and isinstance(meta.get("pages"), dict):
            page_count = len(meta["pages"])
        metadata = DocumentMetadata(
            title=str(meta.get("name") or path.name),
            format=doc_type,
            page_count=page_count,
            word_count=len(text.split()),
            has_images=bool(meta.get("has_images") or meta.get("pictures")),
            has_tables=bool(meta.get("has_tables") or meta.get("tables")),
            conversion_duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            "[DocumentConverter] Converted %s in %dms (%d words)",
            path, metadata.conversion_duration_ms, metadata.word_count,
        )
        return ConversionResult(text=text, metadata=metadata, structured_doc=structured)

    def _run(self, args: list[str]) -> tuple[int, str]:
        """Run the CLI in a new process group; kill the group on timeout."""
        try:
            proc = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise DocumentConversionError(
                f"'{self._command}' not found; install it with: pip install docling", cause=exc
            ) from exc

        try:
            _, stderr = proc.communicate(timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            self._kill_group(proc)
            raise DocumentConversionTimeout(
                f"docling timed out after {self._timeout:g}s", cause=exc
            ) from exc
        return proc.returncode, stderr.decode("utf-8", errors="replace")

    def _kill_group(self, proc: subprocess.Popen) -> None:
        logger.warning("[DocumentConverter] Timeout, sending SIGTERM to process group %d", proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.communicate(timeout=self._grace)
            return
        except subprocess.TimeoutExpired:
            pass
        logger.warning("[DocumentConverter] Process group %d ignored SIGTERM, sending SIGKILL", proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.communicate()
