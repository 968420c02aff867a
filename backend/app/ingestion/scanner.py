"""Directory scanning and per-file classification for ingestion.

Walks a source root, skips hidden entries and ``.gitignore`` matches on
request, and tags each file as code (with a tree-sitter language),
document (with a document type) or unsupported.
"""
import fnmatch
import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from app.documents.converter import document_type_for
from app.errors import ScanError
from app.rag.languages import language_for_extension

from .classification import classify_file

logger = logging.getLogger(__name__)

NO_EXTENSION = "(no extension)"
_ALWAYS_SKIPPED_DIRS = frozenset({".git"})


@dataclass
class ScannedFile:
    path: str                   # absolute
    relative_path: str          # POSIX, relative to the scan root
    extension: str
    size: int
    kind: Optional[str] = None  # "code" | "document" | None
    language: str = ""
    document_type: str = ""
    is_test: bool = False
    is_library: bool = False

    @property
    def supported(self) -> bool:
        return self.kind is not None


@dataclass
class ScanStatistics:
    total_files: int = 0
    supported_files: int = 0
    unsupported_files: int = 0
    unsupported_by_extension: dict[str, int] = field(default_factory=dict)


@dataclass
class ScanResult:
    files: list[ScannedFile]
    statistics: ScanStatistics


class _IgnoreRules:
    """Subset of .gitignore semantics: globs, directory-only and anchored patterns.

    Negation (``!pattern``) lines are ignored.
    """

    def __init__(self, lines: list[str]) -> None:
        self._patterns: list[tuple[str, bool, bool]] = []  # (glob, dir_only, anchored)
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#") or line.startswith("!"):
                continue
            dir_only = line.endswith("/")
            line = line.rstrip("/")
            anchored = line.startswith("/") or "/" in line
            self._patterns.append((line.lstrip("/"), dir_only, anchored))

    @classmethod
    def from_root(cls, root: Path) -> "_IgnoreRules":
        gitignore = root / ".gitignore"
        if not gitignore.is_file():
            return cls([])
        return cls(gitignore.read_text(encoding="utf-8", errors="replace").splitlines())

    def ignored(self, rel_path: str, is_dir: bool) -> bool:
        name = rel_path.rsplit("/", 1)[-1]
        for glob, dir_only, anchored in self._patterns:
            if dir_only and not is_dir:
                continue
            target = rel_path if anchored else name
            if fnmatch.fnmatch(target, glob):
                return True
        return False


class FileScanner:
    """Scans a directory tree into classified files."""

    def scan(
        self,
        root: str | Path,
        respect_gitignore: bool = True,
        max_file_size: Optional[int] = None,
        skip_hidden: bool = True,
    ) -> ScanResult:
        """Scan *root* recursively.

        Raises:
            ScanError: If *root* does not exist, is not a directory, or
                       cannot be walked.
        """
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise ScanError(f"Source path does not exist: {root}")
        if not root_path.is_dir():
            raise ScanError(f"Source path is not a directory: {root}")

        rules = _IgnoreRules.from_root(root_path) if respect_gitignore else _IgnoreRules([])
        files: list[ScannedFile] = []
        unsupported: Counter[str] = Counter()

        def _on_error(exc: OSError) -> None:
            raise ScanError(f"Failed to scan {exc.filename}: {exc.strerror}", cause=exc)

        for dirpath, dirnames, filenames in os.walk(root_path, onerror=_on_error):
            rel_dir = Path(dirpath).relative_to(root_path).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir

            kept_dirs = []
            for d in sorted(dirnames):
                rel = f"{rel_dir}/{d}" if rel_dir else d
                if d in _ALWAYS_SKIPPED_DIRS or (skip_hidden and d.startswith(".")):
                    continue
                if rules.ignored(rel, is_dir=True):
                    continue
                kept_dirs.append(d)
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                if skip_hidden and name.startswith("."):
                    continue
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if rules.ignored(rel, is_dir=False):
                    continue

                abs_path = Path(dirpath) / name
                try:
                    size = abs_path.stat().st_size
                except OSError as exc:
                    logger.warning("[FileScanner] Cannot stat %s: %s", abs_path, exc)
                    continue

                scanned = self._classify(abs_path, rel, size)
                if scanned.supported and max_file_size is not None and size > max_file_size:
                    logger.debug(
                        "[FileScanner] Skipping %s: %d bytes exceeds limit %d", rel, size, max_file_size,
                    )
                    scanned.kind = None
                if not scanned.supported:
                    unsupported[scanned.extension or NO_EXTENSION] += 1
                files.append(scanned)

        supported = sum(1 for f in files if f.supported)
        stats = ScanStatistics(
            total_files=len(files),
            supported_files=supported,
            unsupported_files=len(files) - supported,
            unsupported_by_extension=dict(unsupported),
        )
        logger.info(
            "[FileScanner] Scanned %s: total=%d supported=%d unsupported=%d",
            root_path, stats.total_files, stats.supported_files, stats.unsupported_files,
        )
        return ScanResult(files=files, statistics=stats)

    def classify(self, path: str | Path, relative_path: str) -> ScannedFile:
        """Classify a single file outside a directory scan.

        Raises:
            OSError: If the file cannot be stat'ed.
        """
        abs_path = Path(path).expanduser().resolve()
        return self._classify(abs_path, relative_path, abs_path.stat().st_size)

    @staticmethod
    def _classify(abs_path: Path, rel: str, size: int) -> ScannedFile:
        ext = abs_path.suffix.lower()
        tags = classify_file(rel)
        scanned = ScannedFile(
            path=str(abs_path),
            relative_path=rel,
            extension=ext,
            size=size,
            is_test=tags.is_test,
            is_library=tags.is_library,
        )
        language = language_for_extension(ext)
        if language is not None:
            scanned.kind = "code"
            scanned.language = language
            return scanned
        doc_type = document_type_for(abs_path)
        if doc_type is not None:
            scanned.kind = "document"
            scanned.document_type = doc_type
        return scanned
