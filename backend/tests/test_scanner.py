"""Tests for file classification, directory scanning and document conversion."""
import os
import stat
import time
from pathlib import Path

import pytest

from app.documents.converter import DocumentConverter, document_type_for
from app.errors import DocumentConversionError, DocumentConversionTimeout, ScanError
from app.ingestion.classification import classify_file, is_library_file, is_test_file
from app.ingestion.scanner import NO_EXTENSION, FileScanner


def _write(root: Path, rel: str, content: str = "x = 1\n") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassification:
    @pytest.mark.parametrize("path", [
        "src/app.test.ts",
        "src/app.spec.js",
        "pkg/handler_test.py",
        "test_models.py",
        "src/test_models.py",
        "tests/helpers.py",
        "src/__tests__/thing.tsx",
        "spec/models/user.rb",
        "src\\tests\\helper.cs",
    ])
    def test_test_files(self, path):
        assert is_test_file(path) is True

    @pytest.mark.parametrize("path", [
        "src/app.ts",
        "src/testing_utils.py",
        "src/contest.py",
        "docs/latest.md",
    ])
    def test_non_test_files(self, path):
        assert is_test_file(path) is False

    @pytest.mark.parametrize("path", [
        "node_modules/react/index.js",
        "app/vendor/lib.py",
        "bin/Debug/x.cs",
        ".venv/lib/site-packages/pkg/mod.py",
    ])
    def test_library_files(self, path):
        assert is_library_file(path) is True

    def test_plain_source_is_not_library(self):
        assert is_library_file("src/build_utils.py") is False

    def test_classify_combines(self):
        tags = classify_file("node_modules/pkg/tests/a.test.js")
        assert tags.is_test and tags.is_library


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

class TestFileScanner:
    def test_classifies_code_documents_and_unsupported(self, tmp_path):
        _write(tmp_path, "src/main.py")
        _write(tmp_path, "src/App.tsx", "const a = 1;")
        _write(tmp_path, "README.md", "# hi")
        _write(tmp_path, "report.pdf", "%PDF")
        _write(tmp_path, "logo.png", "png")
        _write(tmp_path, "Makefile", "all:")

        result = FileScanner().scan(tmp_path)
        by_rel = {f.relative_path: f for f in result.files}

        assert by_rel["src/main.py"].kind == "code"
        assert by_rel["src/main.py"].language == "python"
        assert by_rel["src/App.tsx"].language == "tsx"
        assert by_rel["README.md"].kind == "document"
        assert by_rel["README.md"].document_type == "markdown"
        assert by_rel["report.pdf"].document_type == "pdf"
        assert not by_rel["logo.png"].supported

        stats = result.statistics
        assert stats.total_files == 6
        assert stats.supported_files == 4
        assert stats.unsupported_files == 2
        assert stats.unsupported_by_extension == {".png": 1, NO_EXTENSION: 1}

    def test_skips_hidden_and_git(self, tmp_path):
        _write(tmp_path, ".git/config.py")
        _write(tmp_path, ".hidden/a.py")
        _write(tmp_path, ".env.py")
        _write(tmp_path, "visible.py")

        result = FileScanner().scan(tmp_path)
        assert [f.relative_path for f in result.files] == ["visible.py"]

    def test_hidden_included_when_requested(self, tmp_path):
        _write(tmp_path, ".git/hook.py")
        _write(tmp_path, ".config/a.py")
        result = FileScanner().scan(tmp_path, skip_hidden=False)
        assert [f.relative_path for f in result.files] == [".config/a.py"]

    def test_respects_gitignore(self, tmp_path):
        _write(tmp_path, ".gitignore", "build/\n*.log.py\n/root_only.py\n# comment\n")
        _write(tmp_path, "build/out.py")
        _write(tmp_path, "src/debug.log.py")
        _write(tmp_path, "root_only.py")
        _write(tmp_path, "src/root_only.py")
        _write(tmp_path, "src/keep.py")

        rels = {f.relative_path for f in FileScanner().scan(tmp_path).files}
        assert rels == {"src/keep.py", "src/root_only.py"}

    def test_gitignore_can_be_disabled(self, tmp_path):
        _write(tmp_path, ".gitignore", "*.py\n")
        _write(tmp_path, "a.py")
        result = FileScanner().scan(tmp_path, respect_gitignore=False)
        assert [f.relative_path for f in result.files] == ["a.py"]

    def test_oversized_files_are_unsupported(self, tmp_path):
        _write(tmp_path, "big.py", "x" * 100)
        _write(tmp_path, "small.py", "x")
        result = FileScanner().scan(tmp_path, max_file_size=10)
        by_rel = {f.relative_path: f for f in result.files}
        assert not by_rel["big.py"].supported
        assert by_rel["small.py"].supported
        assert result.statistics.unsupported_by_extension == {".py": 1}

    def test_test_and_library_tags(self, tmp_path):
        _write(tmp_path, "tests/test_api.py")
        _write(tmp_path, "vendor/lib.py")
        by_rel = {f.relative_path: f for f in FileScanner().scan(tmp_path).files}
        assert by_rel["tests/test_api.py"].is_test
        assert by_rel["vendor/lib.py"].is_library

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(ScanError, match="does not exist"):
            FileScanner().scan(tmp_path / "nope")

    def test_file_root_raises(self, tmp_path):
        path = _write(tmp_path, "a.py")
        with pytest.raises(ScanError, match="not a directory"):
            FileScanner().scan(path)

    def test_classify_single_file(self, tmp_path):
        path = _write(tmp_path, "deep/Service.java", "class A {}")
        scanned = FileScanner().classify(path, "Service.java")
        assert scanned.relative_path == "Service.java"
        assert scanned.language == "java"
        assert scanned.size == len("class A {}")


# ---------------------------------------------------------------------------
# Document conversion
# ---------------------------------------------------------------------------

def _script(tmp_path: Path, body: str) -> str:
    path = tmp_path / "fake-docling"
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


_WRITES_OUTPUT = (
    'for a; do out="$a"; done\n'
    'stem=$(basename "$4"); stem="${stem%.*}"\n'
    'printf "# Converted\\n\\nBody text.\\n" > "$out/$stem.md"\n'
    'printf \'{"name": "doc", "texts": [{"label": "text", "text": "Body text."}], "tables": [1]}\' > "$out/$stem.json"\n'
)


class TestDocumentConverter:
    def test_document_type_for(self):
        assert document_type_for("a/B.PDF") == "pdf"
        assert document_type_for("notes.txt") == "text"
        assert document_type_for("image.png") is None

    def test_direct_read_markdown(self, tmp_path):
        path = _write(tmp_path, "notes.md", "# Title\n\nsome words here\n")
        result = DocumentConverter().convert(path)
        assert result.text.startswith("# Title")
        assert result.structured_doc is None
        assert result.metadata.format == "markdown"
        assert result.metadata.word_count == 5

    def test_unsupported_format(self, tmp_path):
        path = _write(tmp_path, "image.png", "x")
        with pytest.raises(DocumentConversionError, match="Unsupported"):
            DocumentConverter().convert(path)

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    def test_docling_output_is_read(self, tmp_path):
        doc = _write(tmp_path, "in/report.pdf", "%PDF")
        converter = DocumentConverter(output_dir=str(tmp_path / "out"), command=_script(tmp_path, _WRITES_OUTPUT))
        result = converter.convert(doc)
        assert "Body text." in result.text
        assert result.structured_doc["texts"][0]["text"] == "Body text."
        assert result.metadata.title == "doc"
        assert result.metadata.has_tables is True

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    def test_nonzero_exit_raises(self, tmp_path):
        doc = _write(tmp_path, "report.pdf", "%PDF")
        converter = DocumentConverter(command=_script(tmp_path, "echo broken >&2\nexit 3\n"))
        with pytest.raises(DocumentConversionError, match="code 3"):
            converter.convert(doc)

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    def test_failed_to_convert_message_raises(self, tmp_path):
        doc = _write(tmp_path, "report.pdf", "%PDF")
        converter = DocumentConverter(command=_script(tmp_path, "echo 'Failed to convert report.pdf' >&2\n"))
        with pytest.raises(DocumentConversionError, match="failed to convert"):
            converter.convert(doc)

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    def test_no_output_raises(self, tmp_path):
        doc = _write(tmp_path, "report.pdf", "%PDF")
        converter = DocumentConverter(command=_script(tmp_path, "exit 0\n"))
        with pytest.raises(DocumentConversionError, match="no output"):
            converter.convert(doc)

    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    def test_timeout_kills_process(self, tmp_path):
        doc = _write(tmp_path, "report.pdf", "%PDF")
        converter = DocumentConverter(
            timeout=0.2, kill_grace_seconds=0.2, command=_script(tmp_path, "sleep 30\n"),
        )
        started = time.monotonic()
        with pytest.raises(DocumentConversionTimeout):
            converter.convert(doc)
        assert time.monotonic() - started < 10

    def test_missing_command_raises(self, tmp_path):
        doc = _write(tmp_path, "report.pdf", "%PDF")
        converter = DocumentConverter(command=str(tmp_path / "does-not-exist"))
        with pytest.raises(DocumentConversionError, match="not found"):
            converter.convert(doc)
