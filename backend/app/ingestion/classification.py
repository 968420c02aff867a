"""Path-based tagging of test and third-party library files."""
import re
from dataclasses import dataclass

_TEST_FILE_PATTERNS = [
    re.compile(r"\.test\.(ts|js|tsx|jsx|py|java|cs)$", re.IGNORECASE),
    re.compile(r"\.spec\.(ts|js|tsx|jsx|py|java|cs)$", re.IGNORECASE),
    re.compile(r"_test\.(ts|js|tsx|jsx|py|java|cs)$", re.IGNORECASE),
    re.compile(r"_spec\.(ts|js|tsx|jsx|py|java|cs)$", re.IGNORECASE),
    re.compile(r"(^|/)test_[^/]*\.(py|java|cs)$", re.IGNORECASE),
]

_TEST_DIR_PATTERNS = [
    re.compile(r"/__tests__/"),
    re.compile(r"/tests?/"),
    re.compile(r"/spec/"),
]

_LIBRARY_DIRS = (
    "node_modules", "vendor", "packages", "dist", "build", "out",
    "target", "bin", "obj", ".venv", "venv", "site-packages",
)
_LIBRARY_DIR_PATTERN = re.compile(
    r"/(" + "|".join(re.escape(d) for d in _LIBRARY_DIRS) + r")/"
)


def _normalise(path: str) -> str:
    posix = path.replace("\\", "/")
    return posix if posix.startswith("/") else "/" + posix


def is_test_file(path: str) -> bool:
    p = _normalise(path)
    return any(rx.search(p) for rx in _TEST_FILE_PATTERNS) or any(
        rx.search(p) for rx in _TEST_DIR_PATTERNS
    )


def is_library_file(path: str) -> bool:
    return bool(_LIBRARY_DIR_PATTERN.search(_normalise(path)))


@dataclass(frozen=True)
class FileClassification:
    is_test: bool
    is_library: bool


def classify_file(path: str) -> FileClassification:
    return FileClassification(is_test=is_test_file(path), is_library=is_library_file(path))
