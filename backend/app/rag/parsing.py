"""Tree-sitter parser loading.

Grammar packages are imported lazily, one per language, and each
``Parser`` is cached for the life of the process.  Tree-sitter never raises
on malformed source: it returns a partial tree containing ``ERROR`` nodes.
"""
import logging
import threading

logger = logging.getLogger(__name__)

_PARSERS: dict = {}
_lock = threading.Lock()


def _load_language(language: str):
    from tree_sitter import Language

    if language == "python":
        import tree_sitter_python as ts_python
        return Language(ts_python.language())
    if language == "java":
        import tree_sitter_java as ts_java
        return Language(ts_java.language())
    if language == "javascript":
        import tree_sitter_javascript as ts_js
        return Language(ts_js.language())
    if language == "typescript":
        import tree_sitter_typescript as ts_ts
        return Language(ts_ts.language_typescript())
    if language == "tsx":
        import tree_sitter_typescript as ts_ts
        return Language(ts_ts.language_tsx())
    if language == "csharp":
        import tree_sitter_c_sharp as ts_cs
        return Language(ts_cs.language())
    raise ValueError(f"No tree-sitter grammar for language: {language}")


def get_parser(language: str):
    """Return a cached tree-sitter ``Parser`` for *language*.

    Raises:
        ValueError: If the language is not supported.
    """
    with _lock:
        parser = _PARSERS.get(language)
        if parser is None:
            from tree_sitter import Parser

            parser = Parser(_load_language(language))
            _PARSERS[language] = parser
            logger.debug("Initialised tree-sitter parser for %s", language)
        return parser


def parse(source: bytes, language: str):
    """Parse *source* and return the tree (best-effort on malformed input)."""
    # Parser objects are not safe to share across threads mid-parse.
    parser = get_parser(language)
    with _lock:
        return parser.parse(source)
