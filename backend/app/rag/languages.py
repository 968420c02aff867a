"""Per-language tables for structural code chunking.

Adding a language means adding rows here; the traversal in
``app.rag.chunker`` never branches on the language name.
"""
from .models import ChunkType

# File extension → language id understood by ``app.rag.parsing``.
EXT_TO_LANG: dict[str, str] = {
    ".py":   "python",
    ".pyi":  "python",
    ".java": "java",
    ".js":   "javascript",
    ".jsx":  "javascript",
    ".mjs":  "javascript",
    ".cjs":  "javascript",
    ".ts":   "typescript",
    ".mts":  "typescript",
    ".cts":  "typescript",
    ".tsx":  "tsx",
    ".cs":   "csharp",
}

# Syntax node type → chunk type.
NODE_TYPE_MAPPINGS: dict[str, dict[str, str]] = {
    "csharp": {
        "class_declaration":     ChunkType.CLASS.value,
        "method_declaration":    ChunkType.METHOD.value,
        "property_declaration":  ChunkType.PROPERTY.value,
        "interface_declaration": ChunkType.INTERFACE.value,
    },
    "java": {
        "class_declaration":     ChunkType.CLASS.value,
        "method_declaration":    ChunkType.METHOD.value,
        "field_declaration":     ChunkType.FIELD.value,
        "interface_declaration": ChunkType.INTERFACE.value,
    },
    "javascript": {
        "function_declaration": ChunkType.FUNCTION.value,
        "arrow_function":       ChunkType.FUNCTION.value,
        "class_declaration":    ChunkType.CLASS.value,
        "method_definition":    ChunkType.METHOD.value,
    },
    "typescript": {
        "function_declaration":  ChunkType.FUNCTION.value,
        "arrow_function":        ChunkType.FUNCTION.value,
        "class_declaration":     ChunkType.CLASS.value,
        "method_definition":     ChunkType.METHOD.value,
        "interface_declaration": ChunkType.INTERFACE.value,
    },
    "python": {
        "function_definition": ChunkType.FUNCTION.value,
        "class_definition":    ChunkType.CLASS.value,
    },
}
NODE_TYPE_MAPPINGS["tsx"] = NODE_TYPE_MAPPINGS["typescript"]

# Grammars without a distinct method node: (function node, class ancestor).
METHOD_PROMOTIONS: dict[str, tuple[str, str]] = {
    "python": ("function_definition", "class_definition"),
}

COMMENT_NODE_TYPES: dict[str, frozenset[str]] = {
    "csharp":     frozenset({"comment", "documentation_comment"}),
    "java":       frozenset({"comment", "line_comment", "block_comment"}),
    "javascript": frozenset({"comment"}),
    "typescript": frozenset({"comment"}),
    "tsx":        frozenset({"comment"}),
    "python":     frozenset({"comment"}),
}

# Languages whose doc comments are a bare string-literal statement:
# statement node type → required type of its first child.
DOCSTRING_STATEMENTS: dict[str, tuple[str, str]] = {
    "python": ("expression_statement", "string"),
}


def language_for_extension(ext: str) -> str | None:
    return EXT_TO_LANG.get(ext.lower())
