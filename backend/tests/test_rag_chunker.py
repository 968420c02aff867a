"""Tests for the tree-sitter code chunker."""
import pytest

from app.rag.chunker import chunk_code
from app.rag.languages import EXT_TO_LANG, NODE_TYPE_MAPPINGS, language_for_extension
from app.rag.parsing import parse


def _types(chunks) -> list[str]:
    return [c.chunk_type for c in chunks]


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------

class TestChunkPython:
    def test_basic_functions(self):
        code = (
            "import os\n"
            "\n"
            "def greet(name):\n"
            "    print(f'Hello, {name}')\n"
            "\n"
            "def farewell(name):\n"
            "    print(f'Goodbye, {name}')\n"
        )
        chunks = chunk_code(code, "app.py", "python")
        assert _types(chunks) == ["function", "function"]
        for c in chunks:
            assert c.file_path == "app.py"
            assert c.language == "python"
        assert chunks[0].content.startswith("def greet")
        assert (chunks[0].start_line, chunks[0].end_line) == (3, 4)
        assert (chunks[1].start_line, chunks[1].end_line) == (6, 7)

    def test_methods_inside_class(self):
        code = (
            "class Dog:\n"
            "    def __init__(self, name):\n"
            "        self.name = name\n"
            "\n"
            "    def bark(self):\n"
            "        return 'Woof!'\n"
        )
        chunks = chunk_code(code, "animals.py", "python")
        assert _types(chunks) == ["class", "method", "method"]
        assert chunks[0].start_line == 1
        assert chunks[0].end_line == 6
        assert "def bark" in chunks[0].content
        assert chunks[2].content.startswith("def bark")

    def test_nested_function_is_not_method(self):
        code = (
            "def outer():\n"
            "    def inner():\n"
            "        return 1\n"
            "    return inner\n"
        )
        chunks = chunk_code(code, "nested.py", "python")
        assert _types(chunks) == ["function", "function"]
        assert chunks[1].content.startswith("def inner")

    def test_function_inside_method_is_method(self):
        code = (
            "class A:\n"
            "    def run(self):\n"
            "        def helper():\n"
            "            pass\n"
        )
        chunks = chunk_code(code, "a.py", "python")
        assert _types(chunks) == ["class", "method", "method"]

    def test_leading_comment_is_included(self):
        code = (
            "x = 1\n"
            "# Adds two numbers.\n"
            "def add(a, b):\n"
            "    return a + b\n"
        )
        (chunk,) = chunk_code(code, "math.py", "python")
        assert chunk.has_context is True
        assert chunk.content.startswith("# Adds two numbers.")
        assert chunk.start_line == 2
        assert chunk.end_line == 4

    def test_leading_string_statement_is_included(self):
        code = (
            '"""Helpers."""\n'
            "def helper():\n"
            "    pass\n"
        )
        (chunk,) = chunk_code(code, "h.py", "python")
        assert chunk.has_context is True
        assert chunk.start_line == 1
        assert chunk.content.startswith('"""Helpers."""')

    def test_no_context_without_comment(self):
        (chunk,) = chunk_code("def f():\n    pass\n", "f.py", "python")
        assert chunk.has_context is False

    def test_chunk_index_is_sequential(self):
        code = "def a():\n    pass\n\ndef b():\n    pass\n\nclass C:\n    pass\n"
        chunks = chunk_code(code, "x.py", "python")
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_token_count_estimate(self):
        (chunk,) = chunk_code("def f():\n    pass\n", "f.py", "python")
        assert chunk.token_count == (len(chunk.content) + 3) // 4


# ---------------------------------------------------------------------------
# Other languages
# ---------------------------------------------------------------------------

class TestChunkOtherLanguages:
    def test_java(self):
        code = (
            "public class Counter {\n"
            "    private int count;\n"
            "\n"
            "    public int next() {\n"
            "        return ++count;\n"
            "    }\n"
            "}\n"
        )
        chunks = chunk_code(code, "Counter.java", "java")
        assert _types(chunks) == ["class", "field", "method"]
        assert chunks[2].start_line == 4

    def test_java_interface(self):
        chunks = chunk_code("interface Shape {\n    double area();\n}\n", "Shape.java", "java")
        assert _types(chunks)[0] == "interface"

    def test_javascript(self):
        code = (
            "function add(a, b) { return a + b; }\n"
            "const double = (x) => x * 2;\n"
            "class Greeter {\n"
            "  greet() { return 'hi'; }\n"
            "}\n"
        )
        chunks = chunk_code(code, "util.js", "javascript")
        assert _types(chunks) == ["function", "function", "class", "method"]

    def test_typescript_interface(self):
        code = (
            "interface Shape {\n"
            "  area(): number;\n"
            "}\n"
            "function total(shapes: Shape[]): number {\n"
            "  return shapes.length;\n"
            "}\n"
        )
        chunks = chunk_code(code, "shape.ts", "typescript")
        assert _types(chunks) == ["interface", "function"]

    def test_tsx(self):
        code = "const App = () => <div>hi</div>;\n"
        chunks = chunk_code(code, "App.tsx", "tsx")
        assert _types(chunks) == ["function"]

    def test_csharp(self):
        code = (
            "public class Account {\n"
            "    public int Balance { get; set; }\n"
            "    public void Deposit(int amount) { Balance += amount; }\n"
            "}\n"
        )
        chunks = chunk_code(code, "Account.cs", "csharp")
        assert _types(chunks) == ["class", "property", "method"]

    def test_java_leading_comment(self):
        code = (
            "class A {\n"
            "    // Returns one.\n"
            "    int one() { return 1; }\n"
            "}\n"
        )
        chunks = chunk_code(code, "A.java", "java")
        method = chunks[1]
        assert method.has_context is True
        assert method.content.startswith("// Returns one.")


# ---------------------------------------------------------------------------
# Edge cases
# ---------------------------------------------------------------------------

class TestChunkEdgeCases:
    def test_empty_content(self):
        assert chunk_code("", "empty.py", "python") == []

    def test_whitespace_only(self):
        assert chunk_code("   \n\n  ", "blank.py", "python") == []

    def test_no_declarations(self):
        assert chunk_code("x = 1\ny = 2\n", "vars.py", "python") == []

    def test_malformed_source_is_best_effort(self):
        code = "def ok():\n    return 1\n\ndef broken(:\n"
        chunks = chunk_code(code, "bad.py", "python")
        assert any(c.content.startswith("def ok") for c in chunks)

    def test_unknown_language_raises(self):
        with pytest.raises(ValueError):
            chunk_code("package main", "main.go", "go")

    def test_utf8_content(self):
        code = "def héllo():\n    return 'ünïcödé'\n"
        (chunk,) = chunk_code(code, "u.py", "python")
        assert "ünïcödé" in chunk.content


class TestLanguageForExtension:
    @pytest.mark.parametrize("ext,lang", [
        (".py", "python"),
        (".PY", "python"),
        (".ts", "typescript"),
        (".tsx", "tsx"),
        (".jsx", "javascript"),
        (".cs", "csharp"),
        (".java", "java"),
    ])
    def test_known(self, ext, lang):
        assert language_for_extension(ext) == lang

    def test_unknown(self):
        assert language_for_extension(".go") is None

    @pytest.mark.parametrize("lang", sorted(set(EXT_TO_LANG.values())))
    def test_every_extension_language_has_mapping_and_grammar(self, lang):
        assert lang in NODE_TYPE_MAPPINGS
        assert parse(b"", lang).root_node is not None
