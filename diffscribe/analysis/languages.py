"""
Tree-sitter language support for the symbol mapper.

Supports: Rust, Python, JavaScript, TypeScript, Go, Java, C, C++, Ruby, PHP, C#

Uses tree-sitter >= 0.22 API with individual language packages.  A grammar
package that isn't installed simply makes that language unavailable; the
symbol mapper then falls through to its coarser tiers.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable, Optional

from .symbols import SymbolKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".rs": "rust",
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".hxx": "cpp",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "c_sharp",
}


def detect_language(file_path: str) -> Optional[str]:
    """Return the tree-sitter language name for *file_path*, or None."""
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_TO_LANGUAGE.get(ext)


# ---------------------------------------------------------------------------
# Node kind → symbol kind, per language
# ---------------------------------------------------------------------------

_JS_KINDS: dict[str, SymbolKind] = {
    "function_declaration": SymbolKind.FUNCTION,
    "generator_function_declaration": SymbolKind.FUNCTION,
    "method_definition": SymbolKind.METHOD,
    "class_declaration": SymbolKind.CLASS,
}

_TS_KINDS: dict[str, SymbolKind] = {
    **_JS_KINDS,
    "abstract_class_declaration": SymbolKind.CLASS,
    "interface_declaration": SymbolKind.INTERFACE,
    "type_alias_declaration": SymbolKind.TYPE,
    "enum_declaration": SymbolKind.ENUM,
}

_C_KINDS: dict[str, SymbolKind] = {
    "function_definition": SymbolKind.FUNCTION,
    "struct_specifier": SymbolKind.STRUCT,
    "enum_specifier": SymbolKind.ENUM,
    "type_definition": SymbolKind.TYPE,
}

NODE_KINDS: dict[str, dict[str, SymbolKind]] = {
    "rust": {
        "function_item": SymbolKind.FUNCTION,
        "function_signature_item": SymbolKind.FUNCTION,
        "struct_item": SymbolKind.STRUCT,
        "enum_item": SymbolKind.ENUM,
        "trait_item": SymbolKind.TRAIT,
        "impl_item": SymbolKind.IMPL,
        "const_item": SymbolKind.CONST,
        "static_item": SymbolKind.CONST,
        "type_item": SymbolKind.TYPE,
    },
    "python": {
        "function_definition": SymbolKind.FUNCTION,
        "class_definition": SymbolKind.CLASS,
    },
    "javascript": _JS_KINDS,
    "typescript": _TS_KINDS,
    "tsx": _TS_KINDS,
    "go": {
        "function_declaration": SymbolKind.FUNCTION,
        "method_declaration": SymbolKind.METHOD,
        "type_spec": SymbolKind.TYPE,
        "type_alias": SymbolKind.TYPE,
        "const_spec": SymbolKind.CONST,
    },
    "java": {
        "method_declaration": SymbolKind.METHOD,
        "constructor_declaration": SymbolKind.METHOD,
        "class_declaration": SymbolKind.CLASS,
        "record_declaration": SymbolKind.CLASS,
        "interface_declaration": SymbolKind.INTERFACE,
        "enum_declaration": SymbolKind.ENUM,
    },
    "c": _C_KINDS,
    "cpp": {
        **_C_KINDS,
        "class_specifier": SymbolKind.CLASS,
    },
    "ruby": {
        "method": SymbolKind.FUNCTION,
        "singleton_method": SymbolKind.METHOD,
        "class": SymbolKind.CLASS,
        "module": SymbolKind.CLASS,
    },
    "php": {
        "function_definition": SymbolKind.FUNCTION,
        "method_declaration": SymbolKind.METHOD,
        "class_declaration": SymbolKind.CLASS,
        "interface_declaration": SymbolKind.INTERFACE,
        "trait_declaration": SymbolKind.TRAIT,
        "enum_declaration": SymbolKind.ENUM,
    },
    "c_sharp": {
        "method_declaration": SymbolKind.METHOD,
        "constructor_declaration": SymbolKind.METHOD,
        "class_declaration": SymbolKind.CLASS,
        "record_declaration": SymbolKind.CLASS,
        "struct_declaration": SymbolKind.STRUCT,
        "interface_declaration": SymbolKind.INTERFACE,
        "enum_declaration": SymbolKind.ENUM,
    },
}

# Specifier nodes that are only declarations when they carry a body;
# ``struct foo *p;`` is a reference, not a definition.
BODY_REQUIRED: frozenset[str] = frozenset({
    "struct_specifier", "enum_specifier", "class_specifier",
})

# Container nodes whose function children are methods
METHOD_CONTAINERS: frozenset[str] = frozenset({
    "class_definition", "impl_item", "trait_item", "class", "module",
})


def symbol_kind_for(language: str, node_type: str) -> Optional[SymbolKind]:
    """Look up the symbol kind for a node type, or None if it isn't one."""
    return NODE_KINDS.get(language, {}).get(node_type)


# ---------------------------------------------------------------------------
# Grammar loading
# ---------------------------------------------------------------------------

def _get_lang_func(language: str) -> Optional[Callable[[], object]]:
    """Return the tree-sitter language() function for *language*, or None."""
    try:
        if language == "rust":
            import tree_sitter_rust as m  # type: ignore
            return m.language
        elif language == "python":
            import tree_sitter_python as m  # type: ignore
            return m.language
        elif language == "javascript":
            import tree_sitter_javascript as m  # type: ignore
            return m.language
        elif language == "typescript":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_typescript
        elif language == "tsx":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_tsx
        elif language == "go":
            import tree_sitter_go as m  # type: ignore
            return m.language
        elif language == "java":
            import tree_sitter_java as m  # type: ignore
            return m.language
        elif language == "c":
            import tree_sitter_c as m  # type: ignore
            return m.language
        elif language == "cpp":
            import tree_sitter_cpp as m  # type: ignore
            return m.language
        elif language == "ruby":
            import tree_sitter_ruby as m  # type: ignore
            return m.language
        elif language == "php":
            import tree_sitter_php as m  # type: ignore
            return m.language_php
        elif language == "c_sharp":
            import tree_sitter_c_sharp as m  # type: ignore
            return m.language
    except ImportError:
        logger.debug("No tree-sitter grammar installed for %s", language)
    return None


# Language objects are immutable and safe to share across threads
_LANG_CACHE: dict[str, object] = {}
_LANG_LOCK = threading.Lock()

# Parsers hold mutable state: one per (thread, language)
_thread_state = threading.local()


def get_ts_language(language: str):
    """Return the cached ``tree_sitter.Language`` for *language*, or None."""
    with _LANG_LOCK:
        if language in _LANG_CACHE:
            return _LANG_CACHE[language]
    func = _get_lang_func(language)
    if func is None:
        return None
    try:
        import tree_sitter as ts  # type: ignore
        lang_obj = ts.Language(func())
    except Exception as exc:
        logger.debug("Cannot load tree-sitter language %s: %s", language, exc)
        return None
    with _LANG_LOCK:
        _LANG_CACHE.setdefault(language, lang_obj)
        return _LANG_CACHE[language]


def get_parser(language: str):
    """
    Return this thread's tree-sitter Parser for *language*, or None.

    Parsers are never shared between threads; each worker thread builds its
    own on first use and reuses it for every later file in that language.
    """
    parsers: Optional[dict] = getattr(_thread_state, "parsers", None)
    if parsers is None:
        parsers = {}
        _thread_state.parsers = parsers
    if language in parsers:
        return parsers[language]

    lang_obj = get_ts_language(language)
    if lang_obj is None:
        return None
    try:
        import tree_sitter as ts  # type: ignore
        parser = ts.Parser(lang_obj)
    except Exception as exc:
        logger.warning("Cannot create tree-sitter parser for %s: %s", language, exc)
        return None
    parsers[language] = parser
    return parser


def has_grammar(language: Optional[str]) -> bool:
    return language is not None and get_ts_language(language) is not None
