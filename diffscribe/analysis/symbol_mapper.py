"""
Symbol mapper — maps each changed file's hunks onto the declarations they
touch.

Every file goes down a fallback ladder and stops at the first rung that
produces output:

1. ``AstTier``: parse full staged and HEAD content with tree-sitter
2. ``HunkHeuristicTier``: pull a name out of the hunk header's context
3. ``FileSummaryTier``: one pseudo-symbol with path, status and counts
4. ``RawDiffTier``: nothing; the diff text speaks for itself

A tier returns ``None`` when it cannot handle the file.  Exceptions inside a
tier never reach the caller; they are logged and the next tier is tried.

The content provider is any object with ``staged_content(path)`` and
``head_content(path)`` methods returning text or None.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional

from ..changes import ChangeStatus, FileChange
from ..diff.hunks import DiffHunk, parse_hunks
from .languages import (
    BODY_REQUIRED, METHOD_CONTAINERS, detect_language, get_parser,
    has_grammar, symbol_kind_for,
)
from .symbols import CodeSymbol, SymbolKind, SymbolSource

logger = logging.getLogger(__name__)

_SIGNATURE_MAX = 120


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------

def _text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def _symbol_name(node) -> str:
    name_node = node.child_by_field_name("name")
    if name_node is not None:
        return " ".join(_text(name_node).split()) or "anonymous"

    if node.type == "impl_item":
        type_node = node.child_by_field_name("type")
        trait_node = node.child_by_field_name("trait")
        if type_node is not None and trait_node is not None:
            return " ".join(f"{_text(trait_node)} for {_text(type_node)}".split())
        if type_node is not None:
            return " ".join(_text(type_node).split())

    # C-style: descend through nested declarators to the identifier
    declarator = node.child_by_field_name("declarator")
    while declarator is not None:
        inner = declarator.child_by_field_name("declarator")
        if inner is None:
            break
        declarator = inner
    if declarator is not None and declarator.type.endswith(("identifier", "_name")):
        return _text(declarator)
    return "anonymous"


def _has_modifier(node, word: str) -> bool:
    for child in node.children:
        if child.type in (
            "modifiers", "modifier", "visibility_modifier", "accessibility_modifier",
        ) and word in _text(child):
            return True
    return False


def _public_rust(node, name: str) -> bool:
    return any(child.type == "visibility_modifier" for child in node.children)


def _public_go(node, name: str) -> bool:
    return name[:1].isupper()


def _public_modifier(node, name: str) -> bool:
    return _has_modifier(node, "public")


def _public_php(node, name: str) -> bool:
    if node.type == "function_definition":
        return True
    # PHP methods without a modifier are public
    return _has_modifier(node, "public") or not any(
        _has_modifier(node, w) for w in ("private", "protected")
    )


def _public_js(node, name: str) -> bool:
    parent = node.parent
    if parent is not None and parent.type == "export_statement":
        return True
    if node.type == "method_definition":
        if _has_modifier(node, "private") or _has_modifier(node, "protected"):
            return False
        return not name.startswith(("#", "_"))
    return False


def _public_underscore(node, name: str) -> bool:
    return not name.startswith("_")


def _public_c(node, name: str) -> bool:
    return not any(
        child.type == "storage_class_specifier" and _text(child) == "static"
        for child in node.children
    )


_VISIBILITY: dict[str, Callable] = {
    "rust": _public_rust,
    "go": _public_go,
    "java": _public_modifier,
    "c_sharp": _public_modifier,
    "php": _public_php,
    "javascript": _public_js,
    "typescript": _public_js,
    "tsx": _public_js,
    "python": _public_underscore,
    "ruby": _public_underscore,
    "c": _public_c,
    "cpp": _public_c,
}


def _refine_kind(node, kind: SymbolKind, container: Optional[str]) -> SymbolKind:
    if kind is SymbolKind.FUNCTION and container in METHOD_CONTAINERS:
        return SymbolKind.METHOD
    if node.type == "type_spec":
        type_node = node.child_by_field_name("type")
        if type_node is not None and type_node.type == "struct_type":
            return SymbolKind.STRUCT
        if type_node is not None and type_node.type == "interface_type":
            return SymbolKind.INTERFACE
    return kind


def _signature(node) -> str:
    first = _text(node).split("\n", 1)[0].strip()
    return first[:_SIGNATURE_MAX]


def iter_declarations(root, language: str) -> Iterable[tuple[object, SymbolKind, bool]]:
    """
    Yield ``(node, kind, is_top_level)`` for every declaration under *root*,
    in source order.

    Uses an explicit stack so deeply nested trees can't hit the recursion
    limit.
    """
    # (node, nearest enclosing declaration type, inside a declaration?)
    stack: list[tuple[object, Optional[str], bool]] = [(root, None, False)]
    while stack:
        node, container, nested = stack.pop()
        kind = symbol_kind_for(language, node.type)
        if kind is not None and node.type in BODY_REQUIRED:
            if node.child_by_field_name("body") is None:
                kind = None

        child_container, child_nested = container, nested
        if kind is not None:
            yield node, _refine_kind(node, kind, container), not nested
            child_container, child_nested = node.type, True

        for child in reversed(node.children):
            stack.append((child, child_container, child_nested))


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

def _read(accessor, path: Optional[str]) -> Optional[str]:
    if accessor is None or not path:
        return None
    try:
        return accessor(path)
    except Exception as exc:
        logger.debug("Content lookup failed for %s: %s", path, exc)
        return None


class AstTier:
    """Parse both sides of the file and keep declarations touching a hunk."""

    source = SymbolSource.AST

    def try_extract(
        self,
        change: FileChange,
        hunks: list[DiffHunk],
        provider,
    ) -> Optional[list[CodeSymbol]]:
        language = detect_language(change.path)
        if not has_grammar(language):
            return None
        parser = get_parser(language)
        if parser is None:
            return None

        staged = None
        head = None
        if change.status is not ChangeStatus.DELETED:
            staged = _read(getattr(provider, "staged_content", None), change.path)
        if change.status is not ChangeStatus.ADDED:
            head = _read(
                getattr(provider, "head_content", None),
                change.old_path or change.path,
            )
        if staged is None and head is None:
            return None

        if not hunks:
            # Pure rename: report what moved
            if change.status is ChangeStatus.RENAMED and staged is not None:
                return self._top_level(parser, language, change, staged)
            return None

        symbols: list[CodeSymbol] = []
        if staged is not None:
            symbols.extend(self._changed(parser, language, change, staged, hunks, True))
        if head is not None:
            symbols.extend(self._changed(parser, language, change, head, hunks, False))
        return symbols

    @staticmethod
    def _make_symbol(node, kind, language, change, is_added) -> CodeSymbol:
        name = _symbol_name(node)
        visibility = _VISIBILITY.get(language, _public_underscore)
        return CodeSymbol(
            kind=kind,
            name=name,
            file=change.path,
            line=node.start_point[0] + 1,
            is_public=bool(visibility(node, name)),
            is_added=is_added,
            signature=_signature(node),
        )

    def _changed(self, parser, language, change, source, hunks, is_added):
        tree = parser.parse(source.encode("utf-8"))
        found: list[CodeSymbol] = []
        for node, kind, _top in iter_declarations(tree.root_node, language):
            line_start = node.start_point[0] + 1
            # Spans are inclusive; the hunk predicates take half-open ranges
            line_end = node.end_point[0] + 2
            if is_added:
                hit = any(h.intersects_new(line_start, line_end) for h in hunks)
            else:
                hit = any(h.intersects_old(line_start, line_end) for h in hunks)
            if hit:
                found.append(self._make_symbol(node, kind, language, change, is_added))
        return found

    def _top_level(self, parser, language, change, source):
        tree = parser.parse(source.encode("utf-8"))
        return [
            self._make_symbol(node, kind, language, change, True)
            for node, kind, top in iter_declarations(tree.root_node, language)
            if top
        ]


# Keyword → kind for names found in hunk header context
_CONTEXT_KEYWORDS: dict[str, SymbolKind] = {
    "def": SymbolKind.FUNCTION,
    "fn": SymbolKind.FUNCTION,
    "func": SymbolKind.FUNCTION,
    "function": SymbolKind.FUNCTION,
    "sub": SymbolKind.FUNCTION,
    "class": SymbolKind.CLASS,
    "struct": SymbolKind.STRUCT,
    "enum": SymbolKind.ENUM,
    "trait": SymbolKind.TRAIT,
    "impl": SymbolKind.IMPL,
    "interface": SymbolKind.INTERFACE,
    "type": SymbolKind.TYPE,
    "module": SymbolKind.CLASS,
}

_CONTEXT_DECL = re.compile(
    r"\b(" + "|".join(_CONTEXT_KEYWORDS) + r")\s+([A-Za-z_$][\w$]*)"
)
_CONTEXT_CALL = re.compile(r"([A-Za-z_$][\w$]*)\s*\(")
# Control flow looks like a call in the fallback pattern
_CONTROL_KEYWORDS = frozenset({"if", "for", "while", "switch", "catch", "return", "elif", "with"})


class HunkHeuristicTier:
    """Take the enclosing-scope hint git prints after each ``@@`` header."""

    source = SymbolSource.HUNK_HEURISTIC

    def try_extract(self, change, hunks, provider) -> Optional[list[CodeSymbol]]:
        symbols: list[CodeSymbol] = []
        seen: set[str] = set()
        is_added = change.status is not ChangeStatus.DELETED
        for hunk in hunks:
            found = self._from_context(hunk.context)
            if found is None:
                continue
            kind, name = found
            if name in seen:
                continue
            seen.add(name)
            symbols.append(CodeSymbol(
                kind=kind,
                name=name,
                file=change.path,
                line=hunk.new_start if is_added else hunk.old_start,
                is_public=not name.startswith("_"),
                is_added=is_added,
                signature=hunk.context[:_SIGNATURE_MAX],
            ))
        return symbols or None

    @staticmethod
    def _from_context(context: str) -> Optional[tuple[SymbolKind, str]]:
        if not context:
            return None
        matches = list(_CONTEXT_DECL.finditer(context))
        if matches:
            # Nearest preceding token: the last declaration keyword on the line
            keyword, name = matches[-1].groups()
            return _CONTEXT_KEYWORDS[keyword], name
        for call in _CONTEXT_CALL.finditer(context):
            if call.group(1) not in _CONTROL_KEYWORDS:
                return SymbolKind.FUNCTION, call.group(1)
        return None


class FileSummaryTier:
    """One pseudo-symbol describing the file as a whole."""

    source = SymbolSource.FILE_SUMMARY

    def try_extract(self, change, hunks, provider) -> Optional[list[CodeSymbol]]:
        if (
            change.status is ChangeStatus.MODIFIED
            and change.additions == 0
            and change.deletions == 0
        ):
            return None
        return [CodeSymbol(
            kind=SymbolKind.FILE,
            name=change.path,
            file=change.path,
            line=1,
            is_public=False,
            is_added=change.status is not ChangeStatus.DELETED,
            signature=f"{change.status.value} +{change.additions} -{change.deletions}",
        )]


class RawDiffTier:
    """Emit nothing; downstream only sees the diff text."""

    source = SymbolSource.RAW_DIFF

    def try_extract(self, change, hunks, provider) -> Optional[list[CodeSymbol]]:
        return []


DEFAULT_TIERS = (AstTier, HunkHeuristicTier, FileSummaryTier, RawDiffTier)


# ---------------------------------------------------------------------------
# SymbolMapper
# ---------------------------------------------------------------------------

class SymbolMapper:
    """Run each changed file down the fallback ladder."""

    def __init__(self, tiers: Optional[list] = None) -> None:
        self._tiers = tiers if tiers is not None else [t() for t in DEFAULT_TIERS]
        self.last_tiers: dict[str, SymbolSource] = {}

    def map_file(self, change: FileChange, provider) -> tuple[list[CodeSymbol], SymbolSource]:
        """Return the symbols for one file and the tier that produced them."""
        hunks = parse_hunks(change.diff)
        for tier in self._tiers:
            try:
                result = tier.try_extract(change, hunks, provider)
            except Exception as exc:
                logger.debug(
                    "[Symbols] %s failed on %s: %s",
                    type(tier).__name__, change.path, exc,
                )
                continue
            if result is not None:
                return result, tier.source
            logger.debug(
                "[Symbols] %s produced nothing for %s", type(tier).__name__, change.path,
            )
        return [], SymbolSource.RAW_DIFF

    def extract_symbols(self, changes: list[FileChange], provider) -> list[CodeSymbol]:
        """Map every non-binary file sequentially, preserving input order."""
        self.last_tiers = {}
        symbols: list[CodeSymbol] = []
        for change in changes:
            if change.is_binary:
                continue
            file_symbols, source = self.map_file(change, provider)
            self.last_tiers[change.path] = source
            symbols.extend(file_symbols)
        return symbols

    def extract_symbols_parallel(
        self,
        changes: list[FileChange],
        provider,
        max_workers: int = 4,
    ) -> list[CodeSymbol]:
        """
        Same as :meth:`extract_symbols` but maps files on a thread pool.

        Files are independent, so each worker owns its own parsers and the
        results are stitched back together in input order.
        """
        eligible = [c for c in changes if not c.is_binary]
        self.last_tiers = {}
        if not eligible:
            return []
        if max_workers <= 1 or len(eligible) == 1:
            return self.extract_symbols(eligible, provider)

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(lambda c: self.map_file(c, provider), eligible))

        symbols: list[CodeSymbol] = []
        for change, (file_symbols, source) in zip(eligible, results):
            self.last_tiers[change.path] = source
            symbols.extend(file_symbols)
        logger.debug(
            "[Symbols] %d symbols from %d files (%d workers)",
            len(symbols), len(eligible), max_workers,
        )
        return symbols


def extract_symbols(changes: list[FileChange], provider) -> list[CodeSymbol]:
    """Convenience wrapper: map *changes* with the default ladder."""
    return SymbolMapper().extract_symbols(changes, provider)
