"""Code symbol records produced by the symbol mapper."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SymbolKind(str, Enum):
    FUNCTION = "Function"
    METHOD = "Method"
    STRUCT = "Struct"
    ENUM = "Enum"
    TRAIT = "Trait"
    IMPL = "Impl"
    CLASS = "Class"
    INTERFACE = "Interface"
    CONST = "Const"
    TYPE = "Type"
    FILE = "File"       # pseudo-symbol from the file-summary tier


class SymbolSource(str, Enum):
    """Which rung of the fallback ladder produced a file's symbols."""
    AST = "ast"
    HUNK_HEURISTIC = "hunk_heuristic"
    FILE_SUMMARY = "file_summary"
    RAW_DIFF = "raw_diff"


@dataclass
class CodeSymbol:
    """A declaration touched by the change.

    ``is_added`` is True when the symbol was found in the staged version and
    False when it was found in HEAD.  A modified declaration therefore shows
    up twice, once per side.
    """
    kind: SymbolKind
    name: str
    file: str
    line: int
    is_public: bool = False
    is_added: bool = True
    signature: Optional[str] = None

    def render(self) -> str:
        action = "+" if self.is_added else "-"
        if self.kind is SymbolKind.FILE:
            summary = f" ({self.signature})" if self.signature else ""
            return f"[{action}] File {self.file}{summary}"
        visibility = "pub " if self.is_public else ""
        return f"[{action}] {visibility}{self.kind.value} {self.name} ({self.file}:{self.line})"

    def __str__(self) -> str:
        return self.render()
