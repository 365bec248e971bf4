"""
Symbol analysis — maps diff hunks onto tree-sitter declaration spans.
"""

from .symbols import CodeSymbol, SymbolKind, SymbolSource
from .symbol_mapper import (
    SymbolMapper, AstTier, HunkHeuristicTier, FileSummaryTier, RawDiffTier,
    extract_symbols,
)

__all__ = [
    "CodeSymbol", "SymbolKind", "SymbolSource",
    "SymbolMapper", "AstTier", "HunkHeuristicTier", "FileSummaryTier",
    "RawDiffTier", "extract_symbols",
]
