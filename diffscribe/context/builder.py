"""
Context builder — assembles the commit-message prompt under a fixed
character budget.

The change summary is always rendered and the file list may take up to a
quarter of the budget.  Whatever is left goes to the symbol sections first
(``symbol_share`` of it, split evenly between added and removed), and the
diff gets everything the symbols didn't use.  Every section is cut on
whole lines and says how much it left out, so
``len(context.to_prompt())`` never exceeds the budget.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from ..changes import ChangeStatus, FileCategory, StagedChanges
from ..analysis.symbols import CodeSymbol, SymbolKind
from ..commit_types import CommitType
from .prompt import (
    ADDED_HEADER, REMOVED_HEADER, SYMBOL_LINE_PREFIX, SYMBOLS_HEADER,
    SYMBOLS_TRAILER, PromptContext,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_CHARS = 24_000
DEFAULT_SYMBOL_SHARE = 0.6
MIN_CONTEXT_CHARS = 1_000

# Upper bound on the file list, as a share of the budget after the template
_FILE_LIST_SHARE = 0.25

# Header plus this much content must fit, or the file is skipped
_MIN_FILE_QUOTA = 50

# Lock files: show that they changed, never their content
SKIP_CONTENT_FILES = frozenset({
    "Cargo.lock", "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
    "bun.lockb", "go.sum", "Gemfile.lock", "poetry.lock", "composer.lock",
})

_STATUS_GLYPHS = {
    ChangeStatus.ADDED: "[+]",
    ChangeStatus.MODIFIED: "[M]",
    ChangeStatus.DELETED: "[-]",
    ChangeStatus.RENAMED: "[R]",
}

_CATEGORY_WEIGHT = {
    FileCategory.SOURCE: 3,
    FileCategory.TEST: 2,
}

_SCOPE_MARKERS = ("src", "lib")
_PACKAGE_MARKERS = ("packages", "crates", "apps")
_SCOPE_EXCLUDED = frozenset({"main", "lib", "mod", "index"})
_MAX_SCOPE_LEN = 40

_FEAT_KINDS = (SymbolKind.FUNCTION, SymbolKind.STRUCT, SymbolKind.TRAIT)


# ---------------------------------------------------------------------------
# Whole-line fitting
# ---------------------------------------------------------------------------

def _fit_lines(
    lines: list[str],
    budget: int,
    per_line: int,
    marker: Callable[[int], str],
) -> list[str]:
    """
    Keep as many leading *lines* as fit in *budget*.

    Each line costs ``len(line) + per_line``.  If anything is dropped the
    result ends with ``marker(omitted)``, and the marker's cost is counted
    too.  Never splits a line.
    """
    kept: list[str] = []
    used = 0
    for line in lines:
        cost = len(line) + per_line
        if used + cost > budget:
            break
        kept.append(line)
        used += cost
    if len(kept) == len(lines):
        return kept

    while kept:
        note = marker(len(lines) - len(kept))
        if used + len(note) + per_line <= budget:
            break
        used -= len(kept.pop()) + per_line
    note = marker(len(lines) - len(kept))
    if used + len(note) + per_line <= budget:
        kept.append(note)
    return kept


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

def infer_commit_type(changes: StagedChanges, symbols: list[CodeSymbol]) -> CommitType:
    """Best-effort conventional-commit type for the change set."""
    files = changes.files
    if not files:
        return CommitType.CHORE

    categories = [f.category for f in files]
    if all(c is FileCategory.DOCS for c in categories):
        return CommitType.DOCS
    if all(c is FileCategory.TEST for c in categories):
        return CommitType.TEST
    if all(c is FileCategory.CONFIG for c in categories):
        return CommitType.CHORE
    if all(c is FileCategory.BUILD for c in categories):
        return CommitType.BUILD

    # A symbol on both sides was modified, not added
    removed = {(s.file, s.name) for s in symbols if not s.is_added}
    if any(
        s.is_added and s.is_public and s.kind in _FEAT_KINDS
        and (s.file, s.name) not in removed
        for s in symbols
    ):
        return CommitType.FEAT

    added_files = sum(1 for f in files if f.status is ChangeStatus.ADDED)
    if added_files > len(files) / 2:
        return CommitType.FEAT

    insertions = changes.stats.insertions
    deletions = changes.stats.deletions
    if deletions > insertions * 2:
        return CommitType.REFACTOR
    if insertions < 20 and deletions < 20:
        return CommitType.FIX
    return CommitType.FEAT


def scope_from_path(path: str) -> Optional[str]:
    """Module name for *path*: the segment after ``src/``, ``packages/`` etc."""
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    directories = parts[:-1]
    for i, part in enumerate(directories):
        following = parts[i + 1]
        if "." in following:
            continue
        if part in _SCOPE_MARKERS and following not in _SCOPE_EXCLUDED:
            return following
        if part in _PACKAGE_MARKERS:
            return following

    if len(parts) >= 2:
        parent = parts[-2]
        if parent not in ("src", "lib", "."):
            return parent
    return None


def infer_scope(changes: StagedChanges) -> Optional[str]:
    """Shared scope of all source files, or None if they disagree."""
    scopes = [
        scope_from_path(f.path)
        for f in changes.files
        if f.category is FileCategory.SOURCE
    ]
    scopes = [s for s in scopes if s and len(s) <= _MAX_SCOPE_LEN]
    if not scopes:
        return None
    first = scopes[0]
    if all(s == first for s in scopes):
        return first.lower()
    return None


# ---------------------------------------------------------------------------
# ContextBuilder
# ---------------------------------------------------------------------------

class ContextBuilder:
    """
    Builds a :class:`PromptContext` that fits in ``max_context_chars``.

    Parameters
    ----------
    max_context_chars:
        Hard cap on ``len(context.to_prompt())``.
    symbol_share:
        Fraction of the budget left after the mandatory sections that the
        symbol lists may use.  The diff gets the rest plus anything the
        symbols leave unused.
    max_diff_lines:
        Diff line budget shared across files before category weighting.
    max_file_lines:
        Upper bound on diff lines shown for any single file.
    """

    def __init__(
        self,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
        symbol_share: float = DEFAULT_SYMBOL_SHARE,
        max_diff_lines: int = 500,
        max_file_lines: int = 100,
    ) -> None:
        if max_context_chars < MIN_CONTEXT_CHARS:
            raise ValueError(
                f"max_context_chars must be at least {MIN_CONTEXT_CHARS}, "
                f"got {max_context_chars}"
            )
        if not 0.0 <= symbol_share <= 1.0:
            raise ValueError(f"symbol_share must be within [0, 1], got {symbol_share}")
        self.max_context_chars = max_context_chars
        self.symbol_share = symbol_share
        self.max_diff_lines = max_diff_lines
        self.max_file_lines = max_file_lines

    @classmethod
    def from_config(cls, config) -> "ContextBuilder":
        return cls(
            max_context_chars=config.MAX_CONTEXT_CHARS,
            symbol_share=config.SYMBOL_SHARE,
            max_diff_lines=config.MAX_DIFF_LINES,
            max_file_lines=config.MAX_FILE_LINES,
        )

    def build(self, changes: StagedChanges, symbols: list[CodeSymbol]) -> PromptContext:
        budget = self.max_context_chars

        context = PromptContext(
            change_summary=self.summarize_changes(changes),
            file_breakdown="",
            symbols_added="",
            symbols_removed="",
            suggested_type=infer_commit_type(changes, symbols),
            suggested_scope=infer_scope(changes),
            truncated_diff="",
        )

        # 1. Summary is fixed; the file list is capped
        skeleton = context.serialized_size()
        file_lines = self.format_files(changes)
        context.file_breakdown = "\n".join(_fit_lines(
            file_lines,
            int(max(budget - skeleton, 0) * _FILE_LIST_SHARE),
            1,
            lambda n: f"... and {n} more files",
        ))
        used = context.serialized_size()
        remaining = max(budget - used, 0)

        # 2. Symbols, each side gets half of the symbol share
        symbol_budget = int(remaining * self.symbol_share)
        overhead = len(SYMBOLS_HEADER) + len(SYMBOLS_TRAILER)
        half = max(symbol_budget - overhead, 0) // 2
        context.symbols_added = self.format_symbols(
            symbols, True, half - len(ADDED_HEADER))
        context.symbols_removed = self.format_symbols(
            symbols, False, half - len(REMOVED_HEADER))

        # 3. Diff takes whatever is left
        diff_budget = max(budget - context.serialized_size(), 0)
        context.truncated_diff = self.truncate_diff(changes, diff_budget)

        self._enforce_budget(context)
        logger.debug(
            "[Context] prompt %d/%d chars (symbols +%d -%d, diff %d)",
            context.serialized_size(), budget,
            len(context.symbols_added), len(context.symbols_removed),
            len(context.truncated_diff),
        )
        return context

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    @staticmethod
    def summarize_changes(changes: StagedChanges) -> str:
        counts = {status: 0 for status in ChangeStatus}
        for f in changes.files:
            counts[f.status] += 1
        summary = (
            f"{len(changes.files)} files ("
            f"{counts[ChangeStatus.ADDED]} added, "
            f"{counts[ChangeStatus.MODIFIED]} modified, "
            f"{counts[ChangeStatus.DELETED]} deleted"
        )
        if counts[ChangeStatus.RENAMED]:
            summary += f", {counts[ChangeStatus.RENAMED]} renamed"
        return f"{summary}) | +{changes.stats.insertions} -{changes.stats.deletions}"

    @staticmethod
    def format_files(changes: StagedChanges) -> list[str]:
        lines: list[str] = []
        for f in changes.files_by_priority():
            glyph = _STATUS_GLYPHS[f.status]
            path = f"{f.old_path} -> {f.path}" if f.old_path else f.path
            if f.is_binary:
                lines.append(f"{glyph} {path} (binary)")
            else:
                lines.append(f"{glyph} {path} (+{f.additions} -{f.deletions})")
        return lines

    @staticmethod
    def format_symbols(symbols: list[CodeSymbol], added: bool, char_budget: int) -> str:
        """Render one side's symbols, one per line, within *char_budget*."""
        lines = [s.render() for s in symbols if s.is_added == added]
        if not lines or char_budget <= 0:
            return ""
        kept = _fit_lines(
            lines,
            char_budget,
            len(SYMBOL_LINE_PREFIX),
            lambda n: f"... and {n} more symbols",
        )
        return "\n".join(kept)

    @staticmethod
    def should_skip_content(path: str) -> bool:
        return os.path.basename(path) in SKIP_CONTENT_FILES

    def file_line_budget(self, file_count: int, category: FileCategory) -> int:
        """Adaptive per-file line quota: fewer files, more lines each."""
        max_lines = self.max_diff_lines
        if file_count <= 1:
            base = max_lines
        elif file_count <= 3:
            base = max_lines // 2
        elif file_count <= 6:
            base = max_lines // file_count
        else:
            base = max(max_lines // file_count, 30)
        weight = _CATEGORY_WEIGHT.get(category, 1)
        return min(max(base * weight // 2, 20), self.max_file_lines)

    def truncate_diff(self, changes: StagedChanges, char_budget: int) -> str:
        """
        Render per-file diffs in priority order within *char_budget*.

        Files whose header plus a minimal quota don't fit are skipped and
        counted in a closing note.
        """
        files = [f for f in changes.files_by_priority() if not f.is_binary]
        if not files:
            return ""

        def skip_note(n: int) -> str:
            return f"\n... ({n} files not shown due to budget)\n"

        limit = char_budget - len(skip_note(len(files)))
        if limit <= 0:
            note = skip_note(len(files))
            return note if len(note) <= char_budget else ""

        content_files = sum(1 for f in files if not self.should_skip_content(f.path))
        parts: list[str] = []
        used = 0
        skipped = 0

        for f in files:
            label = f"{f.old_path} -> {f.path}" if f.old_path else f.path
            header = f"\n--- {label} ---\n"
            if used + len(header) + _MIN_FILE_QUOTA > limit:
                skipped += 1
                continue
            parts.append(header)
            used += len(header)

            if self.should_skip_content(f.path):
                text = "(lock file - content skipped)\n"
                parts.append(text)
                used += len(text)
                continue

            lines = f.diff.splitlines()
            take = min(len(lines), self.file_line_budget(content_files, f.category))
            reserve = len(f"... ({len(lines)} lines truncated)\n")
            shown = 0
            for line in lines[:take]:
                if used + len(line) + 1 + reserve > limit:
                    break
                parts.append(line + "\n")
                used += len(line) + 1
                shown += 1
            if shown < len(lines):
                text = f"... ({len(lines) - shown} lines truncated)\n"
                parts.append(text)
                used += len(text)

        if skipped:
            parts.append(skip_note(skipped))
            logger.debug("[Context] %d files skipped for budget", skipped)
        return "".join(parts)

    def _enforce_budget(self, context: PromptContext) -> None:
        """Trim whole trailing diff lines if the prompt is still over budget."""
        excess = context.serialized_size() - self.max_context_chars
        if excess <= 0:
            return
        logger.warning("[Context] prompt over budget by %d chars, trimming", excess)
        note = "... (diff truncated)\n"
        lines = context.truncated_diff.splitlines(keepends=True)
        removed = 0
        while lines and removed < excess + len(note):
            removed += len(lines.pop())
        context.truncated_diff = "".join(lines)
        if context.serialized_size() + len(note) <= self.max_context_chars:
            context.truncated_diff += note

        # Only an oversized summary can get here; drop optional sections
        if context.serialized_size() > self.max_context_chars:
            context.symbols_removed = ""
        if context.serialized_size() > self.max_context_chars:
            context.symbols_added = ""
        if context.serialized_size() > self.max_context_chars:
            context.file_breakdown = ""
