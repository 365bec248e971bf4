"""
Prompt context — the budgeted sections of a commit-message prompt and the
template that joins them into one string.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from ..commit_types import CommitType

_TEMPLATE = """\
Analyze this git diff and write a commit message for it.

SUMMARY: {summary}
FILES:
{files}
SUGGESTED TYPE: {commit_type}{scope_line}
{symbols}
DIFF:
{diff}

Describe what actually changed in the diff. The subject must be specific,
e.g. "add retry limit to upload client", not "update code".

Reply with JSON only:
{{"type": "{commit_type}", "scope": {scope_json}, "subject": "<what changed>", "body": null}}"""

# Fixed pieces of the symbols section, used by the builder for budgeting
SYMBOLS_HEADER = "\nSYMBOLS CHANGED:"
SYMBOLS_TRAILER = "\n"
ADDED_HEADER = "\n  Added:"
REMOVED_HEADER = "\n  Removed:"
SYMBOL_LINE_PREFIX = "\n    "


@dataclass
class PromptContext:
    """Independently budgeted prompt sections plus the inferred hints."""
    change_summary: str
    file_breakdown: str
    symbols_added: str
    symbols_removed: str
    suggested_type: CommitType
    suggested_scope: Optional[str]
    truncated_diff: str

    def to_prompt(self) -> str:
        scope_line = f"\nSCOPE: {self.suggested_scope}" if self.suggested_scope else ""
        scope_json = json.dumps(self.suggested_scope) if self.suggested_scope else "null"
        return _TEMPLATE.format(
            summary=self.change_summary,
            files=self.file_breakdown.strip("\n"),
            commit_type=self.suggested_type.value,
            scope_line=scope_line,
            symbols=self._symbols_section(),
            diff=self.truncated_diff,
            scope_json=scope_json,
        )

    def serialized_size(self) -> int:
        return len(self.to_prompt())

    def _symbols_section(self) -> str:
        if not self.symbols_added and not self.symbols_removed:
            return ""
        section = SYMBOLS_HEADER
        if self.symbols_added:
            section += ADDED_HEADER + SYMBOL_LINE_PREFIX + self.symbols_added.replace(
                "\n", SYMBOL_LINE_PREFIX)
        if self.symbols_removed:
            section += REMOVED_HEADER + SYMBOL_LINE_PREFIX + self.symbols_removed.replace(
                "\n", SYMBOL_LINE_PREFIX)
        return section + SYMBOLS_TRAILER
