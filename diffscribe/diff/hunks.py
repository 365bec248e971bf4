"""
Hunk parser — reads unified-diff hunk headers into line-range records.

Only the ``@@ -a,b +c,d @@`` header lines are examined; everything else in
the diff text is ignored.  Malformed headers are skipped, never raised.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# Whitespace-tolerant header; counts are optional and default to 1
_HUNK_HEADER = re.compile(
    r"^@@\s*-(\d+)(?:\s*,\s*(\d+))?\s+\+(\d+)(?:\s*,\s*(\d+))?\s*@@(.*)$"
)


@dataclass(frozen=True)
class DiffHunk:
    """Line ranges of one hunk, 1-based, on both sides of the diff."""
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    context: str = ""    # text after the closing ``@@``
    # Set when the header gave a count of 0: that side has no lines
    old_empty: bool = False
    new_empty: bool = False

    def intersects_new(self, line_start: int, line_end: int) -> bool:
        """True if ``[line_start, line_end)`` overlaps the staged-side range."""
        if self.new_empty:
            return False
        hunk_end = self.new_start + self.new_count
        return line_start < hunk_end and line_end > self.new_start

    def intersects_old(self, line_start: int, line_end: int) -> bool:
        """True if ``[line_start, line_end)`` overlaps the HEAD-side range."""
        if self.old_empty:
            return False
        hunk_end = self.old_start + self.old_count
        return line_start < hunk_end and line_end > self.old_start


def _count(raw: Optional[str]) -> int:
    if raw is None:
        return 1
    # Zero is recorded separately as an empty side
    return max(int(raw), 1)


def parse_hunk_header(line: str) -> Optional[DiffHunk]:
    """Parse a single header line, or return None if it isn't one."""
    m = _HUNK_HEADER.match(line.strip())
    if not m:
        return None
    old_start, old_count, new_start, new_count, trailing = m.groups()
    return DiffHunk(
        old_start=int(old_start),
        old_count=_count(old_count),
        new_start=int(new_start),
        new_count=_count(new_count),
        context=hunk_context(trailing),
        old_empty=old_count is not None and int(old_count) == 0,
        new_empty=new_count is not None and int(new_count) == 0,
    )


def hunk_context(trailing: str) -> str:
    """Return the function/class context git prints after the final ``@@``."""
    if "@@" in trailing:
        trailing = trailing.rsplit("@@", 1)[1]
    return trailing.strip()


def parse_hunks(diff: str) -> list[DiffHunk]:
    """Return every hunk header in *diff*, in order of appearance."""
    if not diff:
        return []
    hunks: list[DiffHunk] = []
    for line in diff.splitlines():
        if not line.startswith("@@"):
            continue
        hunk = parse_hunk_header(line)
        if hunk is not None:
            hunks.append(hunk)
    return hunks
