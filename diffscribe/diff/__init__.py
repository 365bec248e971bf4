"""Unified-diff helpers."""

from .hunks import DiffHunk, parse_hunks, parse_hunk_header, hunk_context

__all__ = ["DiffHunk", "parse_hunks", "parse_hunk_header", "hunk_context"]
