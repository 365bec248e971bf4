"""Conventional-commit types — the closed set every message must use."""

from enum import Enum


class CommitType(str, Enum):
    FEAT = "feat"
    FIX = "fix"
    REFACTOR = "refactor"
    CHORE = "chore"
    DOCS = "docs"
    TEST = "test"
    STYLE = "style"
    PERF = "perf"
    BUILD = "build"
    CI = "ci"
    REVERT = "revert"

    def __str__(self) -> str:
        return self.value


VALID_TYPES: tuple[str, ...] = tuple(t.value for t in CommitType)
