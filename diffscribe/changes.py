"""
Staged change records — one ``FileChange`` per path in the index, plus
aggregate stats for the whole commit.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ChangeStatus(str, Enum):
    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"
    RENAMED = "Renamed"


# Manifests and lockfiles that mark a change as configuration
_CONFIG_NAMES = frozenset({
    "Cargo.toml", "Cargo.lock", "package.json", "package-lock.json",
    "tsconfig.json", "pyproject.toml", "setup.cfg", "requirements.txt",
    ".gitignore", ".env.example", "go.mod", "go.sum", "bun.lockb",
    "yarn.lock", "pnpm-lock.yaml", "poetry.lock", "Gemfile", "Gemfile.lock",
    "composer.json", "composer.lock",
})

_CONFIG_EXTENSIONS = frozenset({"toml", "yaml", "yml", "ini", "cfg"})

_BUILD_NAMES = frozenset({
    "Dockerfile", "docker-compose.yml", "Makefile", "justfile", ".dockerignore",
})

_SOURCE_EXTENSIONS = frozenset({
    "rs", "ts", "tsx", "js", "jsx", "mjs", "cjs", "py", "go", "java", "kt",
    "c", "h", "cpp", "cc", "cxx", "hpp", "hxx", "rb", "php", "cs", "swift",
    "scala",
})


class FileCategory(str, Enum):
    SOURCE = "Source"
    TEST = "Test"
    CONFIG = "Config"
    DOCS = "Docs"
    BUILD = "Build"
    OTHER = "Other"

    @classmethod
    def from_path(cls, path: str) -> "FileCategory":
        """Classify *path* by name, extension and location in the tree."""
        path = path.replace("\\", "/")
        name = os.path.basename(path)
        ext = os.path.splitext(name)[1].lstrip(".").lower()

        if (
            "_test." in name
            or ".test." in name
            or "_spec." in name
            or (name.startswith("test_") and ext in _SOURCE_EXTENSIONS)
            or path.startswith("tests/")
            or "/tests/" in path
            or "/test/" in path
        ):
            return cls.TEST

        if path.startswith("docs/") or "/docs/" in path or ext in ("md", "rst", "txt"):
            # requirements.txt is a manifest, not prose
            if name not in _CONFIG_NAMES:
                return cls.DOCS

        if (
            path.startswith(".github/")
            or "/.github/" in path
            or name in _BUILD_NAMES
            or ext == "dockerfile"
        ):
            return cls.BUILD

        if name in _CONFIG_NAMES or ext in _CONFIG_EXTENSIONS:
            return cls.CONFIG

        if ext in _SOURCE_EXTENSIONS:
            return cls.SOURCE
        return cls.OTHER

    @property
    def priority(self) -> int:
        return _CATEGORY_PRIORITY[self]


_CATEGORY_PRIORITY = {
    FileCategory.SOURCE: 0,
    FileCategory.TEST: 1,
    FileCategory.CONFIG: 2,
    FileCategory.DOCS: 3,
    FileCategory.BUILD: 4,
    FileCategory.OTHER: 5,
}


@dataclass
class FileChange:
    """One staged file: its status, unified diff text and line counts."""
    path: str
    status: ChangeStatus
    diff: str = ""
    additions: int = 0
    deletions: int = 0
    is_binary: bool = False
    old_path: Optional[str] = None   # set only for renames
    category: Optional[FileCategory] = None

    def __post_init__(self) -> None:
        if self.category is None:
            self.category = FileCategory.from_path(self.path)


@dataclass
class DiffStats:
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0


@dataclass
class StagedChanges:
    """Every file in the commit plus aggregate counts."""
    files: list[FileChange] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)

    @classmethod
    def from_files(cls, files: list[FileChange]) -> "StagedChanges":
        stats = DiffStats(
            files_changed=len(files),
            insertions=sum(f.additions for f in files),
            deletions=sum(f.deletions for f in files),
        )
        return cls(files=list(files), stats=stats)

    def is_empty(self) -> bool:
        return not self.files

    def files_by_priority(self) -> list[FileChange]:
        """Files sorted by category priority, source first (stable)."""
        return sorted(self.files, key=lambda f: f.category.priority)


def count_changes(diff: str) -> tuple[int, int]:
    """Count added and removed lines in a unified diff, ignoring file headers."""
    additions = deletions = 0
    for line in diff.splitlines():
        if line.startswith("+++") or line.startswith("---"):
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return additions, deletions
