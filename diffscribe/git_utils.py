"""
Git integration — reads the staged change set and file contents on either
side of it.
"""

import os
import subprocess

from .changes import ChangeStatus, FileChange, StagedChanges, count_changes
from .log_setup import log


class GitError(RuntimeError):
    """A git command failed."""


_BINARY_EXTENSIONS = frozenset({
    "png", "jpg", "jpeg", "gif", "ico", "webp", "woff", "woff2", "ttf", "otf",
    "zip", "tar", "gz", "7z", "pdf", "exe", "dll", "so", "dylib", "mp3", "mp4",
    "wav",
})

_STATUS_CODES = {
    "A": ChangeStatus.ADDED,
    "C": ChangeStatus.ADDED,
    "M": ChangeStatus.MODIFIED,
    "T": ChangeStatus.MODIFIED,
    "D": ChangeStatus.DELETED,
    "R": ChangeStatus.RENAMED,
}


def _run_git(*args: str, cwd: str | None = None) -> tuple[bool, str]:
    """Run a git command and return ``(success, output)``.

    *output* is stdout on success and stderr on failure.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as e:
        return False, str(e)
    if result.returncode != 0:
        return False, result.stderr.strip()
    return True, result.stdout


def is_git_repo(cwd: str | None = None) -> bool:
    """Return ``True`` if *cwd* is inside a git work tree."""
    ok, _ = _run_git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    return ok


def is_binary_path(path: str) -> bool:
    ext = os.path.splitext(path)[1].lstrip(".").lower()
    return ext in _BINARY_EXTENSIONS


def _header_path(line: str) -> str | None:
    """New-side path from a ``diff --git a/X b/Y`` line."""
    rest = line[len("diff --git "):]
    idx = rest.rfind(" b/")
    if idx < 0:
        return None
    return rest[idx + 3:]


def split_unified_diff(diff: str) -> dict[str, str]:
    """Split a multi-file unified diff into ``{path: per-file diff}``.

    Deleted files are keyed by their old path, renames by their new path.
    """
    result: dict[str, str] = {}
    current_path: str | None = None
    current_lines: list[str] = []

    def flush():
        if current_path is not None and current_lines:
            result[current_path] = "\n".join(current_lines)

    for line in diff.splitlines():
        if line.startswith("diff --git "):
            flush()
            current_lines = []
            current_path = _header_path(line)
        elif line.startswith("rename to "):
            current_path = line[len("rename to "):]
        elif line.startswith("+++ b/"):
            current_path = line[len("+++ b/"):]
        elif line == "+++ /dev/null":
            old = next(
                (l for l in reversed(current_lines) if l.startswith("--- a/")), None
            )
            if old is not None:
                current_path = old[len("--- a/"):]
        current_lines.append(line)

    flush()
    return result


def parse_name_status(output: str) -> list[tuple[ChangeStatus, str, str | None]]:
    """Parse ``git diff --name-status`` into ``(status, path, old_path)``."""
    entries = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        code = parts[0][:1]
        status = _STATUS_CODES.get(code)
        if status is None or len(parts) < 2:
            log.debug(f"[Git] Skipping status line: {line!r}")
            continue
        if code in ("R", "C") and len(parts) >= 3:
            old_path, path = parts[1], parts[2]
            entries.append((status, path, old_path if code == "R" else None))
        else:
            entries.append((status, parts[1], None))
    return entries


class GitChangeProvider:
    """Source-change provider backed by the git CLI."""

    def __init__(self, cwd: str | None = None):
        self.cwd = cwd

    def staged_changes(self) -> StagedChanges:
        """Return every staged file with its diff and line counts.

        Raises :class:`GitError` if git cannot report the index.
        """
        ok, status_output = _run_git(
            "diff", "--cached", "--name-status", "-M", cwd=self.cwd)
        if not ok:
            raise GitError(f"git diff --name-status failed: {status_output}")
        ok, diff_output = _run_git(
            "diff", "--cached", "--no-ext-diff", "--no-color", "--unified=3", "-M",
            cwd=self.cwd)
        if not ok:
            raise GitError(f"git diff failed: {diff_output}")

        file_diffs = split_unified_diff(diff_output)
        files: list[FileChange] = []
        for status, path, old_path in parse_name_status(status_output):
            diff = file_diffs.get(path, "")
            is_binary = is_binary_path(path) or any(
                line.startswith("Binary files ") for line in diff.splitlines()
            )
            additions, deletions = (0, 0) if is_binary else count_changes(diff)
            files.append(FileChange(
                path=path,
                status=status,
                diff="" if is_binary else diff,
                additions=additions,
                deletions=deletions,
                is_binary=is_binary,
                old_path=old_path,
            ))

        log.debug(f"[Git] {len(files)} staged file(s)")
        return StagedChanges.from_files(files)

    def staged_content(self, path: str) -> str | None:
        """Content of *path* in the index, or ``None`` if absent."""
        ok, output = _run_git("show", f":0:{path}", cwd=self.cwd)
        return output if ok else None

    def head_content(self, path: str) -> str | None:
        """Content of *path* at HEAD, or ``None`` if absent."""
        ok, output = _run_git("show", f"HEAD:{path}", cwd=self.cwd)
        return output if ok else None
