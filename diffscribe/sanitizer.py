"""
Message sanitizer — turns raw model output into one conventional-commit
message, or a typed validation error.

Two paths are tried in order:

1. **Structured**: the text is a JSON object (bare, or inside a fenced
   code block) with ``type``, ``scope``, ``subject`` and ``body`` fields.
2. **Plain text**: reasoning blocks, code fences, quotes and chatty
   preambles are stripped, then the first line must start with
   ``<type>:`` or ``<type>(``.

The first line is capped at 72 display characters.  Truncation counts
grapheme clusters, so a base character is never separated from its
combining marks and multi-byte characters are never split.
"""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from .commit_types import VALID_TYPES

logger = logging.getLogger(__name__)

MAX_SUBJECT_WIDTH = 72
ELLIPSIS = "..."

SCOPE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-_/.]*$")

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\n?(.*?)```", re.DOTALL)
_JSON_FENCE = re.compile(r"```json\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[\w+-]*\s*\n?(.*?)```", re.DOTALL)
# ``type(scope)!:`` at the start of a plain-text first line
_SCOPED_HEADER = re.compile(r"^([a-z]+)\(([^)]*)\)(!?):")

PREAMBLE_PATTERNS = (
    "here's the commit message",
    "here is the commit message",
    "commit message:",
    "suggested commit:",
)
_PREAMBLES = tuple(re.compile(re.escape(p), re.IGNORECASE) for p in PREAMBLE_PATTERNS)

REPAIR_INSTRUCTION = (
    "\n\nYour previous reply could not be used: {reason}\n"
    "Reply again with ONLY a JSON object of the form "
    '{{"type": "<type>", "scope": "<scope or null>", "subject": "<subject>", '
    '"body": "<body or null>"}} where type is one of: '
    + ", ".join(VALID_TYPES) + "."
)

_ZWJ = "\u200d"


class CommitValidationError(ValueError):
    """The model output cannot be turned into a conventional commit."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class CommitFormat:
    include_body: bool = True
    include_scope: bool = True
    lowercase_subject: bool = True


@dataclass(frozen=True)
class StructuredCommit:
    type: str
    subject: str
    scope: Optional[str] = None
    body: Optional[str] = None

    @classmethod
    def from_dict(cls, data) -> Optional["StructuredCommit"]:
        """Build from decoded JSON, or None if the shape is wrong."""
        if not isinstance(data, dict):
            return None
        commit_type = data.get("type")
        subject = data.get("subject")
        scope = data.get("scope")
        body = data.get("body")
        if not isinstance(commit_type, str) or not isinstance(subject, str):
            return None
        if scope is not None and not isinstance(scope, str):
            return None
        if body is not None and not isinstance(body, str):
            return None
        return cls(type=commit_type, subject=subject, scope=scope, body=body)


@dataclass(frozen=True)
class SanitizeResult:
    """Exactly one of ``message`` and ``error`` is set."""
    message: Optional[str] = None
    error: Optional[CommitValidationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        if self.error is not None:
            raise self.error
        return self.message


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def sanitize(raw: str, fmt: Optional[CommitFormat] = None) -> SanitizeResult:
    """Validate *raw* model output and compose the final commit message."""
    fmt = fmt or CommitFormat()
    try:
        structured = parse_structured(raw)
        if structured is not None:
            message = format_structured(structured, fmt)
        else:
            message = clean_text(raw, fmt)
            validate_conventional(message)
    except CommitValidationError as exc:
        logger.warning("[Sanitize] rejected model output: %s", exc.reason)
        return SanitizeResult(error=exc)
    return SanitizeResult(message=message)


def parse_structured(raw: str) -> Optional[StructuredCommit]:
    """Extract a structured commit from bare or fenced JSON, if present."""
    text = raw.strip()
    if text.startswith("{"):
        return _loads_commit(text)

    match = _JSON_FENCE.search(text)
    if match:
        return _loads_commit(match.group(1).strip())

    match = _ANY_FENCE.search(text)
    if match:
        content = match.group(1).strip()
        if content.startswith("{"):
            return _loads_commit(content)
    return None


def format_structured(commit: StructuredCommit, fmt: CommitFormat) -> str:
    commit_type = commit.type.strip().lower()
    if commit_type not in VALID_TYPES:
        raise CommitValidationError(
            f"Invalid commit type: '{commit.type}'. "
            f"Must be one of: {', '.join(VALID_TYPES)}"
        )

    scope = None
    if fmt.include_scope and commit.scope is not None:
        scope = normalize_scope(commit.scope)
        if scope and not SCOPE_PATTERN.match(scope):
            raise CommitValidationError(f"Invalid scope: '{commit.scope}'")

    subject = " ".join(commit.subject.split()).rstrip(".").strip()
    if not subject:
        raise CommitValidationError("Subject is empty")
    if fmt.lowercase_subject:
        subject = _lower_first(subject)

    first_line = f"{commit_type}({scope}): {subject}" if scope else f"{commit_type}: {subject}"
    first_line = truncate_display(first_line)

    if fmt.include_body and commit.body and commit.body.strip():
        return f"{first_line}\n\n{commit.body.strip()}"
    return first_line


def normalize_scope(scope: str) -> str:
    """Lowercase, turn spaces into hyphens and collapse doubled hyphens."""
    normalized = scope.strip().lower().replace(" ", "-")
    while "--" in normalized:
        normalized = normalized.replace("--", "-")
    return normalized


def clean_text(raw: str, fmt: CommitFormat) -> str:
    """Strip wrappers from free-form output, leaving the message itself."""
    cleaned = _THINK_BLOCK.sub("", raw)
    cleaned = _FENCED_BLOCK.sub(lambda m: m.group(1), cleaned)
    cleaned = cleaned.replace("```", "").strip()

    for pattern in _PREAMBLES:
        match = pattern.search(cleaned)
        if match:
            cleaned = cleaned[match.end():].lstrip(":").strip()

    for quote in ('"', "'", "`"):
        if len(cleaned) >= 2 and cleaned.startswith(quote) and cleaned.endswith(quote):
            cleaned = cleaned[1:-1].strip()

    first_line, sep, rest = cleaned.partition("\n")
    first_line = first_line.rstrip()
    scoped = _SCOPED_HEADER.match(first_line)
    if scoped:
        commit_type, scope, bang = scoped.groups()
        first_line = (
            f"{commit_type}({normalize_scope(scope)}){bang}:" + first_line[scoped.end():]
        )
    if fmt.lowercase_subject:
        prefix, colon, subject = first_line.partition(": ")
        if colon:
            first_line = prefix + colon + _lower_first(subject)
    first_line = truncate_display(first_line)
    return first_line + sep + rest


def validate_conventional(message: str) -> None:
    """Raise unless the first line is ``type: subject`` or ``type(scope): subject``."""
    first_line = message.split("\n", 1)[0]
    if not first_line.strip():
        raise CommitValidationError("Message is empty")

    matched = next(
        (t for t in VALID_TYPES
         if first_line.startswith(f"{t}:") or first_line.startswith(f"{t}(")),
        None,
    )
    if matched is None:
        raise CommitValidationError(
            f"Message doesn't start with a valid type. Got: '{first_line[:20]}'"
        )
    if first_line.startswith(f"{matched}("):
        close = first_line.find(")")
        if close < 0:
            raise CommitValidationError(f"Unclosed scope in '{first_line[:30]}'")
        scope = first_line[len(matched) + 1:close]
        if not SCOPE_PATTERN.match(scope):
            raise CommitValidationError(f"Invalid scope: '{scope}'")
    _, colon, subject = first_line.partition(":")
    if not colon or not subject.strip():
        raise CommitValidationError("Subject is empty")


# ---------------------------------------------------------------------------
# Grapheme-aware truncation
# ---------------------------------------------------------------------------

def _is_extender(ch: str) -> bool:
    """True if *ch* attaches to the preceding character."""
    if unicodedata.combining(ch):
        return True
    if unicodedata.category(ch) in ("Mn", "Me", "Mc"):
        return True
    code = ord(ch)
    # Variation selectors and emoji skin-tone modifiers
    return 0xFE00 <= code <= 0xFE0F or 0x1F3FB <= code <= 0x1F3FF or 0xE0100 <= code <= 0xE01EF


def graphemes(text: str) -> list[str]:
    """Split *text* into approximate grapheme clusters."""
    clusters: list[str] = []
    joined = False
    for ch in text:
        if clusters and (joined or _is_extender(ch) or ch == _ZWJ):
            clusters[-1] += ch
        else:
            clusters.append(ch)
        joined = ch == _ZWJ
    return clusters


def truncate_display(line: str, limit: int = MAX_SUBJECT_WIDTH) -> str:
    """Cap *line* at *limit* grapheme clusters, ending in ``...`` when cut."""
    clusters = graphemes(line)
    if len(clusters) <= limit:
        return line
    keep = max(limit - len(ELLIPSIS), 0)
    return "".join(clusters[:keep]) + ELLIPSIS


def _lower_first(text: str) -> str:
    # Leave acronyms such as "JWT" alone
    if len(text) > 1 and text[1].isupper():
        return text
    return text[:1].lower() + text[1:]


def _loads_commit(text: str) -> Optional[StructuredCommit]:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return StructuredCommit.from_dict(data)
