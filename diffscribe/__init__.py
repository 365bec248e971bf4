"""
diffscribe — conventional-commit messages from staged changes.

Public API for library usage::

    import asyncio
    from diffscribe import CommitPipeline, Config, GitChangeProvider, OllamaClient

    cfg = Config.load()
    provider = GitChangeProvider()
    client = OllamaClient(cfg.OLLAMA_BASE_URL, cfg.MODEL)
    pipeline = CommitPipeline(cfg, client, provider)
    message = asyncio.run(pipeline.generate(provider.staged_changes()))
"""

from .changes import ChangeStatus, FileCategory, FileChange, StagedChanges
from .config import Config
from .git_utils import GitChangeProvider
from .llm import CancelToken, GenerationCancelled, LLMError, OllamaClient, TransportError
from .pipeline import CommitPipeline, PipelineError
from .sanitizer import CommitFormat, CommitValidationError, sanitize

__all__ = [
    "ChangeStatus", "FileCategory", "FileChange", "StagedChanges",
    "Config", "GitChangeProvider",
    "CancelToken", "GenerationCancelled", "LLMError", "OllamaClient", "TransportError",
    "CommitPipeline", "PipelineError",
    "CommitFormat", "CommitValidationError", "sanitize",
]
