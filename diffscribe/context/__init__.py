"""Prompt context assembly under a character budget."""

from .prompt import PromptContext
from .builder import ContextBuilder, infer_commit_type, infer_scope

__all__ = ["PromptContext", "ContextBuilder", "infer_commit_type", "infer_scope"]
