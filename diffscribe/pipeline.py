"""
Pipeline execution — staged changes in, one validated commit message out.

Symbols are mapped on a thread pool so tree-sitter parsing never blocks the
event loop that is reading the model's stream.  A message that fails
validation gets exactly one repair round-trip before the run gives up.
"""

import asyncio
import functools
import logging
from typing import Callable, Optional

from .analysis import CodeSymbol, SymbolMapper
from .changes import StagedChanges
from .context import ContextBuilder, PromptContext
from .llm.base import GenerationCancelled, LLMClient
from .llm.stream_decoder import CancelToken
from .sanitizer import REPAIR_INSTRUCTION, sanitize

_logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """The run could not produce a commit message."""


class CommitPipeline:

    def __init__(self, config, client: LLMClient, provider,
                 mapper: Optional[SymbolMapper] = None,
                 builder: Optional[ContextBuilder] = None):
        self.config = config
        self.client = client
        self.provider = provider
        self.mapper = mapper or SymbolMapper()
        self.builder = builder or ContextBuilder.from_config(config)
        self.last_context: Optional[PromptContext] = None

    async def extract_symbols(self, changes: StagedChanges) -> list[CodeSymbol]:
        loop = asyncio.get_running_loop()
        work = functools.partial(
            self.mapper.extract_symbols_parallel,
            changes.files, self.provider, self.config.PARSER_WORKERS,
        )
        return await loop.run_in_executor(None, work)

    async def build_context(self, changes: StagedChanges) -> PromptContext:
        symbols = await self.extract_symbols(changes)
        context = self.builder.build(changes, symbols)
        self.last_context = context
        _logger.debug(
            "Context: %d symbols, %d chars",
            len(symbols), context.serialized_size(),
        )
        return context

    async def generate(self, changes: StagedChanges,
                       cancel: Optional[CancelToken] = None,
                       on_token: Optional[Callable[[str], None]] = None,
                       context: Optional[PromptContext] = None) -> str:
        """Run the whole flow once and return the final commit message.

        Raises :class:`GenerationCancelled` on cancellation,
        :class:`~diffscribe.llm.base.TransportError` if the model stream
        fails, and :class:`PipelineError` if no valid message could be
        produced.

        A *context* already built with :meth:`build_context` is reused.
        """
        cancel = cancel or CancelToken()
        if changes.is_empty():
            raise PipelineError("No staged changes")

        if context is None:
            context = await self.build_context(changes)
        if cancel.is_cancelled:
            raise GenerationCancelled("cancelled before generation started")
        prompt = context.to_prompt()

        raw = await self.client.generate(prompt, cancel, on_token)
        result = sanitize(raw, self.config.FORMAT)
        if result.ok:
            return result.message

        _logger.warning("Model output failed validation, retrying once: %s",
                        result.error.reason)
        repair_prompt = prompt + REPAIR_INSTRUCTION.format(reason=result.error.reason)
        raw = await self.client.generate(repair_prompt, cancel, on_token)
        result = sanitize(raw, self.config.FORMAT)
        if result.ok:
            return result.message

        raise PipelineError(
            f"Model did not produce a valid commit message: {result.error.reason}"
        ) from result.error
