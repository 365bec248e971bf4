import asyncio
import random
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Optional

from ..log_setup import log


class LLMError(Exception):
    """Raised when generation fails."""


class TransportError(LLMError):
    """The byte stream failed: HTTP error, broken connection, or buffer overflow."""


class GenerationCancelled(LLMError):
    """Generation was aborted through the cancel token. Not a failure."""


class LLMClient(ABC):

    def __init__(self, max_retries: int = 3, retry_delay: float = 2.0,
                 stream: bool = True, max_buffer: int = 1024 * 1024,
                 token_queue_size: int = 64):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.stream = stream
        self.max_buffer = max_buffer
        self.token_queue_size = token_queue_size

    # ── Public entry points ──

    async def generate(self, prompt: str, cancel=None,
                       on_token: Optional[Callable[[str], None]] = None) -> str:
        """Generate a response, streaming tokens to *on_token* as they arrive.

        Raises :class:`GenerationCancelled` if *cancel* fires and
        :class:`TransportError` if the stream breaks after tokens have been
        shown.  A stream that fails before producing anything falls back to
        non-streaming generation with retries.
        """
        from .stream_decoder import CancelToken, StreamDecoder

        cancel = cancel or CancelToken()
        if cancel.is_cancelled:
            raise GenerationCancelled("cancelled before generation started")

        if not self.stream:
            return await self._generate_in_thread(prompt, cancel)

        decoder = StreamDecoder(max_buffer=self.max_buffer)
        events: asyncio.Queue = asyncio.Queue(maxsize=self.token_queue_size)
        seen = {"tokens": 0}
        consumer = asyncio.ensure_future(self._consume(events, on_token, seen))
        result = None
        try:
            result = await decoder.decode(self.stream_bytes(prompt, cancel), cancel, events)
        except TransportError as e:
            if seen["tokens"] or not events.empty():
                raise
            log.warning(f"[LLM] Streaming failed ({e}), falling back to non-streaming")
        finally:
            # The consumer only sees a sentinel after a normal finish
            if result is None or result.cancelled:
                consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)

        if result is None:
            return await self._generate_in_thread(prompt, cancel)
        if result.cancelled:
            raise GenerationCancelled("generation cancelled")
        self._record_usage(prompt, result)
        log.debug(f"[LLM] Streamed {result.records} records ({result.outcome.value})")
        log.debug(f"[LLM] Response:\n{result.text}")
        return result.text

    def generate_response(self, prompt: str) -> str:
        """Generate a response with automatic retry and exponential backoff.

        Raises :class:`LLMError` after all retries are exhausted.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                result = self._generate(prompt)

                if not result or not result.strip():
                    log.warning(
                        f"[LLM] Empty response on attempt {attempt}/{self.max_retries}")
                    if attempt < self.max_retries:
                        time.sleep(self._backoff(attempt))
                        continue
                    raise LLMError("LLM returned empty response after all retries")

                return result

            except LLMError:
                raise
            except Exception as e:
                last_error = e
                log.warning(
                    f"[LLM] Error on attempt {attempt}/{self.max_retries}: {e}")

                if attempt < self.max_retries:
                    wait = self._backoff(attempt)
                    # Special handling for 429: wait longer
                    if "429" in str(e):
                        wait *= 2
                        log.info(f"[LLM] Rate limit detected (429). Backing off for {wait:.1f}s")
                    time.sleep(wait)

        raise TransportError(
            f"LLM failed after {self.max_retries} retries: {last_error}")

    # ── Helpers ──

    def _backoff(self, attempt: int) -> float:
        """Jittered exponential backoff."""
        wait = self.retry_delay * (2 ** (attempt - 1))
        return wait + wait * 0.1 * random.random()

    async def _generate_in_thread(self, prompt: str, cancel) -> str:
        # requests is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self.generate_response, prompt)
        if cancel.is_cancelled:
            raise GenerationCancelled("generation cancelled")
        return result.strip()

    @staticmethod
    async def _consume(events: asyncio.Queue, on_token, seen: dict) -> None:
        while True:
            event = await events.get()
            if event is None:
                return
            seen["tokens"] += 1
            if on_token is not None and event.content:
                on_token(event.content)

    def _record_usage(self, prompt: str, result) -> None:
        """Hook for providers that report token counts."""

    # ── Subclass hooks ──

    @abstractmethod
    def _generate(self, prompt: str) -> str:
        """Synchronous (non-streaming) generation."""

    @abstractmethod
    def stream_bytes(self, prompt: str, cancel) -> AsyncIterator[bytes]:
        """Return the raw NDJSON response body as an async chunk iterator."""
