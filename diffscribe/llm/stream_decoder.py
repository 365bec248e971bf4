"""
Stream decoder — rebuilds model output from a newline-delimited JSON byte
stream.

Chunks from the transport are not aligned to records: one record can span
several chunks and one chunk can hold several records.  A reader task keeps
appending chunks to a bounded buffer while the decode loop peels complete
lines off the front, so a slow token consumer never stalls the network read
(only the buffer cap does).

Each record looks like ``{"response": "<text>", "done": false}``.  Malformed
records are skipped.  Cancellation is cooperative: it is checked while
waiting for the next chunk and while handing each token to the consumer.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, Optional

from .base import TransportError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER = 1024 * 1024  # 1 MiB

_USAGE_KEYS = ("prompt_eval_count", "eval_count", "total_duration")


class CancelToken:
    """Shared, read-mostly cancellation flag observed at suspension points."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class DecodeOutcome(str, Enum):
    COMPLETED = "completed"        # a record with done=true arrived
    STREAM_ENDED = "stream_ended"  # upstream closed without done=true
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TokenEvent:
    """One decoded record."""
    content: str
    done: bool


@dataclass
class DecodeResult:
    text: str
    outcome: DecodeOutcome
    records: int = 0
    skipped: int = 0
    usage: dict = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.outcome is DecodeOutcome.CANCELLED


@dataclass
class _ReadState:
    buffer: bytearray = field(default_factory=bytearray)
    eof: bool = False
    error: Optional[Exception] = None
    wakeup: asyncio.Event = field(default_factory=asyncio.Event)


class StreamDecoder:
    """
    Decode an async iterable of byte chunks into token events and text.

    Parameters
    ----------
    max_buffer:
        Cap on buffered, not-yet-decoded bytes.  Exceeding it is treated as
        a transport failure.
    """

    def __init__(self, max_buffer: int = DEFAULT_MAX_BUFFER) -> None:
        self.max_buffer = max_buffer

    async def decode(
        self,
        chunks: AsyncIterable[bytes],
        cancel: Optional[CancelToken] = None,
        events: Optional[asyncio.Queue] = None,
    ) -> DecodeResult:
        """
        Consume *chunks* until a ``done`` record, end of stream, or *cancel*.

        Every decoded record is put on *events* (if given) in arrival order,
        followed by a ``None`` sentinel once decoding finishes normally.
        Raises :class:`TransportError` if the stream fails or overflows the
        buffer.  A cancelled decode returns an empty text.
        """
        cancel = cancel or CancelToken()
        state = _ReadState()
        reader = asyncio.ensure_future(self._read(chunks, state))
        try:
            result = await self._drain(state, cancel, events)
        finally:
            if not reader.done():
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)

        if result.skipped:
            logger.warning(
                "[Stream] skipped %d malformed record(s) out of %d",
                result.skipped, result.records + result.skipped,
            )
        if result.outcome is not DecodeOutcome.CANCELLED and events is not None:
            if not await _race(events.put(None), cancel):
                return DecodeResult("", DecodeOutcome.CANCELLED, result.records, result.skipped)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _read(self, chunks: AsyncIterable[bytes], state: _ReadState) -> None:
        """Pull chunks into the buffer until the stream ends or overflows."""
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                state.buffer.extend(chunk)
                if len(state.buffer) > self.max_buffer:
                    state.error = TransportError(
                        f"stream buffer exceeded {self.max_buffer} bytes "
                        "without a complete record"
                    )
                    return
                state.wakeup.set()
                # Let the decode loop run between chunks
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            state.error = exc
        except Exception as exc:
            state.error = TransportError(f"stream aborted: {exc}")
        finally:
            state.eof = True
            state.wakeup.set()

    async def _drain(
        self,
        state: _ReadState,
        cancel: CancelToken,
        events: Optional[asyncio.Queue],
    ) -> DecodeResult:
        parts: list[str] = []
        records = 0
        skipped = 0
        usage: dict = {}

        def cancelled() -> DecodeResult:
            logger.info("[Stream] cancelled after %d record(s)", records)
            return DecodeResult("", DecodeOutcome.CANCELLED, records, skipped)

        async def emit(event: TokenEvent) -> bool:
            if cancel.is_cancelled:
                return False
            parts.append(event.content)
            if events is not None:
                return await _race(events.put(event), cancel)
            return True

        while True:
            # Rescan after every await: the reader may have appended lines
            while True:
                newline = state.buffer.find(b"\n")
                if newline < 0:
                    break
                raw = bytes(state.buffer[:newline])
                del state.buffer[:newline + 1]

                parsed = parse_record(raw)
                if parsed is None:
                    if raw.strip():
                        skipped += 1
                        logger.debug("[Stream] skipping malformed record: %r", raw[:200])
                    continue
                event, extra = parsed
                records += 1
                usage.update(extra)
                if not await emit(event):
                    return cancelled()
                if event.done:
                    return DecodeResult(
                        "".join(parts).strip(), DecodeOutcome.COMPLETED,
                        records, skipped, usage,
                    )

            if state.error is not None:
                raise state.error

            if state.eof:
                if state.buffer.strip():
                    # Upstream closed; terminate the last record and parse it
                    state.buffer.extend(b"\n")
                    continue
                return DecodeResult(
                    "".join(parts).strip(), DecodeOutcome.STREAM_ENDED,
                    records, skipped, usage,
                )

            if cancel.is_cancelled:
                return cancelled()
            state.wakeup.clear()
            if not await _race(state.wakeup.wait(), cancel):
                return cancelled()


def parse_record(raw: bytes) -> Optional[tuple[TokenEvent, dict]]:
    """
    Parse one NDJSON line into a token event plus any usage counters.

    Returns None for blank or malformed lines.  A record carrying an
    ``error`` field is a provider-side failure and raises TransportError.
    """
    line = raw.strip()
    if not line:
        return None
    try:
        data = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    if "error" in data and "response" not in data:
        raise TransportError(f"provider error: {data['error']}")

    content = data.get("response")
    done = data.get("done", False)
    if not isinstance(content, str) or not isinstance(done, bool):
        return None
    usage = {k: data[k] for k in _USAGE_KEYS if isinstance(data.get(k), int)}
    return TokenEvent(content=content, done=done), usage


async def _race(awaitable, cancel: CancelToken) -> bool:
    """
    Await *awaitable* unless *cancel* fires first.

    Returns True if the awaitable finished, False if cancellation won (the
    awaitable is then cancelled, so a pending ``Queue.put`` never lands).
    """
    task = asyncio.ensure_future(awaitable)
    if cancel.is_cancelled:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _pending = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        waiter.cancel()
    if task in done:
        task.result()
        return True
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    return False
