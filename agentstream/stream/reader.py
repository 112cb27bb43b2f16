"""Byte chunks to complete text lines.

The transport hands us arbitrary slices of the body: a chunk may end in the
middle of a line, or in the middle of a multi-byte UTF-8 sequence. LineReader
keeps both kinds of leftovers and only ever yields whole lines.
"""

from __future__ import annotations

import asyncio
import codecs
from typing import AsyncIterator

from agentstream.core.errors import DecodeError, TransportError, TurnCancelled
from agentstream.observability.logging import get_logger

_log = get_logger(__name__)


class AbortSignal:
    """One-shot cancellation flag that a pending read can await."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class LineReader:
    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
        self._fragment = ""

    @property
    def pending(self) -> str:
        return self._fragment

    def feed(self, chunk: bytes) -> list[str]:
        """Decode one chunk and return the lines it completes."""

        try:
            text = self._decoder.decode(chunk)
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid byte sequence in stream: {e}") from e

        if not text:
            return []

        parts = (self._fragment + text).split("\n")
        self._fragment = parts.pop()
        return [p[:-1] if p.endswith("\r") else p for p in parts]

    def close(self) -> None:
        """End of stream: an unterminated trailing fragment is dropped."""

        if self._fragment:
            _log.debug("stream_trailing_fragment_dropped", fragment_len=len(self._fragment))
        self._fragment = ""
        self._decoder.reset()


async def _pull(chunks: AsyncIterator[bytes]) -> bytes | None:
    return await anext(chunks, None)


async def _next_chunk(
    chunks: AsyncIterator[bytes],
    *,
    abort: AbortSignal | None,
    idle_timeout_s: float | None,
) -> bytes | None:
    if abort is None and idle_timeout_s is None:
        return await _pull(chunks)

    read = asyncio.ensure_future(_pull(chunks))
    waiters: set[asyncio.Future[object]] = {read}
    aborted = None
    if abort is not None:
        aborted = asyncio.ensure_future(abort.wait())
        waiters.add(aborted)

    try:
        done, _ = await asyncio.wait(waiters, timeout=idle_timeout_s, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if aborted is not None:
            aborted.cancel()

    if read in done:
        return read.result()

    read.cancel()
    # Let the cancellation reach the chunk iterator before anyone closes it.
    await asyncio.wait({read})
    if abort is not None and abort.aborted:
        raise TurnCancelled("Stream read aborted")
    raise TransportError(f"No data received for {idle_timeout_s}s")


async def iter_lines(
    chunks: AsyncIterator[bytes],
    *,
    abort: AbortSignal | None = None,
    idle_timeout_s: float | None = None,
) -> AsyncIterator[str]:
    """Yield complete lines from an async byte-chunk iterator.

    Raises:
        DecodeError: the bytes are not valid text.
        TransportError: no chunk arrived within ``idle_timeout_s``.
        TurnCancelled: ``abort`` fired while waiting for a chunk.
    """

    reader = LineReader()
    while True:
        if abort is not None and abort.aborted:
            raise TurnCancelled("Stream read aborted")
        chunk = await _next_chunk(chunks, abort=abort, idle_timeout_s=idle_timeout_s)
        if chunk is None:
            reader.close()
            return
        for line in reader.feed(chunk):
            if abort is not None and abort.aborted:
                raise TurnCancelled("Stream read aborted")
            yield line
