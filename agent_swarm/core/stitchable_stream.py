"""
Stitchable stream: one long-lived async sequence fed by many sources.

Sources are drained one at a time, fully, in the order they were attached.
Items are pulled from a source only when a reader asks for the next item, so
a slow consumer slows the producer down. A failing source turns into a single
error item and the stream moves on to the next source.

fork() gives independent readers over the same output (tee). Every fork sees
every item produced after it was created exactly once; items are buffered
only until all live forks have read them.
"""

import asyncio
from collections import deque
from typing import (
    Any, AsyncIterable, AsyncIterator, Callable, Deque, Generic, List, Optional, TypeVar
)

import structlog

from agent_swarm.core.errors import StreamClosedError
from agent_swarm.models.schemas import StreamPartType

T = TypeVar("T")

logger = structlog.get_logger()


def default_error_part(error: BaseException) -> dict:
    """Error item emitted in place of a failed source"""
    return {"type": StreamPartType.ERROR, "error": error}


class StitchableStream(Generic[T]):
    """
    Sequential multiplexer over attached async sources.

    Iterate the stream directly for a single reader, or call fork() for
    several independent readers. Mixing both is not supported.
    """

    def __init__(
        self,
        on_cancel: Optional[Callable[[], Any]] = None,
        error_factory: Callable[[BaseException], T] = default_error_part,
    ):
        self._sources: Deque[AsyncIterator[T]] = deque()
        self._finished = False
        self._cancelled = False
        self._exhausted = False
        self._source_added = asyncio.Event()
        self._on_cancel = on_cancel
        self._error_factory = error_factory

        # Tee state shared by forks
        self._forks: List["StreamFork[T]"] = []
        self._buffer: Deque[T] = deque()
        self._buffer_start = 0
        self._pull_lock = asyncio.Lock()

    # ========================================================================
    # Producer side
    # ========================================================================

    def attach(self, source: AsyncIterable[T]):
        """
        Queue a source behind the ones already attached.

        Raises:
            StreamClosedError: If finish() was called or the stream was cancelled
        """
        if self._cancelled:
            raise StreamClosedError("Cannot attach source: stream was cancelled")
        if self._finished:
            raise StreamClosedError("Cannot attach source: stream is finished")

        self._sources.append(source.__aiter__())
        self._source_added.set()
        logger.debug("stream_source_attached", queued_sources=len(self._sources))

    def finish(self):
        """Signal that no more sources will be attached"""
        self._finished = True
        self._source_added.set()

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    # ========================================================================
    # Consumer side
    # ========================================================================

    def __aiter__(self) -> "StitchableStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._forks:
            raise RuntimeError("Stream has forks; read from the forks instead")
        return await self._next_item()

    async def _next_item(self) -> T:
        while True:
            if self._cancelled:
                raise StopAsyncIteration

            if not self._sources:
                if self._finished:
                    raise StopAsyncIteration
                self._source_added.clear()
                await self._source_added.wait()
                continue

            source = self._sources[0]
            try:
                return await source.__anext__()
            except StopAsyncIteration:
                self._sources.popleft()
            except Exception as e:
                # Drop the failed source; items already handed out are unaffected
                self._sources.popleft()
                logger.warning(
                    "stream_source_failed",
                    error=str(e),
                    remaining_sources=len(self._sources),
                )
                return self._error_factory(e)

    async def aclose(self):
        """
        Cancel the stream: close the active and queued sources and run the
        on_cancel hook. Safe to call more than once.
        """
        if self._cancelled:
            return

        self._cancelled = True
        sources = list(self._sources)
        self._sources.clear()
        self._source_added.set()

        for source in sources:
            close = getattr(source, "aclose", None)
            if close is None:
                continue
            try:
                await close()
            except RuntimeError as e:
                # Source is mid-iteration in another task
                logger.warning("stream_source_close_failed", error=str(e))

        logger.info("stream_cancelled", closed_sources=len(sources))

        if self._on_cancel is not None:
            self._on_cancel()

    # ========================================================================
    # Forks
    # ========================================================================

    def fork(self) -> "StreamFork[T]":
        """Create a reader that starts at the current read position"""
        stream_fork = StreamFork(self, self._buffer_start + len(self._buffer))
        self._forks.append(stream_fork)
        return stream_fork

    async def _read_for(self, stream_fork: "StreamFork[T]") -> T:
        while True:
            index = stream_fork.position - self._buffer_start
            if index < len(self._buffer):
                item = self._buffer[index]
                stream_fork.position += 1
                self._trim()
                return item

            if self._exhausted:
                raise StopAsyncIteration

            async with self._pull_lock:
                # Another fork may have pulled while we waited for the lock
                if stream_fork.position - self._buffer_start < len(self._buffer) or self._exhausted:
                    continue
                try:
                    item = await self._next_item()
                except StopAsyncIteration:
                    self._exhausted = True
                    continue
                self._buffer.append(item)

    def _trim(self):
        if not self._forks:
            self._buffer_start += len(self._buffer)
            self._buffer.clear()
            return

        lowest = min(f.position for f in self._forks)
        while self._buffer and self._buffer_start < lowest:
            self._buffer.popleft()
            self._buffer_start += 1

    async def _release(self, stream_fork: "StreamFork[T]"):
        if stream_fork in self._forks:
            self._forks.remove(stream_fork)
            self._trim()

        if not self._forks and not self._exhausted:
            await self.aclose()


class StreamFork(Generic[T]):
    """Independent reader over a StitchableStream"""

    def __init__(self, stream: StitchableStream[T], position: int):
        self._stream = stream
        self.position = position
        self._closed = False

    def __aiter__(self) -> "StreamFork[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._stream._read_for(self)
        except StopAsyncIteration:
            await self.aclose()
            raise

    async def aclose(self):
        """Stop reading; the last fork to close cancels the stream"""
        if self._closed:
            return
        self._closed = True
        await self._stream._release(self)
