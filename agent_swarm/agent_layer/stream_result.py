"""
Handle returned by Swarm.stream().

Exposes the live event stream (annotated and text-only projections), the
wire-protocol adapters, and futures that settle once the turn loop ends.
"""

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from fastapi.responses import StreamingResponse

from agent_swarm.agent_layer.protocol import mark_retrieved
from agent_swarm.core.data_stream import to_data_stream, to_data_stream_response
from agent_swarm.core.errors import ModelInvocationError
from agent_swarm.core.stitchable_stream import StitchableStream, StreamFork
from agent_swarm.models.schemas import DataStreamOptions, StreamPartType, SwarmResult


async def text_only(parts: StreamFork) -> AsyncIterator[str]:
    """Project the annotated stream onto its text deltas"""
    try:
        async for part in parts:
            part_type = part.get("type")
            if part_type == StreamPartType.TEXT_DELTA:
                yield part["text_delta"]
            elif part_type == StreamPartType.ERROR:
                error = part["error"]
                if isinstance(error, BaseException):
                    raise error
                raise ModelInvocationError(str(error))
    finally:
        await parts.aclose()


class SwarmStreamResult:
    """
    Live result of a streaming swarm invocation.

    full_stream and text_stream are forks of one stitched stream, created on
    first access; a projection first read after parts were already consumed
    starts from the current position. Nothing is pulled from the model until
    one of them (or consume()) is read.

    Example:
        result = swarm.stream("What's the weather in Paris?")
        async for chunk in result.text_stream:
            print(chunk, end="")
        agent = await result.active_agent
    """

    FUTURES = ("finish_reason", "active_agent", "text", "messages", "context", "usage")

    def __init__(self):
        loop = asyncio.get_running_loop()
        for name in self.FUTURES:
            future = loop.create_future()
            future.add_done_callback(mark_retrieved)
            setattr(self, name, future)

        # Closing every projection cancels the turn loop task
        self.stitch: StitchableStream[Dict[str, Any]] = StitchableStream(on_cancel=self._cancel_loop)
        self._full_stream: Optional[StreamFork] = None
        self._text_stream: Optional[AsyncIterator[str]] = None
        self._task: Optional[asyncio.Task] = None
        self._surfaced_errors = set()
        self.last_error: Optional[BaseException] = None

    # ========================================================================
    # Projections
    # ========================================================================

    @property
    def full_stream(self) -> StreamFork:
        """Every part, tagged with the agent that produced it"""
        if self._full_stream is None:
            self._full_stream = self.stitch.fork()
        return self._full_stream

    @property
    def text_stream(self) -> AsyncIterator[str]:
        """Text deltas only; raises on an error part"""
        if self._text_stream is None:
            self._text_stream = text_only(self.stitch.fork())
        return self._text_stream

    def to_data_stream(
        self,
        options: Optional[DataStreamOptions] = None,
        **toggles: Any,
    ) -> AsyncIterator[bytes]:
        """Encode full_stream with the data stream protocol"""
        return to_data_stream(self.full_stream, _merge_options(options, toggles))

    def to_data_stream_response(
        self,
        options: Optional[DataStreamOptions] = None,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        **toggles: Any,
    ) -> StreamingResponse:
        """HTTP streaming response carrying the data stream protocol"""
        return to_data_stream_response(
            self.full_stream,
            _merge_options(options, toggles),
            status_code=status_code,
            headers=headers,
        )

    async def consume(self):
        """Drain full_stream so the turn loop runs without a reader"""
        async for _ in self.full_stream:
            pass

    async def aclose(self):
        """Stop reading and cancel the turn loop"""
        await self.stitch.aclose()

    # ========================================================================
    # Turn loop side
    # ========================================================================

    def _attach_task(self, task: asyncio.Task):
        self._task = task

    def _cancel_loop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _note_error(self, error: BaseException):
        self._surfaced_errors.add(id(error))
        self.last_error = error

    def _was_surfaced(self, error: BaseException) -> bool:
        return id(error) in self._surfaced_errors

    def _futures(self):
        return [getattr(self, name) for name in self.FUTURES]

    def _resolve(self, result: SwarmResult):
        values = {
            "finish_reason": result.finish_reason,
            "active_agent": result.active_agent,
            "text": result.text,
            "messages": result.messages,
            "context": result.context,
            "usage": result.usage,
        }
        for name, value in values.items():
            future = getattr(self, name)
            if not future.done():
                future.set_result(value)

    def _reject(self, error: BaseException):
        for future in self._futures():
            if not future.done():
                future.set_exception(error)

    def _cancel(self):
        for future in self._futures():
            future.cancel()


def _merge_options(options: Optional[DataStreamOptions], toggles: Dict[str, Any]) -> DataStreamOptions:
    if not toggles:
        return options or DataStreamOptions()
    base = options.model_dump() if options else {}
    base.update(toggles)
    return DataStreamOptions(**base)
