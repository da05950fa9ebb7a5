"""
Model Client Protocol for the swarm turn loop.

This module defines the contract that ANY language-model backend must
implement to be driven by a Swarm. Each provider gets an adapter that
implements the ModelClient interface (see agent_swarm.agent_layer.adapters).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from agent_swarm.agent_layer.actions import ModelAction
from agent_swarm.models.schemas import (
    ActionCall,
    ActionResultRecord,
    FinishReason,
    GenerationResult,
    StepResult,
    Usage,
)

StepCallback = Callable[[StepResult], Union[None, Awaitable[None]]]


class ModelRequest(BaseModel):
    """
    Standardized request passed to a model client for one swarm round.

    This format is provider-agnostic.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    system: str = Field(..., description="Rendered instructions of the active agent")
    messages: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Conversation so far, in chat-completions message format"
    )
    actions: Dict[str, ModelAction] = Field(
        default_factory=dict,
        description="Model-facing action catalog; actions without an executor stop the call"
    )
    tool_choice: Optional[Union[str, Dict[str, str]]] = Field(
        default=None,
        description="auto, none, required or {'type': 'tool', 'tool_name': ...}"
    )
    max_steps: int = Field(default=1, ge=1, description="Step budget for this call")
    on_step_finish: Optional[StepCallback] = None
    stream_action_calls: bool = Field(
        default=False,
        description="Emit per-token action call argument deltas when streaming"
    )


class ProviderStep(BaseModel):
    """What a provider returns for a single completion"""

    text: str = ""
    action_calls: List[ActionCall] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = Field(default_factory=Usage)


def mark_retrieved(future: asyncio.Future):
    # Rejected futures nobody awaited should not warn at garbage collection
    if not future.cancelled():
        future.exception()


class StreamingGeneration:
    """
    Handle on a streaming model call.

    full_stream yields stream parts; the futures resolve once the stream has
    been drained and are cancelled if it is closed early.
    """

    FUTURES = (
        "finish_reason", "text", "action_calls", "action_results",
        "response_messages", "usage", "steps",
    )

    def __init__(self):
        loop = asyncio.get_running_loop()
        self.full_stream: Optional[AsyncIterator[Dict[str, Any]]] = None
        for name in self.FUTURES:
            future = loop.create_future()
            future.add_done_callback(mark_retrieved)
            setattr(self, name, future)

    def _futures(self) -> List[asyncio.Future]:
        return [getattr(self, name) for name in self.FUTURES]

    def resolve(
        self,
        finish_reason: FinishReason,
        text: str,
        action_calls: List[ActionCall],
        action_results: List[ActionResultRecord],
        response_messages: List[Dict[str, Any]],
        usage: Usage,
        steps: List[StepResult],
    ):
        values = {
            "finish_reason": finish_reason,
            "text": text,
            "action_calls": action_calls,
            "action_results": action_results,
            "response_messages": response_messages,
            "usage": usage,
            "steps": steps,
        }
        for name, value in values.items():
            future = getattr(self, name)
            if not future.done():
                future.set_result(value)

    def reject(self, error: BaseException):
        for future in self._futures():
            if not future.done():
                future.set_exception(error)

    def cancel(self):
        for future in self._futures():
            future.cancel()


class ModelClient(ABC):
    """
    Abstract base class defining the contract for model clients.

    A client executes every action call whose model-facing action carries an
    executor, feeding results back to the model, for up to max_steps steps.
    It must stop (finish reason tool-calls) as soon as a step requests an
    action without an executor; that is how handovers reach the swarm.
    """

    def __init__(self, name: str, model: str):
        """
        Initialize client.

        Args:
            name: Provider identifier (e.g., "openai")
            model: Provider model name
        """
        self.name = name
        self.model = model

    @abstractmethod
    async def generate(self, request: ModelRequest) -> GenerationResult:
        """
        Run a blocking model call.

        Provider failures are reported as finish_reason "error" with the
        error attached, never raised and never retried.
        """
        pass

    @abstractmethod
    def stream(self, request: ModelRequest) -> StreamingGeneration:
        """
        Start a streaming model call.

        Must be called from a running event loop. Nothing is sent to the
        provider until full_stream is iterated.
        """
        pass

    def __repr__(self) -> str:
        """String representation of client"""
        return f"<{self.__class__.__name__}(name='{self.name}', model='{self.model}')>"
