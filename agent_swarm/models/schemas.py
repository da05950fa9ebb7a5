"""
Pydantic schemas for model results, swarm results and stream options.
Includes enums for finish reasons and stream part types.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any, List, Dict, Callable
from enum import Enum


# ============================================================================
# Enums
# ============================================================================


class FinishReason(str, Enum):
    """Why a model call (or a whole swarm invocation) stopped"""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


# Finish reasons that end the turn loop without looking for handovers
TERMINAL_FINISH_REASONS = frozenset({
    FinishReason.STOP,
    FinishReason.LENGTH,
    FinishReason.CONTENT_FILTER,
    FinishReason.ERROR,
})


class StreamPartType(str, Enum):
    """Part types carried on the internal event stream"""

    TEXT_DELTA = "text-delta"
    REASONING = "reasoning"
    REDACTED_REASONING = "redacted-reasoning"
    REASONING_SIGNATURE = "reasoning-signature"
    SOURCE = "source"
    FILE = "file"
    ANNOTATION = "annotation"
    ACTION_CALL_STREAMING_START = "tool-call-streaming-start"
    ACTION_CALL_DELTA = "tool-call-delta"
    ACTION_CALL = "tool-call"
    ACTION_RESULT = "tool-result"
    STEP_START = "step-start"
    STEP_FINISH = "step-finish"
    FINISH = "finish"
    ERROR = "error"


class ToolChoiceMode(str, Enum):
    """Forced-action policies an agent may declare"""

    AUTO = "auto"
    NONE = "none"
    REQUIRED = "required"


# ============================================================================
# Model Results
# ============================================================================


class Usage(BaseModel):
    """Token usage reported by the model client"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_protocol(self) -> Dict[str, int]:
        """Usage as the camelCase object used on the wire"""
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
        }


class ActionCall(BaseModel):
    """An action invocation requested by the model"""

    id: str = Field(..., description="Provider-assigned call identifier")
    name: str = Field(..., description="Name of the requested action")
    args: Dict[str, Any] = Field(default_factory=dict, description="Model-supplied arguments")


class ActionResultRecord(BaseModel):
    """Outcome of an action call that was executed during a model call"""

    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class StepResult(BaseModel):
    """One provider round-trip inside a model call"""

    text: str = ""
    finish_reason: FinishReason
    action_calls: List[ActionCall] = Field(default_factory=list)
    action_results: List[ActionResultRecord] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    is_continued: bool = False


class GenerationResult(BaseModel):
    """
    Result of one blocking model call.

    A single call may span several steps when actions with executors are
    resolved by the client itself.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    finish_reason: FinishReason
    text: str = ""
    action_calls: List[ActionCall] = Field(default_factory=list)
    action_results: List[ActionResultRecord] = Field(default_factory=list)
    response_messages: List[Dict[str, Any]] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    steps: List[StepResult] = Field(default_factory=list)
    error: Optional[BaseException] = None


# ============================================================================
# Swarm Results
# ============================================================================


class AgentRef(BaseModel):
    """Identity of an agent as it appears on stream parts"""

    id: str
    name: str


class SwarmResult(BaseModel):
    """
    Final result bundle of a blocking swarm invocation.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    finish_reason: FinishReason
    active_agent: Any = Field(..., description="Agent that is active after the invocation")
    text: str = ""
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    usage: Usage = Field(default_factory=Usage)
    steps: List[StepResult] = Field(default_factory=list)
    error: Optional[BaseException] = None


# ============================================================================
# Data Stream Options
# ============================================================================


class DataStreamOptions(BaseModel):
    """
    Toggles for the data stream wire protocol.

    Unset toggles fall back to the SWARM_STREAM_* settings.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    send_usage: Optional[bool] = None
    send_reasoning: Optional[bool] = None
    send_sources: Optional[bool] = None
    send_start: Optional[bool] = None
    send_finish: Optional[bool] = None
    get_error_message: Optional[Callable[[BaseException], str]] = None
