"""Multi-agent swarm orchestration with handovers, shared context and streaming."""

# Agent Layer components
from agent_swarm.agent_layer import (
    Agent,
    ActionRuntime,
    FunctionAction,
    FunctionResult,
    HandoverAction,
    HandoverResult,
    ModelClient,
    ModelRequest,
    BaseModelClient,
    OpenAIModelClient,
    Swarm,
    SwarmStreamResult,
    Hive,
)

# Core components
from agent_swarm.core import (
    SwarmError,
    SwarmValidationError,
    AgentNotFoundError,
    HandoverExecutionError,
    ModelInvocationError,
    StreamClosedError,
    StitchableStream,
    to_data_stream,
    to_data_stream_response,
)

# Models and schemas
from agent_swarm.models import (
    DataStreamOptions,
    FinishReason,
    StreamPartType,
    SwarmResult,
    Usage,
)

# Configuration
from agent_swarm.config import settings, configure_logging

__version__ = "1.0.0"

__all__ = [
    # Agent Layer
    'Agent',
    'ActionRuntime',
    'FunctionAction',
    'FunctionResult',
    'HandoverAction',
    'HandoverResult',
    'ModelClient',
    'ModelRequest',
    'BaseModelClient',
    'OpenAIModelClient',
    'Swarm',
    'SwarmStreamResult',
    'Hive',
    # Core
    'SwarmError',
    'SwarmValidationError',
    'AgentNotFoundError',
    'HandoverExecutionError',
    'ModelInvocationError',
    'StreamClosedError',
    'StitchableStream',
    'to_data_stream',
    'to_data_stream_response',
    # Models
    'DataStreamOptions',
    'FinishReason',
    'StreamPartType',
    'SwarmResult',
    'Usage',
    # Config
    'settings',
    'configure_logging',
]
