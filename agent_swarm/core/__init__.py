"""Core building blocks: context, templating, streams and the wire protocol."""

from agent_swarm.core.errors import (
    SwarmError,
    SwarmValidationError,
    AgentNotFoundError,
    HandoverExecutionError,
    ModelInvocationError,
    StreamClosedError,
)
from agent_swarm.core.context import merge_context, snapshot_context
from agent_swarm.core.templating import render
from agent_swarm.core.stitchable_stream import StitchableStream, StreamFork
from agent_swarm.core.data_stream import (
    DataStreamCode,
    encode_part,
    to_data_stream,
    to_data_stream_response,
)

__all__ = [
    'SwarmError',
    'SwarmValidationError',
    'AgentNotFoundError',
    'HandoverExecutionError',
    'ModelInvocationError',
    'StreamClosedError',
    'merge_context',
    'snapshot_context',
    'render',
    'StitchableStream',
    'StreamFork',
    'DataStreamCode',
    'encode_part',
    'to_data_stream',
    'to_data_stream_response',
]
