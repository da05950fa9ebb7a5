"""
Agent Layer.

Agents, their actions, and the orchestration that moves a conversation
between them.

Key Components:
- Agent: Immutable behaviour profile (instructions + action catalog)
- FunctionAction / HandoverAction: The two kinds of action an agent exposes
- ModelClient: Abstract interface every model backend implements
- Swarm: Turn-loop orchestrator with shared context and streaming
- Hive: Factory for independent swarms with shared defaults
"""

from agent_swarm.agent_layer.agent import (
    Agent,
    ActionRuntime,
    FunctionAction,
    FunctionResult,
    HandoverAction,
    HandoverResult,
)
from agent_swarm.agent_layer.actions import ActionKind, ModelAction, wrap_actions
from agent_swarm.agent_layer.registry import AgentRegistry
from agent_swarm.agent_layer.protocol import (
    ModelClient,
    ModelRequest,
    ProviderStep,
    StreamingGeneration,
)
from agent_swarm.agent_layer.adapters import BaseModelClient, OpenAIModelClient
from agent_swarm.agent_layer.stream_result import SwarmStreamResult
from agent_swarm.agent_layer.swarm import Swarm
from agent_swarm.agent_layer.hive import Hive

__all__ = [
    'Agent',
    'ActionRuntime',
    'FunctionAction',
    'FunctionResult',
    'HandoverAction',
    'HandoverResult',
    'ActionKind',
    'ModelAction',
    'wrap_actions',
    'AgentRegistry',
    'ModelClient',
    'ModelRequest',
    'ProviderStep',
    'StreamingGeneration',
    'BaseModelClient',
    'OpenAIModelClient',
    'SwarmStreamResult',
    'Swarm',
    'Hive',
]
