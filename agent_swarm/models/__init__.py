"""Data models and schemas."""

from agent_swarm.models.schemas import (
    FinishReason,
    TERMINAL_FINISH_REASONS,
    StreamPartType,
    ToolChoiceMode,
    Usage,
    ActionCall,
    ActionResultRecord,
    StepResult,
    GenerationResult,
    AgentRef,
    SwarmResult,
    DataStreamOptions,
)

__all__ = [
    'FinishReason',
    'TERMINAL_FINISH_REASONS',
    'StreamPartType',
    'ToolChoiceMode',
    'Usage',
    'ActionCall',
    'ActionResultRecord',
    'StepResult',
    'GenerationResult',
    'AgentRef',
    'SwarmResult',
    'DataStreamOptions',
]
