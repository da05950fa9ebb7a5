"""Model client adapters."""

from agent_swarm.agent_layer.adapters.base import BaseModelClient
from agent_swarm.agent_layer.adapters.openai import OpenAIModelClient

__all__ = [
    'BaseModelClient',
    'OpenAIModelClient',
]
