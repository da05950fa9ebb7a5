"""
Hive - Swarm factory.

Holds shared defaults (queen, model client, context template) and spawns
independent Swarm instances from them. Each spawned swarm owns its own
context, history and active agent; only the model client is shared.
"""

import copy
from typing import Any, Dict, List, Mapping, Optional

from agent_swarm.agent_layer.adapters.openai import OpenAIModelClient
from agent_swarm.agent_layer.agent import Agent
from agent_swarm.agent_layer.protocol import ModelClient
from agent_swarm.agent_layer.swarm import Swarm
from agent_swarm.config.logging import get_logger
from agent_swarm.core.context import ensure_json_object
from agent_swarm.core.errors import SwarmValidationError


class Hive:
    """
    Factory for swarms that share a queen and defaults.

    Example:
        hive = Hive(queen=router, default_context={"plan": "free"})
        alice = hive.spawn_swarm(name="alice")
        bob = hive.spawn_swarm(name="bob", context={"plan": "pro"})
    """

    def __init__(
        self,
        queen: Agent,
        default_model: Optional[ModelClient] = None,
        default_context: Optional[Mapping[str, Any]] = None,
        name: Optional[str] = None,
        max_turns: Optional[int] = None,
        return_to_queen: Optional[bool] = None,
        agents: Optional[List[Agent]] = None,
        logger=None,
    ):
        if not isinstance(queen, Agent):
            raise SwarmValidationError("Hive queen must be an Agent")
        try:
            context = ensure_json_object(default_context or {}, "default_context")
        except TypeError as e:
            raise SwarmValidationError(str(e)) from e

        self.name = name or "hive"
        self.logger = logger or get_logger(hive=self.name)
        self.queen = queen
        self.default_model = default_model or OpenAIModelClient()
        self.default_context: Dict[str, Any] = context
        self.max_turns = max_turns
        self.return_to_queen = return_to_queen
        self.agents = list(agents or [])
        self._spawned = 0

        self.logger.info("hive_initialized", queen=queen.name, default_model=repr(self.default_model))

    def spawn_swarm(
        self,
        queen: Optional[Agent] = None,
        default_model: Optional[ModelClient] = None,
        context: Optional[Mapping[str, Any]] = None,
        messages: Optional[List[Dict[str, Any]]] = None,
        name: Optional[str] = None,
        max_turns: Optional[int] = None,
        return_to_queen: Optional[bool] = None,
    ) -> Swarm:
        """
        Create a new swarm from the hive defaults.

        Args:
            queen: Override the hive queen
            default_model: Override the shared model client
            context: Replaces the default context (copied either way)
            messages: Initial history for the new swarm
            name: Swarm name (default: "<hive>-<n>")
            max_turns: Override the hive turn budget
            return_to_queen: Override the hive setting

        Returns:
            A Swarm that shares no mutable state with other spawned swarms
        """
        self._spawned += 1
        swarm_name = name or f"{self.name}-{self._spawned}"
        initial_context = copy.deepcopy(dict(context if context is not None else self.default_context))

        swarm = Swarm(
            queen=queen or self.queen,
            default_model=default_model or self.default_model,
            initial_context=initial_context,
            messages=copy.deepcopy(messages) if messages else None,
            name=swarm_name,
            max_turns=max_turns or self.max_turns,
            return_to_queen=self.return_to_queen if return_to_queen is None else return_to_queen,
            agents=self.agents,
            logger=self.logger.bind(swarm=swarm_name),
        )

        self.logger.info("swarm_spawned", swarm=swarm_name, spawned=self._spawned)
        return swarm
