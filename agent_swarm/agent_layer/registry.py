"""
Agent registry.

Maps stable agent ids (and names) to agent definitions so handovers can
target an agent by reference instead of embedding it.
"""

from typing import Dict, Iterable, List, Optional, Union

import structlog

from agent_swarm.agent_layer.agent import Agent
from agent_swarm.core.errors import AgentNotFoundError, SwarmValidationError

logger = structlog.get_logger()


class AgentRegistry:
    """Id/name index over the agents a swarm can hand over to"""

    def __init__(self, agents: Optional[Iterable[Agent]] = None):
        self._by_id: Dict[str, Agent] = {}
        self._by_name: Dict[str, List[Agent]] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: Agent) -> Agent:
        """
        Register an agent; registering the same agent twice is a no-op.

        Raises:
            SwarmValidationError: If agent is not an Agent
        """
        if not isinstance(agent, Agent):
            raise SwarmValidationError(f"Expected an Agent, got {type(agent).__name__}")

        if agent.id in self._by_id:
            return agent

        self._by_id[agent.id] = agent
        self._by_name.setdefault(agent.name, []).append(agent)
        logger.debug("agent_registered", agent_id=agent.id, agent_name=agent.name, total_agents=len(self._by_id))
        return agent

    def resolve(self, reference: Union[Agent, str]) -> Agent:
        """
        Resolve an Agent, agent id or unique agent name.

        Raises:
            AgentNotFoundError: If nothing (or more than one agent) matches
        """
        if isinstance(reference, Agent):
            return self.register(reference)

        if reference in self._by_id:
            return self._by_id[reference]

        candidates = self._by_name.get(reference, [])
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            raise AgentNotFoundError(
                f"Agent name '{reference}' is ambiguous ({len(candidates)} agents); hand over by id instead"
            )

        raise AgentNotFoundError(f"No agent with id or name '{reference}' is registered")

    def __contains__(self, agent: Agent) -> bool:
        return isinstance(agent, Agent) and agent.id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def list_agents(self) -> List[Agent]:
        return list(self._by_id.values())
