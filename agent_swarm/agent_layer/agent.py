"""
Agent definitions and the actions they expose.

An Agent is an immutable behaviour profile: instructions, an action catalog
and optional per-agent overrides. Actions are a closed sum type:

- FunctionAction: ordinary tool; its executor runs inside the model call
- HandoverAction: control transfer; applied by the swarm between model calls
"""

import inspect
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel

from agent_swarm.core.errors import SwarmValidationError
from agent_swarm.core.templating import InstructionSource, render
from agent_swarm.models.schemas import ToolChoiceMode

ToolChoice = Union[str, Dict[str, str]]
ParametersSchema = Union[Dict[str, Any], Type[BaseModel], None]


@dataclass(frozen=True)
class ActionRuntime:
    """Runtime information passed as the second argument to every executor"""

    action_call_id: str
    messages: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class FunctionResult:
    """Return value of a function action that also updates the shared context"""

    result: Any
    context_update: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class HandoverResult:
    """
    Return value of a handover action.

    agent may be an Agent, or the id or name of an agent known to the swarm,
    which lets two agents hand over to each other without either embedding
    the other at construction time.
    """

    agent: Union["Agent", str]
    context_update: Optional[Dict[str, Any]] = None


Executor = Callable[[Dict[str, Any], ActionRuntime], Union[Any, Awaitable[Any]]]


def normalize_parameters(parameters: ParametersSchema) -> Dict[str, Any]:
    """Return the JSON schema for a parameters declaration"""
    if parameters is None:
        return {"type": "object", "properties": {}}
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        return parameters.model_json_schema()
    if isinstance(parameters, Mapping):
        return dict(parameters)
    raise SwarmValidationError(
        f"Action parameters must be a JSON schema dict or a pydantic model, got {type(parameters).__name__}"
    )


async def call_executor(execute: Executor, args: Dict[str, Any], runtime: ActionRuntime) -> Any:
    """Run a sync or async executor"""
    outcome = execute(args, runtime)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


@dataclass(frozen=True)
class FunctionAction:
    """An ordinary action the model client executes directly"""

    description: str
    execute: Executor
    parameters: ParametersSchema = None

    @property
    def schema(self) -> Dict[str, Any]:
        return normalize_parameters(self.parameters)


@dataclass(frozen=True)
class HandoverAction:
    """An action that transfers control to another agent"""

    description: str
    execute: Executor
    parameters: ParametersSchema = None

    @property
    def schema(self) -> Dict[str, Any]:
        return normalize_parameters(self.parameters)


Action = Union[FunctionAction, HandoverAction]


class Agent:
    """
    Immutable behaviour profile that can be active in a swarm.

    Example:
        support = Agent(
            name="Support",
            description="Answers product questions",
            instructions="You help customers with {{ product }}.",
        )
        router = Agent(
            name="Router",
            description="Routes the user",
            instructions="Route the user to the right specialist.",
            actions={"transfer_to_support": support.as_handover()},
        )
    """

    __slots__ = (
        "id", "name", "description", "instructions", "actions",
        "model", "max_turns", "tool_choice",
    )

    def __init__(
        self,
        name: str,
        description: str,
        instructions: InstructionSource,
        actions: Optional[Mapping[str, Action]] = None,
        model=None,
        max_turns: Optional[int] = None,
        tool_choice: Optional[ToolChoice] = None,
    ):
        """
        Initialize agent.

        Args:
            name: Human-readable agent name, used as the sender tag
            description: What the agent does; shown to agents that hand over to it
            instructions: Jinja2 template string or callable(context) -> str
            actions: Action catalog keyed by action name
            model: Optional ModelClient overriding the swarm default
            max_turns: Optional per-agent turn cap
            tool_choice: "auto", "none", "required" or {"type": "tool", "tool_name": ...}

        Raises:
            SwarmValidationError: If any option is malformed
        """
        if not name or not isinstance(name, str):
            raise SwarmValidationError("Agent name must be a non-empty string")
        if not isinstance(instructions, str) and not callable(instructions):
            raise SwarmValidationError("Agent instructions must be a string or a callable")
        if max_turns is not None and (
            isinstance(max_turns, bool) or not isinstance(max_turns, int) or max_turns < 1
        ):
            raise SwarmValidationError("Agent max_turns must be a positive integer")

        catalog = dict(actions or {})
        for action_name, action in catalog.items():
            if not isinstance(action, (FunctionAction, HandoverAction)):
                raise SwarmValidationError(
                    f"Action '{action_name}' must be a FunctionAction or HandoverAction"
                )
            # Fail fast on bad parameter declarations
            action.schema

        _validate_tool_choice(tool_choice, catalog)

        object.__setattr__(self, "id", uuid.uuid4().hex)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "description", description)
        object.__setattr__(self, "instructions", instructions)
        object.__setattr__(self, "actions", MappingProxyType(catalog))
        object.__setattr__(self, "model", model)
        object.__setattr__(self, "max_turns", max_turns)
        object.__setattr__(self, "tool_choice", tool_choice)

    def __setattr__(self, key, value):
        raise AttributeError(f"Agent is immutable; cannot set '{key}'")

    def __delattr__(self, key):
        raise AttributeError(f"Agent is immutable; cannot delete '{key}'")

    def get_instructions(self, context: Mapping[str, Any]) -> str:
        """Render the agent's system prompt against the shared context"""
        return render(self.instructions, context)

    def as_handover(
        self,
        description: Optional[str] = None,
        context_update: Optional[Dict[str, Any]] = None,
    ) -> HandoverAction:
        """
        Build a handover action that transfers control to this agent.

        Args:
            description: Tells the calling model when to use the handover
            context_update: Context keys to set when the handover is applied
        """
        target = self

        async def execute(args: Dict[str, Any], runtime: ActionRuntime) -> HandoverResult:
            return HandoverResult(agent=target, context_update=context_update)

        return HandoverAction(
            description=description or f'Hand the conversation over to agent "{self.name}". About this agent: {self.description}',
            execute=execute,
        )

    def with_actions(self, extra_actions: Mapping[str, Action]) -> "Agent":
        """Return a new agent (with a new id) whose catalog includes extra_actions"""
        catalog = dict(self.actions)
        catalog.update(extra_actions)
        return Agent(
            name=self.name,
            description=self.description,
            instructions=self.instructions,
            actions=catalog,
            model=self.model,
            max_turns=self.max_turns,
            tool_choice=self.tool_choice,
        )

    def __repr__(self) -> str:
        """String representation of agent"""
        return f"<Agent(name='{self.name}', id='{self.id[:8]}')>"


def _validate_tool_choice(tool_choice: Optional[ToolChoice], catalog: Mapping[str, Action]):
    if tool_choice is None:
        return

    if isinstance(tool_choice, str):
        try:
            mode = ToolChoiceMode(tool_choice)
        except ValueError:
            raise SwarmValidationError(f"Unknown tool_choice '{tool_choice}'")
        if mode == ToolChoiceMode.REQUIRED and not catalog:
            raise SwarmValidationError("tool_choice 'required' needs at least one action")
        return

    if isinstance(tool_choice, Mapping) and tool_choice.get("type") == "tool":
        tool_name = tool_choice.get("tool_name")
        if tool_name not in catalog:
            raise SwarmValidationError("Tool choice must specify an action that is passed to the agent")
        return

    raise SwarmValidationError(f"Malformed tool_choice: {tool_choice!r}")
