"""
Action wrapping layer.

Converts an agent's action catalog into the model-facing catalog:

- the reserved shared-context parameter is removed from every schema
- function actions get an executor that injects a context snapshot and
  merges any context update back into the swarm immediately
- handover actions are exposed without an executor, so the model client
  stops on them and the swarm can apply the handover itself
"""

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from agent_swarm.agent_layer.agent import (
    Action,
    ActionRuntime,
    FunctionAction,
    FunctionResult,
    HandoverAction,
    call_executor,
)
from agent_swarm.core.context import snapshot_context

logger = structlog.get_logger()


class ActionKind(str, Enum):
    FUNCTION = "function"
    HANDOVER = "handover"


def action_kind(action: Action) -> ActionKind:
    """Exhaustive dispatch over the action sum type"""
    if isinstance(action, FunctionAction):
        return ActionKind.FUNCTION
    if isinstance(action, HandoverAction):
        return ActionKind.HANDOVER
    raise TypeError(f"Unknown action type: {type(action).__name__}")


@dataclass(frozen=True)
class ModelAction:
    """Action as presented to the model client"""

    name: str
    description: str
    parameters: Dict[str, Any]
    kind: ActionKind
    execute: Optional[Callable[[Dict[str, Any], ActionRuntime], Awaitable[Any]]] = None

    def to_openai_tool(self) -> Dict[str, Any]:
        """OpenAI function-calling definition"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def declares_context_parameter(schema: Mapping[str, Any], parameter: str) -> bool:
    return parameter in (schema.get("properties") or {})


def strip_context_parameter(schema: Mapping[str, Any], parameter: str) -> Dict[str, Any]:
    """Return a copy of schema without the reserved parameter"""
    stripped = copy.deepcopy(dict(schema))

    properties = stripped.get("properties")
    if properties and parameter in properties:
        stripped["properties"] = {k: v for k, v in properties.items() if k != parameter}

    required = stripped.get("required")
    if required and parameter in required:
        stripped["required"] = [name for name in required if name != parameter]
        if not stripped["required"]:
            del stripped["required"]

    return stripped


def inject_context(
    args: Dict[str, Any],
    schema: Mapping[str, Any],
    context: Mapping[str, Any],
    parameter: str,
) -> Dict[str, Any]:
    """Model arguments plus the context snapshot, if the action asked for it"""
    if not declares_context_parameter(schema, parameter):
        return dict(args)
    return {**args, parameter: snapshot_context(context)}


def wrap_actions(
    actions: Mapping[str, Action],
    get_context: Callable[[], Mapping[str, Any]],
    update_context: Callable[[Dict[str, Any]], Any],
    context_parameter: str,
) -> Dict[str, ModelAction]:
    """
    Build the model-facing catalog for one agent.

    Args:
        actions: The agent's action catalog
        get_context: Returns the current shared context
        update_context: Shallow-merges an update into the shared context
        context_parameter: Name of the reserved shared-context parameter

    Returns:
        Model-facing actions keyed by name
    """
    wrapped: Dict[str, ModelAction] = {}

    for name, action in actions.items():
        schema = action.schema
        kind = action_kind(action)

        if declares_context_parameter(schema, context_parameter):
            logger.debug("context_parameter_hidden", action=name)

        execute = None
        if kind == ActionKind.FUNCTION:
            execute = _wrap_function_executor(
                name, action, schema, get_context, update_context, context_parameter
            )

        wrapped[name] = ModelAction(
            name=name,
            description=action.description,
            parameters=strip_context_parameter(schema, context_parameter),
            kind=kind,
            execute=execute,
        )

    return wrapped


def _wrap_function_executor(
    name: str,
    action: FunctionAction,
    schema: Mapping[str, Any],
    get_context: Callable[[], Mapping[str, Any]],
    update_context: Callable[[Dict[str, Any]], Any],
    context_parameter: str,
):
    async def execute(args: Dict[str, Any], runtime: ActionRuntime) -> Any:
        call_args = inject_context(args, schema, get_context(), context_parameter)
        outcome = await call_executor(action.execute, call_args, runtime)

        if isinstance(outcome, FunctionResult):
            if outcome.context_update:
                update_context(outcome.context_update)
                logger.info(
                    "context_updated_by_action",
                    action=name,
                    keys=sorted(outcome.context_update),
                )
            return outcome.result

        return outcome

    return execute
