#!/usr/bin/env python3
"""
Test: Agents and Actions
Purpose: Verify agent definitions, action wrapping and the agent registry

Tests:
- Agents are immutable and validate their options
- Handover actions built with as_handover()
- Reserved context parameter is hidden from the model
- Function actions get an executor, handover actions don't
- Pydantic models as parameter schemas
- Registry lookup by id and name
"""

import asyncio
import operator
import sys

from pydantic import BaseModel

from fixtures import (
    run_tests, assert_equal, assert_true, assert_false, assert_in, assert_not_in,
    assert_raises, assert_raises_async
)

from agent_swarm.agent_layer.actions import ActionKind, action_kind, strip_context_parameter, wrap_actions
from agent_swarm.agent_layer.agent import (
    ActionRuntime,
    Agent,
    FunctionAction,
    FunctionResult,
    HandoverAction,
    HandoverResult,
)
from agent_swarm.agent_layer.registry import AgentRegistry
from agent_swarm.core.context import merge_context
from agent_swarm.core.errors import AgentNotFoundError, SwarmValidationError


class WeatherQuery(BaseModel):
    location: str
    swarm_context: dict = {}


def weather(args, runtime):
    return {"location": args["location"], "temperature": 21}


def make_weather_agent():
    return Agent(
        name="Weather",
        description="Answers weather questions",
        instructions="You report the weather.",
        actions={
            "get_weather": FunctionAction(description="Current weather", execute=weather, parameters=WeatherQuery),
        },
    )


async def test_agent_is_immutable():
    """Test agent attributes cannot be reassigned"""
    agent = make_weather_agent()

    assert_raises(AttributeError, setattr, agent, "name", "Other")
    assert_raises(AttributeError, delattr, agent, "instructions")
    assert_raises(TypeError, operator.setitem, agent.actions, "x", None)
    assert_equal(len(agent.id), 32, "Agent id is a uuid4 hex")


async def test_agent_validation():
    """Test malformed agent options are rejected"""
    assert_raises(SwarmValidationError, Agent, name="", description="d", instructions="i")
    assert_raises(SwarmValidationError, Agent, name="A", description="d", instructions=42)
    assert_raises(SwarmValidationError, Agent, name="A", description="d", instructions="i", max_turns=0)
    assert_raises(SwarmValidationError, Agent, name="A", description="d", instructions="i", max_turns=True)
    assert_raises(SwarmValidationError, Agent, name="A", description="d", instructions="i", actions={"x": weather})
    assert_raises(SwarmValidationError, Agent, name="A", description="d", instructions="i", tool_choice="required")
    assert_raises(SwarmValidationError, Agent, name="A", description="d", instructions="i", tool_choice="sometimes")
    assert_raises(
        SwarmValidationError,
        Agent,
        name="A",
        description="d",
        instructions="i",
        tool_choice={"type": "tool", "tool_name": "missing"},
    )

    forced = Agent(
        name="Forced",
        description="d",
        instructions="i",
        actions={"get_weather": FunctionAction(description="w", execute=weather)},
        tool_choice={"type": "tool", "tool_name": "get_weather"},
    )
    assert_equal(forced.tool_choice["tool_name"], "get_weather")


async def test_as_handover():
    """Test as_handover() targets the agent itself"""
    target = make_weather_agent()
    action = target.as_handover(context_update={"topic": "weather"})

    assert_true(isinstance(action, HandoverAction), "Should build a HandoverAction")
    assert_in("Weather", action.description, "Default description names the target")

    outcome = await action.execute({}, ActionRuntime(action_call_id="call_1"))
    assert_true(isinstance(outcome, HandoverResult), "Executor returns a HandoverResult")
    assert_true(outcome.agent is target, "Handover targets the agent object")
    assert_equal(outcome.context_update, {"topic": "weather"})


async def test_with_actions_creates_new_agent():
    """Test with_actions() returns a new agent with a new id"""
    weather_agent = make_weather_agent()
    router = Agent(name="Router", description="d", instructions="Route.")
    extended = router.with_actions({"transfer_to_weather": weather_agent.as_handover()})

    assert_not_in("transfer_to_weather", router.actions, "Original catalog is unchanged")
    assert_in("transfer_to_weather", extended.actions)
    assert_true(extended.id != router.id, "New agent gets a new id")


async def test_context_parameter_hidden_from_model():
    """Test the reserved field is stripped from properties and required"""
    schema = {
        "type": "object",
        "properties": {"city": {"type": "string"}, "swarm_context": {"type": "object"}},
        "required": ["city", "swarm_context"],
    }
    stripped = strip_context_parameter(schema, "swarm_context")

    assert_equal(stripped["properties"], {"city": {"type": "string"}})
    assert_equal(stripped["required"], ["city"])
    assert_in("swarm_context", schema["properties"], "Original schema is untouched")

    only_context = strip_context_parameter(
        {"type": "object", "properties": {"swarm_context": {}}, "required": ["swarm_context"]},
        "swarm_context",
    )
    assert_not_in("required", only_context, "Empty required list is dropped")


async def test_wrap_actions():
    """Test wrapped catalog: executors, kinds and context injection"""
    context = {"units": "metric"}
    received = {}

    def read_context(args, runtime):
        received.update(args)
        return FunctionResult(result="done", context_update={"checked": True})

    def update(partial):
        context.update(merge_context(context, partial))

    weather_agent = make_weather_agent()
    agent = Agent(
        name="Router",
        description="d",
        instructions="Route.",
        actions={
            "inspect": FunctionAction(
                description="Inspect context",
                execute=read_context,
                parameters={"type": "object", "properties": {"swarm_context": {"type": "object"}}},
            ),
            "transfer_to_weather": weather_agent.as_handover(),
        },
    )

    wrapped = wrap_actions(agent.actions, lambda: context, update, "swarm_context")

    assert_equal(wrapped["inspect"].kind, ActionKind.FUNCTION)
    assert_equal(wrapped["transfer_to_weather"].kind, ActionKind.HANDOVER)
    assert_true(wrapped["transfer_to_weather"].execute is None, "Handover is exposed without executor")
    assert_not_in("swarm_context", wrapped["inspect"].parameters["properties"])

    result = await wrapped["inspect"].execute({}, ActionRuntime(action_call_id="call_1"))
    assert_equal(result, "done", "FunctionResult is unwrapped for the model")
    assert_equal(received["swarm_context"], {"units": "metric"}, "Snapshot injected")
    assert_equal(context["checked"], True, "Context update merged immediately")

    tool = wrapped["inspect"].to_openai_tool()
    assert_equal(tool["function"]["name"], "inspect")


async def test_pydantic_parameters():
    """Test pydantic models become JSON schemas with the context field hidden"""
    agent = make_weather_agent()
    wrapped = wrap_actions(agent.actions, lambda: {}, lambda partial: None, "swarm_context")
    parameters = wrapped["get_weather"].parameters

    assert_in("location", parameters["properties"])
    assert_not_in("swarm_context", parameters["properties"])
    assert_equal(parameters["required"], ["location"])


async def test_action_kind_is_exhaustive():
    """Test unknown action types are rejected"""
    assert_equal(action_kind(FunctionAction(description="d", execute=weather)), ActionKind.FUNCTION)
    assert_raises(TypeError, action_kind, object())


async def test_async_executor():
    """Test async executors are awaited"""
    async def slow_weather(args, runtime):
        await asyncio.sleep(0)
        return f"sunny in {args['city']} ({runtime.action_call_id})"

    agent = Agent(
        name="A",
        description="d",
        instructions="i",
        actions={"weather": FunctionAction(description="w", execute=slow_weather)},
    )
    wrapped = wrap_actions(agent.actions, lambda: {}, lambda partial: None, "swarm_context")
    result = await wrapped["weather"].execute({"city": "Oslo"}, ActionRuntime(action_call_id="call_9"))

    assert_equal(result, "sunny in Oslo (call_9)")


async def test_registry():
    """Test registry resolution by object, id and name"""
    weather_agent = make_weather_agent()
    router = Agent(name="Router", description="d", instructions="Route.")
    registry = AgentRegistry([router])

    assert_true(registry.resolve(router.id) is router, "Resolve by id")
    assert_true(registry.resolve("Router") is router, "Resolve by unique name")
    assert_false(weather_agent in registry, "Weather not registered yet")

    assert_true(registry.resolve(weather_agent) is weather_agent, "Resolving an Agent registers it")
    assert_true(weather_agent in registry, "Weather registered")
    assert_equal(len(registry), 2)

    registry.register(Agent(name="Router", description="d2", instructions="i"))
    assert_raises(AgentNotFoundError, registry.resolve, "Router")
    assert_raises(AgentNotFoundError, registry.resolve, "Nobody")
    assert_raises(SwarmValidationError, registry.register, "not an agent")


async def test_executor_errors_propagate():
    """Test function executor exceptions are not swallowed by the wrapper"""
    def broken(args, runtime):
        raise RuntimeError("backend down")

    agent = Agent(
        name="A",
        description="d",
        instructions="i",
        actions={"broken": FunctionAction(description="b", execute=broken)},
    )
    wrapped = wrap_actions(agent.actions, lambda: {}, lambda partial: None, "swarm_context")

    await assert_raises_async(RuntimeError, wrapped["broken"].execute({}, ActionRuntime(action_call_id="c")))


async def main():
    """Run all agent and action tests"""
    return await run_tests("Agent and Action Tests", [
        ("Agent is immutable", test_agent_is_immutable),
        ("Agent validation", test_agent_validation),
        ("as_handover()", test_as_handover),
        ("with_actions() creates new agent", test_with_actions_creates_new_agent),
        ("Context parameter hidden from model", test_context_parameter_hidden_from_model),
        ("Wrapped action catalog", test_wrap_actions),
        ("Pydantic parameter schemas", test_pydantic_parameters),
        ("Action kind dispatch", test_action_kind_is_exhaustive),
        ("Async executors", test_async_executor),
        ("Agent registry", test_registry),
        ("Executor errors propagate", test_executor_errors_propagate),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
