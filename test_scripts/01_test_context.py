#!/usr/bin/env python3
"""
Test: Shared Context
Purpose: Verify shallow-merge semantics and context propagation

Tests:
- Shallow merge leaves absent keys untouched and stores None
- Snapshots are isolated from the live context
- Non-JSON context is rejected
- get_context()/set_context() return read-only views
- Action context updates are visible to later actions immediately
- Instructions re-render against updated context on the next round
"""

import asyncio
import operator
import sys

from fixtures import (
    ScriptedModelClient, make_call, call_step, text_step, run_tests,
    assert_equal, assert_true, assert_in, assert_not_in, assert_raises, assert_raises_async
)

from agent_swarm.agent_layer.agent import Agent, FunctionAction, FunctionResult
from agent_swarm.agent_layer.swarm import Swarm
from agent_swarm.core.context import ensure_json_object, merge_context, snapshot_context
from agent_swarm.core.errors import SwarmValidationError
from agent_swarm.core.templating import render


CONTEXT_SCHEMA = {
    "type": "object",
    "properties": {"swarm_context": {"type": "object"}},
    "required": ["swarm_context"],
}


async def test_shallow_merge():
    """Test keys absent from the update are untouched and None is stored"""
    current = {"a": 1, "b": {"nested": True}, "c": "keep"}
    merged = merge_context(current, {"a": 2, "b": None})

    assert_equal(merged, {"a": 2, "b": None, "c": "keep"})
    assert_in("b", merged, "Explicit None must be a stored value")
    assert_equal(current["a"], 1, "Merge must not mutate the input")
    assert_equal(merge_context(current, None), current, "Empty update is a no-op")


async def test_snapshot_isolation():
    """Test snapshots don't alias the live context"""
    live = {"cart": {"items": ["book"]}}
    snapshot = snapshot_context(live)
    snapshot["cart"]["items"].append("pen")

    assert_equal(live["cart"]["items"], ["book"], "Live context must not change")


async def test_json_validation():
    """Test non-JSON contexts are rejected"""
    assert_raises(TypeError, ensure_json_object, ["not", "a", "mapping"])
    assert_raises(TypeError, ensure_json_object, {1: "int key"})
    assert_raises(TypeError, ensure_json_object, {"value": object()})
    assert_equal(ensure_json_object({"ok": [1, None, "x"]}), {"ok": [1, None, "x"]})

    agent = Agent(name="Queen", description="d", instructions="i")
    model = ScriptedModelClient()
    try:
        Swarm(queen=agent, default_model=model, initial_context={"bad": object()})
        raise AssertionError("Expected SwarmValidationError")
    except SwarmValidationError:
        pass


async def test_read_only_views():
    """Test get_context() and set_context() views cannot be mutated"""
    agent = Agent(name="Queen", description="d", instructions="i")
    swarm = Swarm(queen=agent, default_model=ScriptedModelClient(), initial_context={"plan": "free"})

    view = swarm.get_context()
    assert_raises(TypeError, operator.setitem, view, "plan", "pro")

    updated = swarm.set_context({"plan": "pro", "seats": None})
    assert_equal(dict(updated), {"plan": "pro", "seats": None})
    assert_equal(dict(view), {"plan": "free"}, "Earlier views are snapshots")
    assert_raises(SwarmValidationError, swarm.set_context, "nope")


async def test_action_updates_visible_immediately():
    """Test a context update from one action is seen by the next one"""
    seen = {}

    def set_city(args, runtime):
        return FunctionResult(result="saved", context_update={"city": args["city"]})

    def read_city(args, runtime):
        seen.update(args["swarm_context"])
        return args["swarm_context"].get("city")

    queen = Agent(
        name="Queen",
        description="d",
        instructions="Help the user.",
        actions={
            "set_city": FunctionAction(description="Save the city", execute=set_city),
            "read_city": FunctionAction(description="Read the city", execute=read_city, parameters=CONTEXT_SCHEMA),
        },
    )
    model = ScriptedModelClient([
        call_step(make_call("set_city", {"city": "Paris"}), make_call("read_city")),
        text_step("Stored Paris."),
    ])
    swarm = Swarm(queen=queen, default_model=model, initial_context={"units": "metric"})

    result = await swarm.invoke("My city is Paris")

    assert_equal(seen, {"units": "metric", "city": "Paris"}, "Second action must see the update")
    assert_equal(result.context, {"units": "metric", "city": "Paris"})
    assert_equal(swarm.get_context()["city"], "Paris")

    tool_contents = [m["content"] for m in result.messages if m["role"] == "tool"]
    assert_in("Paris", tool_contents, "read_city result is fed back to the model")


async def test_instructions_rerender_each_round():
    """Test the next round renders instructions against the merged context"""
    concierge = Agent(
        name="Concierge",
        description="Local recommendations",
        instructions="Recommend places in {{ city }}.",
    )
    queen = Agent(
        name="Queen",
        description="d",
        instructions="Route the user. Known city: {{ city | default('unknown') }}.",
        actions={
            "remember_city": FunctionAction(
                description="Save the city",
                execute=lambda args, runtime: FunctionResult(result="ok", context_update={"city": args["city"]}),
            ),
            "transfer_to_concierge": concierge.as_handover(),
        },
    )
    model = ScriptedModelClient([
        call_step(make_call("remember_city", {"city": "Lyon"})),
        call_step(make_call("transfer_to_concierge")),
        text_step("Try Les Halles."),
    ])
    swarm = Swarm(queen=queen, default_model=model)

    result = await swarm.invoke("Where should I eat?")

    assert_equal(model.calls[0]["system"], "Route the user. Known city: unknown.")
    assert_equal(model.calls[2]["system"], "Recommend places in Lyon.")
    assert_true(result.active_agent is concierge, "Concierge should be active")


async def test_context_update_option_and_handover_update():
    """Test invocation context_update and handover context updates"""
    specialist = Agent(name="Specialist", description="d", instructions="Ticket {{ ticket }}")
    queen = Agent(
        name="Queen",
        description="d",
        instructions="Route.",
        actions={"escalate": specialist.as_handover(context_update={"escalated": True})},
    )
    model = ScriptedModelClient([
        call_step(make_call("escalate")),
        text_step("On it."),
    ])
    swarm = Swarm(queen=queen, default_model=model)

    result = await swarm.invoke("Help", context_update={"ticket": "T-1"})

    assert_equal(result.context, {"ticket": "T-1", "escalated": True})
    assert_equal(model.calls[1]["system"], "Ticket T-1")
    await assert_raises_async(SwarmValidationError, swarm.invoke("Again", context_update={"x": object()}))
    assert_not_in("x", swarm.get_context(), "Rejected update must not be applied")


async def test_callable_instructions_receive_snapshot():
    """Test callable instructions get a copy of the context"""
    def instructions(context):
        context["mutated"] = True
        return f"Plan: {context['plan']}"

    assert_equal(render(instructions, {"plan": "pro"}), "Plan: pro")

    live = {"plan": "pro"}
    render(instructions, live)
    assert_not_in("mutated", live, "Callable must not mutate the live context")


async def test_template_context_keys_are_not_keywords():
    """Test any JSON key renders, including names Jinja2 uses for arguments"""
    context = {"self": 1, "name": "n"}
    agent = Agent(name="A", description="d", instructions="hi {{ name }}")

    assert_equal(render("hi {{ name }}", context), "hi n")
    assert_equal(agent.get_instructions(context), "hi n")


async def main():
    """Run all context tests"""
    return await run_tests("Shared Context Tests", [
        ("Shallow merge", test_shallow_merge),
        ("Snapshot isolation", test_snapshot_isolation),
        ("JSON validation", test_json_validation),
        ("Read-only context views", test_read_only_views),
        ("Action updates visible immediately", test_action_updates_visible_immediately),
        ("Instructions re-render each round", test_instructions_rerender_each_round),
        ("Invocation and handover context updates", test_context_update_option_and_handover_update),
        ("Callable instructions receive snapshot", test_callable_instructions_receive_snapshot),
        ("Template context keys are not keywords", test_template_context_keys_are_not_keywords),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
