#!/usr/bin/env python3
"""
Test: Hive
Purpose: Verify swarms spawned from a hive are independent

Tests:
- Spawned swarms don't share context, history or active agent
- Default context is copied, never aliased
- Per-spawn overrides
- Hive validation
"""

import asyncio
import sys

from fixtures import (
    ScriptedModelClient, make_call, call_step, text_step, run_tests,
    assert_equal, assert_true, assert_false, assert_raises
)

from agent_swarm.agent_layer.agent import Agent, FunctionAction, FunctionResult
from agent_swarm.agent_layer.hive import Hive
from agent_swarm.core.errors import SwarmValidationError


def build_hive(model, **options):
    billing = Agent(name="Billing", description="Billing questions", instructions="Billing for {{ customer }}.")
    queen = Agent(
        name="Queen",
        description="Front desk",
        instructions="Welcome {{ customer }}.",
        actions={
            "remember_plan": FunctionAction(
                description="Remember the customer's plan",
                execute=lambda args, runtime: FunctionResult(result="ok", context_update={"plan": args["plan"]}),
            ),
            "transfer_to_billing": billing.as_handover(),
        },
    )
    return Hive(queen=queen, default_model=model, **options), queen, billing


async def test_spawned_swarms_are_isolated():
    """Test one swarm's updates never leak into another"""
    model = ScriptedModelClient([
        call_step(make_call("remember_plan", {"plan": "pro"})),
        call_step(make_call("transfer_to_billing")),
        text_step("Billing here."),
    ])
    hive, queen, billing = build_hive(model, default_context={"customer": "anonymous", "tags": []})

    first = hive.spawn_swarm(context={"customer": "alice", "tags": []})
    second = hive.spawn_swarm(context={"customer": "bob", "tags": []})

    result = await first.invoke("I'm on the pro plan, and I have a billing question")

    assert_equal(result.context, {"customer": "alice", "tags": [], "plan": "pro"})
    assert_equal(dict(second.get_context()), {"customer": "bob", "tags": []}, "Second context untouched")
    assert_true(first.active_agent is billing, "First swarm handed over")
    assert_true(second.active_agent is queen, "Second swarm still on the queen")
    assert_equal(second.get_messages(), [], "Second history untouched")
    assert_equal(model.calls[2]["system"], "Billing for alice.")


async def test_default_context_is_copied():
    """Test the hive default context is never aliased"""
    hive, queen, billing = build_hive(ScriptedModelClient(), default_context={"customer": "anonymous", "tags": ["new"]})

    first = hive.spawn_swarm()
    second = hive.spawn_swarm()

    first.set_context({"customer": "carol"})
    first._context["tags"].append("mutated")

    assert_equal(dict(second.get_context()), {"customer": "anonymous", "tags": ["new"]})
    assert_equal(hive.default_context, {"customer": "anonymous", "tags": ["new"]})


async def test_spawn_overrides():
    """Test queen, model, name, messages and budget overrides"""
    shared_model = ScriptedModelClient()
    other_model = ScriptedModelClient([text_step("Other model.")])
    hive, queen, billing = build_hive(shared_model, name="support", max_turns=5)

    default_swarm = hive.spawn_swarm()
    assert_equal(default_swarm.name, "support-1")
    assert_true(default_swarm.default_model is shared_model, "Model client is shared")
    assert_equal(default_swarm.max_turns, 5)

    history = [{"role": "user", "content": "Earlier"}]
    custom = hive.spawn_swarm(
        queen=billing,
        default_model=other_model,
        messages=history,
        name="vip",
        max_turns=2,
        context={"customer": "dave"},
    )
    history.append({"role": "user", "content": "later edit"})

    assert_equal(custom.name, "vip")
    assert_true(custom.queen is billing)
    assert_equal(custom.max_turns, 2)
    assert_equal(custom.get_messages(), [{"role": "user", "content": "Earlier"}], "Messages copied")

    result = await custom.invoke("Hi")
    assert_equal(result.text, "Other model.")
    assert_equal(other_model.calls[0]["system"], "Billing for dave.")
    assert_false(shared_model.calls, "Shared model not used by the override")


async def test_hive_validation():
    """Test malformed hive options are rejected"""
    model = ScriptedModelClient()
    assert_raises(SwarmValidationError, Hive, queen="not an agent", default_model=model)

    queen = Agent(name="Queen", description="d", instructions="i")
    assert_raises(SwarmValidationError, Hive, queen=queen, default_model=model, default_context=["x"])


async def main():
    """Run all hive tests"""
    return await run_tests("Hive Tests", [
        ("Spawned swarms are isolated", test_spawned_swarms_are_isolated),
        ("Default context is copied", test_default_context_is_copied),
        ("Spawn overrides", test_spawn_overrides),
        ("Hive validation", test_hive_validation),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
