#!/usr/bin/env python3
"""
Test: Turn Loop
Purpose: Verify the blocking turn loop, handovers and turn budgets

Tests:
- Router hands over to a specialist that answers with a tool
- Context-requesting actions receive a snapshot, the model never sees it
- Global turn budget always terminates the loop
- First handover in a step wins
- Unknown actions get a synthesized result
- Exhausted agent turn cap falls back to the queen
- return_to_queen, forced agent and stateless invocations
- Model and handover failures
"""

import asyncio
import sys

from fixtures import (
    ScriptedModelClient, StepCollector, make_call, call_step, text_step, run_tests,
    assert_equal, assert_true, assert_false, assert_in, assert_not_in, assert_raises_async
)

from agent_swarm.agent_layer.agent import Agent, FunctionAction, HandoverAction, HandoverResult
from agent_swarm.agent_layer.swarm import Swarm
from agent_swarm.core.errors import (
    AgentNotFoundError,
    HandoverExecutionError,
    ModelInvocationError,
    SwarmValidationError,
)
from agent_swarm.models.schemas import FinishReason


def get_weather(args, runtime):
    return {"location": args.get("location", "Paris"), "temperature": 21, "unit": "C"}


def build_weather_swarm(model, **swarm_options):
    weather = Agent(
        name="Weather",
        description="Answers questions about the weather",
        instructions="You are a weather assistant.",
        actions={
            "get_weather": FunctionAction(
                description="Get the current weather",
                execute=get_weather,
                parameters={"type": "object", "properties": {"location": {"type": "string"}}},
            ),
        },
    )
    router = Agent(
        name="Router",
        description="Routes the user to a specialist",
        instructions="Route the user to the right agent.",
        actions={"transfer_to_weather": weather.as_handover()},
    )
    swarm = Swarm(queen=router, default_model=model, **swarm_options)
    return swarm, router, weather


def assistant_senders(messages):
    return [m["sender"] for m in messages if m["role"] == "assistant"]


def handover_messages(messages):
    return [m for m in messages if m["role"] == "tool" and "handed_over_to" in m]


async def test_router_hands_over_to_weather():
    """Test a handover followed by a tool-using specialist"""
    model = ScriptedModelClient([
        call_step(make_call("transfer_to_weather")),
        call_step(make_call("get_weather", {"location": "Paris"})),
        text_step("It is 21°C in Paris."),
    ])
    swarm, router, weather = build_weather_swarm(model)

    result = await swarm.invoke("What's the weather in Paris?")

    assert_equal(result.finish_reason, FinishReason.STOP)
    assert_true(result.active_agent is weather, "Weather agent should be active")
    assert_true(swarm.active_agent is weather, "Swarm keeps the new active agent")
    assert_equal(result.text, "It is 21°C in Paris.")

    handovers = handover_messages(result.messages)
    assert_equal(len(handovers), 1, "Exactly one handover")
    assert_equal(handovers[0]["handed_over_to"], {"id": weather.id, "name": "Weather"})
    assert_equal(handovers[0]["content"], "Handing over to agent Weather")

    assert_equal(assistant_senders(result.messages), ["Router", "Weather", "Weather"])
    assert_equal(result.messages[0], {"role": "user", "content": "What's the weather in Paris?"})
    assert_equal(swarm.get_messages(), result.messages, "History is stored")
    assert_equal(model.calls[1]["system"], "You are a weather assistant.")


async def test_context_action_receives_snapshot():
    """Test the reserved parameter is hidden from the model and filled in"""
    received = []

    def lookup_account(args, runtime):
        received.append(args)
        return f"Plan is {args['swarm_context']['plan']}"

    queen = Agent(
        name="Support",
        description="d",
        instructions="Help the user.",
        actions={
            "lookup_account": FunctionAction(
                description="Look up the account",
                execute=lookup_account,
                parameters={
                    "type": "object",
                    "properties": {
                        "field": {"type": "string"},
                        "swarm_context": {"type": "object"},
                    },
                    "required": ["field", "swarm_context"],
                },
            ),
        },
    )
    model = ScriptedModelClient([
        call_step(make_call("lookup_account", {"field": "plan"})),
        text_step("You are on the pro plan."),
    ])
    swarm = Swarm(queen=queen, default_model=model, initial_context={"plan": "pro"})

    await swarm.invoke("Which plan am I on?")

    model_schema = model.calls[0]["actions"]["lookup_account"].parameters
    assert_not_in("swarm_context", model_schema["properties"], "Model never sees the reserved field")
    assert_equal(model_schema["required"], ["field"])
    assert_equal(received, [{"field": "plan", "swarm_context": {"plan": "pro"}}])


def build_looping_swarm(model, max_turns):
    looper = Agent(
        name="Looper",
        description="Hands over to itself forever",
        instructions="Loop.",
        actions={
            "loop": HandoverAction(
                description="Hand over to yourself",
                execute=lambda args, runtime: HandoverResult(agent="Looper"),
            ),
        },
    )
    return Swarm(queen=looper, default_model=model, max_turns=max_turns)


async def test_budget_one_self_handover():
    """Test a global budget of 1 ends after exactly one round"""
    model = ScriptedModelClient(responder=lambda *args: call_step(make_call("loop")))
    swarm = build_looping_swarm(model, max_turns=1)

    result = await swarm.invoke("Go")

    assert_equal(len(model.calls), 1, "Exactly one round")
    assert_equal(result.finish_reason, FinishReason.TOOL_CALLS, "Finish reason of the single round")
    assert_equal(len(handover_messages(result.messages)), 1)


async def test_termination_for_any_budget():
    """Test self-handover loops stop within the global budget"""
    for budget in (2, 3, 7):
        model = ScriptedModelClient(responder=lambda *args: call_step(make_call("loop")))
        swarm = build_looping_swarm(model, max_turns=budget)

        result = await swarm.invoke("Go")

        assert_true(len(model.calls) <= budget, f"Budget {budget} exceeded: {len(model.calls)} rounds")
        assert_equal(len(assistant_senders(result.messages)), budget)

    model = ScriptedModelClient(responder=lambda *args: call_step(make_call("loop")))
    swarm = build_looping_swarm(model, max_turns=10)
    await swarm.invoke("Go", max_turns=3)
    assert_equal(len(model.calls), 3, "Per-call max_turns overrides the swarm budget")


async def test_first_handover_wins():
    """Test only the first handover of a step is applied"""
    billing = Agent(name="Billing", description="Billing questions", instructions="Billing.")
    sales = Agent(name="Sales", description="Sales questions", instructions="Sales.")
    router = Agent(
        name="Router",
        description="d",
        instructions="Route.",
        actions={
            "transfer_to_billing": billing.as_handover(),
            "transfer_to_sales": sales.as_handover(),
        },
    )
    billing_call = make_call("transfer_to_billing")
    sales_call = make_call("transfer_to_sales")
    model = ScriptedModelClient([
        call_step(billing_call, sales_call),
        text_step("Billing here."),
    ])
    swarm = Swarm(queen=router, default_model=model)

    result = await swarm.invoke("Refund and upgrade please")

    assert_true(result.active_agent is billing, "First handover applied")
    handovers = handover_messages(result.messages)
    assert_equal(len(handovers), 1, "Second handover discarded")
    assert_equal(handovers[0]["tool_call_id"], billing_call.id)
    tool_call_ids = [m.get("tool_call_id") for m in result.messages if m["role"] == "tool"]
    assert_not_in(sales_call.id, tool_call_ids, "Discarded handover gets no result")


async def test_unknown_action_gets_synthesized_result():
    """Test calls to actions the agent lacks don't stall the loop"""
    queen = Agent(name="Queen", description="d", instructions="i")
    ghost = make_call("does_not_exist", {"x": 1})
    model = ScriptedModelClient([
        call_step(ghost),
        text_step("Sorry about that."),
    ])
    swarm = Swarm(queen=queen, default_model=model)

    result = await swarm.invoke("Hi")

    tool_messages = [m for m in result.messages if m["role"] == "tool"]
    assert_equal(len(tool_messages), 1)
    assert_equal(tool_messages[0]["tool_call_id"], ghost.id)
    assert_equal(tool_messages[0]["content"], "Action does_not_exist is not available")
    assert_equal(result.finish_reason, FinishReason.STOP)
    assert_equal(result.text, "Sorry about that.")


async def test_turn_cap_falls_back_to_queen():
    """Test an agent that exhausts its own cap hands control back to the queen"""
    specialist = Agent(
        name="Specialist",
        description="Runs one lookup",
        instructions="Specialist.",
        max_turns=1,
        actions={"lookup": FunctionAction(description="Look up", execute=lambda args, runtime: "found")},
    )
    queen = Agent(
        name="Queen",
        description="d",
        instructions="Queen.",
        actions={"transfer_to_specialist": specialist.as_handover()},
    )
    model = ScriptedModelClient([
        call_step(make_call("transfer_to_specialist")),
        call_step(make_call("lookup")),
        text_step("Here is what the specialist found."),
    ])
    swarm = Swarm(queen=queen, default_model=model)

    result = await swarm.invoke("Look something up")

    assert_equal(len(model.calls), 3)
    assert_equal(model.calls[1]["system"], "Specialist.")
    assert_equal(model.calls[2]["system"], "Queen.", "Queen takes over after the cap")
    assert_true(result.active_agent is queen, "Queen is active at the end")
    assert_equal(result.finish_reason, FinishReason.STOP)


async def test_return_to_queen():
    """Test return_to_queen reactivates the queen after the invocation"""
    model = ScriptedModelClient([
        call_step(make_call("transfer_to_weather")),
        text_step("Sunny."),
        call_step(make_call("transfer_to_weather")),
        text_step("Still sunny."),
    ])
    swarm, router, weather = build_weather_swarm(model, return_to_queen=True)

    result = await swarm.invoke("Weather?")
    assert_true(result.active_agent is router, "Queen reactivated (constructor default)")

    result = await swarm.invoke("And now?", return_to_queen=False)
    assert_true(result.active_agent is weather, "Per-call override keeps the specialist")


async def test_forced_agent():
    """Test invoking a specific agent by name"""
    model = ScriptedModelClient([text_step("Forecast: rain.")])
    swarm, router, weather = build_weather_swarm(model)
    swarm.registry.register(weather)

    result = await swarm.invoke("Forecast?", agent="Weather")

    assert_equal(model.calls[0]["system"], "You are a weather assistant.")
    assert_true(result.active_agent is weather)
    await assert_raises_async(AgentNotFoundError, swarm.invoke("x", agent="Nobody"))


async def test_stateless_messages():
    """Test supplying messages leaves the stored history untouched"""
    model = ScriptedModelClient([text_step("First."), text_step("Stateless.")])
    swarm, router, weather = build_weather_swarm(model)

    await swarm.invoke("Hello")
    stored = swarm.get_messages()

    history = [{"role": "user", "content": "Earlier question"}, {"role": "assistant", "content": "Earlier answer"}]
    result = await swarm.invoke("Follow-up", messages=history)

    assert_equal(swarm.get_messages(), stored, "Stored history unchanged")
    assert_equal(result.messages[:2], history)
    assert_equal(result.messages[2], {"role": "user", "content": "Follow-up"})
    assert_equal(model.calls[1]["messages"][:3], history + [{"role": "user", "content": "Follow-up"}])


async def test_history_accumulates_and_resets():
    """Test invocations share the stored history until reset()"""
    model = ScriptedModelClient([text_step("One."), text_step("Two.")])
    swarm, router, weather = build_weather_swarm(model)

    await swarm.invoke("First")
    await swarm.invoke("Second")

    contents = [m["content"] for m in swarm.get_messages()]
    assert_equal(contents, ["First", "One.", "Second", "Two."])
    assert_in({"role": "user", "content": "First"}, model.calls[1]["messages"])

    swarm.reset()
    assert_equal(swarm.get_messages(), [])
    assert_true(swarm.active_agent is router)


async def test_invocation_validation():
    """Test malformed invocations fail before any model call"""
    model = ScriptedModelClient([text_step("unused")])
    swarm, router, weather = build_weather_swarm(model)

    await assert_raises_async(SwarmValidationError, swarm.invoke())
    await assert_raises_async(SwarmValidationError, swarm.invoke("Hi", max_turns=0))
    await assert_raises_async(SwarmValidationError, swarm.invoke(42))
    await assert_raises_async(SwarmValidationError, swarm.invoke(messages=[{"content": "no role"}]))
    assert_equal(len(model.calls), 0, "Model never called")


async def test_model_error_is_finish_reason():
    """Test provider failures surface as finish reason error"""
    model = ScriptedModelClient([RuntimeError("provider down")])
    swarm, router, weather = build_weather_swarm(model)

    result = await swarm.invoke("Hi")

    assert_equal(result.finish_reason, FinishReason.ERROR)
    assert_true(isinstance(result.error, ModelInvocationError), "Error attached")
    assert_equal(len(model.calls), 1, "Never retried")


async def test_handover_executor_failure():
    """Test a raising handover executor aborts the invocation"""
    def broken(args, runtime):
        raise ValueError("target lookup failed")

    queen = Agent(
        name="Queen",
        description="d",
        instructions="i",
        actions={"transfer": HandoverAction(description="Broken handover", execute=broken)},
    )
    model = ScriptedModelClient([call_step(make_call("transfer"))])
    swarm = Swarm(queen=queen, default_model=model)

    try:
        await swarm.invoke("Hi")
        raise AssertionError("Expected HandoverExecutionError")
    except HandoverExecutionError as e:
        assert_equal(e.action_name, "transfer")
        assert_true(isinstance(e.cause, ValueError), "Original error kept")

    assert_equal(swarm.get_messages(), [], "No partial transcript stored")
    assert_true(swarm.active_agent is queen)


async def test_handover_to_unknown_agent():
    """Test handovers naming an unregistered agent fail"""
    queen = Agent(
        name="Queen",
        description="d",
        instructions="i",
        actions={
            "transfer": HandoverAction(
                description="Hand over by name",
                execute=lambda args, runtime: HandoverResult(agent="Ghost"),
            ),
        },
    )
    model = ScriptedModelClient([call_step(make_call("transfer"))])
    swarm = Swarm(queen=queen, default_model=model)

    await assert_raises_async(AgentNotFoundError, swarm.invoke("Hi"))


async def test_step_callback_and_usage():
    """Test on_step_finish sees every step and usage is summed"""
    collector = StepCollector()
    model = ScriptedModelClient([
        call_step(make_call("transfer_to_weather")),
        call_step(make_call("get_weather")),
        text_step("Warm.", tokens=5),
    ])
    swarm, router, weather = build_weather_swarm(model)

    result = await swarm.invoke("Weather?", on_step_finish=collector.handler)

    assert_equal(collector.count(), 3)
    assert_equal(len(result.steps), 3)
    assert_false(collector.steps[-1].is_continued)
    assert_true(collector.steps[1].is_continued, "Resolved tool step continues")
    assert_equal(result.usage.total_tokens, 10)


async def main():
    """Run all turn loop tests"""
    return await run_tests("Turn Loop Tests", [
        ("Router hands over to weather", test_router_hands_over_to_weather),
        ("Context action receives snapshot", test_context_action_receives_snapshot),
        ("Budget of one with self-handover", test_budget_one_self_handover),
        ("Termination for any budget", test_termination_for_any_budget),
        ("First handover wins", test_first_handover_wins),
        ("Unknown action gets synthesized result", test_unknown_action_gets_synthesized_result),
        ("Turn cap falls back to queen", test_turn_cap_falls_back_to_queen),
        ("Return to queen", test_return_to_queen),
        ("Forced agent", test_forced_agent),
        ("Stateless messages", test_stateless_messages),
        ("History accumulates and resets", test_history_accumulates_and_resets),
        ("Invocation validation", test_invocation_validation),
        ("Model error is a finish reason", test_model_error_is_finish_reason),
        ("Handover executor failure", test_handover_executor_failure),
        ("Handover to unknown agent", test_handover_to_unknown_agent),
        ("Step callback and usage", test_step_callback_and_usage),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
