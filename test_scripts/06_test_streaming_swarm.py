#!/usr/bin/env python3
"""
Test: Streaming Swarm
Purpose: Verify the streaming turn loop and its stream projections

Tests:
- Text round-trip across a handover
- Parts are tagged with the agent that produced them, in order
- Handover results appear on the stream with handed_over_to
- Data stream encoding of a whole invocation
- Model errors reach text_stream and the result futures
- Handover failures become an error part
- Closing the reader cancels the turn loop
"""

import asyncio
import json
import sys

from fixtures import (
    ScriptedModelClient, make_call, call_step, text_step, collect, run_tests,
    assert_equal, assert_true, assert_in, assert_raises, assert_raises_async
)

from agent_swarm.agent_layer.agent import Agent, FunctionAction, HandoverAction
from agent_swarm.agent_layer.swarm import Swarm
from agent_swarm.core.errors import HandoverExecutionError, ModelInvocationError, SwarmValidationError
from agent_swarm.models.schemas import FinishReason, StreamPartType


def build_weather_swarm(model):
    weather = Agent(
        name="Weather",
        description="Answers questions about the weather",
        instructions="You are a weather assistant.",
        actions={
            "get_weather": FunctionAction(
                description="Get the current weather",
                execute=lambda args, runtime: {"temperature": 21},
            ),
        },
    )
    router = Agent(
        name="Router",
        description="Routes the user",
        instructions="Route the user.",
        actions={"transfer_to_weather": weather.as_handover()},
    )
    return Swarm(queen=router, default_model=model), router, weather


def weather_script():
    return [
        call_step(make_call("transfer_to_weather"), text="Let me check. "),
        call_step(make_call("get_weather", {"location": "Paris"})),
        text_step("It is 21 degrees in Paris today."),
    ]


async def wait_settled(future):
    """Wait for a result future without raising"""
    try:
        await future
    except BaseException:
        pass


async def test_text_round_trip():
    """Test text deltas concatenate to the final text"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient(weather_script()))

    result = swarm.stream("What's the weather in Paris?")
    chunks = await collect(result.text_stream)

    assert_equal("".join(chunks), await result.text)
    assert_equal(await result.text, "Let me check. It is 21 degrees in Paris today.")
    assert_true(await result.active_agent is weather, "Weather is active")
    assert_equal(await result.finish_reason, FinishReason.STOP)
    assert_true(len(chunks) > 2, "Text arrives incrementally")


async def test_parts_tagged_and_ordered():
    """Test agent tags and contiguous per-round ordering"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient(weather_script()))

    result = swarm.stream("What's the weather in Paris?")
    parts = await collect(result.full_stream)

    assert_true(all("agent" in part for part in parts), "Every part is tagged")
    names = [part["agent"]["name"] for part in parts]
    first_weather = names.index("Weather")
    assert_true(all(name == "Router" for name in names[:first_weather]), "Router parts come first")
    assert_true(all(name == "Weather" for name in names[first_weather:]), "Weather parts are contiguous")

    handovers = [part for part in parts if part.get("handed_over_to")]
    assert_equal(len(handovers), 1)
    assert_equal(handovers[0]["type"], StreamPartType.ACTION_RESULT)
    assert_equal(handovers[0]["handed_over_to"], {"id": weather.id, "name": "Weather"})
    assert_equal(handovers[0]["agent"]["name"], "Router")
    assert_equal(handovers[0]["result"], "Handing over to agent Weather")

    results = [part for part in parts if part["type"] == StreamPartType.ACTION_RESULT and not part.get("handed_over_to")]
    assert_equal(results[0]["result"], {"temperature": 21})

    messages = await result.messages
    assert_equal(swarm.get_messages(), messages, "History stored after the stream ends")
    assert_equal([m.get("sender") for m in messages if m["role"] == "assistant"], ["Router", "Weather", "Weather"])


async def test_data_stream_of_invocation():
    """Test the wire encoding of a streamed invocation"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient(weather_script()))

    result = swarm.stream("What's the weather in Paris?")
    body = b"".join(await collect(result.to_data_stream(send_usage=False))).decode("utf-8")
    lines = body.splitlines()

    assert_equal(lines[0], '2:[{"type": "start"}]')
    assert_equal([line for line in lines if line.startswith("d:")], ['d:{"finishReason": "stop"}'])
    assert_true(lines[-1].startswith("d:"), "Finish sentinel is last")

    handover_lines = [json.loads(line[2:]) for line in lines if line.startswith("a:") and "handedOverTo" in line]
    assert_equal(len(handover_lines), 1)
    assert_equal(handover_lines[0]["handedOverTo"]["name"], "Weather")

    text = "".join(json.loads(line[2:]) for line in lines if line.startswith("0:"))
    assert_equal(text, await result.text)


async def test_consume_without_reader():
    """Test consume() runs the loop to completion"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient(weather_script()))

    result = swarm.stream("What's the weather in Paris?")
    await result.consume()

    assert_true(await result.active_agent is weather)
    assert_equal((await result.context), {})
    assert_true(swarm.active_agent is weather)


async def test_model_error_reaches_readers():
    """Test a provider failure errors text_stream and rejects the futures"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient([RuntimeError("provider down")]))

    result = swarm.stream("Hi")
    await assert_raises_async(ModelInvocationError, collect(result.text_stream))
    await assert_raises_async(ModelInvocationError, result.text)
    await assert_raises_async(ModelInvocationError, result.active_agent)


async def test_model_error_on_full_stream():
    """Test the full stream carries one error part and then ends"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient([RuntimeError("provider down")]))

    result = swarm.stream("Hi")
    parts = await collect(result.full_stream)

    errors = [part for part in parts if part["type"] == StreamPartType.ERROR]
    assert_equal(len(errors), 1, "Exactly one error part")
    assert_equal(parts[-1]["type"], StreamPartType.FINISH)
    assert_equal(parts[-1]["finish_reason"], FinishReason.ERROR)
    await assert_raises_async(ModelInvocationError, result.finish_reason)


async def test_handover_failure_becomes_error_part():
    """Test a raising handover executor ends the stream with an error part"""
    def broken(args, runtime):
        raise ValueError("no such team")

    queen = Agent(
        name="Queen",
        description="d",
        instructions="i",
        actions={"transfer": HandoverAction(description="Broken", execute=broken)},
    )
    swarm = Swarm(queen=queen, default_model=ScriptedModelClient([call_step(make_call("transfer"))]))

    result = swarm.stream("Hi")
    parts = await collect(result.full_stream)

    assert_equal(parts[-1]["type"], StreamPartType.ERROR)
    assert_true(isinstance(parts[-1]["error"], HandoverExecutionError), "Handover error surfaced")
    await assert_raises_async(HandoverExecutionError, result.messages)


async def test_closing_reader_cancels_loop():
    """Test closing the only reader cancels the turn loop"""
    model = ScriptedModelClient(
        [text_step("A long answer that arrives in many small chunks.")],
        chunk_size=2,
    )
    swarm, router, weather = build_weather_swarm(model)

    result = swarm.stream("Tell me something")
    text_stream = result.text_stream
    first = await text_stream.__anext__()
    await text_stream.aclose()
    await wait_settled(result.finish_reason)

    assert_equal(first, "A ")
    assert_true(result.finish_reason.cancelled(), "Futures cancelled")
    assert_true(result.stitch.is_cancelled, "Stream cancelled")
    assert_equal(swarm.get_messages(), [], "Cancelled invocation stores nothing")


async def test_stream_validation():
    """Test malformed stream options raise before anything starts"""
    swarm, router, weather = build_weather_swarm(ScriptedModelClient())

    assert_raises(SwarmValidationError, swarm.stream)
    assert_raises(SwarmValidationError, swarm.stream, "Hi", max_turns=-1)

    # Still usable afterwards
    result = swarm.stream("Hi")
    await result.consume()
    assert_in(await result.finish_reason, (FinishReason.STOP,))


async def main():
    """Run all streaming swarm tests"""
    return await run_tests("Streaming Swarm Tests", [
        ("Text round-trip", test_text_round_trip),
        ("Parts tagged and ordered", test_parts_tagged_and_ordered),
        ("Data stream of an invocation", test_data_stream_of_invocation),
        ("consume() without reader", test_consume_without_reader),
        ("Model error reaches readers", test_model_error_reaches_readers),
        ("Model error on full stream", test_model_error_on_full_stream),
        ("Handover failure becomes error part", test_handover_failure_becomes_error_part),
        ("Closing reader cancels loop", test_closing_reader_cancels_loop),
        ("Stream validation", test_stream_validation),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
