#!/usr/bin/env python3
"""
Test: OpenAI Adapter
Purpose: Verify translation between the swarm protocol and chat completions

Tests:
- Swarm-only message keys are stripped before the request
- tool_choice mapping
- Blocking calls run the step loop with finish reason and usage mapping
- Streamed tool call deltas are accumulated into one action call
- Provider errors become an error finish, never an exception
"""

import asyncio
import sys
from types import SimpleNamespace

from fixtures import (
    collect, run_tests,
    assert_equal, assert_true, assert_not_in
)

from agent_swarm.agent_layer.actions import ActionKind, ModelAction
from agent_swarm.agent_layer.adapters.openai import OpenAIModelClient, map_finish_reason
from agent_swarm.agent_layer.protocol import ModelRequest
from agent_swarm.core.errors import ModelInvocationError
from agent_swarm.models.schemas import FinishReason, StreamPartType, Usage


class FakeCompletions:
    """Stands in for AsyncOpenAI().chat.completions"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if kwargs.get("stream"):
            return chunk_stream(response)
        return response


async def chunk_stream(chunks):
    for chunk in chunks:
        yield chunk


def fake_client(*responses):
    completions = FakeCompletions(responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def usage(prompt, completion):
    return SimpleNamespace(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


def completion(content=None, tool_calls=None, finish_reason="stop", tokens=(1, 1)):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=usage(*tokens),
    )


def tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def chunk(content=None, tool_calls=None, finish_reason=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(usage=None, choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def weather_action(execute=None):
    return ModelAction(
        name="get_weather",
        description="Get the weather",
        parameters={"type": "object", "properties": {"location": {"type": "string"}}},
        kind=ActionKind.FUNCTION,
        execute=execute,
    )


async def test_message_keys_stripped():
    """Test sender, tool_name and handed_over_to never reach the provider"""
    client = OpenAIModelClient(model="test-model", client=SimpleNamespace())
    messages = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello", "sender": "Router"},
        {
            "role": "tool",
            "tool_call_id": "c1",
            "tool_name": "transfer",
            "content": "Handing over to agent Weather",
            "handed_over_to": {"id": "w", "name": "Weather"},
        },
    ]

    built = client._build_messages("Be nice.", messages)

    assert_equal(built[0], {"role": "system", "content": "Be nice."})
    assert_equal(built[2], {"role": "assistant", "content": "Hello"})
    assert_equal(built[3], {"role": "tool", "tool_call_id": "c1", "content": "Handing over to agent Weather"})
    assert_equal(messages[1]["sender"], "Router", "Input history untouched")


async def test_tool_options():
    """Test function definitions and tool_choice mapping"""
    client = OpenAIModelClient(model="test-model", client=SimpleNamespace())
    actions = {"get_weather": weather_action()}

    assert_equal(client._build_tool_options({}, "required"), {}, "No tools, no options")

    options = client._build_tool_options(actions, {"type": "tool", "tool_name": "get_weather"})
    assert_equal(options["tool_choice"], {"type": "function", "function": {"name": "get_weather"}})
    assert_equal(options["tools"][0]["function"]["name"], "get_weather")

    assert_equal(client._build_tool_options(actions, "none")["tool_choice"], "none")
    assert_not_in("tool_choice", client._build_tool_options(actions, None))

    assert_equal(map_finish_reason("tool_calls"), FinishReason.TOOL_CALLS)
    assert_equal(map_finish_reason(None), FinishReason.UNKNOWN)
    assert_equal(map_finish_reason("something_new"), FinishReason.OTHER)


async def test_blocking_step_loop():
    """Test a blocking call executes actions and continues"""
    async def execute(args, runtime):
        return {"location": args["location"], "sky": "clear"}

    sdk, completions = fake_client(
        completion(
            tool_calls=[tool_call("call_1", "get_weather", '{"location": "Paris"}')],
            finish_reason="tool_calls",
            tokens=(10, 5),
        ),
        completion(content="Clear skies in Paris.", tokens=(20, 6)),
    )
    client = OpenAIModelClient(model="test-model", client=sdk)
    request = ModelRequest(
        system="You are a weather bot.",
        messages=[{"role": "user", "content": "Weather in Paris?"}],
        actions={"get_weather": weather_action(execute)},
        max_steps=3,
    )

    result = await client.generate(request)

    assert_equal(result.finish_reason, FinishReason.STOP)
    assert_equal(result.text, "Clear skies in Paris.")
    assert_equal(result.usage, Usage(prompt_tokens=30, completion_tokens=11, total_tokens=41))
    assert_equal(len(result.steps), 2)
    assert_true(result.steps[0].is_continued, "First step continued")
    assert_equal(result.action_results[0].result, {"location": "Paris", "sky": "clear"})

    second_request = completions.calls[1]["messages"]
    assert_equal(second_request[-1]["role"], "tool")
    assert_not_in("tool_name", second_request[-1], "Tool name stripped on the wire")
    assert_equal(completions.calls[0]["model"], "test-model")


async def test_blocking_stops_on_handover():
    """Test actions without an executor end the call with tool-calls"""
    sdk, completions = fake_client(
        completion(tool_calls=[tool_call("call_1", "transfer", "{}")], finish_reason="tool_calls"),
    )
    client = OpenAIModelClient(model="test-model", client=sdk)
    handover = ModelAction(
        name="transfer",
        description="Hand over",
        parameters={"type": "object", "properties": {}},
        kind=ActionKind.HANDOVER,
    )

    result = await client.generate(ModelRequest(system="s", actions={"transfer": handover}, max_steps=5))

    assert_equal(result.finish_reason, FinishReason.TOOL_CALLS)
    assert_equal([call.name for call in result.action_calls], ["transfer"])
    assert_equal(result.action_results, [])
    assert_equal(len(completions.calls), 1, "No second step")


async def test_streamed_tool_call_accumulation():
    """Test argument deltas are concatenated into one action call"""
    sdk, completions = fake_client([
        chunk(content="Checking"),
        chunk(tool_calls=[tool_delta(0, "call_1", "get_weather", '{"loc')]),
        chunk(tool_calls=[tool_delta(0, arguments='ation": "Paris"}')]),
        chunk(finish_reason="tool_calls"),
        SimpleNamespace(usage=usage(7, 3), choices=[]),
    ])
    client = OpenAIModelClient(model="test-model", client=sdk)
    request = ModelRequest(
        system="s",
        messages=[{"role": "user", "content": "Weather?"}],
        actions={"get_weather": weather_action()},
        stream_action_calls=True,
    )

    generation = client.stream(request)
    parts = await collect(generation.full_stream)
    types = [part["type"] for part in parts]

    assert_equal(types, [
        StreamPartType.STEP_START,
        StreamPartType.TEXT_DELTA,
        StreamPartType.ACTION_CALL_STREAMING_START,
        StreamPartType.ACTION_CALL_DELTA,
        StreamPartType.ACTION_CALL_DELTA,
        StreamPartType.ACTION_CALL,
        StreamPartType.STEP_FINISH,
        StreamPartType.FINISH,
    ])
    call = parts[5]
    assert_equal(call["tool_call_id"], "call_1")
    assert_equal(call["args"], {"location": "Paris"})

    assert_equal(await generation.finish_reason, FinishReason.TOOL_CALLS)
    assert_equal(await generation.usage, Usage(prompt_tokens=7, completion_tokens=3, total_tokens=10))
    assert_equal(await generation.text, "Checking")
    assert_true(completions.calls[0]["stream"], "Streaming request")
    assert_equal(completions.calls[0]["stream_options"], {"include_usage": True})


async def test_deltas_hidden_by_default():
    """Test call deltas are only forwarded when requested"""
    sdk, completions = fake_client([
        chunk(tool_calls=[tool_delta(0, "call_1", "get_weather", "{}")]),
        chunk(finish_reason="tool_calls"),
    ])
    client = OpenAIModelClient(model="test-model", client=sdk)

    generation = client.stream(ModelRequest(system="s", actions={"get_weather": weather_action()}))
    types = [part["type"] for part in await collect(generation.full_stream)]

    assert_not_in(StreamPartType.ACTION_CALL_DELTA, types)
    assert_not_in(StreamPartType.ACTION_CALL_STREAMING_START, types)
    assert_true(StreamPartType.ACTION_CALL in types, "Complete call still emitted")


async def test_provider_errors():
    """Test SDK failures are reported, not raised"""
    sdk, completions = fake_client(RuntimeError("rate limited"), RuntimeError("rate limited"))
    client = OpenAIModelClient(model="test-model", client=sdk)

    result = await client.generate(ModelRequest(system="s"))
    assert_equal(result.finish_reason, FinishReason.ERROR)
    assert_true(isinstance(result.error, ModelInvocationError), "Error attached")

    generation = client.stream(ModelRequest(system="s"))
    parts = await collect(generation.full_stream)
    assert_equal([part["type"] for part in parts], [
        StreamPartType.STEP_START,
        StreamPartType.ERROR,
        StreamPartType.FINISH,
    ])
    assert_equal(await generation.finish_reason, FinishReason.ERROR)


async def main():
    """Run all OpenAI adapter tests"""
    return await run_tests("OpenAI Adapter Tests", [
        ("Message keys stripped", test_message_keys_stripped),
        ("Tool options", test_tool_options),
        ("Blocking step loop", test_blocking_step_loop),
        ("Blocking stops on handover", test_blocking_stops_on_handover),
        ("Streamed tool call accumulation", test_streamed_tool_call_accumulation),
        ("Call deltas hidden by default", test_deltas_hidden_by_default),
        ("Provider errors", test_provider_errors),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
