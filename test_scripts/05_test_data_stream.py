#!/usr/bin/env python3
"""
Test: Data Stream Protocol
Purpose: Verify the `<code>:<json>` line encoding of stream parts

Tests:
- Line framing and JSON escaping
- Start sentinel first, exactly one finish sentinel last
- Usage, reasoning and sources toggles
- Handover results carry handedOverTo
- Errors are masked by default and formatted by get_error_message
- Encoding failures become a single error line
- HTTP response headers
"""

import asyncio
import json
import sys

from fixtures import (
    async_items, collect, run_tests,
    assert_equal, assert_true, assert_in, assert_not_in
)

from agent_swarm.core.data_stream import (
    DATA_STREAM_HEADERS,
    MASKED_ERROR_MESSAGE,
    DataStreamCode,
    encode_part,
    to_data_stream,
    to_data_stream_lines,
    to_data_stream_response,
)
from agent_swarm.models.schemas import DataStreamOptions, FinishReason, StreamPartType, Usage


def parse(line):
    code, _, payload = line.partition(":")
    return code, json.loads(payload)


def round_parts(text, finish_reason=FinishReason.STOP, usage=None):
    usage = usage or Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
    return [
        {"type": StreamPartType.STEP_START, "message_id": "msg-1"},
        {"type": StreamPartType.TEXT_DELTA, "text_delta": text},
        {"type": StreamPartType.STEP_FINISH, "finish_reason": finish_reason, "usage": usage, "is_continued": False},
        {"type": StreamPartType.FINISH, "finish_reason": finish_reason, "usage": usage},
    ]


async def test_line_framing_and_escaping():
    """Test control characters never break line framing"""
    line = encode_part(DataStreamCode.TEXT, 'He said "hi"\n\tthen left\\')

    assert_true(line.endswith("\n"), "Lines end with a newline")
    assert_equal(line.count("\n"), 1, "Payload newlines are escaped")
    assert_equal(parse(line), ("0", 'He said "hi"\n\tthen left\\'))
    assert_equal(encode_part(DataStreamCode.TEXT, "héllo"), '0:"héllo"\n')


async def test_start_and_single_finish():
    """Test sentinels around a multi-round stream"""
    parts = round_parts("Hello ") + round_parts("world", usage=Usage(prompt_tokens=1, completion_tokens=1, total_tokens=2))
    lines = await collect(to_data_stream_lines(async_items(*parts)))

    assert_equal(lines[0], '2:[{"type": "start"}]\n')
    finish_lines = [line for line in lines if line.startswith("d:")]
    assert_equal(len(finish_lines), 1, "Exactly one finish sentinel")
    assert_equal(lines[-1], finish_lines[0], "Finish sentinel is last")
    assert_equal(parse(lines[-1])[1], {
        "finishReason": "stop",
        "usage": {"promptTokens": 4, "completionTokens": 3},
    })

    text = "".join(parse(line)[1] for line in lines if line.startswith("0:"))
    assert_equal(text, "Hello world")
    assert_equal(parse(lines[1]), ("f", {"messageId": "msg-1"}))
    assert_equal(parse(lines[3])[1], {
        "finishReason": "stop",
        "usage": {"promptTokens": 3, "completionTokens": 2},
        "isContinued": False,
    })


async def test_toggles():
    """Test usage, start, finish, reasoning and sources toggles"""
    parts = [
        {"type": StreamPartType.REASONING, "text": "thinking"},
        {"type": StreamPartType.SOURCE, "source": {"url": "https://example.com"}},
    ] + round_parts("ok")

    default_lines = await collect(to_data_stream_lines(async_items(*parts)))
    codes = [line[0] for line in default_lines]
    assert_not_in("g", codes, "Reasoning off by default")
    assert_not_in("h", codes, "Sources off by default")

    options = DataStreamOptions(send_usage=False, send_reasoning=True, send_sources=True, send_start=False)
    lines = await collect(to_data_stream_lines(async_items(*parts), options))
    assert_equal(parse(lines[0]), ("g", "thinking"))
    assert_equal(parse(lines[1]), ("h", {"url": "https://example.com"}))
    assert_equal(parse(lines[-1])[1], {"finishReason": "stop"}, "No usage when disabled")

    no_finish = await collect(to_data_stream_lines(async_items(*parts), DataStreamOptions(send_finish=False)))
    assert_true(all(not line.startswith("d:") for line in no_finish), "Finish sentinel suppressed")


async def test_action_parts():
    """Test action call, delta and result lines"""
    parts = [
        {"type": StreamPartType.ACTION_CALL_STREAMING_START, "tool_call_id": "c1", "tool_name": "get_weather"},
        {"type": StreamPartType.ACTION_CALL_DELTA, "tool_call_id": "c1", "tool_name": "get_weather", "args_text_delta": '{"loc'},
        {"type": StreamPartType.ACTION_CALL, "tool_call_id": "c1", "tool_name": "get_weather", "args": {"location": "Paris"}},
        {"type": StreamPartType.ACTION_RESULT, "tool_call_id": "c1", "tool_name": "get_weather", "args": {}, "result": {"temp": 21}},
        {
            "type": StreamPartType.ACTION_RESULT,
            "tool_call_id": "c2",
            "tool_name": "transfer_to_weather",
            "args": {},
            "result": "Handing over to agent Weather",
            "handed_over_to": {"id": "abc", "name": "Weather"},
            "agent": {"id": "r1", "name": "Router"},
        },
    ]
    lines = await collect(to_data_stream_lines(async_items(*parts), DataStreamOptions(send_start=False, send_finish=False)))

    assert_equal(parse(lines[0]), ("b", {"toolCallId": "c1", "toolName": "get_weather"}))
    assert_equal(parse(lines[1]), ("c", {"toolCallId": "c1", "argsTextDelta": '{"loc'}))
    assert_equal(parse(lines[2]), ("9", {"toolCallId": "c1", "toolName": "get_weather", "args": {"location": "Paris"}}))
    assert_equal(parse(lines[3]), ("a", {"toolCallId": "c1", "result": {"temp": 21}}))
    assert_equal(parse(lines[4]), ("a", {
        "toolCallId": "c2",
        "result": "Handing over to agent Weather",
        "handedOverTo": {"id": "abc", "name": "Weather"},
    }))


async def test_annotations_files_and_unknown_parts():
    """Test annotation wrapping, file parts and skipping unknown types"""
    parts = [
        {"type": StreamPartType.ANNOTATION, "value": {"agent": "Router"}},
        {"type": StreamPartType.FILE, "data": "aGk=", "mime_type": "text/plain"},
        {"type": "something-new", "payload": 1},
        {"type": StreamPartType.REDACTED_REASONING, "data": "xyz"},
    ]
    options = DataStreamOptions(send_start=False, send_finish=False, send_reasoning=True)
    lines = await collect(to_data_stream_lines(async_items(*parts), options))

    assert_equal(len(lines), 3, "Unknown part skipped")
    assert_equal(parse(lines[0]), ("8", [{"agent": "Router"}]))
    assert_equal(parse(lines[1]), ("k", {"data": "aGk=", "mimeType": "text/plain"}))
    assert_equal(parse(lines[2]), ("i", {"data": "xyz"}))


async def test_error_parts():
    """Test error messages are masked unless a formatter is given"""
    parts = [{"type": StreamPartType.ERROR, "error": RuntimeError("secret stack detail")}]

    masked = await collect(to_data_stream_lines(async_items(*parts), DataStreamOptions(send_start=False, send_finish=False)))
    assert_equal(masked, [encode_part(DataStreamCode.ERROR, MASKED_ERROR_MESSAGE)])

    options = DataStreamOptions(
        send_start=False,
        send_finish=False,
        get_error_message=lambda e: f"failed: {e}",
    )
    custom = await collect(to_data_stream_lines(async_items(*parts), options))
    assert_equal(parse(custom[0]), ("3", "failed: secret stack detail"))


async def test_encoding_failure_closes_stream():
    """Test an exception while reading parts yields one error line and stops"""
    source = async_items(
        {"type": StreamPartType.TEXT_DELTA, "text_delta": "partial"},
        fail_with=ValueError("boom"),
    )
    lines = await collect(to_data_stream_lines(source))

    assert_equal(lines[0][0], "2")
    assert_equal(parse(lines[1]), ("0", "partial"))
    assert_equal(parse(lines[2]), ("3", MASKED_ERROR_MESSAGE))
    assert_equal(len(lines), 3, "Nothing after the error line")


async def test_byte_stream_and_response():
    """Test the byte stream and the HTTP response wrapper"""
    chunks = await collect(to_data_stream(async_items(*round_parts("hi"))))
    body = b"".join(chunks).decode("utf-8")
    assert_true(body.startswith("2:"), "Body starts with the start sentinel")
    assert_in('0:"hi"\n', body)

    response = to_data_stream_response(async_items(*round_parts("hi")), headers={"X-Request-Id": "r-1"})
    assert_equal(response.status_code, 200)
    assert_equal(response.headers["x-vercel-ai-data-stream"], DATA_STREAM_HEADERS["X-Vercel-AI-Data-Stream"])
    assert_equal(response.headers["content-type"], "text/plain; charset=utf-8")
    assert_equal(response.headers["cache-control"], "no-cache")
    assert_equal(response.headers["x-request-id"], "r-1")

    streamed = [chunk async for chunk in response.body_iterator]
    assert_true(any(b'0:"hi"' in chunk for chunk in streamed), "Response streams the protocol body")


async def main():
    """Run all data stream tests"""
    return await run_tests("Data Stream Protocol Tests", [
        ("Line framing and escaping", test_line_framing_and_escaping),
        ("Start and single finish sentinel", test_start_and_single_finish),
        ("Protocol toggles", test_toggles),
        ("Action parts", test_action_parts),
        ("Annotations, files and unknown parts", test_annotations_files_and_unknown_parts),
        ("Error parts", test_error_parts),
        ("Encoding failure closes stream", test_encoding_failure_closes_stream),
        ("Byte stream and HTTP response", test_byte_stream_and_response),
    ])


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
