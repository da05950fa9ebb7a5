"""
Data stream wire protocol.

Encodes the fully annotated swarm event stream as newline-delimited
`<code>:<json>` lines that streaming chat clients can consume.

Codes:
    0  text delta                  8  message annotation (JSON array)
    2  start sentinel              9  action call complete
    3  error                       a  action result
    b  action call start           c  action call argument delta
    d  finish sentinel             e  step finish
    f  step start                  g  reasoning delta
    h  source citation             i  redacted reasoning
    j  reasoning signature         k  file
"""

import json
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Optional

import structlog
from fastapi.responses import StreamingResponse

from agent_swarm.config.settings import settings
from agent_swarm.models.schemas import DataStreamOptions, FinishReason, StreamPartType, Usage

logger = structlog.get_logger()

PROTOCOL_VERSION = "v1"

DATA_STREAM_HEADERS = {
    "Content-Type": "text/plain; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Vercel-AI-Data-Stream": PROTOCOL_VERSION,
}

MASKED_ERROR_MESSAGE = "An error occurred."


class DataStreamCode(str, Enum):
    """Single-token line prefixes of the wire protocol"""

    TEXT = "0"
    START = "2"
    ERROR = "3"
    ANNOTATION = "8"
    ACTION_CALL = "9"
    ACTION_RESULT = "a"
    ACTION_CALL_START = "b"
    ACTION_CALL_DELTA = "c"
    FINISH = "d"
    STEP_FINISH = "e"
    STEP_START = "f"
    REASONING = "g"
    SOURCE = "h"
    REDACTED_REASONING = "i"
    REASONING_SIGNATURE = "j"
    FILE = "k"


def encode_part(code: DataStreamCode, payload: Any) -> str:
    """
    Encode one protocol line.

    json.dumps escapes backslash, double quote, newline, carriage return and
    tab inside strings, so payloads never break the line framing.
    """
    return f"{code.value}:{json.dumps(payload, ensure_ascii=False, default=str)}\n"


def _default_error_message(error: BaseException) -> str:
    if settings.expose_error_messages:
        return str(error) or error.__class__.__name__
    return MASKED_ERROR_MESSAGE


class _ResolvedOptions:
    """DataStreamOptions with settings defaults filled in"""

    def __init__(self, options: Optional[DataStreamOptions]):
        options = options or DataStreamOptions()
        self.send_usage = _pick(options.send_usage, settings.stream_send_usage)
        self.send_reasoning = _pick(options.send_reasoning, settings.stream_send_reasoning)
        self.send_sources = _pick(options.send_sources, settings.stream_send_sources)
        self.send_start = _pick(options.send_start, settings.stream_send_start)
        self.send_finish = _pick(options.send_finish, settings.stream_send_finish)
        self.get_error_message: Callable[[BaseException], str] = (
            options.get_error_message or _default_error_message
        )


def _pick(value: Optional[bool], default: bool) -> bool:
    return default if value is None else value


def _agent_payload(part: Dict[str, Any]) -> Optional[Dict[str, str]]:
    agent = part.get("handed_over_to")
    if agent is None:
        return None
    return {"id": agent["id"], "name": agent["name"]}


class _Encoder:
    """Stateful part -> line translator for one stream"""

    def __init__(self, options: _ResolvedOptions):
        self.options = options
        self.finish_reason = FinishReason.UNKNOWN
        self.usage = Usage()

    def _usage_fields(self, usage: Optional[Usage]) -> Dict[str, Any]:
        if not self.options.send_usage or usage is None:
            return {}
        return {"usage": usage.to_protocol()}

    def encode(self, part: Dict[str, Any]) -> Optional[str]:
        part_type = part.get("type")

        if part_type == StreamPartType.TEXT_DELTA:
            return encode_part(DataStreamCode.TEXT, part["text_delta"])

        if part_type == StreamPartType.REASONING:
            if not self.options.send_reasoning:
                return None
            return encode_part(DataStreamCode.REASONING, part["text"])

        if part_type == StreamPartType.REDACTED_REASONING:
            if not self.options.send_reasoning:
                return None
            return encode_part(DataStreamCode.REDACTED_REASONING, {"data": part["data"]})

        if part_type == StreamPartType.REASONING_SIGNATURE:
            if not self.options.send_reasoning:
                return None
            return encode_part(DataStreamCode.REASONING_SIGNATURE, {"signature": part["signature"]})

        if part_type == StreamPartType.SOURCE:
            if not self.options.send_sources:
                return None
            return encode_part(DataStreamCode.SOURCE, part["source"])

        if part_type == StreamPartType.FILE:
            return encode_part(DataStreamCode.FILE, {
                "data": part["data"],
                "mimeType": part["mime_type"],
            })

        if part_type == StreamPartType.ANNOTATION:
            value = part["value"]
            if not isinstance(value, list):
                value = [value]
            return encode_part(DataStreamCode.ANNOTATION, value)

        if part_type == StreamPartType.ACTION_CALL_STREAMING_START:
            return encode_part(DataStreamCode.ACTION_CALL_START, {
                "toolCallId": part["tool_call_id"],
                "toolName": part["tool_name"],
            })

        if part_type == StreamPartType.ACTION_CALL_DELTA:
            return encode_part(DataStreamCode.ACTION_CALL_DELTA, {
                "toolCallId": part["tool_call_id"],
                "argsTextDelta": part["args_text_delta"],
            })

        if part_type == StreamPartType.ACTION_CALL:
            return encode_part(DataStreamCode.ACTION_CALL, {
                "toolCallId": part["tool_call_id"],
                "toolName": part["tool_name"],
                "args": part["args"],
            })

        if part_type == StreamPartType.ACTION_RESULT:
            payload = {
                "toolCallId": part["tool_call_id"],
                "result": part["result"],
            }
            handed_over_to = _agent_payload(part)
            if handed_over_to is not None:
                payload["handedOverTo"] = handed_over_to
            return encode_part(DataStreamCode.ACTION_RESULT, payload)

        if part_type == StreamPartType.STEP_START:
            return encode_part(DataStreamCode.STEP_START, {"messageId": part["message_id"]})

        if part_type == StreamPartType.STEP_FINISH:
            return encode_part(DataStreamCode.STEP_FINISH, {
                "finishReason": FinishReason(part["finish_reason"]).value,
                **self._usage_fields(part.get("usage")),
                "isContinued": bool(part.get("is_continued", False)),
            })

        if part_type == StreamPartType.FINISH:
            # One finish sentinel per invocation; rounds are folded together
            self.finish_reason = FinishReason(part["finish_reason"])
            if part.get("usage") is not None:
                self.usage = self.usage + part["usage"]
            return None

        if part_type == StreamPartType.ERROR:
            return encode_part(DataStreamCode.ERROR, self.options.get_error_message(part["error"]))

        return None

    def finish_line(self) -> str:
        return encode_part(DataStreamCode.FINISH, {
            "finishReason": self.finish_reason.value,
            **self._usage_fields(self.usage),
        })


async def to_data_stream_lines(
    parts: AsyncIterable[Dict[str, Any]],
    options: Optional[DataStreamOptions] = None,
) -> AsyncIterator[str]:
    """Translate stream parts into protocol lines"""
    resolved = _ResolvedOptions(options)
    encoder = _Encoder(resolved)

    try:
        if resolved.send_start:
            yield encode_part(DataStreamCode.START, [{"type": "start"}])

        async for part in parts:
            line = encoder.encode(part)
            if line is not None:
                yield line

        if resolved.send_finish:
            yield encoder.finish_line()

    except Exception as e:
        logger.error("data_stream_encoding_failed", error=str(e), exc_info=True)
        yield encode_part(DataStreamCode.ERROR, resolved.get_error_message(e))

    finally:
        # Closing the reader cancels the upstream swarm stream
        close = getattr(parts, "aclose", None)
        if close is not None:
            await close()


async def to_data_stream(
    parts: AsyncIterable[Dict[str, Any]],
    options: Optional[DataStreamOptions] = None,
) -> AsyncIterator[bytes]:
    """Raw byte stream of the wire protocol"""
    lines = to_data_stream_lines(parts, options)
    try:
        async for line in lines:
            yield line.encode("utf-8")
    finally:
        await lines.aclose()


def to_data_stream_response(
    parts: AsyncIterable[Dict[str, Any]],
    options: Optional[DataStreamOptions] = None,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> StreamingResponse:
    """
    Wrap the byte stream in an HTTP streaming response.

    Example:
        @router.post("/chat")
        async def chat(request: ChatRequest):
            result = swarm.stream(content=request.message)
            return result.to_data_stream_response()
    """
    response_headers = dict(DATA_STREAM_HEADERS)
    if headers:
        response_headers.update(headers)

    return StreamingResponse(
        to_data_stream(parts, options),
        status_code=status_code,
        headers=response_headers,
        media_type="text/plain; charset=utf-8",
    )
