"""
OpenAI Adapter for the swarm model client protocol.

Reference implementation of BaseModelClient over OpenAI chat completions
with function calling. Other providers follow the same pattern: translate
messages and actions in, translate completions and stream chunks out.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from openai import AsyncOpenAI

from agent_swarm.agent_layer.actions import ModelAction
from agent_swarm.agent_layer.adapters.base import BaseModelClient, parse_arguments
from agent_swarm.agent_layer.protocol import ProviderStep
from agent_swarm.config.settings import settings
from agent_swarm.models.schemas import ActionCall, FinishReason, StreamPartType, Usage

logger = structlog.get_logger()

# Keys the swarm adds to messages that the chat completions API rejects
_SWARM_MESSAGE_KEYS = ("sender", "tool_name", "handed_over_to")

FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    if reason is None:
        return FinishReason.UNKNOWN
    return FINISH_REASONS.get(reason, FinishReason.OTHER)


def map_usage(usage) -> Usage:
    if usage is None:
        return Usage()
    return Usage(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
    )


class OpenAIModelClient(BaseModelClient):
    """
    OpenAI implementation of the ModelClient protocol.

    Example:
        client = OpenAIModelClient(model="gpt-4o-mini")
        swarm = Swarm(queen=router, default_model=client)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize OpenAI client.

        Args:
            model: OpenAI model to use (default: SWARM_DEFAULT_MODEL)
            api_key: OpenAI API key (defaults to OPENAI_API_KEY)
            base_url: Alternative API base URL for OpenAI-compatible servers
            client: Pre-built AsyncOpenAI client (takes precedence over api_key)
        """
        super().__init__(name="openai", model=model or settings.default_model)

        self.api_key = api_key or settings.openai_api_key
        self.base_url = base_url or settings.openai_base_url
        self._client = client

        if client is None and not self.api_key:
            logger.warning(
                "openai_api_key_not_set",
                message="OPENAI_API_KEY not set - model calls will fail"
            )

        logger.info("openai_client_initialized", model=self.model)

    @property
    def client(self) -> AsyncOpenAI:
        """AsyncOpenAI client, created on first use"""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _build_messages(self, system: str, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Build message list for OpenAI"""
        built = [{"role": "system", "content": system}]
        for message in messages:
            built.append({k: v for k, v in message.items() if k not in _SWARM_MESSAGE_KEYS})
        return built

    def _build_tool_options(self, actions: Dict[str, ModelAction], tool_choice) -> Dict[str, Any]:
        """Function definitions and tool_choice for OpenAI function calling"""
        if not actions:
            return {}

        options: Dict[str, Any] = {
            "tools": [action.to_openai_tool() for action in actions.values()],
        }

        if isinstance(tool_choice, str):
            options["tool_choice"] = tool_choice
        elif isinstance(tool_choice, dict):
            options["tool_choice"] = {
                "type": "function",
                "function": {"name": tool_choice["tool_name"]},
            }

        return options

    async def _complete(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        actions: Dict[str, ModelAction],
        tool_choice,
    ) -> ProviderStep:
        logger.debug("calling_openai", model=self.model, message_count=len(messages), actions=len(actions))

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=self._build_messages(system, messages),
            **self._build_tool_options(actions, tool_choice),
        )

        choice = response.choices[0]
        message = choice.message
        calls = [
            ActionCall(
                id=tool_call.id,
                name=tool_call.function.name,
                args=parse_arguments(tool_call.function.arguments),
            )
            for tool_call in (message.tool_calls or [])
        ]

        return ProviderStep(
            text=message.content or "",
            action_calls=calls,
            finish_reason=map_finish_reason(choice.finish_reason),
            usage=map_usage(response.usage),
        )

    async def _stream_step(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        actions: Dict[str, ModelAction],
        tool_choice,
    ) -> AsyncIterator[Dict[str, Any]]:
        logger.debug("streaming_openai", model=self.model, message_count=len(messages), actions=len(actions))

        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=self._build_messages(system, messages),
            stream=True,
            stream_options={"include_usage": True},
            **self._build_tool_options(actions, tool_choice),
        )

        pending: Dict[int, Dict[str, str]] = {}
        finish_reason = FinishReason.UNKNOWN
        usage = Usage()

        async for chunk in stream:
            if chunk.usage is not None:
                usage = map_usage(chunk.usage)
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            delta = choice.delta

            # OpenAI-compatible reasoning models expose this extra field
            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                yield {"type": StreamPartType.REASONING, "text": reasoning}

            if delta.content:
                yield {"type": StreamPartType.TEXT_DELTA, "text_delta": delta.content}

            for tool_call in delta.tool_calls or []:
                entry = pending.get(tool_call.index)
                if entry is None:
                    entry = {
                        "id": tool_call.id,
                        "name": tool_call.function.name if tool_call.function else "",
                        "arguments": "",
                    }
                    pending[tool_call.index] = entry
                    yield {
                        "type": StreamPartType.ACTION_CALL_STREAMING_START,
                        "tool_call_id": entry["id"],
                        "tool_name": entry["name"],
                    }

                arguments = tool_call.function.arguments if tool_call.function else None
                if arguments:
                    entry["arguments"] += arguments
                    yield {
                        "type": StreamPartType.ACTION_CALL_DELTA,
                        "tool_call_id": entry["id"],
                        "tool_name": entry["name"],
                        "args_text_delta": arguments,
                    }

            if choice.finish_reason:
                finish_reason = map_finish_reason(choice.finish_reason)

        for index in sorted(pending):
            entry = pending[index]
            yield {
                "type": StreamPartType.ACTION_CALL,
                "tool_call_id": entry["id"],
                "tool_name": entry["name"],
                "args": parse_arguments(entry["arguments"]),
            }

        yield {"type": StreamPartType.STEP_FINISH, "finish_reason": finish_reason, "usage": usage}
