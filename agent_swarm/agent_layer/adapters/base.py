"""
Base model client.

Implements the multi-step action loop once, on top of two provider hooks:

- _complete(): one blocking completion
- _stream_step(): one streamed completion, yielding stream parts and ending
  with a step-finish part that carries the finish reason and usage

Provider adapters only translate between the provider SDK and these hooks.
"""

import asyncio
import inspect
import json
import uuid
from abc import abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from agent_swarm.agent_layer.actions import ModelAction
from agent_swarm.agent_layer.agent import ActionRuntime
from agent_swarm.agent_layer.protocol import (
    ModelClient,
    ModelRequest,
    ProviderStep,
    StepCallback,
    StreamingGeneration,
)
from agent_swarm.core.errors import ModelInvocationError
from agent_swarm.models.schemas import (
    ActionCall,
    ActionResultRecord,
    FinishReason,
    GenerationResult,
    StepResult,
    StreamPartType,
    Usage,
)

logger = structlog.get_logger()


def assistant_message(text: str, action_calls: List[ActionCall]) -> Dict[str, Any]:
    """Assistant message in chat-completions format"""
    message: Dict[str, Any] = {"role": "assistant", "content": text or None}
    if action_calls:
        message["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.args)},
            }
            for call in action_calls
        ]
    return message


def tool_message(call_id: str, action_name: str, result: Any) -> Dict[str, Any]:
    """Action-result message in chat-completions format"""
    content = result if isinstance(result, str) else json.dumps(result, default=str)
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "tool_name": action_name,
        "content": content,
    }


def parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    """Decode model-supplied JSON arguments"""
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("action_arguments_invalid_json", error=str(e), raw=raw[:200])
        return {}
    return args if isinstance(args, dict) else {}


async def notify_step(callback: Optional[StepCallback], step: StepResult):
    if callback is None:
        return
    outcome = callback(step)
    if inspect.isawaitable(outcome):
        await outcome


class BaseModelClient(ModelClient):
    """ModelClient with the step loop implemented over provider hooks"""

    @abstractmethod
    async def _complete(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        actions: Dict[str, ModelAction],
        tool_choice,
    ) -> ProviderStep:
        """Run one blocking completion"""
        pass

    @abstractmethod
    def _stream_step(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        actions: Dict[str, ModelAction],
        tool_choice,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Run one streamed completion.

        Yields text, reasoning, action-call and action-call delta parts, and
        finally exactly one step-finish part with finish_reason and usage.
        """
        pass

    async def _execute_actions(
        self,
        calls: List[ActionCall],
        actions: Dict[str, ModelAction],
        messages: List[Dict[str, Any]],
    ) -> List[ActionResultRecord]:
        """Execute every call that has an executor, in order"""
        results = []
        for call in calls:
            action = actions.get(call.name)
            if action is None or action.execute is None:
                continue

            logger.info("executing_action", client=self.name, action=call.name, call_id=call.id)
            result = await action.execute(call.args, ActionRuntime(action_call_id=call.id, messages=list(messages)))
            results.append(ActionResultRecord(id=call.id, name=call.name, args=call.args, result=result))
        return results

    @staticmethod
    def _should_continue(
        finish_reason: FinishReason,
        calls: List[ActionCall],
        results: List[ActionResultRecord],
        step_number: int,
        max_steps: int,
    ) -> bool:
        return (
            finish_reason == FinishReason.TOOL_CALLS
            and bool(calls)
            and len(results) == len(calls)
            and step_number + 1 < max_steps
        )

    # ========================================================================
    # Blocking
    # ========================================================================

    async def generate(self, request: ModelRequest) -> GenerationResult:
        response_messages: List[Dict[str, Any]] = []
        steps: List[StepResult] = []
        all_calls: List[ActionCall] = []
        all_results: List[ActionResultRecord] = []
        text_parts: List[str] = []
        usage = Usage()
        finish_reason = FinishReason.UNKNOWN

        for step_number in range(request.max_steps):
            try:
                step = await self._complete(
                    request.system,
                    request.messages + response_messages,
                    request.actions,
                    request.tool_choice,
                )
            except Exception as e:
                logger.error(
                    "model_call_failed",
                    client=self.name,
                    model=self.model,
                    step=step_number,
                    error=str(e),
                    exc_info=True,
                )
                return GenerationResult(
                    finish_reason=FinishReason.ERROR,
                    text="".join(text_parts),
                    action_calls=all_calls,
                    action_results=all_results,
                    response_messages=response_messages,
                    usage=usage,
                    steps=steps,
                    error=ModelInvocationError(str(e)),
                )

            response_messages.append(assistant_message(step.text, step.action_calls))
            results = await self._execute_actions(
                step.action_calls, request.actions, request.messages + response_messages
            )
            response_messages.extend(tool_message(r.id, r.name, r.result) for r in results)

            text_parts.append(step.text)
            all_calls.extend(step.action_calls)
            all_results.extend(results)
            usage = usage + step.usage
            finish_reason = step.finish_reason

            is_continued = self._should_continue(
                step.finish_reason, step.action_calls, results, step_number, request.max_steps
            )
            step_result = StepResult(
                text=step.text,
                finish_reason=step.finish_reason,
                action_calls=step.action_calls,
                action_results=results,
                usage=step.usage,
                is_continued=is_continued,
            )
            steps.append(step_result)
            await notify_step(request.on_step_finish, step_result)

            if not is_continued:
                break

        return GenerationResult(
            finish_reason=finish_reason,
            text="".join(text_parts),
            action_calls=all_calls,
            action_results=all_results,
            response_messages=response_messages,
            usage=usage,
            steps=steps,
        )

    # ========================================================================
    # Streaming
    # ========================================================================

    def stream(self, request: ModelRequest) -> StreamingGeneration:
        generation = StreamingGeneration()
        generation.full_stream = self._run_stream(request, generation)
        return generation

    async def _run_stream(
        self, request: ModelRequest, generation: StreamingGeneration
    ) -> AsyncIterator[Dict[str, Any]]:
        response_messages: List[Dict[str, Any]] = []
        steps: List[StepResult] = []
        all_calls: List[ActionCall] = []
        all_results: List[ActionResultRecord] = []
        text_parts: List[str] = []
        usage = Usage()
        finish_reason = FinishReason.UNKNOWN

        try:
            for step_number in range(request.max_steps):
                yield {"type": StreamPartType.STEP_START, "message_id": f"msg-{uuid.uuid4().hex}"}

                step_text: List[str] = []
                step_calls: List[ActionCall] = []
                step_finish = FinishReason.UNKNOWN
                step_usage = Usage()
                failed = False

                try:
                    provider_stream = self._stream_step(
                        request.system,
                        request.messages + response_messages,
                        request.actions,
                        request.tool_choice,
                    )
                    async with aclosing(provider_stream):
                        async for part in provider_stream:
                            part_type = part["type"]

                            if part_type == StreamPartType.STEP_FINISH:
                                step_finish = part["finish_reason"]
                                step_usage = part.get("usage") or Usage()
                                continue

                            if part_type == StreamPartType.TEXT_DELTA:
                                step_text.append(part["text_delta"])
                            elif part_type == StreamPartType.ACTION_CALL:
                                step_calls.append(ActionCall(
                                    id=part["tool_call_id"],
                                    name=part["tool_name"],
                                    args=part["args"],
                                ))
                            elif part_type in (
                                StreamPartType.ACTION_CALL_STREAMING_START,
                                StreamPartType.ACTION_CALL_DELTA,
                            ) and not request.stream_action_calls:
                                continue

                            yield part

                except Exception as e:
                    logger.error(
                        "model_stream_failed",
                        client=self.name,
                        model=self.model,
                        step=step_number,
                        error=str(e),
                        exc_info=True,
                    )
                    yield {"type": StreamPartType.ERROR, "error": ModelInvocationError(str(e))}
                    failed = True

                text_parts.extend(step_text)
                usage = usage + step_usage

                if failed:
                    finish_reason = FinishReason.ERROR
                    break

                response_messages.append(assistant_message("".join(step_text), step_calls))
                results = await self._execute_actions(
                    step_calls, request.actions, request.messages + response_messages
                )
                for record in results:
                    response_messages.append(tool_message(record.id, record.name, record.result))
                    yield {
                        "type": StreamPartType.ACTION_RESULT,
                        "tool_call_id": record.id,
                        "tool_name": record.name,
                        "args": record.args,
                        "result": record.result,
                    }

                all_calls.extend(step_calls)
                all_results.extend(results)
                finish_reason = step_finish

                is_continued = self._should_continue(
                    step_finish, step_calls, results, step_number, request.max_steps
                )
                yield {
                    "type": StreamPartType.STEP_FINISH,
                    "finish_reason": step_finish,
                    "usage": step_usage,
                    "is_continued": is_continued,
                }

                step_result = StepResult(
                    text="".join(step_text),
                    finish_reason=step_finish,
                    action_calls=step_calls,
                    action_results=results,
                    usage=step_usage,
                    is_continued=is_continued,
                )
                steps.append(step_result)
                await notify_step(request.on_step_finish, step_result)

                if not is_continued:
                    break

            # Resolve before the last part so the swarm can queue its next round
            generation.resolve(
                finish_reason=finish_reason,
                text="".join(text_parts),
                action_calls=all_calls,
                action_results=all_results,
                response_messages=response_messages,
                usage=usage,
                steps=steps,
            )
            yield {"type": StreamPartType.FINISH, "finish_reason": finish_reason, "usage": usage}

        except (GeneratorExit, asyncio.CancelledError):
            generation.cancel()
            raise
        except Exception as e:
            generation.reject(e)
            raise
