"""
Swarm - Turn-loop orchestrator.

Drives the active agent's model client round by round, applies handovers
between rounds, merges the shared context and assembles the transcript.

Flow per round:
1. Render the active agent's instructions against the context
2. Call its model client with the wrapped action catalog
3. Tag and append the returned messages
4. Stop on a terminal finish reason, otherwise apply the first pending
   handover (or fall back to the queen) and go again
"""

import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Tuple, Union

from agent_swarm.agent_layer.actions import ModelAction, inject_context, wrap_actions
from agent_swarm.agent_layer.adapters.base import tool_message
from agent_swarm.agent_layer.adapters.openai import OpenAIModelClient
from agent_swarm.agent_layer.agent import (
    ActionRuntime,
    Agent,
    HandoverAction,
    HandoverResult,
    call_executor,
)
from agent_swarm.agent_layer.protocol import ModelClient, ModelRequest, StepCallback
from agent_swarm.agent_layer.registry import AgentRegistry
from agent_swarm.agent_layer.stream_result import SwarmStreamResult
from agent_swarm.config.logging import get_logger
from agent_swarm.config.settings import settings
from agent_swarm.core.context import ensure_json_object, merge_context, snapshot_context
from agent_swarm.core.errors import HandoverExecutionError, ModelInvocationError, SwarmValidationError
from agent_swarm.models.schemas import (
    ActionCall,
    AgentRef,
    ActionResultRecord,
    FinishReason,
    StepResult,
    StreamPartType,
    SwarmResult,
    TERMINAL_FINISH_REASONS,
    Usage,
)

AgentReference = Union[Agent, str]


@dataclass
class _Invocation:
    """Resolved options of one invoke()/stream() call"""

    history: List[Dict[str, Any]]
    stateless: bool
    max_turns: int
    return_to_queen: bool
    on_step_finish: Optional[StepCallback] = None
    stream_action_calls: bool = False


@dataclass
class _TurnState:
    """Mutable bookkeeping for one invocation"""

    history: List[Dict[str, Any]]
    produced: List[Dict[str, Any]] = field(default_factory=list)
    handled_call_ids: Set[str] = field(default_factory=set)
    turns_used: int = 0
    text_parts: List[str] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    steps: List[StepResult] = field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    error: Optional[BaseException] = None

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return self.history + self.produced


def _agent_ref(agent: Agent) -> Dict[str, str]:
    return AgentRef(id=agent.id, name=agent.name).model_dump()


def _tag_sender(messages: List[Dict[str, Any]], agent: Agent) -> List[Dict[str, Any]]:
    tagged = []
    for message in messages:
        if message.get("role") == "assistant":
            message = {**message, "sender": agent.name}
        tagged.append(message)
    return tagged


async def _single_part(part: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
    yield part


class Swarm:
    """
    Multi-agent conversation with a shared context.

    Example:
        swarm = Swarm(queen=router, default_model=OpenAIModelClient())
        result = await swarm.invoke("I need help with my order")
        print(result.active_agent.name, result.text)
    """

    def __init__(
        self,
        queen: Agent,
        default_model: Optional[ModelClient] = None,
        initial_context: Optional[Mapping[str, Any]] = None,
        messages: Optional[List[Dict[str, Any]]] = None,
        name: Optional[str] = None,
        max_turns: Optional[int] = None,
        return_to_queen: Optional[bool] = None,
        agents: Optional[List[Agent]] = None,
        logger=None,
    ):
        """
        Initialize swarm.

        Args:
            queen: Starting agent; the swarm falls back to it when asked
            default_model: Model client for agents without their own
            initial_context: Initial shared context (JSON object)
            messages: Initial conversation history
            name: Swarm name used in logs
            max_turns: Global turn budget per invocation (default from settings)
            return_to_queen: Reactivate the queen after every invocation
            agents: Extra agents that handovers may reference by id or name
            logger: structlog logger (default: bound to the swarm name)

        Raises:
            SwarmValidationError: If any option is malformed
        """
        if not isinstance(queen, Agent):
            raise SwarmValidationError("Swarm queen must be an Agent")

        self.name = name or "swarm"
        self.logger = logger or get_logger(swarm=self.name)
        self.queen = queen
        self.default_model = default_model or OpenAIModelClient()
        self.max_turns = self._validate_max_turns(max_turns) or settings.default_max_turns
        self.return_to_queen = settings.return_to_queen if return_to_queen is None else return_to_queen
        self.context_parameter = settings.context_parameter_name
        self.registry = AgentRegistry([queen, *(agents or [])])

        self._active_agent = queen
        self._context = self._validate_context(initial_context or {}, "initial_context")
        self._messages = self._validate_messages(messages or [])

        self.logger.info(
            "swarm_initialized",
            queen=queen.name,
            agents=len(self.registry),
            max_turns=self.max_turns,
            default_model=repr(self.default_model),
        )

    # ========================================================================
    # State access
    # ========================================================================

    @property
    def active_agent(self) -> Agent:
        return self._active_agent

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return list(self._messages)

    def get_messages(self) -> List[Dict[str, Any]]:
        """Copy of the stored conversation history"""
        return list(self._messages)

    def get_context(self) -> Mapping[str, Any]:
        """Read-only view of the shared context"""
        return MappingProxyType(snapshot_context(self._context))

    def set_context(self, update: Mapping[str, Any]) -> Mapping[str, Any]:
        """Shallow-merge update into the shared context and return the new view"""
        self._update_context(self._validate_context(update, "context update"))
        return self.get_context()

    def reset(self, messages: bool = True, agent: bool = True):
        """Forget the history and/or reactivate the queen; the context is kept"""
        if messages:
            self._messages = []
        if agent:
            self._active_agent = self.queen
        self.logger.info("swarm_reset", messages=messages, agent=agent)

    def _update_context(self, update: Optional[Mapping[str, Any]]):
        self._context = merge_context(self._context, update)

    def _model_for(self, agent: Agent) -> ModelClient:
        return agent.model or self.default_model

    # ========================================================================
    # Validation
    # ========================================================================

    @staticmethod
    def _validate_max_turns(max_turns: Optional[int]) -> Optional[int]:
        if max_turns is None:
            return None
        if isinstance(max_turns, bool) or not isinstance(max_turns, int) or max_turns < 1:
            raise SwarmValidationError("max_turns must be a positive integer")
        return max_turns

    @staticmethod
    def _validate_context(value: Any, what: str) -> Dict[str, Any]:
        try:
            return ensure_json_object(value, what)
        except TypeError as e:
            raise SwarmValidationError(str(e)) from e

    @staticmethod
    def _validate_messages(messages: Any) -> List[Dict[str, Any]]:
        if not isinstance(messages, list):
            raise SwarmValidationError("messages must be a list of message dicts")
        for message in messages:
            if not isinstance(message, Mapping) or "role" not in message:
                raise SwarmValidationError(f"Malformed message: {message!r}")
        return [dict(message) for message in messages]

    def _prepare(
        self,
        content,
        messages: Optional[List[Dict[str, Any]]],
        context_update: Optional[Mapping[str, Any]],
        agent: Optional[AgentReference],
        max_turns: Optional[int],
        return_to_queen: Optional[bool],
        on_step_finish: Optional[StepCallback],
        stream_action_calls: bool = False,
    ) -> _Invocation:
        """Validate invocation options and apply their overrides"""
        if content is None and messages is None:
            raise SwarmValidationError("Provide content, messages, or both")
        if content is not None and not isinstance(content, (str, list)):
            raise SwarmValidationError("content must be a string or a list of content parts")

        budget = self._validate_max_turns(max_turns) or self.max_turns
        history = self._validate_messages(messages) if messages is not None else list(self._messages)
        update = self._validate_context(context_update, "context update") if context_update is not None else None

        if agent is not None:
            target = self.registry.resolve(agent)
            self.logger.warning(
                "active_agent_overridden",
                previous=self._active_agent.name,
                agent=target.name,
            )
            self._active_agent = target

        if update:
            self._update_context(update)

        if content is not None:
            history.append({"role": "user", "content": content})

        return _Invocation(
            history=history,
            stateless=messages is not None,
            max_turns=budget,
            return_to_queen=self.return_to_queen if return_to_queen is None else return_to_queen,
            on_step_finish=on_step_finish,
            stream_action_calls=stream_action_calls,
        )

    # ========================================================================
    # Round helpers
    # ========================================================================

    def _build_request(self, agent: Agent, invocation: _Invocation, state: _TurnState) -> ModelRequest:
        remaining = invocation.max_turns - state.turns_used
        step_budget = remaining if agent.max_turns is None else min(agent.max_turns, remaining)

        actions: Dict[str, ModelAction] = wrap_actions(
            agent.actions,
            get_context=lambda: self._context,
            update_context=self._update_context,
            context_parameter=self.context_parameter,
        )

        return ModelRequest(
            system=agent.get_instructions(snapshot_context(self._context)),
            messages=state.messages,
            actions=actions,
            tool_choice=agent.tool_choice,
            max_steps=step_budget,
            on_step_finish=invocation.on_step_finish,
            stream_action_calls=invocation.stream_action_calls,
        )

    async def _after_round(
        self,
        agent: Agent,
        state: _TurnState,
        invocation: _Invocation,
        step_budget: int,
        finish_reason: FinishReason,
        action_calls: List[ActionCall],
        action_results: List[ActionResultRecord],
        response_messages: List[Dict[str, Any]],
    ) -> Tuple[bool, List[Dict[str, Any]]]:
        """
        Record one round and decide what happens next.

        Returns:
            (done, parts): parts are synthesized action-result stream parts
        """
        tagged = _tag_sender(response_messages, agent)
        round_turns = sum(1 for m in tagged if m.get("role") == "assistant")
        state.produced.extend(tagged)
        state.turns_used += max(1, round_turns)
        state.finish_reason = finish_reason

        if finish_reason in TERMINAL_FINISH_REASONS:
            return True, []

        resolved = {record.id for record in action_results}
        unresolved = [
            call for call in action_calls
            if call.id not in resolved and call.id not in state.handled_call_ids
        ]
        handover_calls = [
            call for call in unresolved
            if isinstance(agent.actions.get(call.name), HandoverAction)
        ]

        parts: List[Dict[str, Any]] = []
        for call in unresolved:
            if call in handover_calls:
                continue
            # The model named an action the agent does not have
            message = tool_message(call.id, call.name, f"Action {call.name} is not available")
            state.produced.append(message)
            state.handled_call_ids.add(call.id)
            self.logger.warning("unknown_action_called", agent=agent.name, action=call.name, call_id=call.id)
            parts.append({
                "type": StreamPartType.ACTION_RESULT,
                "tool_call_id": call.id,
                "tool_name": call.name,
                "args": call.args,
                "result": message["content"],
            })

        if handover_calls:
            first = handover_calls[0]
            if len(handover_calls) > 1:
                self.logger.warning(
                    "extra_handovers_discarded",
                    agent=agent.name,
                    applied=first.name,
                    discarded=[call.name for call in handover_calls[1:]],
                )
            parts.append(await self._apply_handover(agent, first, state))
            return False, parts

        if unresolved:
            return False, parts

        if self._falls_back_to_queen(agent, round_turns, step_budget, state, invocation):
            self.logger.info("agent_turn_cap_reached", agent=agent.name, fallback=self.queen.name)
            self._active_agent = self.queen
            return False, parts

        state.finish_reason = FinishReason.STOP
        return True, parts

    def _falls_back_to_queen(
        self,
        agent: Agent,
        round_turns: int,
        step_budget: int,
        state: _TurnState,
        invocation: _Invocation,
    ) -> bool:
        return (
            agent.max_turns is not None
            and step_budget == agent.max_turns
            and round_turns >= agent.max_turns
            and agent is not self.queen
            and state.turns_used < invocation.max_turns
        )

    async def _apply_handover(self, agent: Agent, call: ActionCall, state: _TurnState) -> Dict[str, Any]:
        """Run a handover executor and switch the active agent"""
        action = agent.actions[call.name]
        args = inject_context(call.args, action.schema, self._context, self.context_parameter)
        runtime = ActionRuntime(action_call_id=call.id, messages=state.messages)

        try:
            outcome = await call_executor(action.execute, args, runtime)
        except Exception as e:
            self.logger.error(
                "handover_failed",
                agent=agent.name,
                action=call.name,
                error=str(e),
                exc_info=True,
            )
            raise HandoverExecutionError(call.name, e) from e

        if isinstance(outcome, HandoverResult):
            reference, update = outcome.agent, outcome.context_update
        elif isinstance(outcome, (Agent, str)):
            reference, update = outcome, None
        else:
            raise HandoverExecutionError(
                call.name,
                TypeError(f"handover executor returned {type(outcome).__name__}, expected HandoverResult"),
            )

        target = self.registry.resolve(reference)
        self._active_agent = target
        if update:
            self._update_context(update)

        message = tool_message(call.id, call.name, f"Handing over to agent {target.name}")
        message["handed_over_to"] = _agent_ref(target)
        state.produced.append(message)
        state.handled_call_ids.add(call.id)

        self.logger.info(
            "handover_applied",
            from_agent=agent.name,
            to_agent=target.name,
            action=call.name,
            context_keys=sorted(update or {}),
        )

        return {
            "type": StreamPartType.ACTION_RESULT,
            "tool_call_id": call.id,
            "tool_name": call.name,
            "args": call.args,
            "result": message["content"],
            "handed_over_to": _agent_ref(target),
        }

    def _finalize(self, invocation: _Invocation, state: _TurnState) -> SwarmResult:
        if invocation.return_to_queen:
            self._active_agent = self.queen
        if not invocation.stateless:
            self._messages = state.messages

        self.logger.info(
            "swarm_invocation_completed",
            finish_reason=state.finish_reason.value,
            active_agent=self._active_agent.name,
            turns_used=state.turns_used,
            total_tokens=state.usage.total_tokens,
        )

        return SwarmResult(
            finish_reason=state.finish_reason,
            active_agent=self._active_agent,
            text="".join(state.text_parts),
            messages=state.messages,
            context=snapshot_context(self._context),
            usage=state.usage,
            steps=state.steps,
            error=state.error,
        )

    # ========================================================================
    # Blocking
    # ========================================================================

    async def invoke(
        self,
        content=None,
        messages: Optional[List[Dict[str, Any]]] = None,
        *,
        context_update: Optional[Mapping[str, Any]] = None,
        agent: Optional[AgentReference] = None,
        max_turns: Optional[int] = None,
        return_to_queen: Optional[bool] = None,
        on_step_finish: Optional[StepCallback] = None,
    ) -> SwarmResult:
        """
        Run the turn loop to completion.

        Args:
            content: New user message (string or content-part list)
            messages: History for this call only; stored history is untouched
            context_update: Shallow update applied before the first round
            agent: Force the active agent (Agent, id or name)
            max_turns: Override the global turn budget for this call
            return_to_queen: Override the return-to-queen setting
            on_step_finish: Called with every StepResult

        Returns:
            SwarmResult with the final agent, text, transcript and context

        Raises:
            SwarmValidationError: If the options are malformed
            HandoverExecutionError: If a handover executor raises
        """
        invocation = self._prepare(
            content, messages, context_update, agent, max_turns, return_to_queen, on_step_finish
        )
        state = _TurnState(history=invocation.history)

        self.logger.info(
            "swarm_invoked",
            active_agent=self._active_agent.name,
            max_turns=invocation.max_turns,
            stateless=invocation.stateless,
        )

        done = False
        while not done and state.turns_used < invocation.max_turns:
            agent_in_turn = self._active_agent
            request = self._build_request(agent_in_turn, invocation, state)
            result = await self._model_for(agent_in_turn).generate(request)

            state.text_parts.append(result.text)
            state.usage = state.usage + result.usage
            state.steps.extend(result.steps)
            if result.error is not None:
                state.error = result.error
                self.logger.error(
                    "swarm_model_error",
                    agent=agent_in_turn.name,
                    error=str(result.error),
                )

            done, _ = await self._after_round(
                agent_in_turn,
                state,
                invocation,
                request.max_steps,
                result.finish_reason,
                result.action_calls,
                result.action_results,
                result.response_messages,
            )

        return self._finalize(invocation, state)

    # ========================================================================
    # Streaming
    # ========================================================================

    def stream(
        self,
        content=None,
        messages: Optional[List[Dict[str, Any]]] = None,
        *,
        context_update: Optional[Mapping[str, Any]] = None,
        agent: Optional[AgentReference] = None,
        max_turns: Optional[int] = None,
        return_to_queen: Optional[bool] = None,
        on_step_finish: Optional[StepCallback] = None,
        stream_action_calls: bool = False,
    ) -> SwarmStreamResult:
        """
        Start the turn loop and stream its events.

        Must be called from a running event loop. Options are the same as
        invoke(); stream_action_calls also forwards per-token argument deltas.

        Raises:
            SwarmValidationError: If the options are malformed
        """
        invocation = self._prepare(
            content, messages, context_update, agent, max_turns, return_to_queen,
            on_step_finish, stream_action_calls,
        )

        result = SwarmStreamResult()

        self.logger.info(
            "swarm_stream_started",
            active_agent=self._active_agent.name,
            max_turns=invocation.max_turns,
            stateless=invocation.stateless,
        )

        result._attach_task(asyncio.create_task(self._stream_loop(invocation, result)))
        return result

    async def _tag_parts(
        self,
        source: AsyncIterator[Dict[str, Any]],
        agent: Agent,
        result: SwarmStreamResult,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Tag every part with the agent that produced it"""
        reference = _agent_ref(agent)
        try:
            async for part in source:
                if part.get("type") == StreamPartType.ERROR and isinstance(part.get("error"), BaseException):
                    result._note_error(part["error"])
                if "agent" not in part:
                    part = {**part, "agent": reference}
                yield part
        except Exception as e:
            result._note_error(e)
            raise
        finally:
            await source.aclose()

    async def _stream_loop(self, invocation: _Invocation, result: SwarmStreamResult):
        stitch = result.stitch
        state = _TurnState(history=invocation.history)

        try:
            done = False
            while not done and state.turns_used < invocation.max_turns:
                agent_in_turn = self._active_agent
                request = self._build_request(agent_in_turn, invocation, state)
                generation = self._model_for(agent_in_turn).stream(request)
                stitch.attach(self._tag_parts(generation.full_stream, agent_in_turn, result))

                finish_reason = await generation.finish_reason
                state.text_parts.append(await generation.text)
                state.usage = state.usage + await generation.usage
                state.steps.extend(await generation.steps)

                if finish_reason == FinishReason.ERROR:
                    raise result.last_error or ModelInvocationError(
                        f"Model call failed for agent '{agent_in_turn.name}'"
                    )

                done, parts = await self._after_round(
                    agent_in_turn,
                    state,
                    invocation,
                    request.max_steps,
                    finish_reason,
                    await generation.action_calls,
                    await generation.action_results,
                    await generation.response_messages,
                )
                for part in parts:
                    stitch.attach(_single_part({**part, "agent": _agent_ref(agent_in_turn)}))

            result._resolve(self._finalize(invocation, state))

        except asyncio.CancelledError:
            self.logger.info("swarm_stream_cancelled", turns_used=state.turns_used)
            # A reader that stopped on an error part still gets that error
            if result.last_error is not None:
                result._reject(result.last_error)
            else:
                result._cancel()
            raise
        except Exception as e:
            self.logger.error("swarm_stream_failed", error=str(e), exc_info=True)
            result._reject(e)
            if not result._was_surfaced(e) and not stitch.is_cancelled:
                stitch.attach(_single_part({"type": StreamPartType.ERROR, "error": e}))
        finally:
            if not stitch.is_cancelled and not stitch.is_finished:
                stitch.finish()

    def __repr__(self) -> str:
        """String representation of swarm"""
        return f"<Swarm(name='{self.name}', active_agent='{self._active_agent.name}')>"
