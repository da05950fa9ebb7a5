"""
Test fixtures and helper utilities for standalone test scripts.
Provides output helpers, assertions and a scripted model client.
"""

import sys
import os
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agent_swarm.agent_layer.adapters.base import BaseModelClient
from agent_swarm.agent_layer.protocol import ProviderStep
from agent_swarm.models.schemas import ActionCall, FinishReason, StepResult, StreamPartType, Usage


# ============================================================================
# Color codes for terminal output
# ============================================================================

GREEN = '\033[92m'
RED = '\033[91m'
CYAN = '\033[96m'
RESET = '\033[0m'


# ============================================================================
# Test output helpers
# ============================================================================

def print_test_header(test_name):
    """Print formatted test header"""
    print(f"\n{'='*70}")
    print(f"{CYAN}Running: {test_name}{RESET}")
    print(f"{'='*70}\n")


def print_pass(test_name):
    """Print test pass message"""
    print(f"{GREEN}✓ PASS{RESET}: {test_name}")


def print_fail(test_name, error):
    """Print test failure message with error details"""
    print(f"{RED}✗ FAIL{RESET}: {test_name}")
    print(f"{RED}  Error: {error}{RESET}")


def print_summary(tests_passed, tests_failed):
    """Print test summary"""
    print(f"\n{'='*70}")
    total = tests_passed + tests_failed
    if tests_failed == 0:
        print(f"{GREEN}✓ ALL TESTS PASSED{RESET}: {tests_passed}/{total}")
    else:
        print(f"{RED}✗ SOME TESTS FAILED{RESET}: {tests_passed} passed, {tests_failed} failed")
    print(f"{'='*70}\n")


async def run_tests(title, tests):
    """Run (name, coroutine function) pairs and print a summary; returns an exit code"""
    print_test_header(title)

    tests_passed = 0
    tests_failed = 0

    for test_name, test_func in tests:
        try:
            await test_func()
            print_pass(test_name)
            tests_passed += 1
        except Exception as e:
            print_fail(test_name, str(e))
            import traceback
            traceback.print_exc()
            tests_failed += 1

    print_summary(tests_passed, tests_failed)
    return 0 if tests_failed == 0 else 1


# ============================================================================
# Scripted model client
# ============================================================================

def make_call(name: str, args: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> ActionCall:
    """Build an action call as a provider would return it"""
    return ActionCall(id=call_id or f"call_{uuid.uuid4().hex[:8]}", name=name, args=args or {})


def text_step(text: str, finish_reason: FinishReason = FinishReason.STOP, tokens: int = 0) -> ProviderStep:
    """Provider step that answers with text"""
    return ProviderStep(
        text=text,
        finish_reason=finish_reason,
        usage=Usage(prompt_tokens=tokens, completion_tokens=tokens, total_tokens=2 * tokens),
    )


def call_step(*calls: ActionCall, text: str = "") -> ProviderStep:
    """Provider step that requests actions"""
    return ProviderStep(text=text, action_calls=list(calls), finish_reason=FinishReason.TOOL_CALLS)


ScriptItem = Union[ProviderStep, Exception]


class ScriptedModelClient(BaseModelClient):
    """
    Model client that replays scripted provider steps.

    Steps are consumed in order across every call (blocking or streaming),
    so one client shared by several agents scripts a whole conversation.
    A responder callable may be used instead to compute each step.
    """

    def __init__(
        self,
        steps: Optional[List[ScriptItem]] = None,
        responder: Optional[Callable[..., ScriptItem]] = None,
        name: str = "scripted",
        chunk_size: int = 4,
    ):
        super().__init__(name=name, model="scripted-model")
        self.steps = list(steps or [])
        self.responder = responder
        self.chunk_size = chunk_size
        self.calls: List[Dict[str, Any]] = []

    def _next_step(self, system, messages, actions, tool_choice) -> ProviderStep:
        self.calls.append({
            "system": system,
            "messages": [dict(m) for m in messages],
            "actions": dict(actions),
            "tool_choice": tool_choice,
        })

        if self.responder is not None:
            step = self.responder(system, messages, actions)
        elif self.steps:
            step = self.steps.pop(0)
        else:
            step = text_step("")

        if isinstance(step, Exception):
            raise step
        return step

    async def _complete(self, system, messages, actions, tool_choice) -> ProviderStep:
        return self._next_step(system, messages, actions, tool_choice)

    async def _stream_step(self, system, messages, actions, tool_choice):
        step = self._next_step(system, messages, actions, tool_choice)

        for start in range(0, len(step.text), self.chunk_size):
            yield {"type": StreamPartType.TEXT_DELTA, "text_delta": step.text[start:start + self.chunk_size]}

        for call in step.action_calls:
            yield {
                "type": StreamPartType.ACTION_CALL,
                "tool_call_id": call.id,
                "tool_name": call.name,
                "args": call.args,
            }

        yield {"type": StreamPartType.STEP_FINISH, "finish_reason": step.finish_reason, "usage": step.usage}


# ============================================================================
# Collectors
# ============================================================================

class StepCollector:
    """Helper class to collect on_step_finish callbacks"""

    def __init__(self):
        self.steps: List[StepResult] = []

    async def handler(self, step: StepResult):
        """Step callback that collects steps"""
        self.steps.append(step)

    def count(self):
        """Get count of collected steps"""
        return len(self.steps)


async def collect(stream) -> list:
    """Drain an async iterator into a list"""
    return [item async for item in stream]


async def async_items(*items, fail_with: Optional[Exception] = None):
    """Async source yielding items, optionally failing afterwards"""
    for item in items:
        yield item
    if fail_with is not None:
        raise fail_with


# ============================================================================
# Assertion helpers
# ============================================================================

def assert_equal(actual, expected, message=""):
    """Assert two values are equal"""
    if actual != expected:
        raise AssertionError(
            f"{message}\nExpected: {expected}\nActual: {actual}"
        )


def assert_true(condition, message=""):
    """Assert condition is true"""
    if not condition:
        raise AssertionError(f"{message}\nExpected: True\nActual: False")


def assert_false(condition, message=""):
    """Assert condition is false"""
    if condition:
        raise AssertionError(f"{message}\nExpected: False\nActual: True")


def assert_in(item, container, message=""):
    """Assert item is in container"""
    if item not in container:
        raise AssertionError(
            f"{message}\nExpected {item} to be in {container}"
        )


def assert_not_in(item, container, message=""):
    """Assert item is not in container"""
    if item in container:
        raise AssertionError(
            f"{message}\nExpected {item} to not be in {container}"
        )


def assert_raises(exception_type, func, *args, **kwargs):
    """Assert function raises specific exception"""
    try:
        func(*args, **kwargs)
    except exception_type:
        return  # Expected
    except Exception as e:
        raise AssertionError(
            f"Expected {exception_type.__name__} to be raised, but got {type(e).__name__}: {e}"
        )
    raise AssertionError(
        f"Expected {exception_type.__name__} to be raised, but no exception was raised"
    )


async def assert_raises_async(exception_type, coro):
    """Assert async function raises specific exception"""
    try:
        await coro
    except exception_type:
        return  # Expected
    except Exception as e:
        raise AssertionError(
            f"Expected {exception_type.__name__} to be raised, but got {type(e).__name__}: {e}"
        )
    raise AssertionError(
        f"Expected {exception_type.__name__} to be raised, but no exception was raised"
    )
