"""
Instruction rendering.

String instructions are Jinja2 templates rendered against the shared context;
callables receive a snapshot of the context and return the prompt.
"""

from functools import lru_cache
from typing import Any, Callable, Mapping, Union

from jinja2 import Environment, Template

from agent_swarm.core.context import snapshot_context

InstructionSource = Union[str, Callable[[Mapping[str, Any]], str]]

_environment = Environment(autoescape=False, keep_trailing_newline=True)


@lru_cache(maxsize=256)
def _compile(source: str) -> Template:
    return _environment.from_string(source)


def render(template: InstructionSource, context: Mapping[str, Any]) -> str:
    """
    Render instructions against the context.

    Args:
        template: Jinja2 template string or callable taking the context
        context: Current shared context

    Returns:
        Rendered system prompt
    """
    if callable(template):
        return template(snapshot_context(context))
    return _compile(template).render(dict(context))
