"""
Shared context helpers.

The context is a flat JSON object. Updates are shallow: keys in the update
replace the current value, other keys are untouched, and None is a value.
"""

import copy
import json
from typing import Any, Dict, Mapping, Optional


def merge_context(current: Mapping[str, Any], update: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a new context with update's keys laid over current"""
    merged = dict(current)
    if update:
        merged.update(update)
    return merged


def snapshot_context(context: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep copy handed to actions and instruction callables"""
    return copy.deepcopy(dict(context))


def ensure_json_object(value: Any, what: str = "context") -> Dict[str, Any]:
    """
    Validate that value is a JSON-serializable object with string keys.

    Raises:
        TypeError: If value is not a mapping or cannot be serialized
    """
    if not isinstance(value, Mapping):
        raise TypeError(f"{what} must be a mapping, got {type(value).__name__}")

    for key in value:
        if not isinstance(key, str):
            raise TypeError(f"{what} keys must be strings, got {key!r}")

    try:
        json.dumps(dict(value))
    except (TypeError, ValueError) as e:
        raise TypeError(f"{what} must be JSON-serializable: {e}") from e

    return dict(value)
