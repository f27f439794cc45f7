"""Dotted-path lookups into nested mappings and sequences."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Dict


def get_nested_value(obj: Any, path: str, default: Any = None) -> Any:
    """Return the value at ``path`` (``"a.b.0.c"``) or ``default``.

    Mapping keys are matched as strings; sequence segments must be integers.
    Any missing segment yields ``default``.
    """
    if not path:
        return obj
    current = obj
    for key in path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return default
            current = current[key]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return current


def nest_value(path: str, value: Any) -> Dict[str, Any]:
    """Wrap ``value`` in nested dicts following ``path``.

    ``nest_value("a.b", 1)`` returns ``{"a": {"b": 1}}``.
    """
    result: Any = value
    for key in reversed(path.split(".")):
        result = {key: result}
    return result
