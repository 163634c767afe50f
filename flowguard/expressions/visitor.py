# flowguard/expressions/visitor.py
"""
Typed walk over node parameter trees.

Parameters are JSON values: str / int / float / bool / None / list / dict.
`walk` yields one `Visit` per value (containers included) in document order,
with the path rendered the way n8n shows it: `options.headers[0].value`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

MAX_DEPTH = 100


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    ARRAY = "array"
    OBJECT = "object"
    # marker emitted instead of descending past MAX_DEPTH
    TOO_DEEP = "too_deep"


@dataclass(frozen=True)
class Visit:
    path: str
    value: Any
    kind: ValueKind
    depth: int


def kind_of(value: Any) -> ValueKind:
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if value is None:
        return ValueKind.NULL
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    if isinstance(value, dict):
        return ValueKind.OBJECT
    # anything else is treated as an opaque scalar
    return ValueKind.NULL


def join_key(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def join_index(path: str, index: int) -> str:
    return f"{path}[{index}]"


def walk(
    value: Any,
    path: str = "",
    depth: int = 0,
    max_depth: int = MAX_DEPTH,
    skip_private: bool = True,
) -> Iterator[Visit]:
    """
    Depth-first pre-order walk.

    - keys starting with `__` (e.g. the `__rl` resource-locator marker) are not descended into
      when `skip_private` is set;
    - a container already on the current path is not re-entered;
    - past `max_depth` a single TOO_DEEP visit is yielded for that subtree.
    """
    yield from _walk(value, path, depth, max_depth, skip_private, set())


def _walk(value, path, depth, max_depth, skip_private, on_path) -> Iterator[Visit]:
    if depth > max_depth:
        yield Visit(path, value, ValueKind.TOO_DEEP, depth)
        return

    kind = kind_of(value)
    yield Visit(path, value, kind, depth)

    if kind not in (ValueKind.ARRAY, ValueKind.OBJECT):
        return
    if id(value) in on_path:
        return
    on_path.add(id(value))
    try:
        if kind is ValueKind.ARRAY:
            for i, item in enumerate(value):
                yield from _walk(item, join_index(path, i), depth + 1, max_depth, skip_private, on_path)
        else:
            for key, item in value.items():
                if skip_private and isinstance(key, str) and key.startswith("__"):
                    continue
                yield from _walk(item, join_key(path, str(key)), depth + 1, max_depth, skip_private, on_path)
    finally:
        on_path.discard(id(value))


def iter_strings(value: Any, path: str = "") -> Iterator[Visit]:
    """Only the string leaves of `walk`."""
    for visit in walk(value, path):
        if visit.kind is ValueKind.STRING:
            yield visit
