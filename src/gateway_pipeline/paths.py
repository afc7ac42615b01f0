"""Restricted JSONPath resolver shared by mapping and pagination.

Paths follow the grammar ``$(.prop|[index]|[*]|['key']|["key"])*``. A parsed
path is a list of ``PathSegment`` values that can be evaluated against any
JSON-compatible Python value (dict / list / str / int / float / bool / None).

Evaluation is deliberately small:

* ``get_value`` walks the segments, flattening matches when a wildcard is
  crossed, and reports ``found`` separately from the value so that a literal
  ``null`` at the leaf is distinguishable from a missing key.
* ``set_value`` never mutates its input. It deep-copies the root, creates any
  missing containers (dict for property segments, list for index segments)
  and returns the new root.

Limits: ``MAX_NESTING_DEPTH`` segments per path and ``MAX_ARRAY_ITEMS``
values collected by wildcard expansion.
"""
from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Union

__all__ = [
    "MAX_NESTING_DEPTH",
    "MAX_ARRAY_ITEMS",
    "JsonType",
    "json_type",
    "PathError",
    "SegmentKind",
    "PathSegment",
    "PathValidation",
    "PathGetResult",
    "PathSetResult",
    "parse_path",
    "validate_path",
    "format_path",
    "get_value",
    "get_value_by_path",
    "set_value",
    "deep_clone",
    "is_empty",
    "is_nullish",
]

MAX_NESTING_DEPTH = 10
MAX_ARRAY_ITEMS = 5000


class JsonType(str, Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def json_type(value: Any) -> JsonType:
    """Tag a Python value with its JSON type.

    ``bool`` is checked before numbers because it subclasses ``int``.
    Tuples count as arrays; any other mapping-like or unknown object is
    reported as an object.
    """
    if value is None:
        return JsonType.NULL
    if isinstance(value, bool):
        return JsonType.BOOLEAN
    if isinstance(value, (int, float)):
        return JsonType.NUMBER
    if isinstance(value, str):
        return JsonType.STRING
    if isinstance(value, (list, tuple)):
        return JsonType.ARRAY
    return JsonType.OBJECT


class PathError(ValueError):
    """Raised for malformed paths and for wildcard overflow during evaluation."""

    def __init__(self, message: str, code: str = "INVALID_PATH", path: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.path = path


class SegmentKind(str, Enum):
    PROPERTY = "property"
    INDEX = "index"
    WILDCARD = "wildcard"


@dataclass(frozen=True)
class PathSegment:
    kind: SegmentKind
    key: Union[str, int, None] = None

    def __str__(self) -> str:
        if self.kind is SegmentKind.WILDCARD:
            return "[*]"
        if self.kind is SegmentKind.INDEX:
            return f"[{self.key}]"
        return f".{self.key}" if _IDENT_RE.match(str(self.key)) else f"[{json.dumps(self.key)}]"


@dataclass
class PathValidation:
    valid: bool
    error: Optional[str] = None


@dataclass
class PathGetResult:
    found: bool
    value: Any = None
    is_array: bool = False


@dataclass
class PathSetResult:
    success: bool
    data: Any = None
    error: Optional[str] = None


_IDENT_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$-]*$")
_PROP_RE = re.compile(r"[^.\[\]]+")


# ---------------- Parsing -----------------


def parse_path(path: str) -> List[PathSegment]:
    """Parse a path string into segments.

    Args:
        path: Path such as ``$.users[*].email`` or ``$["weird key"][0]``.

    Returns:
        Ordered list of segments; ``$`` on its own yields an empty list.

    Raises:
        PathError: On empty input, missing ``$`` root, malformed brackets or
            more than ``MAX_NESTING_DEPTH`` segments.
    """
    if not isinstance(path, str) or not path.strip():
        raise PathError("Path must be a non-empty string", path=path)
    path = path.strip()
    if not path.startswith("$"):
        raise PathError(f"Path must start with '$': {path}", path=path)

    segments: List[PathSegment] = []
    i = 1
    n = len(path)
    while i < n:
        ch = path[i]
        if ch == ".":
            m = _PROP_RE.match(path, i + 1)
            if not m:
                raise PathError(f"Expected property name at position {i + 1} in {path}", path=path)
            segments.append(PathSegment(SegmentKind.PROPERTY, m.group(0)))
            i = m.end()
        elif ch == "[":
            close = _find_bracket_close(path, i)
            inner = path[i + 1 : close].strip()
            segments.append(_parse_bracket(inner, path))
            i = close + 1
        else:
            raise PathError(f"Unexpected character {ch!r} at position {i} in {path}", path=path)
        if len(segments) > MAX_NESTING_DEPTH:
            raise PathError(
                f"Path exceeds maximum nesting depth of {MAX_NESTING_DEPTH}: {path}",
                code="NESTING_LIMIT_EXCEEDED",
                path=path,
            )
    return segments


def _find_bracket_close(path: str, start: int) -> int:
    quote: Optional[str] = None
    i = start + 1
    while i < len(path):
        ch = path[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "]":
            return i
        i += 1
    raise PathError(f"Unclosed bracket at position {start} in {path}", path=path)


def _parse_bracket(inner: str, path: str) -> PathSegment:
    if inner == "*":
        return PathSegment(SegmentKind.WILDCARD)
    if inner.isdigit():
        return PathSegment(SegmentKind.INDEX, int(inner))
    if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in ("'", '"'):
        key = inner[1:-1].replace("\\" + inner[0], inner[0]).replace("\\\\", "\\")
        return PathSegment(SegmentKind.PROPERTY, key)
    raise PathError(f"Invalid bracket expression [{inner}] in {path}", path=path)


def validate_path(path: str) -> PathValidation:
    try:
        parse_path(path)
    except PathError as e:
        return PathValidation(valid=False, error=str(e))
    return PathValidation(valid=True)


def format_path(segments: List[PathSegment]) -> str:
    return "$" + "".join(str(s) for s in segments)


# ---------------- Evaluation -----------------


def get_value(data: Any, segments: List[PathSegment]) -> PathGetResult:
    """Resolve ``segments`` against ``data``.

    Once a wildcard has been crossed the result is a flat list of every match
    below it (``is_array=True``); branches where the remainder of the path
    does not resolve are skipped, so an expansion with no surviving branch
    is ``found`` with an empty list.

    Raises:
        PathError: With code ``ARRAY_LIMIT_EXCEEDED`` when wildcard expansion
            collects more than ``MAX_ARRAY_ITEMS`` values.
    """
    if not segments:
        return PathGetResult(found=True, value=data, is_array=isinstance(data, list))

    current: List[Any] = [data]
    expanded = False
    for seg in segments:
        nxt: List[Any] = []
        for node in current:
            if seg.kind is SegmentKind.WILDCARD:
                if isinstance(node, list):
                    nxt.extend(node)
                elif isinstance(node, dict):
                    nxt.extend(node.values())
            elif seg.kind is SegmentKind.INDEX:
                if isinstance(node, list) and -len(node) <= int(seg.key) < len(node):  # type: ignore[arg-type]
                    nxt.append(node[int(seg.key)])  # type: ignore[arg-type]
            else:
                if isinstance(node, dict) and seg.key in node:
                    nxt.append(node[seg.key])
            if len(nxt) > MAX_ARRAY_ITEMS:
                raise PathError(
                    f"Wildcard expansion exceeded {MAX_ARRAY_ITEMS} items",
                    code="ARRAY_LIMIT_EXCEEDED",
                    path=format_path(segments),
                )
        if seg.kind is SegmentKind.WILDCARD:
            expanded = True
        current = nxt
        if not current and not expanded:
            return PathGetResult(found=False)

    if expanded:
        return PathGetResult(found=True, value=current, is_array=True)
    if not current:
        return PathGetResult(found=False)
    return PathGetResult(found=True, value=current[0], is_array=isinstance(current[0], list))


def get_value_by_path(data: Any, path: str) -> Any:
    """Convenience lookup returning the value or None (invalid paths included)."""
    try:
        result = get_value(data, parse_path(path))
    except PathError:
        return None
    return result.value if result.found else None


def set_value(data: Any, segments: List[PathSegment], value: Any) -> PathSetResult:
    """Write ``value`` at ``segments`` in a copy of ``data``.

    A wildcard in the target distributes list values element-wise (the n-th
    value lands in the n-th element) and broadcasts scalars to every element.
    """
    if not segments:
        return PathSetResult(success=True, data=deep_clone(value))
    root = deep_clone(data)
    if root is None:
        root = [] if segments[0].kind is not SegmentKind.PROPERTY else {}
    try:
        root = _assign(root, segments, value)
    except (TypeError, IndexError) as e:
        return PathSetResult(success=False, data=data, error=str(e))
    return PathSetResult(success=True, data=root)


def _empty_for(seg: PathSegment) -> Any:
    return {} if seg.kind is SegmentKind.PROPERTY else []


def _assign(node: Any, segments: List[PathSegment], value: Any) -> Any:
    seg, rest = segments[0], segments[1:]

    if seg.kind is SegmentKind.PROPERTY:
        if not isinstance(node, dict):
            raise TypeError(f"Cannot set property {seg.key!r} on {json_type(node).value}")
        if rest:
            child = node.get(seg.key)
            if not isinstance(child, (dict, list)):
                child = _empty_for(rest[0])
            node[seg.key] = _assign(child, rest, value)
        else:
            node[seg.key] = deep_clone(value)
        return node

    if not isinstance(node, list):
        raise TypeError(f"Cannot index into {json_type(node).value}")

    if seg.kind is SegmentKind.INDEX:
        idx = int(seg.key)  # type: ignore[arg-type]
        while len(node) <= idx:
            node.append(None)
        if rest:
            child = node[idx]
            if not isinstance(child, (dict, list)):
                child = _empty_for(rest[0])
            node[idx] = _assign(child, rest, value)
        else:
            node[idx] = deep_clone(value)
        return node

    # wildcard
    if isinstance(value, list):
        while len(node) < len(value):
            node.append(None)
        pairs = list(enumerate(value))
    else:
        pairs = [(i, value) for i in range(len(node))]
    for i, item_value in pairs:
        if rest:
            child = node[i]
            if not isinstance(child, (dict, list)):
                child = _empty_for(rest[0])
            node[i] = _assign(child, rest, item_value)
        else:
            node[i] = deep_clone(item_value)
    return node


# ---------------- Value helpers -----------------


def deep_clone(value: Any) -> Any:
    return copy.deepcopy(value)


def is_nullish(value: Any) -> bool:
    return value is None


def is_empty(value: Any) -> bool:
    """Empty means None, a whitespace-only string or an empty list.

    Empty dicts are not considered empty.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False
