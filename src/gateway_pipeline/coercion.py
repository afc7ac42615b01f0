"""Type coercion between JSON scalar types.

Conversions supported by ``coerce_value``:

========  ========  ===============================================
from      to        rule
========  ========  ===============================================
string    number    numeric literal only (``"12"``, ``"-1.5e3"``)
string    boolean   true/false/1/0/yes/no/on/off, case-insensitive
number    string    always succeeds
number    boolean   ``0`` -> False, anything else -> True
boolean   string    ``"true"`` / ``"false"``
boolean   number    ``1`` / ``0``
object    string    compact JSON
array     string    compact JSON
========  ========  ===============================================

Anything else (including ``None``) fails with the original value returned
untouched. Callers decide whether a failure is fatal.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional

from .paths import JsonType, json_type

__all__ = [
    "CoercionType",
    "CoercionResult",
    "CoercionTracker",
    "coerce_value",
    "coerce_array",
    "can_coerce",
    "describe_coercion",
    "parse_numeric_literal",
    "parse_boolean_literal",
    "format_number",
]

CoercionType = Literal["string", "number", "boolean"]

_NUMERIC_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


@dataclass
class CoercionResult:
    success: bool
    value: Any
    coerced: bool = False
    error: Optional[str] = None


def parse_numeric_literal(raw: str) -> Optional[float | int]:
    """Parse a trimmed decimal literal, returning None when it is not one."""
    text = raw.strip()
    if not text or not _NUMERIC_RE.match(text):
        return None
    if any(c in text for c in ".eE"):
        number = float(text)
        if math.isinf(number) or math.isnan(number):
            return None
        return number
    return int(text)


def parse_boolean_literal(raw: str) -> Optional[bool]:
    text = raw.strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def format_number(value: float | int) -> str:
    """Render numbers the way a JSON consumer expects (``1.0`` -> ``"1"``)."""
    if isinstance(value, float):
        if value.is_integer() and not math.isinf(value):
            return str(int(value))
        return repr(value)
    return str(value)


def _fail(value: Any, message: str) -> CoercionResult:
    return CoercionResult(success=False, value=value, coerced=False, error=message)


def coerce_value(value: Any, target_type: CoercionType) -> CoercionResult:
    """Convert ``value`` to ``target_type``.

    Args:
        value: Any JSON-compatible value.
        target_type: ``"string"``, ``"number"`` or ``"boolean"``.

    Returns:
        ``CoercionResult``. ``coerced`` is False when the value already had the
        requested type; on failure ``value`` is the untouched input.
    """
    source = json_type(value)
    if source.value == target_type:
        return CoercionResult(success=True, value=value, coerced=False)
    if source is JsonType.NULL:
        return _fail(value, f"Cannot coerce null to {target_type}")

    if target_type == "string":
        if source is JsonType.NUMBER:
            return CoercionResult(success=True, value=format_number(value), coerced=True)
        if source is JsonType.BOOLEAN:
            return CoercionResult(success=True, value="true" if value else "false", coerced=True)
        if source in (JsonType.OBJECT, JsonType.ARRAY):
            try:
                text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
            except (TypeError, ValueError) as e:
                return _fail(value, f"Cannot serialize {source.value} to string: {e}")
            return CoercionResult(success=True, value=text, coerced=True)

    elif target_type == "number":
        if source is JsonType.STRING:
            number = parse_numeric_literal(value)
            if number is None:
                return _fail(value, f"Cannot coerce string {value!r} to number")
            return CoercionResult(success=True, value=number, coerced=True)
        if source is JsonType.BOOLEAN:
            return CoercionResult(success=True, value=1 if value else 0, coerced=True)

    elif target_type == "boolean":
        if source is JsonType.STRING:
            parsed = parse_boolean_literal(value)
            if parsed is None:
                return _fail(value, f"Cannot coerce string {value!r} to boolean")
            return CoercionResult(success=True, value=parsed, coerced=True)
        if source is JsonType.NUMBER:
            return CoercionResult(success=True, value=value != 0, coerced=True)

    return _fail(value, f"Unsupported coercion from {source.value} to {target_type}")


def coerce_array(values: List[Any], target_type: CoercionType) -> CoercionResult:
    """Coerce every element; the first failure fails the whole array.

    On failure the original list is returned and ``error`` names the index.
    """
    out: List[Any] = []
    coerced = False
    for i, item in enumerate(values):
        result = coerce_value(item, target_type)
        if not result.success:
            return _fail(values, f"Element [{i}]: {result.error}")
        coerced = coerced or result.coerced
        out.append(result.value)
    return CoercionResult(success=True, value=out, coerced=coerced)


_SUPPORTED = {
    ("string", "number"),
    ("string", "boolean"),
    ("number", "string"),
    ("number", "boolean"),
    ("boolean", "string"),
    ("boolean", "number"),
    ("object", "string"),
    ("array", "string"),
}


def can_coerce(from_type: str, to_type: str) -> bool:
    if from_type in ("null", "undefined"):
        return False
    if from_type == to_type:
        return True
    return (from_type, to_type) in _SUPPORTED


def describe_coercion(from_type: str, to_type: str) -> str:
    if from_type == to_type:
        return f"No coercion needed ({from_type})"
    if not can_coerce(from_type, to_type):
        return f"Cannot coerce {from_type} to {to_type}"
    rules = {
        ("string", "number"): "Parse numeric string (e.g. '123' -> 123)",
        ("string", "boolean"): "Parse boolean string (true/false/1/0/yes/no/on/off)",
        ("number", "string"): "Convert number to string",
        ("number", "boolean"): "0 -> false, other numbers -> true",
        ("boolean", "string"): "true -> 'true', false -> 'false'",
        ("boolean", "number"): "true -> 1, false -> 0",
        ("object", "string"): "Serialize object to JSON",
        ("array", "string"): "Serialize array to JSON",
    }
    return rules[(from_type, to_type)]


@dataclass
class CoercionTracker:
    """Accumulates coercion outcomes across a mapping or validation pass."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)

    def record(self, result: CoercionResult, path: Optional[str] = None) -> CoercionResult:
        if not result.coerced and result.success:
            return result
        self.attempted += 1
        if result.success:
            self.succeeded += 1
        else:
            self.failed += 1
            prefix = f"{path}: " if path else ""
            self.failures.append(f"{prefix}{result.error}")
        return result

    def reset(self) -> None:
        self.attempted = self.succeeded = self.failed = 0
        self.failures.clear()
