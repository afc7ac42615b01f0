"""JSON-schema-like definitions to pydantic validators.

Stored output schemas are plain dicts in a JSON Schema subset. They are
turned into a ``pydantic.TypeAdapter`` over strict types so that responses
are checked without any implicit conversion:

* ``object`` with ``properties`` becomes a model built with
  ``pydantic.create_model``; properties are bound by alias so any key
  (``"user-id"``, ``"model_config"``) works. Unknown keys are allowed here,
  extra-field policy is applied by the validator beforehand.
* ``array`` becomes ``List[items]``; ``min/maxItems`` become length limits.
* ``string`` / ``number`` / ``integer`` / ``boolean`` / ``null`` map to
  strict scalars with their constraints; ``pattern`` and ``format`` are
  checked by after-validators raising stable error types.
* ``type`` may be a list (``["string", "null"]``); ``nullable: true`` and a
  ``null`` member both produce ``Optional[...]``.

Anything that cannot be converted yields None: the caller treats that as
"no validation".
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    AnyUrl,
    ConfigDict,
    Field,
    Strict,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    create_model,
)
from pydantic_core import PydanticCustomError

__all__ = [
    "SchemaConversionError",
    "schema_to_validator",
    "build_type",
    "schema_allows_null",
    "schema_primary_type",
    "SUPPORTED_FORMATS",
]

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NAME_RE = re.compile(r"[^A-Za-z0-9_]")
_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)

_MODEL_CONFIG = ConfigDict(strict=True, extra="allow")


class SchemaConversionError(ValueError):
    """The schema dict uses a construct that cannot be converted."""


# ---------------- Formats -----------------


def _is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def _is_url(value: str) -> bool:
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError:
        return False
    return True


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _is_date(value: str) -> bool:
    if not _DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_datetime(value: str) -> bool:
    if "T" not in value and " " not in value:
        return False
    candidate = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        datetime.fromisoformat(candidate)
    except ValueError:
        return False
    return True


SUPPORTED_FORMATS: Dict[str, Callable[[str], bool]] = {
    "email": _is_email,
    "uri": _is_url,
    "url": _is_url,
    "uuid": _is_uuid,
    "date": _is_date,
    "date-time": _is_datetime,
}


def _format_check(fmt: str) -> Callable[[str], str]:
    predicate = SUPPORTED_FORMATS[fmt]

    def check(value: str) -> str:
        if not predicate(value):
            raise PydanticCustomError("invalid_format", "Invalid {format} format", {"format": fmt})
        return value

    return check


def _pattern_check(pattern: str) -> Callable[[str], str]:
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise SchemaConversionError(f"Invalid pattern {pattern!r}: {e}") from e

    def check(value: str) -> str:
        if not compiled.search(value):
            raise PydanticCustomError(
                "string_pattern_mismatch", "String should match pattern '{pattern}'", {"pattern": pattern}
            )
        return value

    return check


# ---------------- Schema helpers -----------------


def schema_primary_type(schema: Any) -> Optional[str]:
    """First non-null entry of ``type`` (None when absent)."""
    if not isinstance(schema, dict):
        return None
    t = schema.get("type")
    if isinstance(t, list):
        non_null = [x for x in t if x != "null"]
        return non_null[0] if non_null else ("null" if t else None)
    return t if isinstance(t, str) else None


def schema_allows_null(schema: Any) -> bool:
    if not isinstance(schema, dict):
        return True
    t = schema.get("type")
    if t is None and "enum" not in schema:
        return True
    if t == "null" or (isinstance(t, list) and "null" in t):
        return True
    if schema.get("nullable") is True:
        return True
    enum = schema.get("enum")
    return isinstance(enum, list) and None in enum


def _bounded(**limits: Any) -> Dict[str, Any]:
    return {k: v for k, v in limits.items() if v is not None}


def _string_type(schema: Dict[str, Any]) -> Any:
    parts: List[Any] = [str, Strict()]
    limits = _bounded(min_length=schema.get("minLength"), max_length=schema.get("maxLength"))
    if limits:
        parts.append(StringConstraints(**limits))
    if isinstance(schema.get("pattern"), str):
        parts.append(AfterValidator(_pattern_check(schema["pattern"])))
    fmt = schema.get("format")
    if isinstance(fmt, str) and fmt in SUPPORTED_FORMATS:
        parts.append(AfterValidator(_format_check(fmt)))
    return Annotated[tuple(parts)]


def _number_type(schema: Dict[str, Any], integer: bool) -> Any:
    limits = _bounded(
        ge=schema.get("minimum"),
        le=schema.get("maximum"),
        gt=schema.get("exclusiveMinimum"),
        lt=schema.get("exclusiveMaximum"),
    )
    parts: List[Any] = [int if integer else float, Strict()]
    if limits:
        parts.append(Field(**limits))
    return Annotated[tuple(parts)]


def _array_type(schema: Dict[str, Any], name: str) -> Any:
    items = schema.get("items")
    inner = build_type(items, f"{name}_item") if isinstance(items, dict) and items else Any
    parts: List[Any] = [List[inner]]
    limits = _bounded(min_length=schema.get("minItems"), max_length=schema.get("maxItems"))
    if limits:
        parts.append(Field(**limits))
    if len(parts) == 1:
        return parts[0]
    return Annotated[tuple(parts)]


def _object_type(schema: Dict[str, Any], name: str) -> Any:
    properties = schema.get("properties")
    if not isinstance(properties, dict) or not properties:
        return Annotated[Dict[str, Any], Strict()]
    required = schema.get("required") or []
    if not isinstance(required, list):
        raise SchemaConversionError(f"'required' must be a list in {name}")
    fields: Dict[str, Any] = {}
    for i, (key, prop_schema) in enumerate(properties.items()):
        prop_type = build_type(prop_schema, f"{name}_{_NAME_RE.sub('_', str(key))}")
        if key in required:
            fields[f"f{i}"] = (prop_type, Field(alias=key))
        else:
            fields[f"f{i}"] = (prop_type, Field(default=None, alias=key))
    return create_model(_NAME_RE.sub("_", name) or "Root", __config__=_MODEL_CONFIG, **fields)


def _single_type(t: str, schema: Dict[str, Any], name: str) -> Any:
    if t == "string":
        return _string_type(schema)
    if t in ("number", "integer"):
        return _number_type(schema, integer=t == "integer")
    if t == "boolean":
        return Annotated[bool, Strict()]
    if t == "null":
        return type(None)
    if t == "array":
        return _array_type(schema, name)
    if t == "object":
        return _object_type(schema, name)
    return Any


def build_type(schema: Any, name: str = "Root") -> Any:
    """Python type (with pydantic metadata) for one schema node.

    Raises:
        SchemaConversionError: On malformed nodes.
    """
    if not isinstance(schema, dict):
        raise SchemaConversionError(f"Schema node {name} must be an object")

    enum = schema.get("enum")
    if isinstance(enum, list) and enum:
        try:
            values = tuple(v for v in enum if v is not None)
            base: Any = Literal[values] if values else type(None)
        except TypeError as e:
            raise SchemaConversionError(f"Unsupported enum values in {name}") from e
        return Optional[base] if None in enum or schema.get("nullable") is True else base

    t = schema.get("type")
    if t is None:
        return Any
    if isinstance(t, list):
        non_null = [x for x in t if x != "null"]
        if not non_null:
            return type(None)
        members = [_single_type(x, schema, name) for x in non_null]
        base = members[0] if len(members) == 1 else Union[tuple(members)]
        nullable = len(non_null) < len(t) or schema.get("nullable") is True
    elif isinstance(t, str):
        base = _single_type(t, schema, name)
        nullable = t != "null" and schema.get("nullable") is True
    else:
        raise SchemaConversionError(f"Unsupported 'type' in {name}: {t!r}")
    return Optional[base] if nullable else base


def schema_to_validator(schema: Any) -> Optional[TypeAdapter]:
    """Convert a stored output schema into a ``TypeAdapter``.

    Returns:
        The adapter, or None for empty / non-dict / unconvertible schemas.
    """
    if not isinstance(schema, dict) or not schema:
        return None
    try:
        return TypeAdapter(build_type(schema))
    except (SchemaConversionError, TypeError, ValueError) as e:
        logger.warning("Output schema could not be converted, validation disabled: %s", e)
        return None
