"""Response validation against stored output schemas.

``validate`` runs, in order:

1. a duration-budget check (a caller that already spent the budget gets a
   ``SCHEMA_ERROR`` without validating),
2. pass-through when there is no usable schema,
3. ``INVALID_RESPONSE`` for missing data,
4. null handling and, in lenient mode, type coercion driven by the
   coercion flags,
5. top-level extra-field handling (strip / error / preserve),
6. structural validation through the pydantic adapter, with pydantic
   errors mapped to ``ValidationIssue`` codes and JSONPath locations.

``valid`` is False only in strict mode (or when the run was aborted):
warn and lenient modes return ``valid=True`` with the issues attached.
Validation never raises for bad data.
"""
from __future__ import annotations

import copy
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from ..coercion import coerce_value
from ..models.validation import (
    MAX_VALIDATION_DURATION_MS,
    ExtraFieldsHandling,
    NullHandling,
    ValidationConfig,
    ValidationIssue,
    ValidationIssueCode,
    ValidationMeta,
    ValidationMode,
    ValidationResult,
)
from ..paths import JsonType, json_type
from .reporter import create_issue
from .schema import schema_allows_null, schema_primary_type, schema_to_validator

__all__ = [
    "MISSING",
    "validate",
    "is_valid",
    "create_validator",
    "format_json_path",
    "count_fields",
    "value_type_name",
    "value_preview",
]

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover
        return "MISSING"


MISSING: Any = _Missing()
"""Sentinel for "no response data at all" (distinct from a JSON null)."""


_TYPE_NAMES = {
    JsonType.NULL: "null",
    JsonType.BOOLEAN: "boolean",
    JsonType.NUMBER: "number",
    JsonType.STRING: "string",
    JsonType.ARRAY: "array",
    JsonType.OBJECT: "object",
}

_EXPECTED_BY_ERROR = {
    "string_type": "string",
    "int_type": "integer",
    "float_type": "number",
    "bool_type": "boolean",
    "list_type": "array",
    "dict_type": "object",
    "model_type": "object",
    "none_required": "null",
}

_CODE_BY_ERROR = {
    "missing": ValidationIssueCode.MISSING_REQUIRED_FIELD,
    "literal_error": ValidationIssueCode.INVALID_ENUM_VALUE,
    "enum": ValidationIssueCode.INVALID_ENUM_VALUE,
    "string_too_short": ValidationIssueCode.STRING_TOO_SHORT,
    "string_too_long": ValidationIssueCode.STRING_TOO_LONG,
    "too_short": ValidationIssueCode.ARRAY_TOO_SHORT,
    "too_long": ValidationIssueCode.ARRAY_TOO_LONG,
    "greater_than": ValidationIssueCode.VALUE_OUT_OF_RANGE,
    "greater_than_equal": ValidationIssueCode.VALUE_OUT_OF_RANGE,
    "less_than": ValidationIssueCode.VALUE_OUT_OF_RANGE,
    "less_than_equal": ValidationIssueCode.VALUE_OUT_OF_RANGE,
    "string_pattern_mismatch": ValidationIssueCode.INVALID_FORMAT,
    "invalid_format": ValidationIssueCode.INVALID_FORMAT,
}


def value_type_name(value: Any) -> str:
    if value is MISSING:
        return "undefined"
    return _TYPE_NAMES[json_type(value)]


def value_preview(value: Any, max_length: int = 50) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = str(value)
    return text if len(text) <= max_length else text[: max_length - 3] + "..."


def format_json_path(segments: Sequence[Union[str, int]]) -> str:
    """``["users", 0, "e-mail"]`` -> ``$.users[0]["e-mail"]``."""
    out = ["$"]
    for seg in segments:
        if isinstance(seg, int):
            out.append(f"[{seg}]")
        elif _IDENT_RE.match(seg):
            out.append(f".{seg}")
        else:
            out.append(f'["{seg}"]')
    return "".join(out)


def count_fields(data: Any) -> int:
    if data is None or data is MISSING:
        return 0
    if isinstance(data, list):
        return sum(count_fields(item) for item in data)
    if isinstance(data, dict):
        return len(data) + sum(count_fields(v) for v in data.values())
    return 1


# ---------------- Pre-pass -----------------


@dataclass
class _PrePass:
    config: ValidationConfig
    coerce: bool
    coerced: int = 0
    defaulted: int = 0
    failed_paths: Set[str] = field(default_factory=set)
    issues: List[ValidationIssue] = field(default_factory=list)

    def walk(self, value: Any, schema: Any, path: List[Union[str, int]]) -> Tuple[Any, Any]:
        """Returns ``(data, view)``: data to hand back and the copy to validate."""
        if not isinstance(schema, dict):
            return value, value
        if self.coerce:
            value = self._coerce_leaf(value, schema, path)

        t = schema_primary_type(schema)
        if t == "object" and isinstance(value, dict):
            return self._walk_object(value, schema, path)
        if t == "array" and isinstance(value, list) and isinstance(schema.get("items"), dict):
            pairs = [self.walk(v, schema["items"], path + [i]) for i, v in enumerate(value)]
            return [p[0] for p in pairs], [p[1] for p in pairs]
        return value, value

    def _walk_object(
        self, value: Dict[str, Any], schema: Dict[str, Any], path: List[Union[str, int]]
    ) -> Tuple[Any, Any]:
        properties = schema.get("properties")
        if not isinstance(properties, dict):
            return value, value
        required = schema.get("required") or []
        data: Dict[str, Any] = {}
        view: Dict[str, Any] = {}
        for key, item in value.items():
            prop = properties.get(key)
            if prop is None:
                data[key] = item
                view[key] = item
                continue
            if item is None and not schema_allows_null(prop):
                handled = self._handle_null(key, prop, required)
                if handled is _DROP:
                    data[key] = None
                    continue
                if handled is not _KEEP:
                    data[key] = handled
                    view[key] = handled
                    continue
            data[key], view[key] = self.walk(item, prop, path + [key])
        return data, view

    def _handle_null(self, key: str, prop: Dict[str, Any], required: List[str]) -> Any:
        cfg = self.config
        if cfg.nullHandling == NullHandling.DEFAULT and "default" in prop and cfg.coercion.nullToDefault:
            self.defaulted += 1
            return copy.deepcopy(prop["default"])
        if cfg.nullHandling in (NullHandling.PASS, NullHandling.DEFAULT) and key not in required:
            return _DROP
        return _KEEP

    def _coerce_leaf(self, value: Any, schema: Dict[str, Any], path: List[Union[str, int]]) -> Any:
        flags = self.config.coercion
        t = schema_primary_type(schema)
        actual = json_type(value)
        target: Optional[str] = None
        if actual == JsonType.STRING and t in ("number", "integer") and flags.stringToNumber:
            target = "number"
        elif actual == JsonType.STRING and t == "boolean" and flags.stringToBoolean:
            target = "boolean"
        elif actual == JsonType.NUMBER and t == "string" and flags.numberToString:
            target = "string"
        elif actual == JsonType.STRING and flags.emptyStringToNull and value.strip() == "" and schema_allows_null(schema):
            self.coerced += 1
            return None
        if target is None:
            return value

        result = coerce_value(value, target)
        if result.success and t == "integer" and isinstance(result.value, float):
            if result.value.is_integer():
                result.value = int(result.value)
            else:
                result.success = False
        jp = format_json_path(path)
        if not result.success:
            self.failed_paths.add(jp)
            self.issues.append(
                create_issue(
                    ValidationIssueCode.COERCION_FAILED,
                    jp,
                    f"Cannot coerce {_TYPE_NAMES[actual]} to {t}: {value_preview(value)}",
                    self.config.mode,
                    expected=t,
                    received=_TYPE_NAMES[actual],
                )
            )
            return value
        self.coerced += 1
        return result.value


_DROP = object()
_KEEP = object()


# ---------------- Issue mapping -----------------


def _loc_to_segments(loc: Tuple[Any, ...], data: Any, error_type: str) -> List[Union[str, int]]:
    # Union members add tag segments to ``loc``; keep only segments that
    # address the data.
    segments: List[Union[str, int]] = []
    node = data
    for i, seg in enumerate(loc):
        last = i == len(loc) - 1
        if isinstance(seg, int) and isinstance(node, list):
            segments.append(seg)
            node = node[seg] if 0 <= seg < len(node) else None
        elif isinstance(seg, str) and isinstance(node, dict) and (seg in node or (last and error_type == "missing")):
            segments.append(seg)
            node = node.get(seg)
    return segments


def _issues_from_error(
    error: ValidationError, view: Any, mode: ValidationMode, skip_paths: Set[str]
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    seen: Set[Tuple[str, str]] = set()
    for err in error.errors(include_url=False):
        err_type = err["type"]
        segments = _loc_to_segments(tuple(err["loc"]), view, err_type)
        path = format_json_path(segments)
        received_value = MISSING if err_type == "missing" else err.get("input")
        if err_type == "missing":
            code = ValidationIssueCode.MISSING_REQUIRED_FIELD
        elif received_value is None and err_type not in _CODE_BY_ERROR:
            code = ValidationIssueCode.UNEXPECTED_NULL
        else:
            code = _CODE_BY_ERROR.get(err_type, ValidationIssueCode.TYPE_MISMATCH)
        if path in skip_paths and code == ValidationIssueCode.TYPE_MISMATCH:
            continue
        key = (code.value, path)
        if key in seen:
            continue
        seen.add(key)

        message = err["msg"]
        expected = _EXPECTED_BY_ERROR.get(err_type)
        if code == ValidationIssueCode.MISSING_REQUIRED_FIELD:
            name = segments[-1] if segments else path
            message = f"Required field '{name}' is missing"
            expected = "value"
        issues.append(
            create_issue(
                code,
                path,
                message,
                mode,
                expected=expected,
                received=value_type_name(received_value),
            )
        )
    return issues


# ---------------- Validate -----------------


def _elapsed_ms(clock: Callable[[], float], started: float) -> int:
    return int((clock() - started) * 1000)


def validate(
    data: Any,
    schema: Optional[Dict[str, Any]],
    config: Optional[ValidationConfig] = None,
    *,
    adapter: Optional[TypeAdapter] = None,
    started_at: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    budget_ms: int = MAX_VALIDATION_DURATION_MS,
) -> ValidationResult:
    """Validate one response body.

    Args:
        data: Parsed response body; ``MISSING`` when there was none.
        schema: Stored output schema (JSON-schema-like dict) or None.
        config: Effective validation config; defaults apply when None.
        adapter: Pre-built adapter for ``schema`` (skips conversion).
        started_at: ``clock()`` reading when the caller started; the budget
            is measured from here.
        clock: Seconds-based monotonic clock.
        budget_ms: Duration budget for the whole pass.

    Returns:
        A ``ValidationResult``.
    """
    config = config or ValidationConfig()
    mode = config.mode
    started = clock() if started_at is None else started_at
    meta = ValidationMeta()

    elapsed = _elapsed_ms(clock, started)
    if elapsed >= budget_ms:
        meta.validationDurationMs = elapsed
        return ValidationResult(
            valid=False,
            mode=mode,
            data=None if data is MISSING else data,
            issues=[_schema_error("Validation timeout exceeded", mode)],
            meta=meta,
        )

    if adapter is None:
        adapter = schema_to_validator(schema) if schema else None
    if adapter is None:
        meta.validationDurationMs = _elapsed_ms(clock, started)
        return ValidationResult(valid=True, mode=mode, data=None if data is MISSING else data, meta=meta)

    if data is MISSING:
        meta.validationDurationMs = _elapsed_ms(clock, started)
        return ValidationResult(
            valid=mode != ValidationMode.STRICT,
            mode=mode,
            data=None,
            issues=[
                create_issue(
                    ValidationIssueCode.INVALID_RESPONSE,
                    "$",
                    "Invalid response: Response data is undefined",
                    mode,
                )
            ],
            meta=meta,
        )

    prepass = _PrePass(config=config, coerce=mode == ValidationMode.LENIENT)
    processed, view = prepass.walk(data, schema, [])
    issues: List[ValidationIssue] = list(prepass.issues)

    properties = schema.get("properties") if isinstance(schema, dict) else None
    if isinstance(processed, dict) and isinstance(properties, dict) and properties:
        extras = [k for k in processed if k not in properties]
        if extras and config.extraFields == ExtraFieldsHandling.STRIP:
            processed = {k: v for k, v in processed.items() if k in properties}
            view = {k: v for k, v in view.items() if k in properties}
            meta.fieldsStripped = len(extras)
        elif extras and config.extraFields == ExtraFieldsHandling.ERROR:
            for key in extras:
                path = format_json_path([key])
                issues.append(
                    create_issue(
                        ValidationIssueCode.UNKNOWN_FIELD,
                        path,
                        f"Unknown field '{key}' in response",
                        mode,
                    )
                )

    try:
        adapter.validate_python(view)
    except ValidationError as e:
        issues.extend(_issues_from_error(e, view, mode, prepass.failed_paths))

    meta.fieldsValidated = count_fields(processed)
    meta.fieldsCoerced = prepass.coerced
    meta.fieldsDefaulted = prepass.defaulted
    meta.validationDurationMs = _elapsed_ms(clock, started)
    if meta.validationDurationMs > budget_ms:
        logger.warning("Validation exceeded its %dms budget (%dms)", budget_ms, meta.validationDurationMs)
        issues.append(_schema_error("Validation timeout exceeded", mode))
        return ValidationResult(valid=False, mode=mode, data=None, issues=issues, meta=meta)

    valid = not issues or mode != ValidationMode.STRICT
    return ValidationResult(
        valid=valid,
        mode=mode,
        data=processed if valid else None,
        issues=issues,
        meta=meta,
    )


def _schema_error(message: str, mode: ValidationMode) -> ValidationIssue:
    return create_issue(ValidationIssueCode.SCHEMA_ERROR, "$", f"Schema error: {message}", mode)


def is_valid(data: Any, schema: Optional[Dict[str, Any]], config: Optional[ValidationConfig] = None) -> bool:
    return validate(data, schema, config).valid


def create_validator(
    schema: Optional[Dict[str, Any]], config: Optional[ValidationConfig] = None
) -> Callable[[Any], ValidationResult]:
    """Bind ``schema`` (converted once) and ``config`` into a one-argument validator."""
    adapter = schema_to_validator(schema) if schema else None

    def run(data: Any) -> ValidationResult:
        return validate(data, schema, config, adapter=adapter)

    return run
