"""Field mapping engine.

Applies an ordered list of ``FieldMapping`` rows to a payload. Used twice per
invocation: once on the caller's input (``direction=input``) before the
outbound request is built, and once on the merged upstream response
(``direction=output``).

Processing rules (per mapping, in list order):

1. Read ``sourcePath`` from the *original* payload (never from the partially
   built result, so mapping order does not change what is read).
2. Missing or null source: substitute ``defaultValue`` if set; otherwise skip
   when ``omitIfNull``; otherwise record ``PATH_NOT_FOUND`` (only when the
   path is truly absent) and skip.
3. ``omitIfEmpty`` skips empty strings / empty lists.
4. Coercion runs per element for wildcard sources. In passthrough mode a
   failed element keeps its original value and the failure is recorded.
5. ``arrayMode`` first/last reduces list results to a single value.
6. The value is written at ``targetPath`` in the result.

The engine never raises for data problems. In ``fail`` mode any recorded
error makes the whole call return the untouched original payload with
``applied=False``.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from ..cache import TTLCache
from ..coercion import CoercionType, coerce_value
from ..models.mapping import (
    ArrayMode,
    FailureMode,
    FieldMapping,
    MappingConfig,
    MappingDirection,
    MappingError,
    MappingErrorCode,
    MappingMeta,
    MappingPreviewResult,
    MappingRequest,
    MappingResult,
    TransformConfig,
)
from ..paths import (
    PathError,
    PathSegment,
    deep_clone,
    get_value,
    is_empty,
    parse_path,
    set_value,
    validate_path,
)

__all__ = [
    "CompiledMapping",
    "MappingOptions",
    "compile_mappings",
    "apply_mappings",
    "validate_mappings",
    "preview_mapping",
    "describe_mappings",
    "create_bypassed_result",
    "merge_mapping_results",
    "merge_mapping_config",
    "should_skip_mapping",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledMapping:
    mapping: FieldMapping
    source: List[PathSegment]
    target: List[PathSegment]


@dataclass
class MappingOptions:
    direction: MappingDirection
    config: MappingConfig
    mappings: Sequence[FieldMapping]


def _now_ms() -> float:
    return time.perf_counter() * 1000


def _path_error(path: str, exc: PathError, prefix: str) -> MappingError:
    code = (
        MappingErrorCode(exc.code)
        if exc.code in MappingErrorCode.__members__
        else MappingErrorCode.INVALID_PATH
    )
    return MappingError(path=path, code=code, message=f"{prefix}: {exc}")


def compile_mappings(
    mappings: Sequence[FieldMapping],
    cache_key: Optional[str] = None,
    cache: Optional[TTLCache[List[CompiledMapping]]] = None,
) -> Tuple[List[CompiledMapping], List[MappingError]]:
    """Parse source/target paths once per mapping list.

    A compiled list is cached only when every mapping compiled cleanly, so a
    fixed mapping is picked up as soon as the caller invalidates the key.
    """
    if cache is not None and cache_key:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached, []

    compiled: List[CompiledMapping] = []
    errors: List[MappingError] = []
    for m in mappings:
        try:
            source = parse_path(m.sourcePath)
        except PathError as e:
            errors.append(_path_error(m.sourcePath, e, "Invalid source path"))
            continue
        try:
            target = parse_path(m.targetPath)
        except PathError as e:
            errors.append(_path_error(m.targetPath, e, "Invalid target path"))
            continue
        compiled.append(CompiledMapping(mapping=m, source=source, target=target))

    if cache is not None and cache_key and not errors:
        cache.set(cache_key, compiled)
    return compiled, errors


def _coerce_for_mapping(
    value: Any, target: CoercionType, path: str
) -> Tuple[Any, bool, Optional[MappingError]]:
    result = coerce_value(value, target)
    if result.success:
        return result.value, result.coerced, None
    return (
        value,
        False,
        MappingError(
            path=path,
            code=MappingErrorCode.COERCION_FAILED,
            message=result.error or f"Cannot coerce to {target}",
            originalValue=value,
        ),
    )


def _empty_like(data: Any) -> Any:
    return [] if isinstance(data, list) else {}


def apply_mappings(
    data: Any,
    options: MappingOptions,
    cache_key: Optional[str] = None,
    cache: Optional[TTLCache[List[CompiledMapping]]] = None,
) -> MappingResult:
    """Transform ``data`` with the mappings matching ``options.direction``.

    Args:
        data: Payload to transform; never mutated.
        options: Direction, action-level config and the candidate mappings.
        cache_key: Optional compiled-path cache key; ``:<direction>`` is
            appended so input and output lists never collide.
        cache: Cache holding compiled mapping lists.

    Returns:
        ``MappingResult`` with the transformed (or original) data, the list of
        non-fatal errors and counters.
    """
    start = _now_ms()
    direction = options.direction
    config = options.config
    meta = MappingMeta()
    errors: List[MappingError] = []

    directional = [m for m in options.mappings if m.direction == direction]
    if not directional:
        meta.mappingDurationMs = _now_ms() - start
        return MappingResult(
            applied=False, data=data, failureMode=config.failureMode, meta=meta
        )

    compiled, compile_errors = compile_mappings(
        directional, f"{cache_key}:{direction.value}" if cache_key else None, cache
    )
    errors.extend(compile_errors)
    if not compiled and errors:
        meta.mappingDurationMs = _now_ms() - start
        return MappingResult(
            applied=False, data=data, errors=errors, failureMode=config.failureMode, meta=meta
        )

    passthrough = config.failureMode == FailureMode.PASSTHROUGH
    result = deep_clone(data) if config.preserveUnmapped else _empty_like(data)

    for cm in compiled:
        mapping = cm.mapping
        tc: TransformConfig = mapping.transformConfig
        try:
            got = get_value(data, cm.source)
        except PathError as e:
            errors.append(_path_error(mapping.sourcePath, e, "Cannot read source"))
            continue

        value = got.value
        defaulted = False
        if not got.found or value is None:
            if tc.has_default():
                value = deep_clone(tc.defaultValue)
                defaulted = True
                meta.fieldsDefaulted += 1
            elif tc.omitIfNull:
                continue
            else:
                if not got.found:
                    errors.append(
                        MappingError(
                            path=mapping.sourcePath,
                            code=MappingErrorCode.PATH_NOT_FOUND,
                            message=f"Source path not found: {mapping.sourcePath}",
                        )
                    )
                continue

        if not defaulted and tc.omitIfEmpty and is_empty(value):
            continue

        if tc.coercion is not None and value is not None:
            target_type = tc.coercion.type
            if got.is_array and isinstance(value, list):
                out: List[Any] = []
                any_coerced = False
                for i, item in enumerate(value):
                    new, coerced, err = _coerce_for_mapping(
                        item, target_type, f"{mapping.sourcePath}[{i}]"
                    )
                    if err is not None:
                        errors.append(err)
                    # Failed elements keep their original value.
                    out.append(new)
                    any_coerced = any_coerced or coerced
                value = out
                if any_coerced:
                    meta.fieldsCoerced += 1
            else:
                new, coerced, err = _coerce_for_mapping(
                    value, target_type, mapping.sourcePath
                )
                if err is not None:
                    errors.append(err)
                value = new
                if coerced:
                    meta.fieldsCoerced += 1

        if got.is_array and isinstance(value, list):
            if tc.arrayMode == ArrayMode.FIRST:
                value = value[0] if value else None
            elif tc.arrayMode == ArrayMode.LAST:
                value = value[-1] if value else None

        written = set_value(result, cm.target, value)
        if written.success:
            result = written.data
            meta.fieldsTransformed += 1
        else:
            errors.append(
                MappingError(
                    path=mapping.targetPath,
                    code=MappingErrorCode.UNKNOWN_ERROR,
                    message=f"Cannot write target: {written.error}",
                    originalValue=value,
                )
            )

    if direction == MappingDirection.INPUT:
        meta.inputMappingsApplied = meta.fieldsTransformed
    else:
        meta.outputMappingsApplied = meta.fieldsTransformed
    meta.mappingDurationMs = _now_ms() - start

    if errors and not passthrough:
        logger.debug(
            "mapping reverted direction=%s errors=%d (failureMode=fail)",
            direction.value,
            len(errors),
        )
        return MappingResult(
            applied=False, data=data, errors=errors, failureMode=config.failureMode, meta=meta
        )

    applied = meta.fieldsTransformed > 0 or meta.fieldsDefaulted > 0 or meta.fieldsCoerced > 0
    return MappingResult(
        applied=applied, data=result, errors=errors, failureMode=config.failureMode, meta=meta
    )


def validate_mappings(mappings: Sequence[FieldMapping]) -> List[MappingError]:
    """Check paths without touching any data; empty list means all valid."""
    errors: List[MappingError] = []
    for m in mappings:
        for label, path in (("source", m.sourcePath), ("target", m.targetPath)):
            check = validate_path(path)
            if not check.valid:
                errors.append(
                    MappingError(
                        path=path,
                        code=MappingErrorCode.INVALID_PATH,
                        message=f"Invalid {label} path: {check.error}",
                    )
                )
    return errors


def preview_mapping(
    sample: Any,
    mappings: Sequence[FieldMapping],
    config: MappingConfig,
    direction: MappingDirection = MappingDirection.OUTPUT,
) -> MappingPreviewResult:
    # Preview always runs, even when mapping is disabled for the action.
    result = apply_mappings(
        sample, MappingOptions(direction=direction, config=config, mappings=mappings)
    )
    return MappingPreviewResult(original=sample, transformed=result.data, result=result)


def describe_mappings(mappings: Sequence[FieldMapping]) -> List[str]:
    lines: List[str] = []
    for m in mappings:
        line = f"[{m.direction.value}] {m.sourcePath} -> {m.targetPath}"
        tc = m.transformConfig
        extras: List[str] = []
        if tc.coercion is not None:
            extras.append(f"coerce:{tc.coercion.type}")
        if tc.has_default():
            extras.append(f"default:{tc.defaultValue!r}")
        if tc.omitIfNull:
            extras.append("omitIfNull")
        if tc.omitIfEmpty:
            extras.append("omitIfEmpty")
        if tc.arrayMode != ArrayMode.ALL:
            extras.append(f"array:{tc.arrayMode.value}")
        if extras:
            line += f" ({', '.join(extras)})"
        lines.append(line)
    return lines


def create_bypassed_result(data: Any, failure_mode: FailureMode = FailureMode.PASSTHROUGH) -> MappingResult:
    return MappingResult(applied=False, bypassed=True, data=data, failureMode=failure_mode)


def merge_mapping_results(
    input_result: Optional[MappingResult], output_result: Optional[MappingResult]
) -> MappingResult:
    """Fold the input and output passes into one summary for response metadata.

    ``data`` is taken from the output pass (falling back to the input pass).
    """
    parts = [r for r in (input_result, output_result) if r is not None]
    if not parts:
        return MappingResult(applied=False)
    meta = MappingMeta(
        mappingDurationMs=sum(r.meta.mappingDurationMs for r in parts),
        inputMappingsApplied=input_result.meta.inputMappingsApplied if input_result else 0,
        outputMappingsApplied=output_result.meta.outputMappingsApplied if output_result else 0,
        fieldsTransformed=sum(r.meta.fieldsTransformed for r in parts),
        fieldsCoerced=sum(r.meta.fieldsCoerced for r in parts),
        fieldsDefaulted=sum(r.meta.fieldsDefaulted for r in parts),
    )
    errors: List[MappingError] = []
    for r in parts:
        errors.extend(r.errors)
    last = parts[-1]
    return MappingResult(
        applied=any(r.applied for r in parts),
        bypassed=all(r.bypassed for r in parts),
        data=last.data,
        errors=errors,
        failureMode=last.failureMode,
        meta=meta,
    )


def merge_mapping_config(
    config: MappingConfig, request: Optional[MappingRequest] = None
) -> Tuple[MappingConfig, bool]:
    """Return the effective config and bypass flag for one invocation.

    The stored config is copied so per-request handling can never leak back
    into a cached instance.
    """
    return config.model_copy(deep=True), bool(request and request.bypass)


def should_skip_mapping(
    config: MappingConfig, mappings: Sequence[FieldMapping], bypass: bool = False
) -> bool:
    return bypass or not config.enabled or len(mappings) == 0
