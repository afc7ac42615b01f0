"""Validation service: config merging, bypass, validation and drift recording.

The pipeline calls ``validate_response`` once per fetched page. The service
owns the converted-schema cache (schemas are keyed by their canonical JSON so
equal schemas share one adapter) and the drift tracker.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from ..cache import DEFAULT_TTL_SECONDS, TTLCache
from ..models.validation import (
    MAX_VALIDATION_DURATION_MS,
    DriftDetectionConfig,
    DriftStatus,
    ExtraFieldsHandling,
    NullHandling,
    ValidationConfig,
    ValidationMeta,
    ValidationMode,
    ValidationRequest,
    ValidationResponseMetadata,
    ValidationResult,
)
from .drift import DriftTracker
from .reporter import build_response_metadata, format_issue_for_log, format_issues_as_text
from .schema import schema_to_validator
from .validator import MISSING, validate

__all__ = [
    "ValidationService",
    "ValidateResponseResult",
    "VALIDATION_PRESETS",
    "apply_validation_preset",
    "merge_validation_request",
    "parse_validation_config",
    "should_skip_validation",
    "describe_validation_config",
]

logger = logging.getLogger(__name__)


# ---------------- Presets -----------------

VALIDATION_PRESETS: Dict[str, Dict[str, Any]] = {
    # Mission-critical data: fail on any deviation.
    "PRODUCTION": {
        "mode": ValidationMode.STRICT,
        "nullHandling": NullHandling.REJECT,
        "extraFields": ExtraFieldsHandling.STRIP,
        "driftDetection": DriftDetectionConfig(windowMinutes=60, failureThreshold=3, alertOnDrift=True),
    },
    # Warn on issues but pass data through.
    "RESILIENT": {
        "mode": ValidationMode.WARN,
        "nullHandling": NullHandling.PASS,
        "extraFields": ExtraFieldsHandling.PRESERVE,
        "driftDetection": DriftDetectionConfig(windowMinutes=60, failureThreshold=5, alertOnDrift=True),
    },
    # Prototyping.
    "FLEXIBLE": {
        "mode": ValidationMode.LENIENT,
        "nullHandling": NullHandling.DEFAULT,
        "extraFields": ExtraFieldsHandling.PRESERVE,
        "driftDetection": DriftDetectionConfig(
            enabled=False, windowMinutes=60, failureThreshold=10, alertOnDrift=False
        ),
    },
}


def apply_validation_preset(config: Optional[ValidationConfig], preset: str) -> ValidationConfig:
    """Overlay a named preset on ``config``.

    Raises:
        KeyError: Unknown preset name.
    """
    base = config or ValidationConfig()
    return base.model_copy(update=VALIDATION_PRESETS[preset])


def parse_validation_config(raw: Any) -> Optional[ValidationConfig]:
    """Stored config (dict) to model; None when absent or malformed."""
    if isinstance(raw, ValidationConfig):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        return ValidationConfig.model_validate(raw)
    except ValidationError:
        logger.warning("Invalid validation config, using defaults")
        return None


def merge_validation_request(
    config: Optional[ValidationConfig], request: Optional[ValidationRequest]
) -> ValidationConfig:
    """Request-level overrides (mode, bypass) win over the action config."""
    base = config or ValidationConfig()
    if request is None:
        return base
    update: Dict[str, Any] = {}
    if request.modeOverride is not None:
        update["mode"] = request.modeOverride
    if request.bypass:
        update["bypassValidation"] = True
    return base.model_copy(update=update) if update else base


def should_skip_validation(config: ValidationConfig) -> bool:
    return not config.enabled or config.bypassValidation


def describe_validation_config(config: ValidationConfig) -> str:
    parts = [
        f"Mode: {config.mode.value}",
        f"Nulls: {config.nullHandling.value}",
        f"Extra fields: {config.extraFields.value}",
    ]
    if config.driftDetection.enabled:
        drift = config.driftDetection
        parts.append(f"Drift detection: {drift.failureThreshold} failures in {drift.windowMinutes}m")
    return ", ".join(parts)


# ---------------- Service -----------------


@dataclass
class ValidateResponseResult:
    valid: bool
    data: Any
    metadata: ValidationResponseMetadata
    result: ValidationResult


def _schema_key(schema: Dict[str, Any]) -> str:
    return json.dumps(schema, sort_keys=True, separators=(",", ":"), default=str)


class ValidationService:
    """Validate response pages and track drift.

    Args:
        drift_tracker: Shared failure log; a private one is created when None.
        schema_cache: Cache of converted schemas keyed by canonical JSON.
        budget_ms: Per-call validation duration budget.
        clock: Monotonic seconds source used for the duration budget.
    """

    def __init__(
        self,
        drift_tracker: Optional[DriftTracker] = None,
        *,
        schema_cache: Optional[TTLCache[Optional[TypeAdapter]]] = None,
        budget_ms: int = MAX_VALIDATION_DURATION_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.drift_tracker = drift_tracker or DriftTracker()
        self._schema_cache: TTLCache[Optional[TypeAdapter]] = (
            schema_cache if schema_cache is not None else TTLCache(DEFAULT_TTL_SECONDS, name="output-schemas")
        )
        self._budget_ms = budget_ms
        self._clock = clock

    def _adapter_for(self, schema: Any) -> Optional[TypeAdapter]:
        if not isinstance(schema, dict) or not schema:
            return None
        key = _schema_key(schema)
        adapter = self._schema_cache.get(key)
        if adapter is None:
            adapter = schema_to_validator(schema)
            if adapter is not None:
                self._schema_cache.set(key, adapter)
        return adapter

    def validate_response(
        self,
        data: Any,
        output_schema: Any,
        config: Any = None,
        request: Optional[ValidationRequest] = None,
        *,
        action_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> ValidateResponseResult:
        """Validate one response body under the merged config.

        Args:
            data: Parsed body (``MISSING`` when the upstream returned none).
            output_schema: The action's stored output schema.
            config: Action validation config (model or stored dict).
            request: Per-invocation overrides.
            action_id: Enables drift tracking together with ``tenant_id``.
            tenant_id: Tenant owning the connection.

        Returns:
            ``ValidateResponseResult``; ``data`` is the processed data, or the
            original data when the result carries none.
        """
        started = self._clock()
        merged = merge_validation_request(parse_validation_config(config), request)
        original = None if data is MISSING else data

        if should_skip_validation(merged):
            result = ValidationResult(
                valid=True,
                mode=merged.mode,
                data=original,
                meta=ValidationMeta(validationDurationMs=int((self._clock() - started) * 1000)),
            )
            return ValidateResponseResult(
                valid=True,
                data=original,
                metadata=build_response_metadata(result, bypassed=merged.bypassValidation),
                result=result,
            )

        adapter = self._adapter_for(output_schema)
        if adapter is None:
            logger.debug("No output schema for action %s, skipping validation", action_id or "unknown")
            result = ValidationResult(valid=True, mode=merged.mode, data=original)
            return ValidateResponseResult(
                valid=True, data=original, metadata=build_response_metadata(result), result=result
            )

        result = validate(
            data,
            output_schema,
            merged,
            adapter=adapter,
            started_at=started,
            clock=self._clock,
            budget_ms=self._budget_ms,
        )
        if result.issues:
            self._log_issues(result, action_id)

        drift_status: Optional[DriftStatus] = None
        drift_message: Optional[str] = None
        if action_id and tenant_id and merged.driftDetection.enabled:
            self.drift_tracker.record(action_id, tenant_id, result, merged.driftDetection)
            check = self.drift_tracker.drift_status(action_id, tenant_id, merged.driftDetection)
            drift_status = check.status
            drift_message = check.message

        return ValidateResponseResult(
            valid=result.valid,
            data=result.data if result.data is not None else original,
            metadata=build_response_metadata(result, drift_status, drift_message),
            result=result,
        )

    def _log_issues(self, result: ValidationResult, action_id: Optional[str]) -> None:
        prefix = f"[Action: {action_id}]" if action_id else "[validation]"
        if result.mode == ValidationMode.STRICT and not result.valid:
            logger.error("%s Validation failed (strict mode):\n%s", prefix, format_issues_as_text(result.issues))
            return
        for issue in result.issues:
            logger.info("%s %s", prefix, format_issue_for_log(issue))
