"""Response validation subpackage.

Modules:
    schema: Stored output schemas to strict pydantic ``TypeAdapter``s
    validator: The validation pass (null handling, coercion, extras, structure)
    reporter: Issue construction, response metadata and text rendering
    drift: In-memory failure log and drift classification
    service: Config merging, presets, schema cache and drift recording

Design Invariants:
    - Validation never raises for bad data; issues are returned
    - Only strict mode produces ``valid=False`` (besides a blown time budget)
    - A missing or unconvertible schema means the data passes through
"""
from __future__ import annotations

from .drift import DriftTracker
from .reporter import (
    build_response_metadata,
    create_issue,
    create_validation_summary,
    format_issues_as_text,
    group_issues_by_code,
)
from .schema import schema_to_validator
from .service import (
    VALIDATION_PRESETS,
    ValidateResponseResult,
    ValidationService,
    apply_validation_preset,
    merge_validation_request,
)
from .validator import MISSING, create_validator, is_valid, validate

__all__ = [
    "DriftTracker",
    "build_response_metadata",
    "create_issue",
    "create_validation_summary",
    "format_issues_as_text",
    "group_issues_by_code",
    "schema_to_validator",
    "VALIDATION_PRESETS",
    "ValidateResponseResult",
    "ValidationService",
    "apply_validation_preset",
    "merge_validation_request",
    "MISSING",
    "create_validator",
    "is_valid",
    "validate",
]
