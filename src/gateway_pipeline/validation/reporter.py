"""Validation issue construction and reporting helpers.

Issues carry a severity derived from the mode (``error`` in strict mode,
``warning`` otherwise) and a suggested resolution aimed at whoever reads the
response: usually an LLM agent deciding whether to retry, ignore or escalate.
"""
from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from ..models.validation import (
    DriftStatus,
    IssueSeverity,
    ResolutionAction,
    SuggestedResolution,
    ValidationIssue,
    ValidationIssueCode,
    ValidationMode,
    ValidationResponseMetadata,
    ValidationResult,
)

__all__ = [
    "get_suggested_resolution",
    "create_issue",
    "build_response_metadata",
    "group_issues_by_path",
    "group_issues_by_code",
    "has_errors",
    "get_errors",
    "get_warnings",
    "format_issues_as_text",
    "format_issue_for_log",
    "create_validation_summary",
]


def get_suggested_resolution(code: ValidationIssueCode, path: str) -> SuggestedResolution:
    if code == ValidationIssueCode.MISSING_REQUIRED_FIELD:
        return SuggestedResolution(
            action=ResolutionAction.UPDATE_SCHEMA,
            description=(
                f"The field '{path}' is missing. Consider making it optional in the schema "
                "if the API no longer returns it."
            ),
        )
    if code == ValidationIssueCode.TYPE_MISMATCH:
        return SuggestedResolution(
            action=ResolutionAction.UPDATE_SCHEMA,
            description=(
                f"The field '{path}' has an unexpected type. The API may have changed, "
                "consider updating the output schema."
            ),
        )
    if code == ValidationIssueCode.UNEXPECTED_NULL:
        return SuggestedResolution(
            action=ResolutionAction.USE_DEFAULT,
            description=(
                f"The field '{path}' is unexpectedly null. Consider using lenient mode "
                "to handle nulls gracefully."
            ),
        )
    if code == ValidationIssueCode.UNKNOWN_FIELD:
        return SuggestedResolution(
            action=ResolutionAction.IGNORE,
            description=f"Unknown field '{path}' in response. This may be a new field added by the API.",
        )
    if code == ValidationIssueCode.COERCION_FAILED:
        return SuggestedResolution(
            action=ResolutionAction.CONTACT_PROVIDER,
            description=f"Cannot coerce the value at '{path}'. The API may be returning unexpected data.",
        )
    if code == ValidationIssueCode.INVALID_RESPONSE:
        return SuggestedResolution(
            action=ResolutionAction.CONTACT_PROVIDER,
            description="The API response is missing or not valid JSON. This may indicate an API error or outage.",
        )
    return SuggestedResolution(
        action=ResolutionAction.UPDATE_SCHEMA,
        description=f"Validation failed at '{path}'. Review the output schema for this action.",
    )


def create_issue(
    code: ValidationIssueCode,
    path: str,
    message: str,
    mode: ValidationMode,
    expected: Optional[str] = None,
    received: Optional[str] = None,
) -> ValidationIssue:
    """Build an issue with mode-derived severity and a suggested resolution."""
    return ValidationIssue(
        code=code,
        path=path,
        message=message,
        expected=expected,
        received=received,
        severity=IssueSeverity.ERROR if mode == ValidationMode.STRICT else IssueSeverity.WARNING,
        suggestedResolution=get_suggested_resolution(code, path),
    )


def build_response_metadata(
    result: ValidationResult,
    drift_status: Optional[DriftStatus] = None,
    drift_message: Optional[str] = None,
    *,
    bypassed: bool = False,
) -> ValidationResponseMetadata:
    """Project a ``ValidationResult`` onto the response's validation section.

    ``issues`` is omitted (None) when there are none so the serialised
    response stays small.
    """
    return ValidationResponseMetadata(
        valid=result.valid,
        mode=result.mode,
        bypassed=bypassed,
        issueCount=len(result.issues),
        issues=list(result.issues) or None,
        fieldsCoerced=result.meta.fieldsCoerced,
        fieldsStripped=result.meta.fieldsStripped,
        fieldsDefaulted=result.meta.fieldsDefaulted,
        validationDurationMs=result.meta.validationDurationMs,
        driftStatus=drift_status,
        driftMessage=drift_message,
    )


# ---------------- Aggregation -----------------


def group_issues_by_path(issues: Iterable[ValidationIssue]) -> Dict[str, List[ValidationIssue]]:
    grouped: Dict[str, List[ValidationIssue]] = {}
    for issue in issues:
        grouped.setdefault(issue.path, []).append(issue)
    return grouped


def group_issues_by_code(issues: Iterable[ValidationIssue]) -> Dict[str, int]:
    """Issue counts keyed by code value."""
    return dict(Counter(issue.code.value for issue in issues))


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.severity == IssueSeverity.ERROR for issue in issues)


def get_errors(issues: Iterable[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.severity == IssueSeverity.ERROR]


def get_warnings(issues: Iterable[ValidationIssue]) -> List[ValidationIssue]:
    return [i for i in issues if i.severity == IssueSeverity.WARNING]


# ---------------- Text rendering -----------------


def format_issues_as_text(issues: List[ValidationIssue]) -> str:
    if not issues:
        return "No validation issues"
    lines = [f"Found {len(issues)} validation issue(s):", ""]
    for issue in issues:
        lines.append(f"[{issue.severity.value.upper()}] {issue.path}: {issue.message}")
        if issue.expected and issue.received:
            lines.append(f"  Expected: {issue.expected}, Received: {issue.received}")
        if issue.suggestedResolution:
            lines.append(f"  Suggestion: {issue.suggestedResolution.description}")
        lines.append("")
    return "\n".join(lines)


def format_issue_for_log(issue: ValidationIssue) -> str:
    return f"[{issue.severity.value.upper()}] {issue.code.value}: {issue.path} - {issue.message}"


def create_validation_summary(result: ValidationResult) -> Dict[str, Any]:
    """Compact dict summary used by the CLI and debug logging."""
    return {
        "valid": result.valid,
        "mode": result.mode.value,
        "issueCount": len(result.issues),
        "errorCount": len(get_errors(result.issues)),
        "warningCount": len(get_warnings(result.issues)),
        "issuesByCode": group_issues_by_code(result.issues),
        "fieldsValidated": result.meta.fieldsValidated,
        "fieldsCoerced": result.meta.fieldsCoerced,
        "fieldsStripped": result.meta.fieldsStripped,
        "fieldsDefaulted": result.meta.fieldsDefaulted,
        "durationMs": result.meta.validationDurationMs,
    }
