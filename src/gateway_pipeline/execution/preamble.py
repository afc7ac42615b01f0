"""Natural-language preambles for LLM-facing responses.

An action may carry a short template such as ``"The {action_name} results
from {integration_name} ({result_count} items):"``. After output mapping the
template is interpolated and returned next to the data as ``context``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional

__all__ = [
    "VALID_TEMPLATE_VARIABLES",
    "MAX_PREAMBLE_LENGTH",
    "PreambleContext",
    "PreambleResult",
    "validate_preamble_template",
    "is_preamble_template_valid",
    "interpolate_preamble",
    "calculate_result_count",
    "apply_preamble",
    "available_variables_help",
]

VALID_TEMPLATE_VARIABLES = (
    "integration_name",
    "integration_slug",
    "action_name",
    "action_slug",
    "connection_name",
    "result_count",
)

MAX_PREAMBLE_LENGTH = 500

_VAR_RE = re.compile(r"\{([a-z_]+)\}")
_RESULT_KEYS = ("items", "results", "data", "records", "entries", "list")


@dataclass
class PreambleContext:
    integration_name: str = ""
    integration_slug: str = ""
    action_name: str = ""
    action_slug: str = ""
    connection_name: str = ""
    result_count: Optional[int] = None


@dataclass
class PreambleResult:
    applied: bool
    context: Optional[str] = None


def validate_preamble_template(template: str) -> List[str]:
    """Unknown ``{variable}`` names used in ``template`` (empty when valid)."""
    return [name for name in _VAR_RE.findall(template) if name not in VALID_TEMPLATE_VARIABLES]


def is_preamble_template_valid(template: Optional[str]) -> bool:
    if not template:
        return True
    return len(template) <= MAX_PREAMBLE_LENGTH and not validate_preamble_template(template)


def interpolate_preamble(template: str, context: PreambleContext) -> str:
    values = {
        "integration_name": context.integration_name,
        "integration_slug": context.integration_slug,
        "action_name": context.action_name,
        "action_slug": context.action_slug,
        "connection_name": context.connection_name,
        "result_count": "N/A" if context.result_count is None else str(context.result_count),
    }
    # Unknown names are left as written.
    return _VAR_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def calculate_result_count(data: Any) -> Optional[int]:
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        for key in _RESULT_KEYS:
            value = data.get(key)
            if isinstance(value, list):
                return len(value)
    return None


def apply_preamble(template: Optional[str], context: PreambleContext, data: Any) -> PreambleResult:
    """Interpolate ``template`` for ``data``; no template means nothing applied."""
    if not template or not template.strip():
        return PreambleResult(applied=False)
    context.result_count = calculate_result_count(data)
    return PreambleResult(applied=True, context=interpolate_preamble(template, context))


def available_variables_help() -> str:
    return "\n".join(
        [
            "Available variables:",
            '  {integration_name} - Integration display name (e.g. "Salesforce")',
            '  {integration_slug} - Integration slug (e.g. "salesforce")',
            '  {action_name} - Action display name (e.g. "Search Contacts")',
            '  {action_slug} - Action slug (e.g. "search-contacts")',
            '  {connection_name} - Connection label (e.g. "Production")',
            "  {result_count} - Number of items if the response is a list",
        ]
    )
