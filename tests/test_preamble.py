from __future__ import annotations

from gateway_pipeline.execution.preamble import (
    MAX_PREAMBLE_LENGTH,
    PreambleContext,
    apply_preamble,
    available_variables_help,
    calculate_result_count,
    interpolate_preamble,
    is_preamble_template_valid,
    validate_preamble_template,
)


def _ctx() -> PreambleContext:
    return PreambleContext(
        integration_name="Salesforce",
        integration_slug="salesforce",
        action_name="Search Contacts",
        action_slug="search-contacts",
        connection_name="Production",
    )


def test_apply_preamble_interpolates_and_counts():
    result = apply_preamble(
        "The {action_name} results from {integration_name} ({result_count} items):",
        _ctx(),
        {"results": [1, 2, 3]},
    )
    assert result.applied
    assert result.context == "The Search Contacts results from Salesforce (3 items):"


def test_result_count_is_na_for_scalars():
    result = apply_preamble("{result_count} rows via {connection_name}", _ctx(), {"total": 4})
    assert result.context == "N/A rows via Production"


def test_empty_template_is_not_applied():
    assert not apply_preamble(None, _ctx(), []).applied
    assert not apply_preamble("   ", _ctx(), []).applied


def test_unknown_variables_are_left_verbatim():
    assert interpolate_preamble("{action_slug} {unknown}", _ctx()) == "search-contacts {unknown}"


def test_calculate_result_count():
    assert calculate_result_count([1, 2]) == 2
    assert calculate_result_count({"items": []}) == 0
    assert calculate_result_count({"data": [1], "items": "x"}) == 1
    assert calculate_result_count({"count": 3}) is None
    assert calculate_result_count("text") is None


def test_template_validation():
    assert validate_preamble_template("{action_name} {bogus}") == ["bogus"]
    assert is_preamble_template_valid(None)
    assert is_preamble_template_valid("{integration_slug}: {result_count}")
    assert not is_preamble_template_valid("{bogus}")
    assert not is_preamble_template_valid("x" * (MAX_PREAMBLE_LENGTH + 1))
    assert "{result_count}" in available_variables_help()
