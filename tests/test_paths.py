from __future__ import annotations

import pytest

from gateway_pipeline.paths import (
    MAX_ARRAY_ITEMS,
    MAX_NESTING_DEPTH,
    PathError,
    SegmentKind,
    format_path,
    get_value,
    get_value_by_path,
    is_empty,
    parse_path,
    set_value,
    validate_path,
)


def test_parse_mixed_segments():
    segs = parse_path("$.users[*].emails[0]['display name']")
    assert [s.kind for s in segs] == [
        SegmentKind.PROPERTY,
        SegmentKind.WILDCARD,
        SegmentKind.PROPERTY,
        SegmentKind.INDEX,
        SegmentKind.PROPERTY,
    ]
    assert segs[3].key == 0
    assert segs[4].key == "display name"


def test_root_only_is_empty_segment_list():
    assert parse_path("$") == []


@pytest.mark.parametrize("bad", ["", "users.id", "$.a[", "$.a[abc]", "$..a"])
def test_invalid_paths_rejected(bad):
    assert not validate_path(bad).valid
    with pytest.raises(PathError):
        parse_path(bad)


def test_nesting_limit():
    deep = "$" + ".a" * (MAX_NESTING_DEPTH + 1)
    with pytest.raises(PathError) as exc:
        parse_path(deep)
    assert exc.value.code == "NESTING_LIMIT_EXCEEDED"
    assert validate_path("$" + ".a" * MAX_NESTING_DEPTH).valid


def test_format_round_trips_quoted_keys():
    segs = parse_path('$.data["weird key"][2]')
    assert format_path(segs) == '$.data["weird key"][2]'


def test_get_distinguishes_null_from_missing():
    data = {"a": None}
    present = get_value(data, parse_path("$.a"))
    missing = get_value(data, parse_path("$.b"))
    assert present.found and present.value is None
    assert not missing.found


def test_wildcard_flattens_and_skips_missing_branches():
    data = {"users": [{"email": "a@x"}, {"name": "no email"}, {"email": "c@x"}]}
    result = get_value(data, parse_path("$.users[*].email"))
    assert result.found and result.is_array
    assert result.value == ["a@x", "c@x"]


def test_get_value_by_path_swallows_invalid_path():
    assert get_value_by_path({"a": 1}, "not-a-path") is None
    assert get_value_by_path({"a": {"b": 2}}, "$.a.b") == 2


def test_set_value_does_not_mutate_input():
    original = {"a": {"b": 1}}
    result = set_value(original, parse_path("$.a.c[1].d"), "x")
    assert result.success
    assert original == {"a": {"b": 1}}
    assert result.data == {"a": {"b": 1, "c": [None, {"d": "x"}]}}


def test_set_value_wildcard_distributes_lists_and_broadcasts_scalars():
    base = {"items": [{"id": 1}, {"id": 2}]}
    spread = set_value(base, parse_path("$.items[*].label"), ["one", "two"])
    assert spread.data["items"] == [{"id": 1, "label": "one"}, {"id": 2, "label": "two"}]
    broadcast = set_value(base, parse_path("$.items[*].flag"), True)
    assert [i["flag"] for i in broadcast.data["items"]] == [True, True]


def test_set_value_type_conflict_fails_without_raising():
    result = set_value([1, 2], parse_path("$.a"), 1)
    assert result.success is False
    assert result.error


def test_is_empty_rules():
    assert is_empty(None)
    assert is_empty("   ")
    assert is_empty([])
    assert not is_empty({})
    assert not is_empty(0)


def test_wildcard_expansion_limit():
    path = parse_path("$.items[*].id")
    at_limit = {"items": [{"id": i} for i in range(MAX_ARRAY_ITEMS)]}
    assert len(get_value(at_limit, path).value) == 5000

    over = {"items": [{"id": i} for i in range(MAX_ARRAY_ITEMS + 1)]}
    with pytest.raises(PathError) as excinfo:
        get_value(over, path)
    assert excinfo.value.code == "ARRAY_LIMIT_EXCEEDED"
