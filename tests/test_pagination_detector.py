from __future__ import annotations

import pytest

from gateway_pipeline.models.pagination import PaginationConfig, PaginationStrategyType
from gateway_pipeline.pagination.detector import (
    MIN_CONFIDENCE,
    detect_data_path,
    detect_pagination_strategy,
    has_more_pages,
)


def test_detects_cursor_with_paths():
    result = detect_pagination_strategy({"data": [{"id": 1}], "next_cursor": "abc", "has_more": True})
    assert result.strategy == PaginationStrategyType.CURSOR
    assert result.confidence >= MIN_CONFIDENCE
    assert result.detectedPaths.cursorPath == "$.next_cursor"
    assert result.detectedPaths.dataPath == "$.data"
    assert result.detectedPaths.hasMorePath == "$.has_more"
    assert result.as_config_overrides() == {
        "dataPath": "$.data",
        "cursorPath": "$.next_cursor",
        "hasMorePath": "$.has_more",
    }


def test_detects_offset_over_page_number_when_total_present():
    result = detect_pagination_strategy({"results": [1, 2], "offset": 0, "total": 100})
    assert result.strategy == PaginationStrategyType.OFFSET
    assert result.confidence == pytest.approx(0.6)


def test_detects_page_number_with_total_pages_path():
    result = detect_pagination_strategy({"items": [], "meta": {"page": 1, "total_pages": 4}})
    assert result.strategy == PaginationStrategyType.PAGE_NUMBER
    assert result.detectedPaths.dataPath == "$.items"


def test_detects_link_header():
    result = detect_pagination_strategy({"items": [1]}, {"Link": '<https://x?page=2>; rel="next"'})
    assert result.strategy == PaginationStrategyType.LINK_HEADER
    assert "Link header present" in result.explanation


def test_non_paginated_responses():
    assert detect_pagination_strategy("plain text").strategy is None
    assert detect_pagination_strategy({"user": {"id": 1}}).strategy is None
    weak = detect_pagination_strategy({"data": [1]})
    assert weak.strategy is None
    assert weak.explanation == "No clear pagination pattern detected"


def test_detect_data_path_wrapper_and_root_array():
    assert detect_data_path([1]) == "$"
    assert detect_data_path({"body": {"records": []}}) == "$.body.records"
    assert detect_data_path({"x": 1}) is None


def test_has_more_pages_checks_configured_paths():
    config = PaginationConfig(hasMorePath="$.more", cursorPath="$.next", dataPath="$.data")
    assert has_more_pages({"more": False, "next": "c"}, config) is False
    assert has_more_pages({"next": "c"}, config) is True
    assert has_more_pages({"next": "", "data": []}, config) is False
