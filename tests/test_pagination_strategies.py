from __future__ import annotations

import pytest

from gateway_pipeline.models.pagination import PaginationConfig, PaginationStrategyType
from gateway_pipeline.pagination.strategies import (
    CursorStrategy,
    LinkHeaderStrategy,
    OffsetStrategy,
    PageNumberStrategy,
    PaginationContext,
    extract_items,
    get_number_at,
    get_strategy,
    parse_link_header,
    score_strategies,
    select_strategy,
)


def _ctx(config: PaginationConfig, **kw) -> PaginationContext:
    return PaginationContext(config=config, **kw)


def test_extract_items_lookup_order():
    assert extract_items([1, 2]) == [1, 2]
    assert extract_items({"results": [1], "data": "not-a-list"}) == [1]
    assert extract_items({"response": {"items": [3]}}) == [3]
    assert extract_items({"payload": {"x": 1}}, "$.payload") == []
    assert extract_items({"a": {"b": [9]}}, "a.b") == [9]


def test_get_number_accepts_numeric_prefix_strings():
    assert get_number_at({"t": "42 items"}, "$.t") == 42
    assert get_number_at({"t": True}, "$.t") is None


def test_cursor_build_and_extract():
    config = PaginationConfig(enabled=True, cursorParam="after", limitParam="limit", defaultPageSize=25)
    params = CursorStrategy().build_request_params(_ctx(config, cursor="abc", page_size=25))
    assert params.query_params == {"limit": 25, "after": "abc"}

    info = CursorStrategy().extract_pagination_info(
        {"data": [1, 2], "meta": {"next_cursor": "xyz"}, "total": 10}, PaginationConfig(totalPath="$.total")
    )
    assert info.items == [1, 2]
    assert info.next_cursor == "xyz"
    assert info.has_more is True
    assert info.total_items == 10


def test_cursor_explicit_has_more_wins():
    config = PaginationConfig(cursorPath="$.cursor", hasMorePath="$.hasMore")
    info = CursorStrategy().extract_pagination_info({"items": [], "cursor": "c", "hasMore": False}, config)
    assert info.next_cursor == "c"
    assert info.has_more is False


def test_offset_build_uses_page_number_or_cursor():
    config = PaginationConfig(offsetParam="skip", limitParam="take")
    strategy = OffsetStrategy()
    assert strategy.build_request_params(_ctx(config, page_number=3, page_size=10)).query_params == {
        "skip": 20,
        "take": 10,
    }
    assert strategy.build_request_params(_ctx(config, cursor="40", page_size=10)).query_params["skip"] == 40


def test_offset_extract_against_total():
    config = PaginationConfig()
    info = OffsetStrategy().extract_pagination_info(
        {"data": list(range(10)), "offset": 10, "total": 25}, config
    )
    assert info.has_more is True
    assert info.next_cursor == "20"
    last = OffsetStrategy().extract_pagination_info({"data": list(range(5)), "offset": 20, "total": 25}, config)
    assert last.has_more is False and last.next_cursor is None


def test_offset_without_total_falls_back_to_context_and_page_size():
    config = PaginationConfig(defaultPageSize=2)
    info = OffsetStrategy().extract_pagination_info(
        [1, 2], config, context=_ctx(config, cursor="4", page_size=2)
    )
    assert info.next_cursor == "6"


def test_page_number_extract():
    config = PaginationConfig()
    info = PageNumberStrategy().extract_pagination_info({"items": [1], "page": 2, "totalPages": 3}, config)
    assert info.has_more and info.next_cursor == "3"
    assert info.total_pages == 3
    done = PageNumberStrategy().extract_pagination_info({"items": [1], "page": 3, "totalPages": 3}, config)
    assert done.has_more is False


def test_page_number_from_total_items():
    config = PaginationConfig(defaultPageSize=10)
    info = PageNumberStrategy().extract_pagination_info({"data": [1], "total": 25}, config, context=_ctx(config))
    assert info.next_cursor == "2"
    params = PageNumberStrategy().build_request_params(_ctx(config, cursor="2"))
    assert params.query_params == {"page": 2}


def test_parse_link_header_keeps_commas_inside_urls():
    header = (
        '<https://api.example.com/items?ids=1,2&page=2>; rel="next", '
        "<https://api.example.com/items?page=9>; rel=last"
    )
    links = parse_link_header(header)
    assert [l.rel for l in links] == ["next", "last"]
    assert links[0].url == "https://api.example.com/items?ids=1,2&page=2"
    assert parse_link_header("   ") == []


def test_link_header_next_url_is_requested_verbatim():
    strategy = LinkHeaderStrategy()
    headers = {
        "Link": '<https://api.example.com/items?cursor=opaque%3D%3D&page=2>; rel="next", '
        '<https://api.example.com/items?page=4>; rel="last"',
        "X-Total-Count": "31",
    }
    info = strategy.extract_pagination_info([1, 2], PaginationConfig(), headers)
    assert info.next_cursor == "https://api.example.com/items?cursor=opaque%3D%3D&page=2"
    assert info.total_items == 31
    assert info.total_pages == 4

    params = strategy.build_request_params(_ctx(PaginationConfig(), cursor=info.next_cursor))
    assert params.url == info.next_cursor
    assert params.query_params == {}


def test_link_header_without_next_has_no_more():
    info = LinkHeaderStrategy().extract_pagination_info(
        [], PaginationConfig(), {"link": '<https://x/items?page=1>; rel="prev first"'}
    )
    assert info.has_more is False


def test_select_strategy_tie_prefers_declaration_order():
    # cursor and offset both score 0.4
    response = {"cursor": "abc", "offset": 0}
    scores = dict(score_strategies(response))
    assert scores[PaginationStrategyType.CURSOR] == scores[PaginationStrategyType.OFFSET]
    strategy, score = select_strategy(response)
    assert strategy.strategy_type == PaginationStrategyType.CURSOR
    assert score == pytest.approx(0.4)


def test_select_strategy_link_header_and_none():
    strategy, score = select_strategy([1], {"link": '<https://x?page=2>; rel="next"'})
    assert strategy.strategy_type == PaginationStrategyType.LINK_HEADER
    assert score == 1.0
    assert select_strategy({"data": [1]}) == (None, 0.0)


def test_get_strategy_rejects_auto():
    assert get_strategy("offset").strategy_type == PaginationStrategyType.OFFSET
    with pytest.raises(ValueError):
        get_strategy(PaginationStrategyType.AUTO)
