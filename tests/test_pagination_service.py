from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from gateway_pipeline.models.pagination import (
    PaginationConfig,
    PaginationRequest,
    PaginationStrategyType,
    TruncationReason,
)
from gateway_pipeline.pagination.service import FetchedPage, PaginationService
from gateway_pipeline.pagination.strategies import PaginationParams
from gateway_pipeline.pagination.tokens import (
    create_continuation_token,
    decode_continuation_token,
)


class CursorApi:
    """Serves ``pages`` keyed by the ``cursor`` query param; records each call."""

    def __init__(self, pages: Dict[Optional[str], dict], fail_on: Optional[str] = None):
        self.pages = pages
        self.fail_on = fail_on
        self.calls: List[PaginationParams] = []

    def __call__(self, params: PaginationParams) -> FetchedPage:
        self.calls.append(params)
        cursor = params.query_params.get("cursor")
        if self.fail_on is not None and cursor == self.fail_on:
            raise RuntimeError("upstream exploded")
        return FetchedPage(data=self.pages[cursor])


def _cursor_pages() -> Dict[Optional[str], dict]:
    return {
        None: {"data": [1, 2], "next_cursor": "c1"},
        "c1": {"data": [3, 4], "next_cursor": "c2"},
        "c2": {"data": [5], "next_cursor": "c3"},
        "c3": {"data": [6], "next_cursor": None},
    }


CURSOR_CONFIG = PaginationConfig(
    enabled=True,
    strategy=PaginationStrategyType.CURSOR,
    cursorParam="cursor",
    cursorPath="$.next_cursor",
    dataPath="$.data",
)


def test_cursor_run_fetches_every_page():
    api = CursorApi(_cursor_pages())
    result = PaginationService().fetch_paginated(api, CURSOR_CONFIG, original_params={"q": "x"})
    assert result.data == [1, 2, 3, 4, 5, 6]
    assert result.strategyUsed == PaginationStrategyType.CURSOR
    assert result.metadata.pagesFetched == 4
    assert result.metadata.truncated is False
    assert result.metadata.continuationToken is None
    # Caller params are kept on every page.
    assert all(call.query_params["q"] == "x" for call in api.calls)
    assert [call.query_params.get("cursor") for call in api.calls] == [None, "c1", "c2", "c3"]


def test_truncated_run_resumes_from_token():
    service = PaginationService()
    first = service.fetch_paginated(
        CursorApi(_cursor_pages()), CURSOR_CONFIG, PaginationRequest(maxPages=2), action_id="act-1"
    )
    assert first.data == [1, 2, 3, 4]
    assert first.metadata.truncationReason == TruncationReason.MAX_PAGES
    token = decode_continuation_token(first.metadata.continuationToken)
    assert token.cursor == "c2"
    assert token.itemsFetched == 4
    assert token.actionId == "act-1"

    resumed = service.fetch_paginated(
        CursorApi(_cursor_pages()),
        CURSOR_CONFIG,
        PaginationRequest(continuationToken=first.metadata.continuationToken),
        action_id="act-1",
    )
    assert resumed.data == [5, 6]


def test_token_for_other_action_is_ignored():
    token = create_continuation_token(PaginationStrategyType.CURSOR, "c3", 5, 100, "other")
    api = CursorApi(_cursor_pages())
    result = PaginationService().fetch_paginated(
        api, CURSOR_CONFIG, PaginationRequest(continuationToken=token), action_id="act-1"
    )
    assert result.data == [1, 2, 3, 4, 5, 6]


def test_malformed_token_starts_from_first_page():
    assert decode_continuation_token("%%%not-base64") is None
    assert decode_continuation_token("") is None
    api = CursorApi(_cursor_pages())
    result = PaginationService().fetch_paginated(
        api, CURSOR_CONFIG, PaginationRequest(continuationToken="bogus"), action_id="act-1"
    )
    assert len(result.data) == 6


def test_error_after_first_page_returns_partial_data():
    api = CursorApi(_cursor_pages(), fail_on="c2")
    result = PaginationService().fetch_paginated(api, CURSOR_CONFIG)
    assert result.data == [1, 2, 3, 4]
    assert result.metadata.truncated
    assert result.metadata.truncationReason == TruncationReason.ERROR


def test_error_on_first_page_propagates():
    api = CursorApi(_cursor_pages(), fail_on=None)
    api.pages = {}
    with pytest.raises(KeyError):
        PaginationService().fetch_paginated(api, CURSOR_CONFIG)


def test_auto_detects_page_number_and_fills_paths():
    pages = {
        None: {"data": ["a", "b"], "page": 1, "totalPages": 2},
        2: {"data": ["c"], "page": 2, "totalPages": 2},
    }
    calls: List[PaginationParams] = []

    def fetch(params: PaginationParams) -> FetchedPage:
        calls.append(params)
        return FetchedPage(data=pages[params.query_params.get("page")])

    result = PaginationService().fetch_paginated(fetch, PaginationConfig(enabled=True))
    assert result.strategyUsed == PaginationStrategyType.PAGE_NUMBER
    assert result.data == ["a", "b", "c"]
    assert calls[1].query_params == {"page": 2}


def test_auto_with_no_pattern_returns_single_page():
    result = PaginationService().fetch_paginated(
        lambda params: FetchedPage(data={"user": {"id": 7}}), PaginationConfig(enabled=True)
    )
    assert result.strategyUsed is None
    assert result.rawResponse == {"user": {"id": 7}}
    assert result.metadata.pagesFetched == 1


def test_link_header_pages_use_next_url():
    responses = {
        None: FetchedPage(data=[1], headers={"Link": '<https://api.test/items?page=2&sig=a%2Cb>; rel="next"'}),
        "https://api.test/items?page=2&sig=a%2Cb": FetchedPage(data=[2], headers={}),
    }
    seen: List[Optional[str]] = []

    def fetch(params: PaginationParams) -> FetchedPage:
        seen.append(params.url)
        return responses[params.url]

    config = PaginationConfig(enabled=True, strategy=PaginationStrategyType.LINK_HEADER)
    result = PaginationService().fetch_paginated(fetch, config)
    assert result.data == [1, 2]
    assert seen == [None, "https://api.test/items?page=2&sig=a%2Cb"]


def test_fetch_all_false_and_disabled_fetch_one_page():
    api = CursorApi(_cursor_pages())
    single = PaginationService().fetch_paginated(api, CURSOR_CONFIG, PaginationRequest(fetchAll=False))
    assert single.data == [1, 2]
    assert single.metadata.hasMore is True
    assert len(api.calls) == 1

    disabled = PaginationService().fetch_paginated(
        lambda params: FetchedPage(data={"x": 1}), PaginationConfig(enabled=False)
    )
    assert disabled.data == [{"x": 1}]
    assert disabled.strategyUsed is None


def test_on_page_callback_and_dedupe():
    pages = {
        None: {"data": [{"id": 1}, {"id": 2}], "next_cursor": "c1"},
        "c1": {"data": [{"id": 2}, {"id": 3}], "next_cursor": None},
    }
    progress: List[tuple] = []
    result = PaginationService().fetch_paginated(
        CursorApi(pages), CURSOR_CONFIG, id_field="id", on_page=lambda n, count: progress.append((n, count))
    )
    assert [i["id"] for i in result.data] == [1, 2, 3]
    assert progress == [(1, 2), (2, 2)]


def test_cursor_read_from_raw_body_items_from_kept_data():
    pages = _cursor_pages()

    def fetcher(params: PaginationParams) -> FetchedPage:
        raw = pages[params.query_params.get("cursor")]
        kept = {"data": [{"n": n} for n in raw["data"]]}
        return FetchedPage(data=kept, raw=raw)

    result = PaginationService().fetch_paginated(fetcher, CURSOR_CONFIG)
    assert result.data == [{"n": n} for n in range(1, 7)]
    assert result.metadata.pagesFetched == 4
