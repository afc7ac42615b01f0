from __future__ import annotations

from gateway_pipeline.models.pagination import PaginationConfig, TruncationReason
from gateway_pipeline.pagination.aggregator import (
    PageFetchResult,
    PaginationAggregator,
    aggregate_pages,
    create_aggregation_summary,
    estimate_tokens,
)
from gateway_pipeline.pagination.presets import (
    apply_preset,
    describe_limits,
    has_high_limits,
    merge_pagination_request,
)
from gateway_pipeline.models.pagination import PaginationRequest, PaginationStrategyType


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _page(items, cursor, has_more=True, chars=10) -> PageFetchResult:
    return PageFetchResult(items=items, character_count=chars, next_cursor=cursor, has_more=has_more)


def test_collects_until_source_is_exhausted():
    result = aggregate_pages(
        [_page([1, 2], "a"), _page([3], "b"), _page([4], None, has_more=False)], PaginationConfig()
    )
    assert result.data == [1, 2, 3, 4]
    assert result.metadata.pagesFetched == 3
    assert result.metadata.truncated is False
    assert result.metadata.hasMore is False
    assert result.metadata.estimatedTokens == estimate_tokens(30)


def test_max_pages_truncates():
    agg = PaginationAggregator(PaginationConfig(maxPages=2))
    assert agg.add_page(_page([1], "a")) is True
    assert agg.add_page(_page([2], "b")) is False
    assert agg.truncation_reason == TruncationReason.MAX_PAGES
    meta = agg.build_result().metadata
    assert meta.pagesFetched == 2
    assert meta.truncated and meta.hasMore


def test_max_items_truncates():
    agg = PaginationAggregator(PaginationConfig(maxItems=3))
    assert agg.add_page(_page([1, 2], "a"))
    assert not agg.add_page(_page([3, 4], "b"))
    assert agg.truncation_reason == TruncationReason.MAX_ITEMS
    assert agg.item_count == 4


def test_last_page_is_not_a_truncation_even_at_the_cap():
    agg = PaginationAggregator(PaginationConfig(maxPages=1))
    assert agg.add_page(_page([1], None, has_more=False)) is False
    assert agg.truncation_reason is None


def test_max_characters_and_duration():
    agg = PaginationAggregator(PaginationConfig(maxCharacters=1000))
    assert not agg.add_page(_page([1], "a", chars=1000))
    assert agg.truncation_reason == TruncationReason.MAX_CHARACTERS

    clock = _Clock()
    timed = PaginationAggregator(PaginationConfig(maxDurationMs=1000), clock=clock)
    assert timed.add_page(_page([1], "a"))
    clock.now = 2.0
    assert timed.should_continue() is False
    assert timed.truncation_reason == TruncationReason.MAX_DURATION


def test_circular_cursor_stops():
    agg = PaginationAggregator(PaginationConfig())
    assert agg.add_page(_page([1], "same"))
    assert agg.add_page(_page([2], "same")) is False
    assert agg.truncation_reason == TruncationReason.CIRCULAR
    assert agg.build_result().metadata.hasMore is False


def test_dedupe_by_id_field():
    agg = PaginationAggregator(PaginationConfig(), id_field="id")
    agg.add_page(_page([{"id": 1}, {"id": 2}], "a"))
    agg.add_page(_page([{"id": 2}, {"id": 3}], None, has_more=False))
    assert [i["id"] for i in agg.build_result().data] == [1, 2, 3]


def test_raw_responses_kept_on_request():
    agg = PaginationAggregator(PaginationConfig(), store_raw_responses=True)
    page = _page([1], None, has_more=False)
    page.raw_response = {"data": [1]}
    agg.add_page(page)
    assert agg.build_result().raw_responses == [{"data": [1]}]


def test_summary_mentions_truncation():
    agg = PaginationAggregator(PaginationConfig(maxPages=1))
    agg.add_page(_page([1, 2], "a"))
    summary = create_aggregation_summary(agg.build_result())
    assert summary.startswith("2 items, 1 pages")
    assert "truncated: maxPages" in summary
    assert summary.endswith("more available")


def test_presets_and_request_merge():
    quick = apply_preset({"enabled": True, "strategy": "cursor"}, "QUICK_SAMPLE")
    assert quick.enabled and quick.maxPages == 1 and quick.maxItems == 50
    full = apply_preset(PaginationConfig(), "FULL_DATASET")
    assert has_high_limits(full) and not has_high_limits(quick)
    assert describe_limits(PaginationConfig()) == "5 pages, 500 items, ~25,000 tokens, 30s timeout"

    merged = merge_pagination_request(
        PaginationConfig(enabled=True),
        PaginationRequest(strategyOverride="offset", maxPages=3, pageSize=20),
    )
    assert merged.strategy == PaginationStrategyType.OFFSET
    assert merged.maxPages == 3
    assert merged.defaultPageSize == 20
    assert merged.maxItems == 500
