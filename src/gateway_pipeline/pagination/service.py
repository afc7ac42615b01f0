"""Sequential multi-page fetching.

``PaginationService.fetch_paginated`` drives a caller-supplied ``fetcher``
through the pages of one logical request:

1. build the page params from the strategy and the original params,
2. fetch,
3. extract items/cursor,
4. hand the page to a ``PaginationAggregator``,
5. stop when the API reports no more data, the cursor runs out, a cap is
   hit or a cursor repeats.

Pages are strictly sequential because each cursor depends on the previous
response. A failure after at least one item was collected returns the
partial data with ``truncationReason=error``; a failure before that is
re-raised to the caller.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from ..models.pagination import (
    PaginatedResult,
    PaginationConfig,
    PaginationMetadata,
    PaginationRequest,
    PaginationStrategyType,
)
from .aggregator import PageFetchResult, PaginationAggregator, estimate_tokens
from .detector import detect_pagination_strategy
from .presets import merge_pagination_request
from .strategies import (
    PaginationContext,
    PaginationParams,
    PaginationStrategy,
    character_count,
    extract_items,
    get_strategy,
    select_strategy,
)
from .tokens import create_continuation_token, decode_continuation_token

__all__ = ["FetchedPage", "PageFetcher", "PaginationService"]

logger = logging.getLogger(__name__)


@dataclass
class FetchedPage:
    """One fetched page.

    ``data`` is what the caller keeps (possibly validated, stripped or
    coerced); ``raw`` is the unmodified response body, read for cursors,
    links and totals. ``raw=None`` means ``data`` is the body itself.
    """

    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    raw: Any = None

    @property
    def body(self) -> Any:
        return self.data if self.raw is None else self.raw


def _extract_page_info(
    strategy: PaginationStrategy,
    page: FetchedPage,
    config: PaginationConfig,
    context: Optional[PaginationContext] = None,
):
    """Navigation from the raw body, items from the kept data."""
    info = strategy.extract_pagination_info(page.body, config, page.headers, context=context)
    if page.raw is not None:
        info.items = extract_items(page.data, config.dataPath)
    return info


PageFetcher = Callable[[PaginationParams], FetchedPage]


def _single_page_result(data: Any, chars: int, has_more: bool = False, raw: Any = None) -> PaginatedResult:
    items = data if isinstance(data, list) else [data]
    return PaginatedResult(
        data=items,
        metadata=PaginationMetadata(
            fetchedItems=len(items),
            pagesFetched=1,
            fetchedCharacters=chars,
            estimatedTokens=estimate_tokens(chars),
            hasMore=has_more,
        ),
        rawResponse=data if raw is None else raw,
    )


class PaginationService:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock

    def build_page_params(
        self,
        original_params: Dict[str, Any],
        config: PaginationConfig,
        strategy: Optional[PaginationStrategy],
        cursor: Optional[str],
        page_number: int,
    ) -> PaginationParams:
        """Strategy params layered over the caller's own query params."""
        if strategy is None:
            return PaginationParams(query_params=dict(original_params))
        params = strategy.build_request_params(
            PaginationContext(
                config=config,
                page_number=page_number,
                cursor=cursor,
                page_size=config.defaultPageSize,
                original_params=original_params,
            )
        )
        if params.url is None:
            params.query_params = {**original_params, **params.query_params}
        return params

    def fetch_single_page(
        self,
        fetcher: PageFetcher,
        config: PaginationConfig,
        original_params: Optional[Dict[str, Any]] = None,
    ) -> PaginatedResult:
        response = fetcher(PaginationParams(query_params=dict(original_params or {})))
        chars = character_count(response.data)
        if not config.enabled:
            return _single_page_result(response.data, chars)
        strategy_type = (
            PaginationStrategyType.CURSOR
            if config.strategy == PaginationStrategyType.AUTO
            else config.strategy
        )
        info = _extract_page_info(get_strategy(strategy_type), response, config)
        result = _single_page_result(info.items, chars, info.has_more, raw=response.data)
        result.metadata.totalItems = info.total_items
        return result

    def fetch_paginated(
        self,
        fetcher: PageFetcher,
        config: Optional[PaginationConfig],
        request: Optional[PaginationRequest] = None,
        *,
        original_params: Optional[Dict[str, Any]] = None,
        action_id: str = "",
        id_field: Optional[str] = None,
        on_page: Optional[Callable[[int, int], None]] = None,
    ) -> PaginatedResult:
        """Fetch every page allowed by ``config`` and the request overrides.

        Args:
            fetcher: Performs one HTTP call for the given params.
            config: The action's pagination config (None = disabled).
            request: Per-invocation overrides (limits, strategy, resume token).
            original_params: Query params of the un-paginated request.
            action_id: Binds continuation tokens to the action.
            id_field: Optional item key for de-duplication across pages.
            on_page: Called with ``(page_number, item_count)`` after each page.

        Returns:
            A ``PaginatedResult`` with the aggregated items.

        Raises:
            Exception: Whatever ``fetcher`` raised, when it failed before any
                item was collected.
        """
        config = merge_pagination_request(config, request)
        params_base = dict(original_params or {})
        if not config.enabled or (request is not None and (request.bypass or not request.fetchAll)):
            return self.fetch_single_page(fetcher, config, params_base)

        start_cursor: Optional[str] = None
        start_items = 0
        start_chars = 0
        strategy: Optional[PaginationStrategy] = None
        if request is not None and request.continuationToken:
            token = decode_continuation_token(request.continuationToken)
            if token is not None and token.actionId == action_id:
                start_cursor = token.cursor
                start_items = token.itemsFetched
                start_chars = token.charactersFetched
                strategy = get_strategy(token.strategy)
                logger.debug("Resuming %s pagination for %s", token.strategy.value, action_id)
            else:
                logger.debug("Continuation token ignored for action %s", action_id)
        if strategy is None and config.strategy != PaginationStrategyType.AUTO:
            strategy = get_strategy(config.strategy)

        aggregator = PaginationAggregator(config, id_field=id_field, clock=self._clock)
        page_number = 1
        first_total: Optional[int] = None
        try:
            first = fetcher(self.build_page_params(params_base, config, strategy, start_cursor, page_number))
            first_chars = character_count(first.data)

            if strategy is None:
                strategy, _ = select_strategy(first.body, first.headers)
                if strategy is None:
                    return _single_page_result(first.data, first_chars)
                hints = detect_pagination_strategy(first.body, first.headers).as_config_overrides()
                unset = {k: v for k, v in hints.items() if getattr(config, k) is None}
                if unset:
                    config = config.model_copy(update=unset)
                    aggregator.config = config

            context = PaginationContext(
                config=config, page_number=page_number, cursor=start_cursor, page_size=config.defaultPageSize
            )
            info = _extract_page_info(strategy, first, config, context)
            first_total = info.total_items
            keep_going = aggregator.add_page(self._page_result(info, first_chars, first.data))
            if on_page is not None:
                on_page(page_number, len(info.items))

            cursor = info.next_cursor
            page_number += 1
            while keep_going and aggregator.should_continue() and cursor:
                page = fetcher(self.build_page_params(params_base, config, strategy, cursor, page_number))
                chars = character_count(page.data)
                context = PaginationContext(
                    config=config, page_number=page_number, cursor=cursor, page_size=config.defaultPageSize
                )
                info = _extract_page_info(strategy, page, config, context)
                keep_going = aggregator.add_page(self._page_result(info, chars, page.data))
                if on_page is not None:
                    on_page(page_number, len(info.items))
                cursor = info.next_cursor
                page_number += 1
        except Exception:
            aggregator.mark_error()
            partial = aggregator.build_result(total_items=first_total)
            if partial.data:
                logger.warning(
                    "Pagination failed on page %d; returning %d items collected so far",
                    page_number,
                    len(partial.data),
                    exc_info=True,
                )
                return PaginatedResult(
                    data=partial.data,
                    metadata=partial.metadata,
                    strategyUsed=strategy.strategy_type if strategy else None,
                )
            raise

        token: Optional[str] = None
        if aggregator.truncation_reason is not None and aggregator.current_cursor:
            token = create_continuation_token(
                strategy.strategy_type,
                aggregator.current_cursor,
                aggregator.item_count + start_items,
                aggregator.character_count + start_chars,
                action_id,
            )
        result = aggregator.build_result(continuation_token=token, total_items=first_total)
        return PaginatedResult(data=result.data, metadata=result.metadata, strategyUsed=strategy.strategy_type)

    @staticmethod
    def _page_result(info, chars: int, raw: Any) -> PageFetchResult:
        return PageFetchResult(
            items=info.items,
            character_count=chars,
            next_cursor=info.next_cursor,
            has_more=info.has_more,
            total_items=info.total_items,
            raw_response=raw,
        )
