"""Accumulates pages and enforces the pagination caps."""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from ..models.pagination import CHARS_PER_TOKEN, PaginationConfig, PaginationMetadata, TruncationReason

__all__ = [
    "PageFetchResult",
    "AggregationState",
    "AggregationResult",
    "PaginationAggregator",
    "aggregate_pages",
    "check_limit_exceeded",
    "estimate_tokens",
    "create_aggregation_summary",
]

logger = logging.getLogger(__name__)


@dataclass
class PageFetchResult:
    items: List[Any]
    character_count: int
    next_cursor: Optional[str]
    has_more: bool
    total_items: Optional[int] = None
    raw_response: Any = None


@dataclass
class AggregationState:
    current_page: int = 1
    items_fetched: int = 0
    characters_fetched: int = 0
    started_at_ms: float = 0.0
    current_cursor: Optional[str] = None
    has_more: bool = True
    seen_cursors: Set[str] = field(default_factory=set)
    data: List[Any] = field(default_factory=list)


@dataclass
class AggregationResult:
    data: List[Any]
    metadata: PaginationMetadata
    raw_responses: Optional[List[Any]] = None


def estimate_tokens(characters: int) -> int:
    return math.ceil(characters / CHARS_PER_TOKEN)


def check_limit_exceeded(
    state: AggregationState, config: PaginationConfig, now_ms: float
) -> Optional[TruncationReason]:
    """First cap reached by ``state``, checked in pages/items/characters/duration order."""
    if state.current_page > config.maxPages:
        return TruncationReason.MAX_PAGES
    if state.items_fetched >= config.maxItems:
        return TruncationReason.MAX_ITEMS
    if state.characters_fetched >= config.maxCharacters:
        return TruncationReason.MAX_CHARACTERS
    if now_ms - state.started_at_ms >= config.maxDurationMs:
        return TruncationReason.MAX_DURATION
    return None


class PaginationAggregator:
    """Collects page items and decides whether another page may be fetched.

    Args:
        config: Effective pagination config (caps are read from it).
        id_field: When set, items whose ``id_field`` value was already seen
            are dropped.
        store_raw_responses: Keep each page's raw body for debugging.
        clock: Seconds-based monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        config: PaginationConfig,
        *,
        id_field: Optional[str] = None,
        store_raw_responses: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.id_field = id_field
        self.store_raw_responses = store_raw_responses
        self._clock = clock
        self.state = AggregationState(started_at_ms=self._now_ms())
        self._seen_ids: Set[str] = set()
        self._raw: List[Any] = []
        self.truncation_reason: Optional[TruncationReason] = None

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def add_page(self, page: PageFetchResult) -> bool:
        """Add a page; returns whether the caller should fetch another one."""
        state = self.state
        if page.next_cursor and page.next_cursor in state.seen_cursors:
            logger.warning("Circular pagination cursor %r; stopping", page.next_cursor)
            self.truncation_reason = TruncationReason.CIRCULAR
            state.has_more = False
            return False
        if page.next_cursor:
            state.seen_cursors.add(page.next_cursor)
        if self.store_raw_responses and page.raw_response is not None:
            self._raw.append(page.raw_response)

        new_items = self._dedupe(page.items)
        state.data.extend(new_items)
        state.items_fetched += len(new_items)
        state.characters_fetched += page.character_count
        state.current_cursor = page.next_cursor
        state.has_more = page.has_more
        state.current_page += 1
        logger.debug(
            "Page %d: +%d items (total %d, %d chars)",
            state.current_page - 1,
            len(new_items),
            state.items_fetched,
            state.characters_fetched,
        )

        if not page.has_more or page.next_cursor is None:
            return False
        exceeded = check_limit_exceeded(state, self.config, self._now_ms())
        if exceeded is not None:
            self.truncation_reason = exceeded
            return False
        return True

    def should_continue(self) -> bool:
        if self.truncation_reason is not None or not self.state.has_more:
            return False
        exceeded = check_limit_exceeded(self.state, self.config, self._now_ms())
        if exceeded is not None:
            self.truncation_reason = exceeded
            return False
        return True

    def mark_error(self) -> None:
        self.truncation_reason = TruncationReason.ERROR

    @property
    def current_cursor(self) -> Optional[str]:
        return self.state.current_cursor

    @property
    def current_page(self) -> int:
        return self.state.current_page

    @property
    def item_count(self) -> int:
        return self.state.items_fetched

    @property
    def character_count(self) -> int:
        return self.state.characters_fetched

    def build_result(
        self, continuation_token: Optional[str] = None, total_items: Optional[int] = None
    ) -> AggregationResult:
        state = self.state
        reason = self.truncation_reason
        if reason is not None:
            logger.warning(
                "Pagination truncated (%s) after %d pages / %d items",
                reason.value,
                state.current_page - 1,
                state.items_fetched,
            )
        metadata = PaginationMetadata(
            fetchedItems=state.items_fetched,
            pagesFetched=state.current_page - 1,
            totalItems=total_items,
            fetchedCharacters=state.characters_fetched,
            estimatedTokens=estimate_tokens(state.characters_fetched),
            hasMore=state.has_more,
            truncated=reason is not None,
            truncationReason=reason,
            continuationToken=continuation_token,
            durationMs=int(self._now_ms() - state.started_at_ms),
        )
        return AggregationResult(
            data=state.data,
            metadata=metadata,
            raw_responses=self._raw if self.store_raw_responses else None,
        )

    def _dedupe(self, items: List[Any]) -> List[Any]:
        if not self.id_field:
            return list(items)
        fresh: List[Any] = []
        for item in items:
            if isinstance(item, dict):
                key = str(item.get(self.id_field))
                if key in self._seen_ids:
                    continue
                self._seen_ids.add(key)
            fresh.append(item)
        return fresh


def aggregate_pages(
    pages: List[PageFetchResult], config: PaginationConfig, *, id_field: Optional[str] = None
) -> AggregationResult:
    """Feed already-fetched pages through an aggregator."""
    aggregator = PaginationAggregator(config, id_field=id_field)
    for page in pages:
        if not aggregator.add_page(page):
            break
    return aggregator.build_result()


def create_aggregation_summary(result: AggregationResult) -> str:
    meta = result.metadata
    parts = [
        f"{meta.fetchedItems} items",
        f"{meta.pagesFetched} pages",
        f"{meta.fetchedCharacters:,} chars (~{meta.estimatedTokens:,} tokens)",
        f"{meta.durationMs}ms",
    ]
    if meta.truncated and meta.truncationReason is not None:
        parts.append(f"truncated: {meta.truncationReason.value}")
    if meta.hasMore:
        parts.append("more available")
    return ", ".join(parts)
