"""Pagination strategy framework.

Modules:
    strategies: Cursor, offset, page-number and link-header strategies plus
        the auto-selection rule
    detector: Pattern-weight detector suggesting config paths from a sample
    aggregator: Page accumulation, caps, circular-cursor and duplicate checks
    tokens: Continuation tokens for resuming truncated runs
    presets: Named limit presets and request-level config merging
    service: The sequential fetch loop

Design Invariants:
    - Pages are fetched sequentially; the next cursor comes from the previous page
    - Auto selection keeps the first strategy in declaration order on ties
    - Link-header cursors are next-page URLs requested verbatim
"""
from __future__ import annotations

from .aggregator import PageFetchResult, PaginationAggregator, aggregate_pages
from .detector import detect_pagination_strategy
from .presets import PAGINATION_PRESETS, apply_preset, merge_pagination_request
from .service import FetchedPage, PageFetcher, PaginationService
from .strategies import (
    STRATEGIES,
    STRATEGY_ORDER,
    CursorStrategy,
    LinkHeaderStrategy,
    OffsetStrategy,
    PageNumberStrategy,
    PaginationContext,
    PaginationParams,
    PaginationStrategy,
    get_strategy,
    parse_link_header,
    select_strategy,
)
from .tokens import decode_continuation_token, encode_continuation_token

__all__ = [
    "PageFetchResult",
    "PaginationAggregator",
    "aggregate_pages",
    "detect_pagination_strategy",
    "PAGINATION_PRESETS",
    "apply_preset",
    "merge_pagination_request",
    "FetchedPage",
    "PageFetcher",
    "PaginationService",
    "STRATEGIES",
    "STRATEGY_ORDER",
    "CursorStrategy",
    "LinkHeaderStrategy",
    "OffsetStrategy",
    "PageNumberStrategy",
    "PaginationContext",
    "PaginationParams",
    "PaginationStrategy",
    "get_strategy",
    "parse_link_header",
    "select_strategy",
    "decode_continuation_token",
    "encode_continuation_token",
]
