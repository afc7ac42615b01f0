"""Pagination strategies.

The strategy set is closed: ``STRATEGIES`` maps every concrete
``PaginationStrategyType`` to a stateless strategy instance. Each strategy
knows how to

* build the query/body/header parameters for the next page,
* extract items and the next cursor from a response body (and, for the
  link-header strategy, the response headers passed with the call),
* score how likely a sample response is to use its scheme (0.0 - 1.0).

``select_strategy`` runs every detector against a first response and keeps
the best score; ties go to the earlier entry of ``STRATEGY_ORDER``.
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..models.pagination import DEFAULT_PAGE_SIZE, PaginationConfig, PaginationStrategyType
from ..paths import get_value_by_path

__all__ = [
    "PaginationContext",
    "PaginationParams",
    "ExtractedPaginationInfo",
    "PaginationStrategy",
    "CursorStrategy",
    "OffsetStrategy",
    "PageNumberStrategy",
    "LinkHeaderStrategy",
    "ParsedLink",
    "STRATEGIES",
    "STRATEGY_ORDER",
    "get_strategy",
    "select_strategy",
    "score_strategies",
    "extract_items",
    "get_value_at",
    "get_string_at",
    "get_number_at",
    "get_boolean_at",
    "get_header",
    "looks_like_paginated_response",
    "parse_link_header",
    "character_count",
]

logger = logging.getLogger(__name__)

DATA_FIELDS = ("data", "results", "items", "records", "entries", "list", "rows", "objects", "values")
WRAPPER_FIELDS = ("response", "body", "result", "content")
META_OBJECTS = ("meta", "pagination", "paging", "_meta", "page_info", "pageInfo")

CURSOR_FIELDS = (
    "next_cursor",
    "nextCursor",
    "cursor",
    "after",
    "pageToken",
    "nextPageToken",
    "page_token",
    "next_page_token",
    "continuation",
    "continuationToken",
    "continuation_token",
)
OFFSET_FIELDS = ("offset", "skip", "start", "from")
LIMIT_FIELDS = ("limit", "per_page", "perPage", "pageSize", "size")
TOTAL_FIELDS = ("total", "totalCount", "total_count", "count", "totalResults", "total_results")
PAGE_FIELDS = ("page", "pageNumber", "page_number", "currentPage", "current_page")
TOTAL_PAGES_FIELDS = ("totalPages", "total_pages", "pages", "pageCount", "page_count", "lastPage", "last_page")
HAS_MORE_FIELDS = ("hasMore", "has_more", "hasNextPage", "has_next_page")

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_PAGE_QUERY_RE = re.compile(r"[?&]page=(\d+)")
_LINK_URL_RE = re.compile(r"<([^>]+)>")
_LINK_PARAM_RE = re.compile(r"""^(\w+)=["']?([^"']+)["']?$""")


@dataclass
class PaginationContext:
    config: PaginationConfig
    page_number: int = 1
    cursor: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    original_params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PaginationParams:
    """Parameters for one page request.

    ``url`` is set only when the next page is addressed by a literal URL
    (link-header pagination); the caller must request it verbatim.
    """

    query_params: Dict[str, Any] = field(default_factory=dict)
    body_params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    url: Optional[str] = None


@dataclass
class ExtractedPaginationInfo:
    items: List[Any]
    next_cursor: Optional[str]
    has_more: bool
    total_items: Optional[int] = None
    total_pages: Optional[int] = None


# ---------------- Response helpers -----------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def get_value_at(obj: Any, path: Optional[str]) -> Any:
    """Resolve ``path`` against ``obj``; the ``$.`` prefix is optional."""
    if not path or obj is None:
        return None
    if path == "$":
        return obj
    if not path.startswith("$"):
        path = "$." + path
    return get_value_by_path(obj, path)


def get_string_at(obj: Any, path: Optional[str]) -> Optional[str]:
    value = get_value_at(obj, path)
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return str(value)
    return None


def get_number_at(obj: Any, path: Optional[str]) -> Optional[int]:
    value = get_value_at(obj, path)
    if _is_number(value):
        return int(value)
    if isinstance(value, str):
        m = _LEADING_INT_RE.match(value)
        if m:
            return int(m.group(1))
    return None


def get_boolean_at(obj: Any, path: Optional[str]) -> Optional[bool]:
    value = get_value_at(obj, path)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def get_header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup over any mapping."""
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def extract_items(response: Any, data_path: Optional[str] = None) -> List[Any]:
    """Locate the item array of a page.

    An explicit ``data_path`` wins (a non-array there yields ``[]``). Without
    one, common collection keys are tried, then the same keys under common
    wrapper objects, then the response itself when it is an array.
    """
    if data_path:
        value = get_value_at(response, data_path)
        return value if isinstance(value, list) else []
    if isinstance(response, list):
        return response
    if not isinstance(response, dict):
        return []
    for key in DATA_FIELDS:
        if isinstance(response.get(key), list):
            return response[key]
    for wrapper in WRAPPER_FIELDS:
        inner = response.get(wrapper)
        if isinstance(inner, dict):
            for key in DATA_FIELDS:
                if isinstance(inner.get(key), list):
                    return inner[key]
    return []


def _first_in(obj: Dict[str, Any], fields: Sequence[str], predicate) -> Any:
    for name in fields:
        value = obj.get(name)
        if predicate(value):
            return value
    for meta_key in META_OBJECTS:
        meta = obj.get(meta_key)
        if isinstance(meta, dict):
            for name in fields:
                value = meta.get(name)
                if predicate(value):
                    return value
    return None


def _find_number(response: Any, fields: Sequence[str]) -> Optional[int]:
    if not isinstance(response, dict):
        return None
    value = _first_in(response, fields, _is_number)
    return int(value) if value is not None else None


def looks_like_paginated_response(response: Any) -> bool:
    if isinstance(response, list):
        return True
    if not isinstance(response, dict):
        return False
    if any(isinstance(response.get(k), list) for k in DATA_FIELDS[:6]):
        return True
    indicators = (
        "next_cursor", "nextCursor", "cursor", "next", "nextPage", "next_page", "page",
        "offset", "total", "totalCount", "total_count", "hasMore", "has_more", "meta",
        "pagination",
    )
    return any(k in response for k in indicators)


def character_count(value: Any) -> int:
    """Length of the compact JSON rendering of ``value``."""
    if value is None:
        return 0
    try:
        return len(json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return 0


# ---------------- Strategies -----------------


class PaginationStrategy(ABC):
    strategy_type: PaginationStrategyType
    display_name: str

    @abstractmethod
    def build_request_params(self, context: PaginationContext) -> PaginationParams:
        ...

    @abstractmethod
    def extract_pagination_info(
        self,
        response: Any,
        config: PaginationConfig,
        headers: Optional[Mapping[str, str]] = None,
        *,
        context: Optional[PaginationContext] = None,
    ) -> ExtractedPaginationInfo:
        ...

    @abstractmethod
    def detect(self, response: Any, headers: Optional[Mapping[str, str]] = None) -> float:
        ...

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{type(self).__name__} {self.strategy_type.value}>"


class CursorStrategy(PaginationStrategy):
    """Opaque token carried from the previous page."""

    strategy_type = PaginationStrategyType.CURSOR
    display_name = "Cursor-based Pagination"

    def build_request_params(self, context: PaginationContext) -> PaginationParams:
        params = PaginationParams()
        if context.config.limitParam:
            params.query_params[context.config.limitParam] = context.page_size
        if context.cursor:
            params.query_params[context.config.cursorParam or "cursor"] = context.cursor
        return params

    def extract_pagination_info(self, response, config, headers=None, *, context=None):
        items = extract_items(response, config.dataPath)
        next_cursor = get_string_at(response, config.cursorPath)
        if next_cursor is None and not config.cursorPath:
            next_cursor = self._find_cursor(response)
        has_more = bool(next_cursor)
        if config.hasMorePath:
            explicit = get_boolean_at(response, config.hasMorePath)
            if explicit is not None:
                has_more = explicit
        return ExtractedPaginationInfo(
            items=items,
            next_cursor=next_cursor,
            has_more=has_more,
            total_items=get_number_at(response, config.totalPath),
        )

    def detect(self, response, headers=None) -> float:
        if not isinstance(response, dict):
            return 0.0
        confidence = 0.0
        if any(response.get(f) is not None for f in CURSOR_FIELDS):
            confidence += 0.4
        for meta_key in META_OBJECTS:
            meta = response.get(meta_key)
            if isinstance(meta, dict) and any(f in meta for f in CURSOR_FIELDS):
                confidence += 0.3
        if any(f in response for f in ("hasMore", "has_more", "hasNextPage")):
            confidence += 0.2
        return min(confidence, 1.0)

    @staticmethod
    def _find_cursor(response: Any) -> Optional[str]:
        if not isinstance(response, dict):
            return None
        return _first_in(response, CURSOR_FIELDS, lambda v: isinstance(v, str) and v != "")


class OffsetStrategy(PaginationStrategy):
    """Numeric offset advanced by the number of items received."""

    strategy_type = PaginationStrategyType.OFFSET
    display_name = "Offset/Limit Pagination"

    @staticmethod
    def _offset_for(context: PaginationContext) -> int:
        if context.cursor is not None:
            m = _LEADING_INT_RE.match(context.cursor)
            return int(m.group(1)) if m else 0
        if context.page_number > 1:
            return (context.page_number - 1) * context.page_size
        return 0

    def build_request_params(self, context: PaginationContext) -> PaginationParams:
        config = context.config
        params = PaginationParams()
        params.query_params[config.offsetParam or "offset"] = self._offset_for(context)
        params.query_params[config.limitParam or "limit"] = context.page_size
        return params

    def extract_pagination_info(self, response, config, headers=None, *, context=None):
        items = extract_items(response, config.dataPath)
        total = get_number_at(response, config.totalPath)
        if total is None:
            total = _find_number(response, TOTAL_FIELDS)
        current = _find_number(response, OFFSET_FIELDS)
        if current is None:
            current = self._offset_for(context) if context is not None else 0
        next_offset = current + len(items)

        if config.hasMorePath:
            has_more = bool(get_boolean_at(response, config.hasMorePath))
        elif total is not None:
            has_more = next_offset < total
        else:
            has_more = len(items) >= config.defaultPageSize
        return ExtractedPaginationInfo(
            items=items,
            next_cursor=str(next_offset) if has_more else None,
            has_more=has_more,
            total_items=total,
        )

    def detect(self, response, headers=None) -> float:
        if not isinstance(response, dict):
            return 0.0
        confidence = 0.0
        if any(_is_number(response.get(f)) for f in OFFSET_FIELDS):
            confidence += 0.4
        if any(_is_number(response.get(f)) for f in TOTAL_FIELDS[:5]):
            confidence += 0.3
        if any(_is_number(response.get(f)) for f in LIMIT_FIELDS):
            confidence += 0.2
        for meta_key in META_OBJECTS[:4]:
            meta = response.get(meta_key)
            if isinstance(meta, dict) and any(k in meta for k in ("offset", "skip", "total")):
                confidence += 0.2
                break
        return min(confidence, 1.0)


class PageNumberStrategy(PaginationStrategy):
    """Integer page counter, 1-based."""

    strategy_type = PaginationStrategyType.PAGE_NUMBER
    display_name = "Page Number Pagination"

    @staticmethod
    def _page_for(context: PaginationContext) -> int:
        if context.cursor is not None:
            m = _LEADING_INT_RE.match(context.cursor)
            if m:
                return int(m.group(1))
        return context.page_number

    def build_request_params(self, context: PaginationContext) -> PaginationParams:
        config = context.config
        params = PaginationParams()
        params.query_params[config.pageParam or "page"] = self._page_for(context)
        if config.limitParam:
            params.query_params[config.limitParam] = context.page_size
        return params

    def extract_pagination_info(self, response, config, headers=None, *, context=None):
        items = extract_items(response, config.dataPath)
        current = _find_number(response, PAGE_FIELDS)
        if current is None:
            current = self._page_for(context) if context is not None else 1
        total_pages = get_number_at(response, config.totalPagesPath)
        if total_pages is None:
            total_pages = _find_number(response, TOTAL_PAGES_FIELDS)
        total_items = get_number_at(response, config.totalPath)
        if total_items is None:
            total_items = _find_number(response, TOTAL_FIELDS)

        if config.hasMorePath:
            has_more = bool(get_boolean_at(response, config.hasMorePath))
        elif total_pages is not None:
            has_more = current < total_pages
        elif total_items is not None:
            has_more = current < -(-total_items // config.defaultPageSize)
        else:
            has_more = len(items) >= config.defaultPageSize
        return ExtractedPaginationInfo(
            items=items,
            next_cursor=str(current + 1) if has_more else None,
            has_more=has_more,
            total_items=total_items,
            total_pages=total_pages,
        )

    def detect(self, response, headers=None) -> float:
        if not isinstance(response, dict):
            return 0.0
        confidence = 0.0
        if any(_is_number(response.get(f)) for f in PAGE_FIELDS):
            confidence += 0.4
        if any(_is_number(response.get(f)) for f in TOTAL_PAGES_FIELDS[:5]):
            confidence += 0.4
        for meta_key in META_OBJECTS[:4]:
            meta = response.get(meta_key)
            if isinstance(meta, dict) and any(
                _is_number(meta.get(f)) for f in PAGE_FIELDS + TOTAL_PAGES_FIELDS[:5]
            ):
                confidence += 0.2
        return min(confidence, 1.0)


@dataclass
class ParsedLink:
    url: str
    rel: str = ""
    params: Dict[str, str] = field(default_factory=dict)


def _split_links(header: str) -> List[str]:
    # Commas inside <...> belong to the URL.
    parts: List[str] = []
    current: List[str] = []
    in_angle = False
    for ch in header:
        if ch == "<":
            in_angle = True
        elif ch == ">":
            in_angle = False
        elif ch == "," and not in_angle:
            chunk = "".join(current).strip()
            if chunk:
                parts.append(chunk)
            current = []
            continue
        current.append(ch)
    chunk = "".join(current).strip()
    if chunk:
        parts.append(chunk)
    return parts


def parse_link_header(header: Optional[str]) -> List[ParsedLink]:
    """Parse an RFC 5988 ``Link`` header into its entries."""
    if not header or not header.strip():
        return []
    links: List[ParsedLink] = []
    for part in _split_links(header):
        m = _LINK_URL_RE.search(part)
        if not m:
            continue
        link = ParsedLink(url=m.group(1))
        for raw in part[m.end():].split(";"):
            pm = _LINK_PARAM_RE.match(raw.strip())
            if pm:
                link.params[pm.group(1).lower()] = pm.group(2)
        link.rel = link.params.get("rel", "")
        links.append(link)
    return links


class LinkHeaderStrategy(PaginationStrategy):
    """RFC 5988 ``Link`` header; the cursor is the literal next URL."""

    strategy_type = PaginationStrategyType.LINK_HEADER
    display_name = "Link Header Pagination (RFC 5988)"

    def build_request_params(self, context: PaginationContext) -> PaginationParams:
        params = PaginationParams()
        if context.cursor:
            params.url = context.cursor
        elif context.config.limitParam:
            params.query_params[context.config.limitParam] = context.page_size
        return params

    def extract_pagination_info(self, response, config, headers=None, *, context=None):
        items = extract_items(response, config.dataPath)
        links = parse_link_header(get_header(headers, "link"))
        # rel may carry several space-separated relation types
        next_link = next((l for l in links if "next" in l.rel.split()), None)
        last_link = next((l for l in links if "last" in l.rel.split()), None)

        total_items: Optional[int] = None
        for name in ("x-total-count", "x-total"):
            raw = get_header(headers, name)
            if raw:
                m = _LEADING_INT_RE.match(raw)
                if m:
                    total_items = int(m.group(1))
                    break
        if total_items is None:
            total_items = get_number_at(response, config.totalPath)

        total_pages: Optional[int] = None
        if last_link is not None:
            pm = _PAGE_QUERY_RE.search(last_link.url)
            if pm:
                total_pages = int(pm.group(1))

        next_cursor = next_link.url if next_link else None
        return ExtractedPaginationInfo(
            items=items,
            next_cursor=next_cursor,
            has_more=next_cursor is not None,
            total_items=total_items,
            total_pages=total_pages,
        )

    def detect(self, response, headers=None) -> float:
        link = get_header(headers, "link")
        if not link:
            return 0.0
        if 'rel="next"' in link or "rel='next'" in link or "rel=next" in link:
            return 1.0
        if "rel=" in link:
            return 0.5
        return 0.2


# ---------------- Registry -----------------

STRATEGY_ORDER: Tuple[PaginationStrategyType, ...] = (
    PaginationStrategyType.CURSOR,
    PaginationStrategyType.OFFSET,
    PaginationStrategyType.PAGE_NUMBER,
    PaginationStrategyType.LINK_HEADER,
)

STRATEGIES: Dict[PaginationStrategyType, PaginationStrategy] = {
    PaginationStrategyType.CURSOR: CursorStrategy(),
    PaginationStrategyType.OFFSET: OffsetStrategy(),
    PaginationStrategyType.PAGE_NUMBER: PageNumberStrategy(),
    PaginationStrategyType.LINK_HEADER: LinkHeaderStrategy(),
}


def get_strategy(strategy_type: PaginationStrategyType | str) -> PaginationStrategy:
    """Return the strategy for a concrete type.

    Raises:
        ValueError: For ``auto`` or an unknown name.
    """
    key = PaginationStrategyType(strategy_type)
    if key not in STRATEGIES:
        raise ValueError(f"No concrete pagination strategy for {key.value!r}")
    return STRATEGIES[key]


def score_strategies(
    response: Any, headers: Optional[Mapping[str, str]] = None
) -> List[Tuple[PaginationStrategyType, float]]:
    """Detection score of every strategy, in ``STRATEGY_ORDER``."""
    return [(t, STRATEGIES[t].detect(response, headers)) for t in STRATEGY_ORDER]


def select_strategy(
    response: Any, headers: Optional[Mapping[str, str]] = None
) -> Tuple[Optional[PaginationStrategy], float]:
    """Pick the highest-scoring strategy for a first response.

    Returns ``(None, 0.0)`` when no strategy scores above zero.
    """
    best: Optional[PaginationStrategyType] = None
    best_score = 0.0
    for strategy_type, score in score_strategies(response, headers):
        if score > best_score:
            best, best_score = strategy_type, score
    if best is None:
        logger.debug("No pagination strategy matched the first response")
        return None, 0.0
    logger.debug("Auto-selected %s pagination (confidence %.2f)", best.value, best_score)
    return STRATEGIES[best], best_score
