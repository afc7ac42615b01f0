"""Pattern-weight pagination detector.

Where ``select_strategy`` only answers "which strategy", the detector is used
when configuring an action from a sample response: it also suggests the
paths (``dataPath``, ``cursorPath``, ``totalPagesPath``, ``hasMorePath``) to
store in the ``PaginationConfig``.

Every matching pattern adds its weight to its strategy; a few structural
heuristics add small boosts. ``confidence = min(best / 2, 1)`` and anything
under ``MIN_CONFIDENCE`` is reported as "no pagination".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..models.pagination import DetectedPaths, DetectionResult, PaginationConfig, PaginationStrategyType
from .strategies import (
    DATA_FIELDS,
    META_OBJECTS,
    STRATEGY_ORDER,
    WRAPPER_FIELDS,
    get_boolean_at,
    get_header,
    get_value_at,
    looks_like_paginated_response,
)

__all__ = [
    "MIN_CONFIDENCE",
    "detect_pagination_strategy",
    "detect_data_path",
    "detect_has_more_path",
    "has_more_pages",
]

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.3


@dataclass(frozen=True)
class _Pattern:
    name: str
    strategy: PaginationStrategyType
    weight: float
    response_fields: Tuple[str, ...] = ()
    meta_fields: Tuple[str, ...] = ()


_C = PaginationStrategyType.CURSOR
_O = PaginationStrategyType.OFFSET
_P = PaginationStrategyType.PAGE_NUMBER

PATTERNS: Tuple[_Pattern, ...] = (
    _Pattern("next_cursor", _C, 1.0, ("next_cursor",)),
    _Pattern("nextCursor", _C, 1.0, ("nextCursor",)),
    _Pattern("cursor", _C, 0.8, ("cursor",)),
    _Pattern("after", _C, 0.7, ("after",)),
    _Pattern("pageToken", _C, 1.0, ("pageToken", "nextPageToken")),
    _Pattern("page_token", _C, 1.0, ("page_token", "next_page_token")),
    _Pattern("continuation", _C, 0.9, ("continuation", "continuationToken")),
    _Pattern("meta.cursor", _C, 0.9, meta_fields=("cursor", "next_cursor", "nextCursor")),
    _Pattern("pagination.cursor", _C, 0.9, meta_fields=("cursor",)),
    _Pattern("offset", _O, 0.9, ("offset",)),
    _Pattern("skip", _O, 0.8, ("skip",)),
    _Pattern("start", _O, 0.7, ("start",)),
    _Pattern("from", _O, 0.6, ("from",)),
    _Pattern("meta.offset", _O, 0.9, meta_fields=("offset", "skip")),
    _Pattern("page", _P, 0.9, ("page",)),
    _Pattern("pageNumber", _P, 0.9, ("pageNumber", "page_number")),
    _Pattern("currentPage", _P, 0.9, ("currentPage", "current_page")),
    _Pattern("totalPages", _P, 0.8, ("totalPages", "total_pages")),
    _Pattern("meta.page", _P, 0.9, meta_fields=("page", "pageNumber", "currentPage")),
)


@dataclass
class _Score:
    score: float = 0.0
    paths: Dict[str, str] = field(default_factory=dict)
    patterns: List[str] = field(default_factory=list)


def _paths_for(pattern: _Pattern, name: str, path: str) -> Dict[str, str]:
    if pattern.strategy == _C:
        return {"cursorPath": path}
    if pattern.strategy == _P and "total" in name.lower():
        return {"totalPagesPath": path}
    return {}


def _check_pattern(response: Dict[str, Any], pattern: _Pattern) -> Optional[Dict[str, str]]:
    for name in pattern.response_fields:
        if response.get(name) is not None:
            return _paths_for(pattern, name, f"$.{name}")
    for meta_key in META_OBJECTS:
        meta = response.get(meta_key)
        if not isinstance(meta, dict):
            continue
        for name in pattern.meta_fields:
            if meta.get(name) is not None:
                return _paths_for(pattern, name, f"$.{meta_key}.{name}")
    return None


def _heuristics(response: Dict[str, Any]) -> Dict[PaginationStrategyType, float]:
    boosts: Dict[PaginationStrategyType, float] = {}
    if any(k in response for k in ("total", "totalCount", "total_count", "count")):
        boosts[_O] = boosts.get(_O, 0.0) + 0.3
        boosts[_P] = boosts.get(_P, 0.0) + 0.3
    if any(k in response for k in ("hasMore", "has_more", "hasNextPage", "has_next_page")):
        boosts[_C] = boosts.get(_C, 0.0) + 0.3
    if isinstance(response.get("next"), str):
        boosts[_C] = boosts.get(_C, 0.0) + 0.2
    return boosts


def detect_data_path(response: Any) -> Optional[str]:
    if isinstance(response, list):
        return "$"
    if not isinstance(response, dict):
        return None
    for name in DATA_FIELDS:
        if isinstance(response.get(name), list):
            return f"$.{name}"
    for wrapper in WRAPPER_FIELDS:
        inner = response.get(wrapper)
        if isinstance(inner, dict):
            for name in DATA_FIELDS:
                if isinstance(inner.get(name), list):
                    return f"$.{wrapper}.{name}"
    return None


def detect_has_more_path(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    fields = ("hasMore", "has_more", "hasNextPage", "has_next_page", "moreAvailable", "more")
    for name in fields:
        if isinstance(response.get(name), bool):
            return f"$.{name}"
    for meta_key in META_OBJECTS:
        meta = response.get(meta_key)
        if isinstance(meta, dict):
            for name in fields:
                if isinstance(meta.get(name), bool):
                    return f"$.{meta_key}.{name}"
    return None


def detect_pagination_strategy(
    response: Any, headers: Optional[Mapping[str, str]] = None
) -> DetectionResult:
    """Score a sample response and suggest config paths.

    Args:
        response: Parsed body of a sample response.
        headers: Its headers (only ``Link`` is consulted).

    Returns:
        A ``DetectionResult``; ``strategy`` is None when nothing reaches
        ``MIN_CONFIDENCE``.
    """
    if not looks_like_paginated_response(response):
        return DetectionResult(explanation="Response does not appear to contain paginated data")

    scores: Dict[PaginationStrategyType, _Score] = {t: _Score() for t in STRATEGY_ORDER}

    link = get_header(headers, "link")
    if link and ('rel="next"' in link or "rel='next'" in link or "rel=next" in link):
        entry = scores[PaginationStrategyType.LINK_HEADER]
        entry.score += 1.0
        entry.patterns.append("Link header present")

    if isinstance(response, dict):
        for pattern in PATTERNS:
            found = _check_pattern(response, pattern)
            if found is None:
                continue
            entry = scores[pattern.strategy]
            entry.score += pattern.weight
            entry.patterns.append(pattern.name)
            entry.paths.update(found)
        for strategy, boost in _heuristics(response).items():
            scores[strategy].score += boost

    best: Optional[PaginationStrategyType] = None
    best_score = 0.0
    for strategy in STRATEGY_ORDER:
        if scores[strategy].score > best_score:
            best, best_score = strategy, scores[strategy].score

    confidence = min(best_score / 2.0, 1.0)
    if best is None or confidence < MIN_CONFIDENCE:
        return DetectionResult(explanation="No clear pagination pattern detected")

    winner = scores[best]
    paths = dict(winner.paths)
    data_path = detect_data_path(response)
    if data_path:
        paths["dataPath"] = data_path
    has_more_path = detect_has_more_path(response)
    if has_more_path:
        paths["hasMorePath"] = has_more_path
    logger.debug("Detector suggests %s (confidence %.2f)", best.value, confidence)
    return DetectionResult(
        strategy=best,
        confidence=confidence,
        detectedPaths=DetectedPaths(**paths),
        explanation=f"Detected {best.value} pagination based on: {', '.join(winner.patterns)}",
    )


def has_more_pages(response: Any, config: PaginationConfig) -> bool:
    """Cheap "is there another page" check from configured paths alone."""
    if config.hasMorePath:
        explicit = get_boolean_at(response, config.hasMorePath)
        if explicit is not None:
            return explicit
    if config.cursorPath:
        cursor = get_value_at(response, config.cursorPath)
        if cursor not in (None, ""):
            return True
    if config.dataPath:
        data = get_value_at(response, config.dataPath)
        if isinstance(data, list) and not data:
            return False
    return True
