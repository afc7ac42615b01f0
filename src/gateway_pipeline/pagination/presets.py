"""Limit presets and request-level config merging."""
from __future__ import annotations

from typing import Any, Dict, Optional

from ..models.pagination import PaginationConfig, PaginationRequest
from .aggregator import estimate_tokens

__all__ = [
    "PAGINATION_PRESETS",
    "apply_preset",
    "merge_pagination_request",
    "has_high_limits",
    "describe_limits",
]

PAGINATION_PRESETS: Dict[str, Dict[str, int]] = {
    # ~25K tokens
    "LLM_OPTIMIZED": {"maxPages": 5, "maxItems": 500, "maxCharacters": 100_000, "maxDurationMs": 30_000},
    # ~250K tokens
    "FULL_DATASET": {"maxPages": 50, "maxItems": 5000, "maxCharacters": 1_000_000, "maxDurationMs": 120_000},
    "QUICK_SAMPLE": {"maxPages": 1, "maxItems": 50, "maxCharacters": 10_000, "maxDurationMs": 10_000},
}


def apply_preset(config: Optional[PaginationConfig | Dict[str, Any]], preset: str) -> PaginationConfig:
    """Overlay a named preset's limits on ``config``.

    Raises:
        KeyError: Unknown preset name.
    """
    limits = PAGINATION_PRESETS[preset]
    if isinstance(config, PaginationConfig):
        base = config.model_dump()
    else:
        base = dict(config or {})
    return PaginationConfig.model_validate({**base, **limits})


def merge_pagination_request(
    config: Optional[PaginationConfig], request: Optional[PaginationRequest]
) -> PaginationConfig:
    """Effective config for one invocation: action config plus request overrides."""
    base = config if config is not None else PaginationConfig()
    if request is None:
        return base
    updates: Dict[str, Any] = {}
    if request.strategyOverride is not None:
        updates["strategy"] = request.strategyOverride
    for name in ("maxPages", "maxItems", "maxCharacters", "maxDurationMs"):
        value = getattr(request, name)
        if value is not None:
            updates[name] = value
    if request.pageSize is not None:
        updates["defaultPageSize"] = request.pageSize
    return base.model_copy(update=updates)


def has_high_limits(config: PaginationConfig) -> bool:
    return (
        config.maxPages > 10
        or config.maxItems > 1000
        or config.maxCharacters > 500_000
        or config.maxDurationMs > 60_000
    )


def describe_limits(config: PaginationConfig) -> str:
    return (
        f"{config.maxPages} pages, {config.maxItems:,} items, "
        f"~{estimate_tokens(config.maxCharacters):,} tokens, {config.maxDurationMs / 1000:g}s timeout"
    )
