"""Pydantic models for pagination configuration, requests and results."""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_PAGES = 5
DEFAULT_MAX_ITEMS = 500
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_CHARACTERS = 100_000
DEFAULT_MAX_DURATION_MS = 30_000

ABSOLUTE_MAX_PAGES = 100
ABSOLUTE_MAX_ITEMS = 10_000
ABSOLUTE_MAX_PAGE_SIZE = 500
ABSOLUTE_MAX_CHARACTERS = 1_000_000
ABSOLUTE_MAX_DURATION_MS = 300_000

CHARS_PER_TOKEN = 4


class PaginationStrategyType(str, Enum):
    CURSOR = "cursor"
    OFFSET = "offset"
    PAGE_NUMBER = "page_number"
    LINK_HEADER = "link_header"
    AUTO = "auto"


class TruncationReason(str, Enum):
    MAX_PAGES = "maxPages"
    MAX_ITEMS = "maxItems"
    MAX_CHARACTERS = "maxCharacters"
    MAX_DURATION = "maxDuration"
    ERROR = "error"
    CIRCULAR = "circular"


class PaginationConfig(BaseModel):
    """Per-action pagination settings."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    strategy: PaginationStrategyType = PaginationStrategyType.AUTO
    cursorParam: Optional[str] = None
    cursorPath: Optional[str] = None
    offsetParam: Optional[str] = None
    limitParam: Optional[str] = None
    totalPath: Optional[str] = None
    pageParam: Optional[str] = None
    totalPagesPath: Optional[str] = None
    dataPath: Optional[str] = None
    hasMorePath: Optional[str] = None
    maxPages: int = Field(DEFAULT_MAX_PAGES, ge=1, le=ABSOLUTE_MAX_PAGES)
    maxItems: int = Field(DEFAULT_MAX_ITEMS, ge=1, le=ABSOLUTE_MAX_ITEMS)
    defaultPageSize: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=ABSOLUTE_MAX_PAGE_SIZE)
    maxCharacters: int = Field(DEFAULT_MAX_CHARACTERS, ge=1000, le=ABSOLUTE_MAX_CHARACTERS)
    maxDurationMs: int = Field(DEFAULT_MAX_DURATION_MS, ge=1000, le=ABSOLUTE_MAX_DURATION_MS)


class PaginationRequest(BaseModel):
    """Per-invocation pagination overrides.

    ``fetchAll=False`` asks for a single page even when the action paginates.
    Limit overrides are bounded by the same absolute caps as the config.
    """

    model_config = ConfigDict(extra="ignore")

    strategyOverride: Optional[PaginationStrategyType] = None
    bypass: bool = False
    fetchAll: bool = True
    maxPages: Optional[int] = Field(None, ge=1, le=ABSOLUTE_MAX_PAGES)
    maxItems: Optional[int] = Field(None, ge=1, le=ABSOLUTE_MAX_ITEMS)
    maxCharacters: Optional[int] = Field(None, ge=1000, le=ABSOLUTE_MAX_CHARACTERS)
    maxDurationMs: Optional[int] = Field(None, ge=1000, le=ABSOLUTE_MAX_DURATION_MS)
    pageSize: Optional[int] = Field(None, ge=1, le=ABSOLUTE_MAX_PAGE_SIZE)
    continuationToken: Optional[str] = None


class PaginationMetadata(BaseModel):
    fetchedItems: int = 0
    pagesFetched: int = 0
    totalItems: Optional[int] = None
    fetchedCharacters: int = 0
    estimatedTokens: int = 0
    hasMore: bool = False
    truncated: bool = False
    truncationReason: Optional[TruncationReason] = None
    continuationToken: Optional[str] = None
    durationMs: int = 0


class PaginatedResult(BaseModel):
    data: List[Any] = Field(default_factory=list)
    metadata: PaginationMetadata = Field(default_factory=PaginationMetadata)
    strategyUsed: Optional[PaginationStrategyType] = None
    # body of the first response when no pagination strategy applied
    rawResponse: Any = Field(default=None, exclude=True)


class ContinuationTokenData(BaseModel):
    strategy: PaginationStrategyType
    cursor: str
    itemsFetched: int = Field(ge=0)
    charactersFetched: int = Field(ge=0)
    createdAt: int
    actionId: str


class DetectedPaths(BaseModel):
    dataPath: Optional[str] = None
    cursorPath: Optional[str] = None
    totalPath: Optional[str] = None
    totalPagesPath: Optional[str] = None
    hasMorePath: Optional[str] = None


class DetectionResult(BaseModel):
    """Outcome of the pattern-weight detector."""

    strategy: Optional[PaginationStrategyType] = None
    confidence: float = 0.0
    detectedPaths: DetectedPaths = Field(default_factory=DetectedPaths)
    explanation: str = ""

    def as_config_overrides(self) -> dict:
        """Detected paths as a partial ``PaginationConfig`` dict (unset paths omitted)."""
        return self.detectedPaths.model_dump(exclude_none=True)


class PaginationResponseMetadata(BaseModel):
    """Pagination section of the invocation response."""

    strategyUsed: Optional[PaginationStrategyType] = None
    pagesFetched: int = 0
    totalItems: Optional[int] = None
    fetchedItems: int = 0
    hasMore: bool = False
    truncated: bool = False
    truncationReason: Optional[TruncationReason] = None
    continuationToken: Optional[str] = None
    bypassed: bool = False
