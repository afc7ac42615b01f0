"""Pydantic models for field mappings and mapping results.

Field names mirror the JSON shapes exchanged with the management API and the
invocation boundary (camelCase), so stored rows and request payloads can be
validated directly with ``model_validate``.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MappingDirection(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class FailureMode(str, Enum):
    FAIL = "fail"
    PASSTHROUGH = "passthrough"


class ArrayMode(str, Enum):
    ALL = "all"
    FIRST = "first"
    LAST = "last"


class MappingErrorCode(str, Enum):
    PATH_NOT_FOUND = "PATH_NOT_FOUND"
    INVALID_PATH = "INVALID_PATH"
    COERCION_FAILED = "COERCION_FAILED"
    ARRAY_LIMIT_EXCEEDED = "ARRAY_LIMIT_EXCEEDED"
    NESTING_LIMIT_EXCEEDED = "NESTING_LIMIT_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class CoercionConfig(BaseModel):
    type: Literal["string", "number", "boolean"]


class TransformConfig(BaseModel):
    """Per-mapping transform options."""

    model_config = ConfigDict(extra="ignore")

    omitIfNull: bool = False
    omitIfEmpty: bool = False
    coercion: Optional[CoercionConfig] = None
    defaultValue: Any = None
    arrayMode: ArrayMode = ArrayMode.ALL

    def has_default(self) -> bool:
        # ``defaultValue: null`` is indistinguishable from "no default".
        return self.defaultValue is not None


class FieldMapping(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: Optional[str] = None
    actionId: Optional[str] = None
    connectionId: Optional[str] = None
    sourcePath: str = Field(min_length=1)
    targetPath: str = Field(min_length=1)
    direction: MappingDirection
    transformConfig: TransformConfig = Field(default_factory=TransformConfig)

    def key(self) -> str:
        """Override key: a connection mapping shadows the default with the same key."""
        return f"{self.sourcePath}:{self.direction.value}"


class MappingConfig(BaseModel):
    enabled: bool = False
    preserveUnmapped: bool = True
    failureMode: FailureMode = FailureMode.PASSTHROUGH


class MappingRequest(BaseModel):
    """Per-invocation overrides accepted from the caller."""

    bypass: bool = False


class MappingError(BaseModel):
    path: str
    code: MappingErrorCode
    message: str
    originalValue: Any = None


class MappingMeta(BaseModel):
    mappingDurationMs: float = 0
    inputMappingsApplied: int = 0
    outputMappingsApplied: int = 0
    fieldsTransformed: int = 0
    fieldsCoerced: int = 0
    fieldsDefaulted: int = 0


class MappingResult(BaseModel):
    applied: bool
    bypassed: bool = False
    data: Any = None
    errors: List[MappingError] = Field(default_factory=list)
    failureMode: FailureMode = FailureMode.PASSTHROUGH
    meta: MappingMeta = Field(default_factory=MappingMeta)


class MappingSource(str, Enum):
    DEFAULT = "default"
    CONNECTION = "connection"


class ResolvedMapping(BaseModel):
    mapping: FieldMapping
    source: MappingSource
    connectionId: Optional[str] = None
    overridden: bool = False
    defaultMapping: Optional[FieldMapping] = None


class MappingPreviewResult(BaseModel):
    original: Any = None
    transformed: Any = None
    result: MappingResult


class ConnectionMappingStats(BaseModel):
    overrideCount: int
    defaultCount: int
    totalCount: int
    hasOverrides: bool


class ConnectionMappingState(BaseModel):
    actionId: str
    connectionId: str
    mappings: List[ResolvedMapping]
    config: MappingConfig
    defaultsCount: int
    overridesCount: int


class MappingResponseMetadata(BaseModel):
    """Mapping section of the invocation response."""

    applied: bool
    bypassed: bool
    inputMappingsApplied: int = 0
    outputMappingsApplied: int = 0
    fieldsTransformed: int = 0
    fieldsCoerced: int = 0
    fieldsDefaulted: int = 0
    mappingDurationMs: float = 0
    errors: Optional[List[MappingError]] = None
    failureMode: FailureMode = FailureMode.PASSTHROUGH

