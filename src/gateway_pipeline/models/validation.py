"""Pydantic models for response validation and drift reporting."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_VALIDATION_DURATION_MS = 5000


class ValidationMode(str, Enum):
    STRICT = "strict"
    WARN = "warn"
    LENIENT = "lenient"


class NullHandling(str, Enum):
    REJECT = "reject"
    DEFAULT = "default"
    PASS = "pass"


class ExtraFieldsHandling(str, Enum):
    STRIP = "strip"
    ERROR = "error"
    PRESERVE = "preserve"


class ValidationIssueCode(str, Enum):
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    INVALID_FORMAT = "INVALID_FORMAT"
    UNEXPECTED_NULL = "UNEXPECTED_NULL"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"
    VALUE_OUT_OF_RANGE = "VALUE_OUT_OF_RANGE"
    INVALID_ENUM_VALUE = "INVALID_ENUM_VALUE"
    ARRAY_TOO_SHORT = "ARRAY_TOO_SHORT"
    ARRAY_TOO_LONG = "ARRAY_TOO_LONG"
    STRING_TOO_SHORT = "STRING_TOO_SHORT"
    STRING_TOO_LONG = "STRING_TOO_LONG"
    COERCION_FAILED = "COERCION_FAILED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    SCHEMA_ERROR = "SCHEMA_ERROR"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class DriftStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    ALERT = "alert"


class ResolutionAction(str, Enum):
    IGNORE = "IGNORE"
    USE_DEFAULT = "USE_DEFAULT"
    CONTACT_PROVIDER = "CONTACT_PROVIDER"
    UPDATE_SCHEMA = "UPDATE_SCHEMA"


class ValidationCoercionConfig(BaseModel):
    stringToNumber: bool = True
    numberToString: bool = True
    stringToBoolean: bool = True
    emptyStringToNull: bool = False
    nullToDefault: bool = True


class DriftDetectionConfig(BaseModel):
    enabled: bool = True
    windowMinutes: int = Field(60, ge=5, le=1440)
    failureThreshold: int = Field(5, ge=1, le=100)
    alertOnDrift: bool = True


class ValidationConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    mode: ValidationMode = ValidationMode.WARN
    nullHandling: NullHandling = NullHandling.PASS
    extraFields: ExtraFieldsHandling = ExtraFieldsHandling.PRESERVE
    coercion: ValidationCoercionConfig = Field(default_factory=ValidationCoercionConfig)
    driftDetection: DriftDetectionConfig = Field(default_factory=DriftDetectionConfig)
    bypassValidation: bool = False


class ValidationRequest(BaseModel):
    """Per-invocation overrides accepted from the caller."""

    model_config = ConfigDict(extra="ignore")

    modeOverride: Optional[ValidationMode] = None
    bypass: bool = False


class SuggestedResolution(BaseModel):
    action: ResolutionAction
    description: str


class ValidationIssue(BaseModel):
    code: ValidationIssueCode
    path: str
    message: str
    expected: Optional[str] = None
    received: Optional[str] = None
    severity: IssueSeverity
    suggestedResolution: Optional[SuggestedResolution] = None


class ValidationMeta(BaseModel):
    validationDurationMs: int = 0
    fieldsValidated: int = 0
    fieldsCoerced: int = 0
    fieldsStripped: int = 0
    fieldsDefaulted: int = 0


class ValidationResult(BaseModel):
    valid: bool
    mode: ValidationMode
    data: Any = None
    issues: List[ValidationIssue] = Field(default_factory=list)
    meta: ValidationMeta = Field(default_factory=ValidationMeta)


class ValidationResponseMetadata(BaseModel):
    """Validation section of the invocation response."""

    valid: bool
    mode: ValidationMode
    bypassed: bool = False
    issueCount: int = 0
    issues: Optional[List[ValidationIssue]] = None
    fieldsCoerced: int = 0
    fieldsStripped: int = 0
    fieldsDefaulted: int = 0
    validationDurationMs: int = 0
    driftStatus: Optional[DriftStatus] = None
    driftMessage: Optional[str] = None


class FailureStats(BaseModel):
    totalFailures: int = 0
    uniqueIssues: int = 0
    failuresByCode: Dict[str, int] = Field(default_factory=dict)
    failuresByPath: Dict[str, int] = Field(default_factory=dict)


class DriftCheckResult(BaseModel):
    status: DriftStatus = DriftStatus.NORMAL
    message: Optional[str] = None
    stats: FailureStats = Field(default_factory=FailureStats)
    shouldAlert: bool = False


class TopIssue(BaseModel):
    code: str
    path: str
    count: int


class DriftSummary(BaseModel):
    status: DriftStatus
    failureCount: int
    uniqueIssues: int
    topIssues: List[TopIssue] = Field(default_factory=list)
