"""Pydantic models for outbound execution and the invocation boundary.

Field names follow the external JSON shape (camelCase), so stored action
definitions and caller payloads validate directly.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .mapping import MappingRequest, MappingResponseMetadata
from .pagination import PaginationConfig, PaginationRequest, PaginationResponseMetadata
from .validation import ValidationConfig, ValidationRequest, ValidationResponseMetadata

DEFAULT_RETRYABLE_STATUSES = (408, 429, 500, 502, 503, 504)
DEFAULT_TIMEOUT_MS = 30000


class ExecutionErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    # Pipeline-level failures surfaced in InvocationResponse.error
    MAPPING_ERROR = "MAPPING_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# ---------------- Configuration -----------------


class RetryConfig(BaseModel):
    maxAttempts: int = Field(3, ge=1, le=10)
    baseDelayMs: int = Field(1000, ge=0, le=60000)
    maxDelayMs: int = Field(30000, ge=0, le=300000)
    backoffMultiplier: float = Field(2, ge=1, le=5)
    jitterFactor: float = Field(0.1, ge=0, le=1)
    retryableStatuses: List[int] = Field(default_factory=lambda: list(DEFAULT_RETRYABLE_STATUSES))

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "RetryConfig":
        if not overrides:
            return self
        return RetryConfig.model_validate({**self.model_dump(), **overrides})


class CircuitBreakerConfig(BaseModel):
    failureThreshold: int = Field(5, ge=1, le=100)
    failureWindowMs: int = Field(30000, ge=1000, le=300000)
    resetTimeoutMs: int = Field(60000, ge=1000, le=600000)
    successThreshold: int = Field(1, ge=1, le=10)


# ---------------- HTTP -----------------


class HttpRequest(BaseModel):
    url: str = Field(min_length=1)
    method: HttpMethod = HttpMethod.GET
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    timeoutMs: Optional[int] = Field(None, ge=0, le=300000)


class RateLimitInfo(BaseModel):
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[int] = None
    retryAfterMs: Optional[int] = None


class ExecuteOptions(BaseModel):
    retryConfig: Optional[Dict[str, Any]] = None
    circuitBreakerId: Optional[str] = None
    idempotencyKey: Optional[str] = None
    timeoutMs: Optional[int] = Field(None, ge=0, le=300000)
    passthrough: bool = False


class ExecutionErrorDetails(BaseModel):
    code: ExecutionErrorCode
    message: str
    retryable: bool = False
    statusCode: Optional[int] = None
    retryAfterMs: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    cause: Optional[str] = None


class ExecutionResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[ExecutionErrorDetails] = None
    attempts: int = 0
    totalDurationMs: int = 0
    lastRequestDurationMs: Optional[int] = None
    headers: Optional[Dict[str, str]] = None
    rateLimit: Optional[RateLimitInfo] = None


class CircuitStatus(BaseModel):
    circuitId: str
    state: CircuitState
    failureCount: int = 0
    timeUntilResetMs: Optional[int] = None
    successesUntilClosed: Optional[int] = None


# ---------------- Invocation boundary -----------------


class ActionDefinition(BaseModel):
    """The stored description of one callable action."""

    model_config = ConfigDict(extra="ignore")

    id: str
    slug: str
    name: str
    integrationId: Optional[str] = None
    integrationSlug: str = ""
    integrationName: str = ""
    method: HttpMethod = HttpMethod.GET
    endpointTemplate: str = Field(min_length=1)
    outputSchema: Optional[Dict[str, Any]] = None
    paginationConfig: Optional[PaginationConfig] = None
    validationConfig: Optional[ValidationConfig] = None
    retryConfig: Optional[Dict[str, Any]] = None
    timeoutMs: Optional[int] = Field(None, ge=0, le=300000)
    idempotent: Optional[bool] = None
    preambleTemplate: Optional[str] = None


class ConnectionContext(BaseModel):
    """Resolved connection: base URL and credentials already materialised as headers."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = ""
    tenantId: str = "default"
    baseUrl: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    circuitId: Optional[str] = None

    @model_validator(mode="after")
    def _default_circuit(self) -> "ConnectionContext":
        if self.circuitId is None and self.id:
            self.circuitId = self.id
        return self


class InvocationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    input: Dict[str, Any] = Field(default_factory=dict)
    pagination: Optional[PaginationRequest] = None
    validation: Optional[ValidationRequest] = None
    mapping: Optional[MappingRequest] = None
    idempotencyKey: Optional[str] = None
    passthrough: bool = False


class ResponseMeta(BaseModel):
    requestId: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    latencyMs: int = 0
    attempts: int = 0


class InvocationResponse(BaseModel):
    success: bool
    data: Any = None
    context: Optional[str] = None
    error: Optional[ExecutionErrorDetails] = None
    pagination: Optional[PaginationResponseMetadata] = None
    validation: Optional[ValidationResponseMetadata] = None
    mapping: Optional[MappingResponseMetadata] = None
    meta: ResponseMeta
