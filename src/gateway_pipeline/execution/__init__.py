"""Outbound execution subpackage.

Modules:
    errors: ``ExecutionError`` taxonomy and classification helpers
    circuit_breaker: Per-circuit closed/open/half-open state machine
    retry: tenacity-based retry with backoff, jitter and Retry-After
    http_client: One httpx call with body parsing and error classification
    service: Circuit gate + retry + call, returning ``ExecutionResult``
    preamble: LLM-facing response preamble templates

Design Invariants:
    - Network, timeout, rate-limit and server errors are retryable; client
      errors and open circuits are not
    - Every failed attempt is recorded on the circuit
    - ``ExecutionService.execute`` reports failures in its result, never by raising
"""
from __future__ import annotations

from .circuit_breaker import CircuitBreaker
from .errors import (
    CircuitOpenError,
    ClientError,
    ExecutionError,
    MaxRetriesExceededError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnknownExecutionError,
    create_error_from_status,
    is_retryable_error,
    wrap_error,
)
from .http_client import HttpResponse, http_request
from .preamble import PreambleContext, apply_preamble
from .retry import RetryContext, RetryResult, with_retry
from .service import ExecutionService

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "ClientError",
    "ExecutionError",
    "MaxRetriesExceededError",
    "NetworkError",
    "RateLimitError",
    "RequestTimeoutError",
    "ServerError",
    "UnknownExecutionError",
    "create_error_from_status",
    "is_retryable_error",
    "wrap_error",
    "HttpResponse",
    "http_request",
    "PreambleContext",
    "apply_preamble",
    "RetryContext",
    "RetryResult",
    "with_retry",
    "ExecutionService",
]
