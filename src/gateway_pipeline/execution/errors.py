"""Execution error taxonomy.

Every failure of an outbound call is classified into one ``ExecutionError``
subclass carrying a stable ``code`` and a ``retryable`` flag. Network,
timeout, rate-limit and server errors are retryable; client errors, open
circuits and exhausted retries are not.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..models.execution import ExecutionErrorCode, ExecutionErrorDetails

__all__ = [
    "ExecutionError",
    "NetworkError",
    "RequestTimeoutError",
    "RateLimitError",
    "ServerError",
    "ClientError",
    "CircuitOpenError",
    "MaxRetriesExceededError",
    "UnknownExecutionError",
    "create_error_from_status",
    "wrap_error",
    "is_retryable_error",
]


class ExecutionError(Exception):
    """Base class for classified execution failures."""

    def __init__(
        self,
        code: ExecutionErrorCode,
        message: str,
        *,
        retryable: bool = False,
        status_code: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        self.details = details
        self.cause = cause

    def to_details(self) -> ExecutionErrorDetails:
        return ExecutionErrorDetails(
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            statusCode=self.status_code,
            retryAfterMs=self.retry_after_ms,
            details=self.details,
            cause=str(self.cause) if self.cause is not None else None,
        )

    def __repr__(self) -> str:  # pragma: no cover
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class NetworkError(ExecutionError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            ExecutionErrorCode.NETWORK_ERROR,
            message,
            retryable=True,
            cause=cause,
            details={"type": "network"},
        )


class RequestTimeoutError(ExecutionError):
    def __init__(self, timeout_ms: int, cause: Optional[BaseException] = None):
        super().__init__(
            ExecutionErrorCode.TIMEOUT,
            f"Request timed out after {timeout_ms}ms",
            retryable=True,
            cause=cause,
            details={"timeoutMs": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class RateLimitError(ExecutionError):
    def __init__(self, retry_after_ms: Optional[int] = None, cause: Optional[BaseException] = None):
        message = f"Rate limited. Retry after {retry_after_ms}ms" if retry_after_ms else "Rate limited"
        super().__init__(
            ExecutionErrorCode.RATE_LIMITED,
            message,
            retryable=True,
            status_code=429,
            retry_after_ms=retry_after_ms,
            cause=cause,
            details={"retryAfterMs": retry_after_ms},
        )


class ServerError(ExecutionError):
    def __init__(self, status_code: int, message: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(
            ExecutionErrorCode.SERVER_ERROR,
            message or f"Server error: {status_code}",
            retryable=True,
            status_code=status_code,
            cause=cause,
            details={"statusCode": status_code},
        )


class ClientError(ExecutionError):
    def __init__(
        self,
        status_code: int,
        message: Optional[str] = None,
        response_body: Any = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            ExecutionErrorCode.CLIENT_ERROR,
            message or f"Client error: {status_code}",
            retryable=False,
            status_code=status_code,
            cause=cause,
            details={"statusCode": status_code, "responseBody": response_body},
        )
        self.response_body = response_body


class CircuitOpenError(ExecutionError):
    """Raised (or reported) when a circuit blocks the call."""

    def __init__(self, circuit_id: str, reset_time_ms: Optional[int] = None):
        message = (
            f"Circuit '{circuit_id}' is open. Reset in {reset_time_ms}ms"
            if reset_time_ms
            else f"Circuit '{circuit_id}' is open"
        )
        # The reset time doubles as the caller's retry-after hint.
        super().__init__(
            ExecutionErrorCode.CIRCUIT_OPEN,
            message,
            retryable=False,
            retry_after_ms=reset_time_ms,
            details={"circuitId": circuit_id, "resetTimeMs": reset_time_ms},
        )
        self.circuit_id = circuit_id
        self.reset_time_ms = reset_time_ms


class MaxRetriesExceededError(ExecutionError):
    def __init__(self, attempts: int, last_error: Optional[ExecutionError] = None):
        super().__init__(
            ExecutionErrorCode.MAX_RETRIES_EXCEEDED,
            f"Max retries exceeded after {attempts} attempts",
            retryable=False,
            status_code=last_error.status_code if last_error else None,
            retry_after_ms=last_error.retry_after_ms if last_error else None,
            cause=last_error,
            details={
                "attempts": attempts,
                "lastErrorCode": last_error.code.value if last_error else None,
                "lastErrorMessage": last_error.message if last_error else None,
            },
        )
        self.attempts = attempts
        self.last_error = last_error


class UnknownExecutionError(ExecutionError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(ExecutionErrorCode.UNKNOWN_ERROR, message, retryable=False, cause=cause)


# ---------------- Factories -----------------


def create_error_from_status(
    status: int,
    message: Optional[str] = None,
    response_body: Any = None,
    *,
    retry_after_ms: Optional[int] = None,
    cause: Optional[BaseException] = None,
) -> ExecutionError:
    """Classify a non-2xx HTTP status."""
    if status == 429:
        return RateLimitError(retry_after_ms, cause)
    if status >= 500:
        return ServerError(status, message, cause)
    if status >= 400:
        return ClientError(status, message, response_body, cause)
    return UnknownExecutionError(message or f"Unexpected status: {status}", cause)


def wrap_error(exc: BaseException, *, timeout_ms: int = 0) -> ExecutionError:
    """Classify an arbitrary exception; ``ExecutionError``s are returned as-is."""
    if isinstance(exc, ExecutionError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(timeout_ms, exc)
    if isinstance(exc, httpx.RequestError):
        return NetworkError(f"Network error: {exc}", exc)
    return UnknownExecutionError(str(exc) or type(exc).__name__, exc)


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, ExecutionError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)
