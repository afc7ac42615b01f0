"""Resilient request execution: circuit gate, retry and HTTP call.

``ExecutionService.execute`` never raises for request failures. It returns an
``ExecutionResult`` with ``success=False`` and the classified error details,
so the pipeline decides how a failure surfaces.
"""
from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

import httpx

from ..models.execution import (
    CircuitBreakerConfig,
    ExecuteOptions,
    ExecutionResult,
    HttpRequest,
    RetryConfig,
)
from .circuit_breaker import CircuitBreaker
from .errors import CircuitOpenError, ExecutionError, MaxRetriesExceededError, wrap_error
from .http_client import HttpResponse, http_request
from .retry import RetryContext, with_retry

__all__ = ["ExecutionService"]

logger = logging.getLogger(__name__)


class ExecutionService:
    """Executes ``HttpRequest``s behind a shared circuit breaker.

    Args:
        retry_config: Default retry policy; per-call ``retryConfig`` overrides merge on top.
        circuit_breaker: Shared breaker; created from ``circuit_config`` when None.
        circuit_config: Breaker thresholds used when creating one.
        client: Optional ``httpx.Client`` (tests pass one over ``httpx.MockTransport``).
        sleep: Seconds-based sleep used between retries.
        rng: Jitter source.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        *,
        circuit_breaker: Optional[CircuitBreaker] = None,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(circuit_config)
        self._client = client
        self._sleep = sleep
        self._rng = rng

    def execute(self, request: HttpRequest, options: Optional[ExecuteOptions] = None) -> ExecutionResult:
        options = options or ExecuteOptions()
        started = time.monotonic()
        circuit_id = options.circuitBreakerId

        if circuit_id and not self.circuit_breaker.can_execute(circuit_id):
            status = self.circuit_breaker.get_status(circuit_id)
            error = CircuitOpenError(circuit_id, status.timeUntilResetMs)
            logger.warning("Circuit %s open, request to %s blocked", circuit_id, request.url)
            return ExecutionResult(
                success=False,
                error=error.to_details(),
                attempts=0,
                totalDurationMs=_elapsed_ms(started),
            )

        if options.passthrough:
            return self._execute_once(request, options, started)
        return self._execute_with_retry(request, options, started)

    def _call(self, request: HttpRequest, options: ExecuteOptions) -> HttpResponse:
        return http_request(
            request,
            timeout_ms=options.timeoutMs,
            idempotency_key=options.idempotencyKey,
            client=self._client,
        )

    def _execute_once(self, request: HttpRequest, options: ExecuteOptions, started: float) -> ExecutionResult:
        circuit_id = options.circuitBreakerId
        try:
            response = self._call(request, options)
        except Exception as e:
            error = wrap_error(e, timeout_ms=options.timeoutMs or 0)
            if circuit_id:
                self.circuit_breaker.record_failure(circuit_id)
            return ExecutionResult(
                success=False,
                error=error.to_details(),
                attempts=1,
                totalDurationMs=_elapsed_ms(started),
            )
        if circuit_id:
            self.circuit_breaker.record_success(circuit_id)
        return _success(response, 1, started)

    def _execute_with_retry(self, request: HttpRequest, options: ExecuteOptions, started: float) -> ExecutionResult:
        circuit_id = options.circuitBreakerId
        config = self.retry_config.merged(options.retryConfig)
        made = 0

        def attempt(context: RetryContext) -> HttpResponse:
            nonlocal made
            made = context.attempt
            response = self._call(request, options)
            if circuit_id:
                self.circuit_breaker.record_success(circuit_id)
            return response

        def on_retry(error: ExecutionError, attempt_number: int, delay_ms: int) -> None:
            if circuit_id:
                self.circuit_breaker.record_failure(circuit_id)

        try:
            result = with_retry(
                attempt,
                config,
                idempotency_key=options.idempotencyKey,
                on_retry=on_retry,
                sleep=self._sleep,
                rng=self._rng,
            )
        except ExecutionError as e:
            if circuit_id:
                self.circuit_breaker.record_failure(circuit_id)
            attempts = e.attempts if isinstance(e, MaxRetriesExceededError) else max(made, 1)
            if isinstance(e, MaxRetriesExceededError):
                logger.warning("Request to %s failed after %d attempts", request.url, attempts)
            return ExecutionResult(
                success=False,
                error=e.to_details(),
                attempts=attempts,
                totalDurationMs=_elapsed_ms(started),
            )
        return _success(result.data, result.attempts, started)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _success(response: HttpResponse, attempts: int, started: float) -> ExecutionResult:
    return ExecutionResult(
        success=True,
        data=response.data,
        attempts=attempts,
        totalDurationMs=_elapsed_ms(started),
        lastRequestDurationMs=response.duration_ms,
        headers=response.headers,
        rateLimit=response.rate_limit,
    )
