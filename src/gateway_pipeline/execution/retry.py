"""Retry with exponential backoff, built on tenacity.

Backoff for the n-th failed attempt is ``baseDelayMs * backoffMultiplier **
(n - 1)``, capped at ``maxDelayMs`` and spread by +/- ``jitterFactor``. A
rate-limit error carrying ``retry_after_ms`` waits that long instead (still
capped at ``maxDelayMs``).

Exceptions that are not ``ExecutionError`` are classified with
``wrap_error`` first. Errors the predicate rejects propagate unchanged; when
every attempt fails, ``MaxRetriesExceededError`` wraps the last error.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Generic, List, Mapping, Optional, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from ..models.execution import RetryConfig
from .errors import ExecutionError, MaxRetriesExceededError, RateLimitError, wrap_error

__all__ = [
    "RetryContext",
    "RetryResult",
    "with_retry",
    "calculate_backoff_delay",
    "calculate_backoff_delay_deterministic",
    "get_retry_delay",
    "default_is_retryable",
    "parse_retry_after_header",
    "extract_retry_after_ms",
    "retry_on_codes",
    "retry_on_statuses",
    "no_retry",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[ExecutionError], bool]
OnRetry = Callable[[ExecutionError, int, int], None]


@dataclass
class RetryContext:
    """Passed to the retried function on every attempt."""

    attempt: int
    max_attempts: int
    idempotency_key: Optional[str] = None


@dataclass
class RetryResult(Generic[T]):
    data: T
    attempts: int
    total_time_ms: int


# ---------------- Backoff -----------------


def calculate_backoff_delay_deterministic(attempt: int, config: RetryConfig) -> int:
    """Delay in ms before the retry following failed attempt ``attempt`` (1-indexed), without jitter."""
    delay = config.baseDelayMs * config.backoffMultiplier ** max(attempt - 1, 0)
    return int(min(delay, config.maxDelayMs))


def calculate_backoff_delay(
    attempt: int, config: RetryConfig, rng: Callable[[], float] = random.random
) -> int:
    capped = calculate_backoff_delay_deterministic(attempt, config)
    jitter = 1 + (rng() * 2 - 1) * config.jitterFactor
    return max(0, round(capped * jitter))


def get_retry_delay(
    error: ExecutionError, attempt: int, config: RetryConfig, rng: Callable[[], float] = random.random
) -> int:
    if isinstance(error, RateLimitError) and error.retry_after_ms is not None:
        return min(error.retry_after_ms, config.maxDelayMs)
    return calculate_backoff_delay(attempt, config, rng)


class _BackoffWait(wait_base):
    def __init__(self, config: RetryConfig, rng: Callable[[], float]):
        self.config = config
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if not isinstance(error, ExecutionError):
            return calculate_backoff_delay(retry_state.attempt_number, self.config, self.rng) / 1000
        return get_retry_delay(error, retry_state.attempt_number, self.config, self.rng) / 1000


# ---------------- Retry-After -----------------


def parse_retry_after_header(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[int]:
    """``Retry-After`` (delta-seconds or HTTP-date) to milliseconds.

    Returns:
        Milliseconds to wait (0 for a date in the past), or None when absent
        or unparseable.
    """
    if not value:
        return None
    text = value.strip()
    if text.isdigit():
        return int(text) * 1000
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:  # pragma: no cover
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0, int((when - current).total_seconds() * 1000))


def extract_retry_after_ms(headers: Mapping[str, str]) -> Optional[int]:
    for key, value in headers.items():
        if key.lower() == "retry-after":
            return parse_retry_after_header(value)
    return None


# ---------------- Predicates -----------------


def default_is_retryable(error: ExecutionError, config: RetryConfig) -> bool:
    if not error.retryable:
        return False
    if error.status_code is not None:
        return error.status_code in config.retryableStatuses
    return True


def retry_on_codes(codes: List[str]) -> RetryPredicate:
    return lambda error: error.retryable and error.code.value in codes


def retry_on_statuses(statuses: List[int]) -> RetryPredicate:
    return lambda error: error.retryable and error.status_code is not None and error.status_code in statuses


def no_retry() -> RetryPredicate:
    return lambda error: False


# ---------------- Runner -----------------


def with_retry(
    fn: Callable[[RetryContext], T],
    config: Optional[RetryConfig] = None,
    *,
    idempotency_key: Optional[str] = None,
    on_retry: Optional[OnRetry] = None,
    is_retryable: Optional[RetryPredicate] = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[], float] = random.random,
) -> RetryResult[T]:
    """Call ``fn`` until it succeeds, a non-retryable error occurs, or attempts run out.

    Args:
        fn: Receives a ``RetryContext``; the idempotency key stays constant
            across attempts.
        config: Attempts, backoff and retryable statuses.
        idempotency_key: Forwarded to ``fn`` through the context.
        on_retry: Called as ``(error, attempt, delay_ms)`` before each sleep.
        is_retryable: Overrides ``default_is_retryable``.
        sleep: Seconds-based sleep (tests pass a recorder).
        rng: Jitter source in ``[0, 1)``.

    Returns:
        ``RetryResult`` with the data and the number of attempts used.

    Raises:
        ExecutionError: The first error the predicate does not retry.
        MaxRetriesExceededError: Every attempt failed.
    """
    cfg = config or RetryConfig()
    started = time.monotonic()
    predicate: RetryPredicate = is_retryable or (lambda error: default_is_retryable(error, cfg))

    def should_retry(exc: BaseException) -> bool:
        return isinstance(exc, ExecutionError) and predicate(exc)

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        delay_ms = int((retry_state.next_action.sleep if retry_state.next_action else 0) * 1000)
        logger.warning(
            "Attempt %d/%d failed (%s), retrying in %dms",
            retry_state.attempt_number,
            cfg.maxAttempts,
            getattr(error, "code", "unknown"),
            delay_ms,
        )
        if on_retry is not None and isinstance(error, ExecutionError):
            on_retry(error, retry_state.attempt_number, delay_ms)

    retrying = Retrying(
        stop=stop_after_attempt(cfg.maxAttempts),
        wait=_BackoffWait(cfg, rng),
        retry=retry_if_exception(should_retry),
        before_sleep=before_sleep,
        sleep=sleep,
    )

    data: Optional[T] = None
    attempts = 0
    try:
        for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                context = RetryContext(attempts, cfg.maxAttempts, idempotency_key)
                try:
                    data = fn(context)
                except ExecutionError:
                    raise
                except Exception as e:
                    raise wrap_error(e) from e
    except RetryError as e:
        last = e.last_attempt.exception()
        raise MaxRetriesExceededError(
            cfg.maxAttempts, last if isinstance(last, ExecutionError) else None
        ) from last

    return RetryResult(
        data=data,  # type: ignore[arg-type]
        attempts=attempts,
        total_time_ms=int((time.monotonic() - started) * 1000),
    )
