"""Application configuration management using Pydantic Settings.

This module defines the `Settings` class, which loads the pipeline's tunable
parameters from environment variables and a `.env` file: HTTP timeout, retry
and circuit-breaker policy, cache lifetimes and pagination/validation limits.

The `get_settings` function provides a cached, singleton instance of the
configuration, ensuring consistent settings throughout the application.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict as _SettingsConfigDict

from .models.execution import DEFAULT_RETRYABLE_STATUSES, CircuitBreakerConfig, RetryConfig


class Settings(BaseSettings):
    """Defines all pipeline configuration parameters.

    Values are read from the environment (or `.env`). Retry and circuit
    settings are projected onto the `RetryConfig` / `CircuitBreakerConfig`
    models through `retry_config()` and `circuit_breaker_config()`.
    """

    model_config = _SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # ---------------- Outbound HTTP -----------------
    HTTP_TIMEOUT_MS: int = Field(
        default=30000, ge=0, le=300000, description="Per-request timeout for outbound calls (ms)"
    )

    # ---------------- Retry -----------------
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10, description="Attempts per request, including the first")
    RETRY_BASE_DELAY_MS: int = Field(default=1000, ge=0, le=60000, description="Backoff before the first retry (ms)")
    RETRY_MAX_DELAY_MS: int = Field(default=30000, ge=0, le=300000, description="Upper bound for any retry delay (ms)")
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2, ge=1, le=5, description="Exponential backoff multiplier")
    RETRY_JITTER_FACTOR: float = Field(default=0.1, ge=0, le=1, description="Relative +/- jitter applied to delays")
    # Use Any type to prevent Pydantic Settings JSON decoding; validator converts to list[int]
    RETRY_RETRYABLE_STATUSES: Any = Field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_STATUSES),
        description="Comma-separated HTTP statuses that trigger a retry. Example: 408,429,500,502,503,504",
    )

    # ---------------- Circuit breaker -----------------
    CIRCUIT_FAILURE_THRESHOLD: int = Field(
        default=5, ge=1, le=100, description="Failures within the window that open a circuit"
    )
    CIRCUIT_FAILURE_WINDOW_MS: int = Field(
        default=30000, ge=1000, le=300000, description="Sliding window for counting failures (ms)"
    )
    CIRCUIT_RESET_TIMEOUT_MS: int = Field(
        default=60000, ge=1000, le=600000, description="Time an open circuit waits before half-open (ms)"
    )
    CIRCUIT_SUCCESS_THRESHOLD: int = Field(
        default=1, ge=1, le=10, description="Consecutive half-open successes needed to close"
    )

    # ---------------- Caches and limits -----------------
    MAPPING_CACHE_TTL_SECONDS: float = Field(
        default=300, ge=0, description="Lifetime of cached mappings, configs and compiled paths"
    )
    VALIDATION_TIMEOUT_MS: int = Field(
        default=5000, ge=1, description="Duration budget for one validation pass (ms)"
    )
    PAGINATION_MAX_PAGES: int = Field(
        default=5, ge=1, le=100, description="Default page cap when an action does not set one"
    )
    PAGINATION_MAX_ITEMS: int = Field(
        default=500, ge=1, le=10000, description="Default item cap when an action does not set one"
    )

    @field_validator("RETRY_RETRYABLE_STATUSES", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Any) -> list[int]:
        """Parse a comma-separated string (env) or a list (code/tests) of statuses.

        Raises:
            ValueError: On a non-integer entry.
        """
        if isinstance(v, (list, tuple)):
            items = [str(s).strip() for s in v]
        elif isinstance(v, str):
            items = [s.strip() for s in v.split(",")]
        else:
            return list(DEFAULT_RETRYABLE_STATUSES)
        statuses = [int(s) for s in items if s]
        for status in statuses:
            if not 100 <= status <= 599:
                raise ValueError(f"Invalid HTTP status in RETRY_RETRYABLE_STATUSES: {status}")
        return statuses

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "Settings":
        if self.RETRY_BASE_DELAY_MS > self.RETRY_MAX_DELAY_MS:
            raise ValueError("RETRY_BASE_DELAY_MS must not exceed RETRY_MAX_DELAY_MS")
        return self

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            maxAttempts=self.RETRY_MAX_ATTEMPTS,
            baseDelayMs=self.RETRY_BASE_DELAY_MS,
            maxDelayMs=self.RETRY_MAX_DELAY_MS,
            backoffMultiplier=self.RETRY_BACKOFF_MULTIPLIER,
            jitterFactor=self.RETRY_JITTER_FACTOR,
            retryableStatuses=list(self.RETRY_RETRYABLE_STATUSES),
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failureThreshold=self.CIRCUIT_FAILURE_THRESHOLD,
            failureWindowMs=self.CIRCUIT_FAILURE_WINDOW_MS,
            resetTimeoutMs=self.CIRCUIT_RESET_TIMEOUT_MS,
            successThreshold=self.CIRCUIT_SUCCESS_THRESHOLD,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:  # pragma: no cover - trivial
    """Return a cached, singleton instance of the application settings.

    Provides a clearer error when an environment value is invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise RuntimeError(
            f"Invalid gateway pipeline settings ({', '.join(fields) or 'unknown field'}): {e}"
        ) from e
