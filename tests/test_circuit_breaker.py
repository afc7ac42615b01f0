from __future__ import annotations

import pytest

from gateway_pipeline.execution.circuit_breaker import CircuitBreaker
from gateway_pipeline.execution.errors import CircuitOpenError
from gateway_pipeline.models.execution import CircuitBreakerConfig, CircuitState, ExecutionErrorCode


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _breaker(**overrides) -> tuple:
    clock = _FakeClock()
    config = CircuitBreakerConfig(
        **{"failureThreshold": 2, "failureWindowMs": 10000, "resetTimeoutMs": 5000, "successThreshold": 2, **overrides}
    )
    return CircuitBreaker(config, clock=clock), clock


def test_unknown_circuit_is_closed():
    breaker, _ = _breaker()
    assert breaker.get_state("c1") == CircuitState.CLOSED
    assert breaker.can_execute("c1")
    assert breaker.get_status("c1").failureCount == 0


def test_opens_after_threshold_and_blocks():
    breaker, _ = _breaker()
    breaker.record_failure("c1")
    assert breaker.get_state("c1") == CircuitState.CLOSED
    breaker.record_failure("c1")
    assert breaker.get_state("c1") == CircuitState.OPEN
    assert not breaker.can_execute("c1")
    assert breaker.get_status("c1").timeUntilResetMs == 5000


def test_failures_outside_window_do_not_count():
    breaker, clock = _breaker()
    breaker.record_failure("c1")
    clock.now += 11
    breaker.record_failure("c1")
    assert breaker.get_state("c1") == CircuitState.CLOSED
    assert breaker.get_status("c1").failureCount == 1


def test_half_open_after_reset_timeout_then_closes():
    breaker, clock = _breaker()
    breaker.record_failure("c1")
    breaker.record_failure("c1")
    clock.now += 2
    assert breaker.get_status("c1").timeUntilResetMs == 3000

    clock.now += 3
    assert breaker.get_state("c1") == CircuitState.HALF_OPEN
    assert breaker.can_execute("c1")

    breaker.record_success("c1")
    status = breaker.get_status("c1")
    assert status.state == CircuitState.HALF_OPEN
    assert status.successesUntilClosed == 1

    breaker.record_success("c1")
    assert breaker.get_state("c1") == CircuitState.CLOSED
    assert breaker.get_status("c1").failureCount == 0


def test_failure_in_half_open_reopens():
    breaker, clock = _breaker()
    breaker.record_failure("c1")
    breaker.record_failure("c1")
    clock.now += 5
    assert breaker.can_execute("c1")
    breaker.record_failure("c1")
    assert breaker.get_state("c1") == CircuitState.OPEN
    assert not breaker.can_execute("c1")


def test_circuits_are_independent():
    breaker, _ = _breaker(failureThreshold=1)
    breaker.record_failure("c1")
    assert not breaker.can_execute("c1")
    assert breaker.can_execute("c2")
    assert sorted(breaker.get_circuit_ids()) == ["c1", "c2"]


def test_execute_wraps_calls():
    breaker, _ = _breaker(failureThreshold=1)
    assert breaker.execute("c1", lambda: 42) == 42

    def boom():
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        breaker.execute("c1", boom)
    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.execute("c1", lambda: 42)
    assert excinfo.value.code == ExecutionErrorCode.CIRCUIT_OPEN
    assert excinfo.value.retry_after_ms == 5000
    assert not excinfo.value.retryable


def test_reset_and_clear():
    breaker, _ = _breaker(failureThreshold=1)
    breaker.record_failure("c1")
    breaker.reset("c1")
    assert breaker.can_execute("c1")
    breaker.clear_all()
    assert breaker.get_circuit_ids() == []
