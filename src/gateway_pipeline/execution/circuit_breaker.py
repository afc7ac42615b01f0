"""Per-circuit failure isolation.

States and transitions:

* ``closed -> open``: ``failureThreshold`` failures inside the sliding
  ``failureWindowMs``.
* ``open -> half-open``: ``resetTimeoutMs`` after opening, evaluated lazily
  by the next ``can_execute``.
* ``half-open -> closed``: ``successThreshold`` consecutive successes.
* ``half-open -> open``: any failure.

Failure timestamps older than the window are pruned on every read, so there
is no background sweep. The state map is shared by concurrent invocations and
guarded by one lock.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TypeVar

from ..models.execution import CircuitBreakerConfig, CircuitState, CircuitStatus
from .errors import CircuitOpenError

__all__ = ["CircuitBreaker"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: List[float] = field(default_factory=list)
    opened_at: Optional[float] = None
    half_open_successes: int = 0


class CircuitBreaker:
    """Track failures per circuit id and fail fast while a circuit is open.

    Args:
        config: Thresholds and timeouts; defaults when None.
        clock: Seconds-based monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._circuits: Dict[str, _Circuit] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _get_or_create(self, circuit_id: str) -> _Circuit:
        circuit = self._circuits.get(circuit_id)
        if circuit is None:
            circuit = _Circuit()
            self._circuits[circuit_id] = circuit
        return circuit

    def _prune(self, circuit: _Circuit, now: float) -> None:
        cutoff = now - self.config.failureWindowMs
        circuit.failures = [ts for ts in circuit.failures if ts > cutoff]

    def _reset_due(self, circuit: _Circuit, now: float) -> bool:
        if circuit.state != CircuitState.OPEN or circuit.opened_at is None:
            return False
        return now - circuit.opened_at >= self.config.resetTimeoutMs

    def _transition(self, circuit_id: str, circuit: _Circuit, state: CircuitState, now: float) -> None:
        previous = circuit.state
        circuit.state = state
        circuit.half_open_successes = 0
        if state == CircuitState.OPEN:
            circuit.opened_at = now
        elif state == CircuitState.CLOSED:
            circuit.failures = []
            circuit.opened_at = None
        if previous != state:
            logger.info("Circuit %s: %s -> %s", circuit_id, previous.value, state.value)

    # ---------------- Gate and recording -----------------

    def can_execute(self, circuit_id: str) -> bool:
        """Gate to check before issuing a request; may move open -> half-open."""
        with self._lock:
            circuit = self._get_or_create(circuit_id)
            now = self._now_ms()
            if circuit.state == CircuitState.OPEN:
                if self._reset_due(circuit, now):
                    self._transition(circuit_id, circuit, CircuitState.HALF_OPEN, now)
                    return True
                return False
            return True

    def record_success(self, circuit_id: str) -> None:
        with self._lock:
            circuit = self._get_or_create(circuit_id)
            now = self._now_ms()
            if circuit.state == CircuitState.HALF_OPEN:
                circuit.half_open_successes += 1
                if circuit.half_open_successes >= self.config.successThreshold:
                    self._transition(circuit_id, circuit, CircuitState.CLOSED, now)
            elif circuit.state == CircuitState.CLOSED:
                self._prune(circuit, now)

    def record_failure(self, circuit_id: str) -> None:
        with self._lock:
            circuit = self._get_or_create(circuit_id)
            now = self._now_ms()
            if circuit.state == CircuitState.CLOSED:
                circuit.failures.append(now)
                self._prune(circuit, now)
                if len(circuit.failures) >= self.config.failureThreshold:
                    self._transition(circuit_id, circuit, CircuitState.OPEN, now)
            elif circuit.state == CircuitState.HALF_OPEN:
                self._transition(circuit_id, circuit, CircuitState.OPEN, now)
            else:
                circuit.failures.append(now)

    def execute(self, circuit_id: str, fn: Callable[[], T]) -> T:
        """Gate, call ``fn`` and record the outcome.

        Raises:
            CircuitOpenError: The circuit is open; carries the time until reset.
        """
        if not self.can_execute(circuit_id):
            raise CircuitOpenError(circuit_id, self.get_status(circuit_id).timeUntilResetMs)
        try:
            result = fn()
        except Exception:
            self.record_failure(circuit_id)
            raise
        self.record_success(circuit_id)
        return result

    # ---------------- Inspection -----------------

    def get_state(self, circuit_id: str) -> CircuitState:
        """Current state; an open circuit past its reset timeout reports half-open."""
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                return CircuitState.CLOSED
            if self._reset_due(circuit, self._now_ms()):
                return CircuitState.HALF_OPEN
            return circuit.state

    def get_status(self, circuit_id: str) -> CircuitStatus:
        state = self.get_state(circuit_id)
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                return CircuitStatus(circuitId=circuit_id, state=CircuitState.CLOSED)
            now = self._now_ms()
            self._prune(circuit, now)
            status = CircuitStatus(circuitId=circuit_id, state=state, failureCount=len(circuit.failures))
            if circuit.state == CircuitState.OPEN and circuit.opened_at is not None:
                elapsed = now - circuit.opened_at
                status.timeUntilResetMs = int(max(0, self.config.resetTimeoutMs - elapsed))
            if circuit.state == CircuitState.HALF_OPEN:
                status.successesUntilClosed = self.config.successThreshold - circuit.half_open_successes
            return status

    def reset(self, circuit_id: str) -> None:
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is not None:
                self._transition(circuit_id, circuit, CircuitState.CLOSED, self._now_ms())

    def clear_all(self) -> None:
        with self._lock:
            self._circuits.clear()

    def get_circuit_ids(self) -> List[str]:
        with self._lock:
            return list(self._circuits)
