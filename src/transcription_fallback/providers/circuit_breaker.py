"""Circuit breaker — isolates a failing transcription provider.

State machine:
    CLOSED    → (threshold consecutive failures) → OPEN
    OPEN      → (cooldown expires, next caller)  → HALF_OPEN
    HALF_OPEN → (probe succeeds)                 → CLOSED
    HALF_OPEN → (probe fails)                    → OPEN
"""

from __future__ import annotations

import threading
import time
from typing import Callable

import structlog

from transcription_fallback.observability.metrics import CIRCUIT_STATE
from transcription_fallback.providers.types import CircuitBreakerState, CircuitState

logger = structlog.get_logger(__name__)

_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreaker:
    """Per-provider circuit breaker admitting one half-open probe at a time."""

    def __init__(
        self,
        provider_id: str,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider_id = provider_id
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._next_retry_time: float = 0.0
        self._probe_in_flight = False
        self._lock = threading.Lock()
        self._publish()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def is_open(self) -> bool:
        """Gate a call. Claims the half-open probe slot when the cooldown is over."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN:
                now = self._clock()
                if now <= self._next_retry_time:
                    return True
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                self._publish()
                logger.info(
                    "circuit_breaker_half_open",
                    provider=self._provider_id,
                    elapsed_s=round(now - self._last_failure_time, 1),
                )
                return False

            # HALF_OPEN: only the caller that made the transition may proceed
            if self._probe_in_flight:
                return True
            self._probe_in_flight = True
            return False

    def peek_open(self) -> bool:
        """Read-only view of ``is_open``; never transitions or claims a slot."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                return self._clock() <= self._next_retry_time
            if self._state == CircuitState.HALF_OPEN:
                return self._probe_in_flight
            return False

    def release_probe(self) -> None:
        """Hand back a claimed half-open slot that was never used."""
        with self._lock:
            self._probe_in_flight = False

    def record_result(self, success: bool) -> None:
        with self._lock:
            if success:
                self._on_success()
            else:
                self._on_failure()
            self._publish()

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            return CircuitBreakerState(
                provider_id=self._provider_id,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_time=self._last_failure_time,
                next_retry_time=self._next_retry_time,
            )

    def reset(self) -> None:
        """Force-reset the circuit to CLOSED (admin override)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._next_retry_time = 0.0
            self._probe_in_flight = False
            self._publish()
            logger.info("circuit_breaker_force_reset", provider=self._provider_id)

    # ── Internals (caller holds lock) ────────────────────────
    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._probe_in_flight = False
            logger.info("circuit_breaker_closed", provider=self._provider_id)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def _on_failure(self) -> None:
        now = self._clock()
        self._last_failure_time = now

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self._next_retry_time = now + self._cooldown
            self._probe_in_flight = False
            logger.warning(
                "circuit_breaker_reopened",
                provider=self._provider_id,
                failures=self._failure_count,
                cooldown_s=self._cooldown,
            )
        elif self._state == CircuitState.CLOSED:
            self._failure_count += 1
            if self._failure_count >= self._failure_threshold:
                self._state = CircuitState.OPEN
                self._next_retry_time = now + self._cooldown
                logger.warning(
                    "circuit_breaker_opened",
                    provider=self._provider_id,
                    failures=self._failure_count,
                    cooldown_s=self._cooldown,
                )

    def _publish(self) -> None:
        CIRCUIT_STATE.labels(provider=self._provider_id).set(
            _STATE_GAUGE_VALUE[self._state]
        )
