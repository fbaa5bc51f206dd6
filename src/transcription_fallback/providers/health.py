"""Health tracker for a single provider.

Keeps the observability view used for ordering and status reporting:
smoothed latency, a bounded success rate and an error counter. Gating is
left to the circuit breaker; the only gating input from here is a DOWN
status, which only an active probe can set.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable

import structlog

from transcription_fallback.observability.metrics import HEALTH_SUCCESS_RATE
from transcription_fallback.providers.types import HealthStatus, ProviderHealth

logger = structlog.get_logger(__name__)

ProbeFn = Callable[[], Awaitable[Any]]

SUCCESS_STEP = 1.0
FAILURE_STEP = 5.0


class ProviderHealthTracker:
    """Thread-safe health record for one provider."""

    def __init__(
        self,
        provider_id: str,
        *,
        latency_alpha: float = 0.3,
        degraded_latency_ms: float = 10_000.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider_id = provider_id
        self._alpha = latency_alpha
        self._degraded_latency_ms = degraded_latency_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._health = self._initial()
        self._samples = 0

    # ── Passive outcomes ─────────────────────────────────────
    def record_outcome(
        self, success: bool, duration_ms: float, error: str | None = None
    ) -> None:
        with self._lock:
            self._observe_latency(duration_ms)
            self._apply(success, error)
            # DOWN is owned by the active probe; only a probe or reset lifts it
            if self._health.status == HealthStatus.DOWN:
                pass
            elif success:
                self._health.status = self._status_for_latency(duration_ms)
            else:
                self._health.status = HealthStatus.DEGRADED
            self._health.last_check = self._clock()
            HEALTH_SUCCESS_RATE.labels(provider=self._provider_id).set(
                self._health.success_rate
            )

    # ── Active probe ─────────────────────────────────────────
    async def run_active_probe(self, probe_fn: ProbeFn, *, timeout_s: float = 30.0) -> HealthStatus:
        """Run a caller-supplied probe and fold its verdict into the record."""
        start = self._clock()
        error: str | None = None
        status: HealthStatus
        try:
            await asyncio.wait_for(probe_fn(), timeout=timeout_s)
        except asyncio.TimeoutError:
            status = HealthStatus.DOWN
            error = f"Health probe timed out after {timeout_s}s"
        except Exception as exc:
            status = HealthStatus.DOWN
            error = f"{type(exc).__name__}: {exc}"
        else:
            status = HealthStatus.HEALTHY

        elapsed_ms = (self._clock() - start) * 1000
        with self._lock:
            if status != HealthStatus.DOWN:
                status = self._status_for_latency(elapsed_ms)
            self._apply(status != HealthStatus.DOWN, error)
            self._health.status = status
            self._health.response_time_ms = float(f"{elapsed_ms:.2f}")
            self._health.last_check = self._clock()
            HEALTH_SUCCESS_RATE.labels(provider=self._provider_id).set(
                self._health.success_rate
            )

        log = logger.bind(provider=self._provider_id, status=status.value)
        if error:
            log.warning("health_probe_failed", error=error)
        else:
            log.info("health_probe_completed", latency_ms=float(f"{elapsed_ms:.1f}"))
        return status

    # ── Views ────────────────────────────────────────────────
    @property
    def status(self) -> HealthStatus:
        with self._lock:
            return self._health.status

    def snapshot(self) -> ProviderHealth:
        with self._lock:
            return replace(self._health)

    def reset(self) -> None:
        with self._lock:
            self._health = self._initial()
            self._samples = 0
            HEALTH_SUCCESS_RATE.labels(provider=self._provider_id).set(100.0)

    # ── Internals (caller holds lock) ────────────────────────
    def _initial(self) -> ProviderHealth:
        return ProviderHealth(provider_id=self._provider_id, last_check=self._clock())

    def _observe_latency(self, duration_ms: float) -> None:
        if self._samples == 0:
            smoothed = duration_ms
        else:
            smoothed = (
                self._alpha * duration_ms
                + (1 - self._alpha) * self._health.response_time_ms
            )
        self._samples += 1
        self._health.response_time_ms = float(f"{smoothed:.2f}")

    def _apply(self, success: bool, error: str | None) -> None:
        h = self._health
        if success:
            h.success_rate = min(100.0, h.success_rate + SUCCESS_STEP)
            h.error_count = max(0, h.error_count - 1)
        else:
            h.success_rate = max(0.0, h.success_rate - FAILURE_STEP)
            h.error_count += 1
            h.last_error = error or "Unknown error"

    def _status_for_latency(self, latency_ms: float) -> HealthStatus:
        if latency_ms > self._degraded_latency_ms:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY
