"""Rate limiter — per-provider request and unit budgets over a rolling window.

Uses a sliding-window approach: records older than the window are evicted on
every check, so the budget self-replenishes without a fixed reset tick.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

import structlog

from transcription_fallback.providers.types import RateLimit

logger = structlog.get_logger(__name__)


@dataclass
class _UsageRecord:
    timestamp: float
    units: int


class RateLimiter:
    """Sliding-window admission gate for a single provider."""

    def __init__(
        self,
        provider_id: str,
        limit: RateLimit,
        *,
        window_seconds: float = 60.0,
        warning_threshold: float = 0.90,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider_id = provider_id
        self._limit = limit
        self._window = window_seconds
        self._warning_thr = warning_threshold
        self._clock = clock

        self._requests: deque[float] = deque()
        self._units: deque[_UsageRecord] = deque()
        self._lock = threading.Lock()
        self._warning_emitted = False

    @property
    def limit(self) -> RateLimit:
        return self._limit

    def try_admit(self, units: int = 0) -> bool:
        """Atomically check the budget and, if it allows, record the request."""
        with self._lock:
            now = self._clock()
            self._evict(now)

            rpm = self._limit.requests_per_window
            if rpm is not None and len(self._requests) >= rpm:
                logger.debug(
                    "rate_limit_requests_exhausted",
                    provider=self._provider_id,
                    current=len(self._requests),
                    limit=rpm,
                )
                return False

            upw = self._limit.units_per_window
            if upw is not None:
                used = sum(r.units for r in self._units)
                if used + units > upw:
                    logger.debug(
                        "rate_limit_units_exhausted",
                        provider=self._provider_id,
                        used=used,
                        requested=units,
                        limit=upw,
                    )
                    return False

            self._requests.append(now)
            if units > 0:
                self._units.append(_UsageRecord(now, units))
            self._check_warning()
            return True

    @property
    def requests_in_window(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._requests)

    @property
    def units_in_window(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return sum(r.units for r in self._units)

    @property
    def remaining_pct(self) -> float:
        """Percentage of the request budget still available."""
        with self._lock:
            self._evict(self._clock())
            rpm = self._limit.requests_per_window
            if rpm is None:
                return 100.0
            if rpm == 0:
                return 0.0
            return float(f"{(max(0.0, 1.0 - len(self._requests) / rpm) * 100):.1f}")

    @property
    def window_reset_time(self) -> float:
        """Clock time at which the oldest admitted request leaves the window."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if not self._requests:
                return now
            return self._requests[0] + self._window

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._units.clear()
            self._warning_emitted = False

    # ── Internals ────────────────────────────────────────────
    def _evict(self, now: float) -> None:
        """Drop records at or beyond the window edge. Caller holds lock."""
        cutoff = now - self._window
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()
        while self._units and self._units[0].timestamp <= cutoff:
            self._units.popleft()
        rpm = self._limit.requests_per_window
        if rpm and len(self._requests) / rpm < self._warning_thr:
            self._warning_emitted = False

    def _check_warning(self) -> None:
        """Emit early warning when approaching the limit. Caller holds lock."""
        rpm = self._limit.requests_per_window
        if not rpm or self._warning_emitted:
            return
        usage_pct = len(self._requests) / rpm
        if usage_pct >= self._warning_thr:
            self._warning_emitted = True
            logger.warning(
                "rate_limit_warning",
                provider=self._provider_id,
                usage_pct=float(f"{(usage_pct * 100):.1f}"),
                requests_used=len(self._requests),
                requests_per_window=rpm,
            )
