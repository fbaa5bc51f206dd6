"""Fallback executor — the main entry-point for transcription provider calls.

Composes the registry, StrategySelector, CircuitBreaker, RateLimiter and
ProviderHealthTracker into one orchestrator. Callers hand in one async
operation per provider and a strategy name; the executor walks the ordered
candidates one at a time, gates each through its breaker and limiter, races
the call against the provider timeout and records every outcome.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import threading
import time
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, TypeVar

import structlog

from transcription_fallback.exceptions import (
    AllProvidersFailedError,
    CircuitOpenError,
    FallbackError,
    InvalidStrategyError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitExceededError,
    UnknownStrategyError,
)
from transcription_fallback.observability.metrics import (
    ATTEMPT_LATENCY,
    ATTEMPTS_TOTAL,
    BILLED_COST,
    EXECUTIONS_TOTAL,
    SKIPS_TOTAL,
)
from transcription_fallback.providers.circuit_breaker import CircuitBreaker
from transcription_fallback.providers.cost import calculate_cost
from transcription_fallback.providers.health import ProbeFn, ProviderHealthTracker
from transcription_fallback.providers.rate_limiter import RateLimiter
from transcription_fallback.providers.registry import ProviderRegistry
from transcription_fallback.providers.selector import StrategySelector
from transcription_fallback.providers.types import (
    AttemptOutcome,
    AttemptRecord,
    CircuitState,
    ExecutionContext,
    ExecutionResult,
    FallbackStrategy,
    HealthStatus,
    ProviderConfig,
    ProviderStatusView,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]

ALL_PROVIDERS = "all"


class _Outcome(Generic[T]):
    __slots__ = ("record", "value")

    def __init__(self, record: AttemptRecord, value: T | None = None) -> None:
        self.record = record
        self.value = value

    @property
    def succeeded(self) -> bool:
        return self.record.outcome == AttemptOutcome.SUCCESS


async def _invoke(operation: Operation[T]) -> T:
    return await operation()


class FallbackExecutor:
    """Owns all per-provider resilience state and runs fallback executions.

    Usage::

        executor = FallbackExecutor(providers=[...], strategies={"quality": ...})

        outcome = await executor.execute_with_fallback(
            {"openai-whisper": lambda: whisper(audio), "assemblyai": lambda: aai(audio)},
            "quality",
            ExecutionContext(units=3),
        )
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig] = (),
        *,
        strategies: Mapping[str, FallbackStrategy] | None = None,
        probes: Mapping[str, ProbeFn] | None = None,
        default_strategy: str = "quality",
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        rate_window_seconds: float = 60.0,
        latency_alpha: float = 0.3,
        degraded_latency_ms: float = 10_000.0,
        probe_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._default_strategy = default_strategy
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._rate_window = rate_window_seconds
        self._latency_alpha = latency_alpha
        self._degraded_latency_ms = degraded_latency_ms
        self._probe_timeout = probe_timeout_s
        self._clock = clock
        self._wall_clock = wall_clock

        # Per-provider components
        self._registry = ProviderRegistry()
        self._health_trackers: dict[str, ProviderHealthTracker] = {}
        self._circuit_breakers: dict[str, CircuitBreaker] = {}
        self._rate_limiters: dict[str, RateLimiter] = {}
        self._probes: dict[str, ProbeFn] = {}
        self._strategies: dict[str, FallbackStrategy] = {}

        self._selector = StrategySelector(
            self._registry,
            health_trackers=self._health_trackers,
            circuit_breakers=self._circuit_breakers,
        )

        # In-memory counters
        self._stats_lock = threading.Lock()
        self._total_executions = 0
        self._failed_executions = 0
        self._total_cost = 0.0

        self._poll_task: asyncio.Task[None] | None = None

        for cfg in providers:
            self.register_provider(cfg)
        for name, strategy in (strategies or {}).items():
            self.register_strategy(name, strategy)
        for pid, probe in (probes or {}).items():
            self.register_probe(pid, probe)

    # ── Registration ─────────────────────────────────────────
    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def strategies(self) -> dict[str, FallbackStrategy]:
        return dict(self._strategies)

    def register_provider(self, config: ProviderConfig) -> None:
        """Add a provider (hot registration allowed)."""
        self._registry.register(config)
        pid = config.provider_id
        self._health_trackers[pid] = ProviderHealthTracker(
            pid,
            latency_alpha=self._latency_alpha,
            degraded_latency_ms=self._degraded_latency_ms,
            clock=self._clock,
        )
        self._circuit_breakers[pid] = CircuitBreaker(
            pid,
            failure_threshold=self._failure_threshold,
            cooldown_seconds=self._cooldown,
            clock=self._clock,
        )
        self._rate_limiters[pid] = RateLimiter(
            pid,
            config.rate_limit,
            window_seconds=self._rate_window,
            clock=self._clock,
        )

    def register_strategy(self, name: str, strategy: FallbackStrategy) -> None:
        if strategy.max_attempts < 1:
            raise InvalidStrategyError(name, "max_attempts must be at least 1")
        unknown = [pid for pid in strategy.provider_ids if pid not in self._registry]
        if unknown:
            raise InvalidStrategyError(name, f"unregistered providers {unknown}")
        self._strategies[name] = strategy
        logger.info(
            "strategy_registered",
            strategy=name,
            criterion=strategy.criterion.value,
            providers=strategy.provider_ids,
        )

    def register_probe(self, provider_id: str, probe: ProbeFn) -> None:
        self._probes[self._registry.get(provider_id).provider_id] = probe

    # ── Main entry-point ─────────────────────────────────────
    async def execute_with_fallback(
        self,
        operations: Mapping[str, Operation[T]],
        strategy_name: str | None = None,
        context: ExecutionContext | None = None,
    ) -> ExecutionResult[T]:
        """Run ``operations`` against the strategy's providers until one succeeds.

        Args:
            operations: Provider id (or alias) → async zero-arg callable.
            strategy_name: Registered strategy; defaults to the configured one.
            context: Units to charge against rate limits and cost.

        Returns:
            The first successful result with its attempt history.

        Raises:
            UnknownStrategyError: ``strategy_name`` is not registered.
            AllProvidersFailedError: every candidate failed or was skipped.
        """
        name = strategy_name or self._default_strategy
        strategy = self._strategies.get(name)
        if strategy is None:
            raise UnknownStrategyError(name)

        ctx = context or ExecutionContext()
        ops = {self._registry.resolve(pid): fn for pid, fn in operations.items()}
        candidates = self._selector.select(strategy)
        attempts: list[AttemptRecord] = []
        started = self._clock()
        log = logger.bind(strategy=name)

        for pid in candidates:
            if len(attempts) >= strategy.max_attempts:
                break

            operation = ops.get(pid)
            if operation is None:
                SKIPS_TOTAL.labels(provider=pid, reason="no_operation").inc()
                log.debug("provider_skipped", provider=pid, reason="no_operation")
                continue

            try:
                self._admit(pid, ctx.units)
            except (CircuitOpenError, RateLimitExceededError) as skip:
                SKIPS_TOTAL.labels(provider=pid, reason=skip.code.lower()).inc()
                log.info("provider_skipped", provider=pid, reason=skip.code.lower())
                continue

            outcome = await self._attempt(pid, operation)
            attempts.append(outcome.record)

            if outcome.succeeded:
                cost = calculate_cost(
                    self._registry.get(pid), outcome.record.duration_ms, ctx.units
                )
                self._account(name, success=True, cost=cost, provider_id=pid)
                if len(attempts) > 1:
                    log.info(
                        "provider_failover_success",
                        provider=pid,
                        attempts=len(attempts),
                        failed_providers=[a.provider_id for a in attempts[:-1]],
                    )
                return ExecutionResult(
                    result=outcome.value,  # type: ignore[arg-type]
                    provider_id=pid,
                    attempt_count=len(attempts),
                    total_cost=cost,
                    attempts=attempts,
                    strategy=name,
                )

        duration_ms = (self._clock() - started) * 1000
        self._account(name, success=False)
        log.error(
            "all_providers_failed",
            attempts=len(attempts),
            candidates=candidates,
            duration_ms=float(f"{duration_ms:.1f}"),
        )
        raise AllProvidersFailedError(attempts, strategy=name, duration_ms=duration_ms)

    # ── Gates ────────────────────────────────────────────────
    def _admit(self, provider_id: str, units: int) -> None:
        breaker = self._circuit_breakers[provider_id]
        if breaker.is_open():
            raise CircuitOpenError(provider_id)
        if not self._rate_limiters[provider_id].try_admit(units):
            breaker.release_probe()
            raise RateLimitExceededError(provider_id, units)

    # ── Single attempt ───────────────────────────────────────
    async def _attempt(self, provider_id: str, operation: Operation[T]) -> _Outcome[T]:
        cfg = self._registry.get(provider_id)
        log = logger.bind(provider=provider_id, timeout_s=cfg.timeout_s)
        started_at = self._wall_clock()
        start = self._clock()
        task: asyncio.Future[T] = asyncio.ensure_future(_invoke(operation))

        error: FallbackError
        try:
            value = await asyncio.wait_for(asyncio.shield(task), timeout=cfg.timeout_s)
        except asyncio.TimeoutError as exc:
            if task.done() and not task.cancelled():
                # The operation raised TimeoutError itself before the deadline
                error = ProviderError(provider_id, exc)
            else:
                task.cancel()
                error = ProviderTimeoutError(provider_id, cfg.timeout_s)
        except asyncio.CancelledError:
            if not task.cancelled():
                # Caller gave up; the call keeps running and reports later
                task.add_done_callback(
                    functools.partial(self._record_late_outcome, provider_id, start)
                )
                raise
            error = ProviderError(provider_id, asyncio.CancelledError("operation cancelled"))
        except Exception as exc:
            error = ProviderError(provider_id, exc)
        else:
            duration_ms = (self._clock() - start) * 1000
            self._record(provider_id, True, duration_ms)
            log.info("provider_request_success", latency_ms=float(f"{duration_ms:.1f}"))
            return _Outcome(
                AttemptRecord(
                    provider_id=provider_id,
                    started_at=started_at,
                    duration_ms=duration_ms,
                    outcome=AttemptOutcome.SUCCESS,
                ),
                value,
            )

        duration_ms = (self._clock() - start) * 1000
        self._record(provider_id, False, duration_ms, error.message)
        log.warning(
            "provider_request_failed",
            error=error.message,
            code=error.code,
            latency_ms=float(f"{duration_ms:.1f}"),
        )
        return _Outcome(
            AttemptRecord(
                provider_id=provider_id,
                started_at=started_at,
                duration_ms=duration_ms,
                outcome=AttemptOutcome.ERROR,
                error=error.message,
            )
        )

    def _record(
        self, provider_id: str, success: bool, duration_ms: float, error: str | None = None
    ) -> None:
        self._circuit_breakers[provider_id].record_result(success)
        self._health_trackers[provider_id].record_outcome(success, duration_ms, error)
        outcome = AttemptOutcome.SUCCESS if success else AttemptOutcome.ERROR
        ATTEMPTS_TOTAL.labels(provider=provider_id, outcome=outcome.value).inc()
        ATTEMPT_LATENCY.labels(provider=provider_id).observe(duration_ms / 1000)

    def _record_late_outcome(
        self, provider_id: str, start: float, task: asyncio.Future[Any]
    ) -> None:
        duration_ms = (self._clock() - start) * 1000
        if task.cancelled():
            self._record(provider_id, False, duration_ms, "Operation cancelled")
        elif (exc := task.exception()) is not None:
            self._record(provider_id, False, duration_ms, ProviderError(provider_id, exc).message)
        else:
            self._record(provider_id, True, duration_ms)
        logger.info(
            "provider_late_outcome_recorded",
            provider=provider_id,
            latency_ms=float(f"{duration_ms:.1f}"),
        )

    def _account(
        self, strategy: str, *, success: bool, cost: float = 0.0, provider_id: str = ""
    ) -> None:
        status = "success" if success else "failed"
        EXECUTIONS_TOTAL.labels(strategy=strategy, status=status).inc()
        if success and cost > 0:
            BILLED_COST.labels(provider=provider_id).inc(cost)
        with self._stats_lock:
            self._total_executions += 1
            if success:
                self._total_cost += cost
            else:
                self._failed_executions += 1

    # ── Health observation ───────────────────────────────────
    def get_providers_status(self) -> list[ProviderStatusView]:
        views: list[ProviderStatusView] = []
        for cfg in self._registry:
            pid = cfg.provider_id
            health = self._health_trackers[pid].snapshot()
            views.append(
                ProviderStatusView(
                    id=pid,
                    name=cfg.display_name,
                    healthy=health.status == HealthStatus.HEALTHY,
                    response_time_ms=health.response_time_ms,
                    last_error=health.last_error,
                    circuit_open=self._circuit_breakers[pid].state == CircuitState.OPEN,
                )
            )
        return views

    def get_system_stats(self) -> dict[str, Any]:
        providers = []
        for pid in self._registry.ids():
            providers.append(
                {
                    "id": pid,
                    "health": asdict(self._health_trackers[pid].snapshot()),
                    "circuit_breaker": asdict(self._circuit_breakers[pid].snapshot()),
                    "rate_limit": {
                        "requests_in_window": self._rate_limiters[pid].requests_in_window,
                        "units_in_window": self._rate_limiters[pid].units_in_window,
                        "remaining_pct": self._rate_limiters[pid].remaining_pct,
                    },
                }
            )
        latencies = [p["health"]["response_time_ms"] for p in providers]
        with self._stats_lock:
            return {
                "providers": providers,
                "total_executions": self._total_executions,
                "failed_executions": self._failed_executions,
                "total_cost": self._total_cost,
                "avg_response_time_ms": (
                    sum(latencies) / len(latencies) if latencies else 0.0
                ),
            }

    async def force_health_check(self) -> dict[str, HealthStatus]:
        """Run every configured probe now; providers without one are left alone."""
        pids = [pid for pid in self._registry.ids() if pid in self._probes]
        statuses = await asyncio.gather(
            *(
                self._health_trackers[pid].run_active_probe(
                    self._probes[pid], timeout_s=self._probe_timeout
                )
                for pid in pids
            )
        )
        logger.info("health_check_completed", probed=len(pids))
        return dict(zip(pids, statuses))

    def reset_provider_health(self, provider_id: str = ALL_PROVIDERS) -> None:
        """Admin reset — clears health counters and circuit state, keeps config."""
        if provider_id == ALL_PROVIDERS:
            targets = self._registry.ids()
        else:
            targets = [self._registry.get(provider_id).provider_id]
        for pid in targets:
            self._health_trackers[pid].reset()
            self._circuit_breakers[pid].reset()
        logger.info("provider_health_reset", providers=targets)

    # ── Periodic probing ─────────────────────────────────────
    def start_health_polling(self, interval_s: float = 30.0) -> None:
        """Probe all providers every ``interval_s`` until ``aclose()``."""
        if self._poll_task is not None and not self._poll_task.done():
            return
        if not self._probes:
            logger.warning("health_polling_without_probes")
            return
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(interval_s)
        )
        logger.info("health_polling_started", interval_s=interval_s)

    async def _poll_loop(self, interval_s: float) -> None:
        while True:
            await self.force_health_check()
            await asyncio.sleep(interval_s)

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def aclose(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("health_polling_stopped")

    async def __aenter__(self) -> FallbackExecutor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
