"""Tests for the per-provider resilience components.

Covers ProviderRegistry, RateLimiter, CircuitBreaker, ProviderHealthTracker,
StrategySelector and the cost function.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from transcription_fallback.exceptions import DuplicateProviderError, UnknownProviderError
from transcription_fallback.providers.circuit_breaker import CircuitBreaker
from transcription_fallback.providers.cost import calculate_cost
from transcription_fallback.providers.health import ProviderHealthTracker
from transcription_fallback.providers.rate_limiter import RateLimiter
from transcription_fallback.providers.registry import ProviderRegistry
from transcription_fallback.providers.selector import StrategySelector
from transcription_fallback.providers.types import (
    CircuitState,
    FallbackStrategy,
    HealthStatus,
    ProviderConfig,
    RateLimit,
    SelectionCriterion,
)


# ═══════════════════════════════════════════════════════════════
#  ProviderRegistry
# ═══════════════════════════════════════════════════════════════
class TestProviderRegistry:
    def test_preserves_insertion_order(self, provider_configs: list[ProviderConfig]) -> None:
        registry = ProviderRegistry(provider_configs)
        assert registry.ids() == ["A", "B", "C"]
        assert registry.position("C") == 2
        assert len(registry) == 3

    def test_duplicate_id_rejected(self, provider_configs: list[ProviderConfig]) -> None:
        registry = ProviderRegistry(provider_configs)
        with pytest.raises(DuplicateProviderError):
            registry.register(ProviderConfig(provider_id="A"))

    def test_alias_clash_rejected(self) -> None:
        registry = ProviderRegistry([ProviderConfig(provider_id="openai-whisper", aliases=("openai",))])
        with pytest.raises(DuplicateProviderError):
            registry.register(ProviderConfig(provider_id="openai"))

    def test_alias_resolves_to_canonical(self) -> None:
        registry = ProviderRegistry([ProviderConfig(provider_id="openai-whisper", aliases=("openai",))])
        assert registry.resolve("openai") == "openai-whisper"
        assert registry.get("openai").provider_id == "openai-whisper"
        assert "openai" in registry

    def test_unknown_provider(self, provider_configs: list[ProviderConfig]) -> None:
        registry = ProviderRegistry(provider_configs)
        assert "Z" not in registry
        with pytest.raises(UnknownProviderError):
            registry.get("Z")

    def test_hot_registration(self, provider_configs: list[ProviderConfig]) -> None:
        registry = ProviderRegistry(provider_configs)
        registry.register(ProviderConfig(provider_id="D"))
        assert registry.ids()[-1] == "D"


# ═══════════════════════════════════════════════════════════════
#  RateLimiter
# ═══════════════════════════════════════════════════════════════
class TestRateLimiter:
    def test_burst_of_sixty_then_rejection(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=60), clock=clock)
        for _ in range(60):
            assert limiter.try_admit() is True
            clock.advance(10 / 60)
        assert limiter.try_admit() is False
        assert limiter.requests_in_window == 60

    def test_admits_again_once_oldest_ages_out(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=2), clock=clock)
        assert limiter.try_admit() is True
        clock.advance(30)
        assert limiter.try_admit() is True
        assert limiter.try_admit() is False
        clock.advance(30)  # first request is now exactly 60s old
        assert limiter.try_admit() is True
        assert limiter.try_admit() is False

    def test_rejection_records_nothing(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=5, units_per_window=100), clock=clock)
        assert limiter.try_admit(90) is True
        assert limiter.try_admit(20) is False
        assert limiter.requests_in_window == 1
        assert limiter.units_in_window == 90

    def test_unit_budget(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=100, units_per_window=1000), clock=clock)
        assert limiter.try_admit(800) is True
        assert limiter.try_admit(300) is False
        assert limiter.try_admit(200) is True

    def test_unlimited(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=None, units_per_window=None), clock=clock)
        for _ in range(1000):
            assert limiter.try_admit(50) is True
        assert limiter.remaining_pct == 100.0

    def test_zero_unit_budget_refuses_units(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=60, units_per_window=0), clock=clock)
        assert limiter.try_admit(5) is False
        assert limiter.try_admit() is True
        assert limiter.requests_in_window == 1
        assert limiter.units_in_window == 0

    def test_zero_request_budget_refuses_everything(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=0), clock=clock)
        assert limiter.try_admit() is False
        assert limiter.remaining_pct == 0.0

    def test_remaining_pct(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=10), clock=clock)
        limiter.try_admit()
        limiter.try_admit()
        assert limiter.remaining_pct == 80.0

    def test_window_reset_time_tracks_oldest(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=10), clock=clock)
        start = clock.now
        limiter.try_admit()
        clock.advance(5)
        limiter.try_admit()
        assert limiter.window_reset_time == start + 60

    def test_force_reset(self, clock) -> None:
        limiter = RateLimiter("Y", RateLimit(requests_per_window=1), clock=clock)
        limiter.try_admit()
        assert limiter.try_admit() is False
        limiter.reset()
        assert limiter.try_admit() is True


# ═══════════════════════════════════════════════════════════════
#  CircuitBreaker
# ═══════════════════════════════════════════════════════════════
class TestCircuitBreaker:
    def _tripped(self, clock, threshold: int = 5) -> CircuitBreaker:
        cb = CircuitBreaker("X", failure_threshold=threshold, cooldown_seconds=60.0, clock=clock)
        for _ in range(threshold):
            cb.record_result(False)
        return cb

    def test_starts_closed(self, clock) -> None:
        cb = CircuitBreaker("X", clock=clock)
        assert cb.state == CircuitState.CLOSED
        assert cb.is_open() is False

    def test_opens_at_threshold(self, clock) -> None:
        cb = self._tripped(clock)
        assert cb.state == CircuitState.OPEN
        assert cb.is_open() is True
        assert cb.failure_count == 5

    def test_does_not_open_before_threshold(self, clock) -> None:
        cb = CircuitBreaker("X", failure_threshold=5, clock=clock)
        for _ in range(4):
            cb.record_result(False)
        assert cb.is_open() is False

    def test_success_while_closed_resets_count(self, clock) -> None:
        cb = CircuitBreaker("X", failure_threshold=3, clock=clock)
        cb.record_result(False)
        cb.record_result(False)
        cb.record_result(True)
        assert cb.failure_count == 0
        cb.record_result(False)
        cb.record_result(False)
        assert cb.state == CircuitState.CLOSED

    def test_stays_open_until_next_retry_time(self, clock) -> None:
        cb = self._tripped(clock)
        clock.advance(60.0)
        assert cb.is_open() is True
        clock.advance(0.001)
        assert cb.is_open() is False
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_admits_exactly_one(self, clock) -> None:
        cb = self._tripped(clock)
        clock.advance(61)
        assert [cb.is_open() for _ in range(5)] == [False, True, True, True, True]

    def test_half_open_admits_one_under_contention(self, clock) -> None:
        cb = self._tripped(clock)
        clock.advance(61)
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: cb.is_open(), range(64)))
        assert results.count(False) == 1

    def test_half_open_success_closes(self, clock) -> None:
        cb = self._tripped(clock)
        clock.advance(61)
        assert cb.is_open() is False
        cb.record_result(True)
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.is_open() is False

    def test_half_open_failure_reopens_with_fresh_cooldown(self, clock) -> None:
        cb = self._tripped(clock)
        clock.advance(61)
        assert cb.is_open() is False
        cb.record_result(False)
        snap = cb.snapshot()
        assert snap.state == CircuitState.OPEN
        assert snap.failure_count == 5
        assert snap.next_retry_time == clock.now + 60.0
        assert cb.is_open() is True

    def test_released_probe_can_be_claimed_again(self, clock) -> None:
        cb = self._tripped(clock)
        clock.advance(61)
        assert cb.is_open() is False
        assert cb.is_open() is True
        cb.release_probe()
        assert cb.is_open() is False

    def test_peek_does_not_transition(self, clock) -> None:
        cb = self._tripped(clock)
        assert cb.peek_open() is True
        clock.advance(61)
        assert cb.peek_open() is False
        assert cb.state == CircuitState.OPEN

    def test_force_reset(self, clock) -> None:
        cb = self._tripped(clock, threshold=2)
        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.is_open() is False


# ═══════════════════════════════════════════════════════════════
#  ProviderHealthTracker
# ═══════════════════════════════════════════════════════════════
class TestProviderHealthTracker:
    def test_starts_healthy(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)
        h = tracker.snapshot()
        assert h.status == HealthStatus.HEALTHY
        assert h.success_rate == 100.0
        assert h.error_count == 0
        assert h.last_error is None

    def test_failure_lowers_success_rate(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)
        tracker.record_outcome(False, 200.0, "boom")
        h = tracker.snapshot()
        assert h.success_rate == 95.0
        assert h.error_count == 1
        assert h.last_error == "boom"
        assert h.status == HealthStatus.DEGRADED

    def test_success_rate_bounds(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)
        tracker.record_outcome(True, 10.0)
        assert tracker.snapshot().success_rate == 100.0
        for _ in range(30):
            tracker.record_outcome(False, 10.0, "err")
        assert tracker.snapshot().success_rate == 0.0
        tracker.record_outcome(True, 10.0)
        h = tracker.snapshot()
        assert h.success_rate == 1.0
        assert h.error_count == 29

    def test_latency_is_smoothed(self, clock) -> None:
        tracker = ProviderHealthTracker("H", latency_alpha=0.5, clock=clock)
        tracker.record_outcome(True, 100.0)
        assert tracker.snapshot().response_time_ms == 100.0
        tracker.record_outcome(True, 200.0)
        assert tracker.snapshot().response_time_ms == 150.0

    def test_slow_success_is_degraded(self, clock) -> None:
        tracker = ProviderHealthTracker("H", degraded_latency_ms=10_000.0, clock=clock)
        tracker.record_outcome(True, 12_000.0)
        assert tracker.status == HealthStatus.DEGRADED
        tracker.record_outcome(True, 500.0)
        assert tracker.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_passive_outcomes_keep_down_status(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)

        async def _refused() -> None:
            raise ConnectionError("refused")

        assert await tracker.run_active_probe(_refused) == HealthStatus.DOWN
        tracker.record_outcome(False, 50.0, "late failure")
        tracker.record_outcome(True, 40.0)
        h = tracker.snapshot()
        assert h.status == HealthStatus.DOWN
        assert h.error_count == 1
        assert h.success_rate == 91.0
        assert h.response_time_ms == 47.0

    def test_snapshot_is_a_copy(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)
        snap = tracker.snapshot()
        snap.error_count = 99
        assert tracker.snapshot().error_count == 0

    def test_reset(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)
        tracker.record_outcome(False, 10.0, "err")
        tracker.reset()
        h = tracker.snapshot()
        assert h.status == HealthStatus.HEALTHY
        assert h.error_count == 0
        assert h.last_error is None

    @pytest.mark.asyncio
    async def test_probe_success(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)

        async def _probe() -> None:
            clock.advance(0.2)

        assert await tracker.run_active_probe(_probe) == HealthStatus.HEALTHY
        assert tracker.snapshot().response_time_ms == 200.0

    @pytest.mark.asyncio
    async def test_slow_probe_is_degraded(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)

        async def _probe() -> None:
            clock.advance(11)

        assert await tracker.run_active_probe(_probe) == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_failing_probe_marks_down(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)

        async def _probe() -> None:
            raise ConnectionError("unreachable")

        assert await tracker.run_active_probe(_probe) == HealthStatus.DOWN
        h = tracker.snapshot()
        assert h.status == HealthStatus.DOWN
        assert h.last_error == "ConnectionError: unreachable"
        assert h.success_rate == 95.0

    @pytest.mark.asyncio
    async def test_probe_timeout_marks_down(self, clock) -> None:
        tracker = ProviderHealthTracker("H", clock=clock)

        async def _probe() -> None:
            await asyncio.sleep(1.0)

        assert await tracker.run_active_probe(_probe, timeout_s=0.05) == HealthStatus.DOWN
        assert "timed out" in (tracker.snapshot().last_error or "")


# ═══════════════════════════════════════════════════════════════
#  StrategySelector
# ═══════════════════════════════════════════════════════════════
class TestStrategySelector:
    def _build(self, configs: list[ProviderConfig], clock):
        registry = ProviderRegistry(configs)
        trackers = {c.provider_id: ProviderHealthTracker(c.provider_id, clock=clock) for c in configs}
        breakers = {
            c.provider_id: CircuitBreaker(c.provider_id, failure_threshold=2, clock=clock)
            for c in configs
        }
        selector = StrategySelector(registry, health_trackers=trackers, circuit_breakers=breakers)
        return selector, trackers, breakers

    @staticmethod
    def _strategy(criterion: SelectionCriterion) -> FallbackStrategy:
        return FallbackStrategy(primary="C", fallbacks=("A", "B"), criterion=criterion)

    def test_quality_orders_by_priority(self, provider_configs, clock) -> None:
        selector, _, _ = self._build(provider_configs, clock)
        assert selector.select(self._strategy(SelectionCriterion.QUALITY)) == ["A", "B", "C"]

    def test_cost_orders_cheapest_first(self, provider_configs, clock) -> None:
        selector, _, _ = self._build(provider_configs, clock)
        assert selector.select(self._strategy(SelectionCriterion.COST)) == ["C", "B", "A"]

    def test_speed_orders_fastest_first(self, provider_configs, clock) -> None:
        selector, trackers, _ = self._build(provider_configs, clock)
        trackers["A"].record_outcome(True, 500.0)
        trackers["B"].record_outcome(True, 300.0)
        trackers["C"].record_outcome(True, 100.0)
        assert selector.select(self._strategy(SelectionCriterion.SPEED)) == ["C", "B", "A"]

    def test_availability_orders_by_success_rate(self, provider_configs, clock) -> None:
        selector, trackers, _ = self._build(provider_configs, clock)
        trackers["A"].record_outcome(False, 100.0, "err")
        trackers["B"].record_outcome(True, 100.0)
        assert selector.select(self._strategy(SelectionCriterion.AVAILABILITY)) == ["B", "C", "A"]

    def test_ties_follow_registry_order(self, clock) -> None:
        configs = [
            ProviderConfig(provider_id="X", cost_per_unit=0.01),
            ProviderConfig(provider_id="Y", cost_per_unit=0.01),
        ]
        selector, _, _ = self._build(configs, clock)
        strategy = FallbackStrategy(primary="Y", fallbacks=("X",), criterion=SelectionCriterion.COST)
        assert selector.select(strategy) == ["X", "Y"]

    def test_is_deterministic(self, provider_configs, clock) -> None:
        selector, trackers, _ = self._build(provider_configs, clock)
        trackers["B"].record_outcome(True, 50.0)
        strategy = self._strategy(SelectionCriterion.SPEED)
        first = selector.select(strategy)
        assert all(selector.select(strategy) == first for _ in range(10))

    def test_excludes_down_providers(self, provider_configs, clock) -> None:
        selector, trackers, _ = self._build(provider_configs, clock)

        async def _probe() -> None:
            raise ConnectionError("gone")

        asyncio.run(trackers["A"].run_active_probe(_probe))
        assert selector.select(self._strategy(SelectionCriterion.QUALITY)) == ["B", "C"]

    def test_excludes_open_circuits(self, provider_configs, clock) -> None:
        selector, _, breakers = self._build(provider_configs, clock)
        breakers["B"].record_result(False)
        breakers["B"].record_result(False)
        assert selector.select(self._strategy(SelectionCriterion.QUALITY)) == ["A", "C"]

    def test_includes_provider_ready_for_probe(self, provider_configs, clock) -> None:
        selector, _, breakers = self._build(provider_configs, clock)
        breakers["B"].record_result(False)
        breakers["B"].record_result(False)
        clock.advance(61)
        assert selector.select(self._strategy(SelectionCriterion.QUALITY)) == ["A", "B", "C"]
        assert breakers["B"].state == CircuitState.OPEN

    def test_empty_when_everything_filtered(self, provider_configs, clock) -> None:
        selector, _, breakers = self._build(provider_configs, clock)
        for cb in breakers.values():
            cb.record_result(False)
            cb.record_result(False)
        assert selector.select(self._strategy(SelectionCriterion.QUALITY)) == []

    def test_only_strategy_members_are_candidates(self, provider_configs, clock) -> None:
        selector, _, _ = self._build(provider_configs, clock)
        strategy = FallbackStrategy(primary="B", criterion=SelectionCriterion.QUALITY)
        assert selector.select(strategy) == ["B"]


# ═══════════════════════════════════════════════════════════════
#  Cost
# ═══════════════════════════════════════════════════════════════
class TestCalculateCost:
    def test_bills_declared_units(self) -> None:
        cfg = ProviderConfig(provider_id="A", cost_per_unit=0.006)
        assert calculate_cost(cfg, duration_ms=5_000, units=3) == pytest.approx(0.018)

    def test_falls_back_to_duration(self) -> None:
        cfg = ProviderConfig(provider_id="A", cost_per_unit=0.006)
        assert calculate_cost(cfg, duration_ms=120_000) == pytest.approx(0.012)

    def test_free_provider(self) -> None:
        cfg = ProviderConfig(provider_id="C", cost_per_unit=0.0)
        assert calculate_cost(cfg, duration_ms=90_000, units=10) == 0.0
