"""Strategy selector — orders a strategy's providers by its criterion.

Filters out providers marked DOWN and providers whose circuit is open, then
sorts the rest. Ties fall back to registry insertion order so the same
snapshot always yields the same order.
"""

from __future__ import annotations

from typing import Callable, Mapping

import structlog

from transcription_fallback.providers.circuit_breaker import CircuitBreaker
from transcription_fallback.providers.health import ProviderHealthTracker
from transcription_fallback.providers.registry import ProviderRegistry
from transcription_fallback.providers.types import (
    FallbackStrategy,
    HealthStatus,
    ProviderConfig,
    ProviderHealth,
    SelectionCriterion,
)

logger = structlog.get_logger(__name__)

SortKey = Callable[[ProviderConfig, ProviderHealth], float]

_SORT_KEYS: dict[SelectionCriterion, SortKey] = {
    SelectionCriterion.COST: lambda cfg, h: cfg.cost_per_unit,
    SelectionCriterion.SPEED: lambda cfg, h: h.response_time_ms,
    SelectionCriterion.QUALITY: lambda cfg, h: -cfg.priority,
    SelectionCriterion.AVAILABILITY: lambda cfg, h: -h.success_rate,
}


class StrategySelector:
    """Builds the ordered candidate list for one execution."""

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        health_trackers: Mapping[str, ProviderHealthTracker],
        circuit_breakers: Mapping[str, CircuitBreaker],
    ) -> None:
        self._registry = registry
        self._health = health_trackers
        self._circuits = circuit_breakers

    def select(self, strategy: FallbackStrategy) -> list[str]:
        candidates: list[tuple[ProviderConfig, ProviderHealth]] = []
        seen: set[str] = set()

        for raw_id in strategy.provider_ids:
            if raw_id not in self._registry:
                logger.debug("strategy_provider_unregistered", provider=raw_id)
                continue
            cfg = self._registry.get(raw_id)
            pid = cfg.provider_id
            if pid in seen:
                continue
            seen.add(pid)

            health = self._health[pid].snapshot()
            if health.status == HealthStatus.DOWN:
                logger.debug("provider_down", provider=pid)
                continue
            if self._circuits[pid].peek_open():
                logger.debug("provider_circuit_open", provider=pid)
                continue
            candidates.append((cfg, health))

        key = _SORT_KEYS[strategy.criterion]
        candidates.sort(
            key=lambda c: (key(c[0], c[1]), self._registry.position(c[0].provider_id))
        )
        order = [cfg.provider_id for cfg, _ in candidates]

        if not order:
            logger.warning(
                "no_available_providers",
                criterion=strategy.criterion.value,
                configured=strategy.provider_ids,
            )
        return order
