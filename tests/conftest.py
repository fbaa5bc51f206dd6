"""Shared test fixtures."""

from __future__ import annotations

import pytest

from transcription_fallback.providers.types import (
    FallbackStrategy,
    ProviderConfig,
    RateLimit,
    SelectionCriterion,
)


class FakeClock:
    """Manually advanced stand-in for ``time.monotonic``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider_configs() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            provider_id="A",
            name="Alpha",
            priority=100,
            timeout_s=5.0,
            cost_per_unit=0.006,
            rate_limit=RateLimit(requests_per_window=10),
        ),
        ProviderConfig(
            provider_id="B",
            name="Beta",
            priority=90,
            timeout_s=5.0,
            cost_per_unit=0.003,
            rate_limit=RateLimit(requests_per_window=10),
        ),
        ProviderConfig(
            provider_id="C",
            name="Gamma",
            priority=50,
            timeout_s=5.0,
            cost_per_unit=0.0,
            rate_limit=RateLimit(requests_per_window=10),
        ),
    ]


@pytest.fixture
def strategies() -> dict[str, FallbackStrategy]:
    return {
        "quality": FallbackStrategy(
            primary="A",
            fallbacks=("B", "C"),
            criterion=SelectionCriterion.QUALITY,
            max_attempts=3,
        ),
        "cost": FallbackStrategy(
            primary="C",
            fallbacks=("A", "B"),
            criterion=SelectionCriterion.COST,
            max_attempts=2,
        ),
    }
