"""Cost accounting for a completed provider call."""

from __future__ import annotations

from transcription_fallback.providers.types import ProviderConfig

MS_PER_MINUTE = 60_000.0


def calculate_cost(config: ProviderConfig, duration_ms: float, units: int = 0) -> float:
    """Price one call.

    When the caller states how many units (minutes of audio) it is sending,
    that is what gets billed; otherwise the processing time stands in for it.
    """
    if units > 0:
        return units * config.cost_per_unit
    return max(0.0, duration_ms) / MS_PER_MINUTE * config.cost_per_unit
