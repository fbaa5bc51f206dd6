"""Default transcription catalog and strategies, built from settings."""

from __future__ import annotations

from typing import Mapping

from transcription_fallback.config import Settings, get_settings
from transcription_fallback.providers.executor import FallbackExecutor
from transcription_fallback.providers.health import ProbeFn
from transcription_fallback.providers.types import (
    FallbackStrategy,
    ProviderConfig,
    RateLimit,
    SelectionCriterion,
)

OPENAI_WHISPER = "openai-whisper"
ASSEMBLYAI = "assemblyai"
WEBSPEECH = "webspeech"


def build_provider_configs(settings: Settings) -> list[ProviderConfig]:
    """The three backends the editor ships with, in registration order."""
    return [
        ProviderConfig(
            provider_id=OPENAI_WHISPER,
            name="OpenAI Whisper",
            priority=100,
            max_retries=3,
            timeout_s=settings.openai_whisper_timeout_seconds,
            cost_per_unit=0.006,
            rate_limit=RateLimit(
                requests_per_window=settings.openai_whisper_rpm,
                units_per_window=settings.openai_whisper_units_per_minute,
            ),
            capabilities=frozenset({"high-quality", "multi-language", "word-timestamps"}),
            aliases=("openai",),
        ),
        ProviderConfig(
            provider_id=ASSEMBLYAI,
            name="AssemblyAI",
            priority=90,
            max_retries=2,
            timeout_s=settings.assemblyai_timeout_seconds,
            cost_per_unit=0.37 / 60,
            rate_limit=RateLimit(
                requests_per_window=settings.assemblyai_rpm,
                units_per_window=settings.assemblyai_units_per_minute,
            ),
            capabilities=frozenset({"fast", "speaker-detection", "large-files"}),
        ),
        ProviderConfig(
            provider_id=WEBSPEECH,
            name="Web Speech API",
            priority=50,
            max_retries=1,
            timeout_s=settings.webspeech_timeout_seconds,
            cost_per_unit=0.0,
            rate_limit=RateLimit(
                requests_per_window=settings.webspeech_rpm,
                units_per_window=settings.webspeech_units_per_minute,
            ),
            capabilities=frozenset({"free", "real-time", "offline"}),
        ),
    ]


def default_strategies() -> dict[str, FallbackStrategy]:
    return {
        "quality": FallbackStrategy(
            primary=OPENAI_WHISPER,
            fallbacks=(ASSEMBLYAI, WEBSPEECH),
            criterion=SelectionCriterion.QUALITY,
            max_attempts=3,
        ),
        "speed": FallbackStrategy(
            primary=ASSEMBLYAI,
            fallbacks=(OPENAI_WHISPER, WEBSPEECH),
            criterion=SelectionCriterion.SPEED,
            max_attempts=3,
        ),
        "cost": FallbackStrategy(
            primary=WEBSPEECH,
            fallbacks=(OPENAI_WHISPER, ASSEMBLYAI),
            criterion=SelectionCriterion.COST,
            max_attempts=2,
        ),
    }


def build_executor(
    settings: Settings | None = None,
    *,
    probes: Mapping[str, ProbeFn] | None = None,
) -> FallbackExecutor:
    """Wire a ``FallbackExecutor`` with the default catalog."""
    s = settings or get_settings()
    return FallbackExecutor(
        build_provider_configs(s),
        strategies=default_strategies(),
        probes=probes,
        default_strategy=s.default_strategy,
        failure_threshold=s.circuit_breaker_failure_threshold,
        cooldown_seconds=s.circuit_breaker_cooldown_seconds,
        rate_window_seconds=s.rate_limit_window_seconds,
        latency_alpha=s.health_latency_alpha,
        degraded_latency_ms=s.health_degraded_latency_ms,
        probe_timeout_s=s.health_probe_timeout_seconds,
    )
