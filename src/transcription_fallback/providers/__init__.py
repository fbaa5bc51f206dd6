"""Transcription provider resilience framework.

Provides ordering, failover, circuit breaking, rate limiting and health
tracking for the speech-to-text backends behind the editor's captions.
"""

from transcription_fallback.providers.types import (
    AttemptOutcome,
    AttemptRecord,
    CircuitBreakerState,
    CircuitState,
    ExecutionContext,
    ExecutionResult,
    FallbackStrategy,
    HealthStatus,
    ProviderConfig,
    ProviderHealth,
    ProviderStatusView,
    RateLimit,
    SelectionCriterion,
)
from transcription_fallback.providers.registry import ProviderRegistry
from transcription_fallback.providers.rate_limiter import RateLimiter
from transcription_fallback.providers.circuit_breaker import CircuitBreaker
from transcription_fallback.providers.health import ProviderHealthTracker
from transcription_fallback.providers.selector import StrategySelector
from transcription_fallback.providers.cost import calculate_cost
from transcription_fallback.providers.executor import FallbackExecutor

__all__ = [
    "AttemptOutcome",
    "AttemptRecord",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitState",
    "ExecutionContext",
    "ExecutionResult",
    "FallbackExecutor",
    "FallbackStrategy",
    "HealthStatus",
    "ProviderConfig",
    "ProviderHealth",
    "ProviderHealthTracker",
    "ProviderRegistry",
    "ProviderStatusView",
    "RateLimit",
    "RateLimiter",
    "SelectionCriterion",
    "StrategySelector",
    "calculate_cost",
]
