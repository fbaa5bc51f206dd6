"""Core types for the transcription fallback orchestrator."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class HealthStatus(str, enum.Enum):
    """Observed health of a transcription provider."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class SelectionCriterion(str, enum.Enum):
    """How a strategy orders its candidate providers."""

    COST = "cost"
    SPEED = "speed"
    QUALITY = "quality"
    AVAILABILITY = "availability"


class AttemptOutcome(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class RateLimit:
    """Sliding-window quota. ``None`` means unlimited; 0 is a literal budget."""

    requests_per_window: int | None = 60
    units_per_window: int | None = None


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single transcription backend.

    Attributes:
        provider_id:   Unique identifier (e.g. "openai-whisper").
        name:          Human-readable display name.
        priority:      Higher = preferred (used by the QUALITY criterion).
        max_retries:   Advertised retry budget of the backend client.
        timeout_s:     Per-attempt timeout in seconds.
        cost_per_unit: Price of one unit (one minute of audio).
        rate_limit:    Requests / units allowed per 60 s window.
        capabilities:  Free-form capability tags ("word-timestamps", ...).
        aliases:       Legacy ids that resolve to this provider.
    """

    provider_id: str
    name: str = ""
    priority: int = 0
    max_retries: int = 1
    timeout_s: float = 60.0
    cost_per_unit: float = 0.0
    rate_limit: RateLimit = field(default_factory=RateLimit)
    capabilities: frozenset[str] = frozenset()
    aliases: tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return self.name or self.provider_id


@dataclass
class ProviderHealth:
    """Snapshot of a provider's current health."""

    provider_id: str
    status: HealthStatus = HealthStatus.HEALTHY
    last_check: float = 0.0
    response_time_ms: float = 0.0
    success_rate: float = 100.0
    error_count: int = 0
    last_error: str | None = None


@dataclass
class CircuitBreakerState:
    """Snapshot of a provider's circuit breaker."""

    provider_id: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0.0
    next_retry_time: float = 0.0


@dataclass(frozen=True)
class FallbackStrategy:
    """Named preference list of providers plus an ordering criterion."""

    primary: str
    fallbacks: tuple[str, ...] = ()
    criterion: SelectionCriterion = SelectionCriterion.QUALITY
    max_attempts: int = 3

    @property
    def provider_ids(self) -> list[str]:
        ordered: list[str] = []
        for pid in (self.primary, *self.fallbacks):
            if pid not in ordered:
                ordered.append(pid)
        return ordered


@dataclass(frozen=True)
class ExecutionContext:
    units: int = 0
    file_size: int = 0


@dataclass
class AttemptRecord:
    provider_id: str
    started_at: float
    duration_ms: float
    outcome: AttemptOutcome
    error: str | None = None


@dataclass
class ExecutionResult(Generic[T]):
    """Returned by ``FallbackExecutor.execute_with_fallback`` on success."""

    result: T
    provider_id: str
    attempt_count: int
    total_cost: float
    attempts: list[AttemptRecord] = field(default_factory=list)
    strategy: str = ""

    @property
    def fallback_used(self) -> bool:
        return self.attempt_count > 1


@dataclass
class ProviderStatusView:
    """Compact per-provider status for external reporting."""

    id: str
    name: str
    healthy: bool
    response_time_ms: float
    circuit_open: bool
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "healthy": self.healthy,
            "response_time_ms": self.response_time_ms,
            "last_error": self.last_error,
            "circuit_open": self.circuit_open,
        }
