"""Fallback orchestrator exception hierarchy.

All exceptions inherit from ``FallbackError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from transcription_fallback.providers.types import AttemptRecord


class FallbackError(Exception):
    """Base class for all orchestrator errors."""

    def __init__(self, message: str, *, code: str = "FALLBACK_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Gate signals (candidate skipped, never surfaced per attempt) ─
class CircuitOpenError(FallbackError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(
            f"Circuit breaker open for {provider_id!r}", code="CIRCUIT_OPEN"
        )


class RateLimitExceededError(FallbackError):
    def __init__(self, provider_id: str, units: int = 0) -> None:
        self.provider_id = provider_id
        self.units = units
        super().__init__(
            f"Rate limit exceeded for {provider_id!r}", code="RATE_LIMIT_EXCEEDED"
        )


# ── Attempt failures ─────────────────────────────────────────
class ProviderTimeoutError(FallbackError):
    def __init__(self, provider_id: str, timeout_s: float) -> None:
        self.provider_id = provider_id
        self.timeout_s = timeout_s
        super().__init__(f"Timeout after {timeout_s}s", code="PROVIDER_TIMEOUT")


class ProviderError(FallbackError):
    """Wraps whatever the provider operation raised."""

    def __init__(self, provider_id: str, cause: BaseException) -> None:
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}", code="PROVIDER_ERROR")
        self.__cause__ = cause


class AllProvidersFailedError(FallbackError):
    """Terminal failure; carries the full attempt history."""

    def __init__(
        self,
        attempts: Sequence[AttemptRecord],
        *,
        strategy: str = "",
        duration_ms: float = 0.0,
    ) -> None:
        self.attempts = list(attempts)
        self.strategy = strategy
        self.duration_ms = duration_ms
        tried = ", ".join(
            f"{a.provider_id} ({a.error})" for a in self.attempts
        ) or "no provider was available"
        super().__init__(
            f"All providers failed after {len(self.attempts)} attempt(s) "
            f"in {duration_ms:.0f}ms: {tried}",
            code="ALL_PROVIDERS_FAILED",
        )

    @property
    def errors(self) -> dict[str, str]:
        return {a.provider_id: a.error or "" for a in self.attempts}


# ── Configuration ────────────────────────────────────────────
class DuplicateProviderError(FallbackError):
    def __init__(self, provider_id: str) -> None:
        super().__init__(
            f"Provider {provider_id!r} is already registered",
            code="DUPLICATE_PROVIDER",
        )


class UnknownProviderError(FallbackError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(
            f"Provider {provider_id!r} is not registered", code="UNKNOWN_PROVIDER"
        )


class UnknownStrategyError(FallbackError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Strategy {name!r} is not registered", code="UNKNOWN_STRATEGY")


class InvalidStrategyError(FallbackError):
    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Strategy {name!r} is invalid: {reason}", code="INVALID_STRATEGY")
