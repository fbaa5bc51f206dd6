"""Transcription fallback orchestrator — application configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "Transcription Fallback"
    app_env: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"

    # ── Circuit breaker ──────────────────────────────────────
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_cooldown_seconds: float = 60.0

    # ── Rate limiting ────────────────────────────────────────
    rate_limit_window_seconds: float = 60.0

    # ── Health tracking ──────────────────────────────────────
    health_latency_alpha: float = 0.3
    health_degraded_latency_ms: float = 10_000.0
    health_probe_timeout_seconds: float = 30.0
    health_polling_enabled: bool = False
    health_check_interval_seconds: float = 30.0

    # ── Default provider catalog ─────────────────────────────
    openai_whisper_rpm: int = 500
    openai_whisper_units_per_minute: int = 200_000
    openai_whisper_timeout_seconds: float = 120.0
    assemblyai_rpm: int = 300
    assemblyai_units_per_minute: int = 150_000
    assemblyai_timeout_seconds: float = 180.0
    webspeech_rpm: int = 60
    webspeech_units_per_minute: int = 0
    webspeech_timeout_seconds: float = 30.0

    default_strategy: str = "quality"

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("health_latency_alpha")
    @classmethod
    def _validate_alpha(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("health_latency_alpha must be in (0, 1]")
        return v

    @model_validator(mode="after")
    def _validate_positive(self) -> Settings:
        if self.circuit_breaker_failure_threshold < 1:
            raise ValueError("circuit_breaker_failure_threshold must be at least 1")
        for name in (
            "circuit_breaker_cooldown_seconds",
            "rate_limit_window_seconds",
            "health_probe_timeout_seconds",
            "health_check_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
