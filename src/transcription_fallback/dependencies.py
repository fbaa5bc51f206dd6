"""Dependency wiring for the HTTP layer.

The orchestrator core never reaches for globals; only the FastAPI surface
keeps one lazily built executor per process, and ``create_app`` may inject
its own.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from transcription_fallback.config import Settings, get_settings
from transcription_fallback.providers.defaults import build_executor
from transcription_fallback.providers.executor import FallbackExecutor
from transcription_fallback.providers.probes import default_probes


# ── Settings ─────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_cached_settings() -> Settings:
    return get_settings()


# ── Executor ─────────────────────────────────────────────────
_executors: dict[str, FallbackExecutor] = {}


def get_default_executor(settings: Settings | None = None) -> FallbackExecutor:
    """One executor per distinct settings value, built on first use."""
    settings = settings or get_cached_settings()
    key = settings.model_dump_json()
    if key not in _executors:
        _executors[key] = build_executor(settings, probes=default_probes())
    return _executors[key]


def get_executor(request: Request) -> FallbackExecutor:
    """FastAPI dependency: the executor attached to this app."""
    return request.app.state.executor
