"""Health, metrics and provider status REST routers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from transcription_fallback import __version__
from transcription_fallback.api.dtos import (
    ErrorResponse,
    HealthCheckResponse,
    HealthResponse,
    ProviderStatusResponse,
    ResetResponse,
)
from transcription_fallback.dependencies import get_executor
from transcription_fallback.providers.executor import FallbackExecutor

# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    executor: FallbackExecutor = Depends(get_executor),
) -> HealthResponse:
    settings = request.app.state.settings
    views = executor.get_providers_status()
    return HealthResponse(
        status="ok" if any(v.healthy and not v.circuit_open for v in views) else "degraded",
        version=__version__,
        environment=settings.app_env.value,
        providers={
            v.id: "circuit_open" if v.circuit_open else ("healthy" if v.healthy else "unhealthy")
            for v in views
        },
    )


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Provider Health
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Health"])


@providers_router.get("/status", response_model=list[ProviderStatusResponse])
async def provider_status(
    executor: FallbackExecutor = Depends(get_executor),
) -> list[dict[str, Any]]:
    """Compact status for every registered transcription provider."""
    return [view.to_dict() for view in executor.get_providers_status()]


@providers_router.get("/stats")
async def provider_stats(
    executor: FallbackExecutor = Depends(get_executor),
) -> dict[str, Any]:
    """Health, circuit and quota snapshots plus in-memory execution counters."""
    return executor.get_system_stats()


@providers_router.post("/health-check", response_model=HealthCheckResponse)
async def force_health_check(
    executor: FallbackExecutor = Depends(get_executor),
) -> HealthCheckResponse:
    statuses = await executor.force_health_check()
    return HealthCheckResponse(probed={pid: s.value for pid, s in statuses.items()})


@providers_router.post(
    "/{provider_id}/reset",
    response_model=ResetResponse,
    responses={404: {"model": ErrorResponse}},
)
async def reset_provider(
    provider_id: str,
    executor: FallbackExecutor = Depends(get_executor),
) -> ResetResponse:
    """Admin: clear health counters and circuit state (``all`` for every provider)."""
    executor.reset_provider_health(provider_id)
    return ResetResponse(provider_id=provider_id)
