"""FastAPI application entry-point for the provider status surface."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from transcription_fallback import __version__
from transcription_fallback.api.errors import register_exception_handlers
from transcription_fallback.api.routers import health_router, providers_router
from transcription_fallback.config import Settings, get_settings
from transcription_fallback.dependencies import get_default_executor
from transcription_fallback.observability import configure_logging
from transcription_fallback.providers.executor import FallbackExecutor

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    executor: FallbackExecutor = app.state.executor
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.is_production,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        providers=executor.registry.ids(),
        health_polling=settings.health_polling_enabled,
    )
    if settings.health_polling_enabled:
        executor.start_health_polling(settings.health_check_interval_seconds)

    yield

    await executor.aclose()
    logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    executor: FallbackExecutor | None = None,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Status and admin surface for the speech-to-text fallback orchestrator: "
            "provider health, circuit state, quota usage and manual resets."
        ),
        version=__version__,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.executor = executor or get_default_executor(settings)

    register_exception_handlers(app)

    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)

    return app
