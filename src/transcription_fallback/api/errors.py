"""Exception handlers — map orchestrator errors to HTTP responses."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

from transcription_fallback.exceptions import (
    AllProvidersFailedError,
    FallbackError,
    UnknownProviderError,
    UnknownStrategyError,
)

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all orchestrator→HTTP exception mappings."""

    @app.exception_handler(UnknownProviderError)
    async def handle_unknown_provider(
        request: Request, exc: UnknownProviderError
    ) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=404,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(UnknownStrategyError)
    async def handle_unknown_strategy(
        request: Request, exc: UnknownStrategyError
    ) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=404,
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(AllProvidersFailedError)
    async def handle_exhausted(
        request: Request, exc: AllProvidersFailedError
    ) -> ORJSONResponse:
        logger.error("all_providers_failed_http", message=exc.message)
        return ORJSONResponse(
            status_code=503,
            content={"code": exc.code, "message": exc.message, "errors": exc.errors},
        )

    @app.exception_handler(FallbackError)
    async def handle_fallback(request: Request, exc: FallbackError) -> ORJSONResponse:
        logger.error("fallback_error_http", code=exc.code, message=exc.message)
        return ORJSONResponse(
            status_code=500,
            content={"code": exc.code, "message": exc.message},
        )
