"""Pydantic response models for the provider status API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    providers: dict[str, str] = Field(default_factory=dict)


class ProviderStatusResponse(BaseModel):
    id: str
    name: str
    healthy: bool
    response_time_ms: float
    last_error: str | None = None
    circuit_open: bool


class HealthCheckResponse(BaseModel):
    probed: dict[str, str]


class ResetResponse(BaseModel):
    status: str = "reset"
    provider_id: str
