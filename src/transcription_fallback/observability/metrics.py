"""Prometheus metrics for the fallback orchestrator."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


# ── Execution metrics ────────────────────────────────────────
EXECUTIONS_TOTAL = Counter(
    "transcription_fallback_executions_total",
    "Fallback executions by strategy and final status",
    ["strategy", "status"],
)

ATTEMPTS_TOTAL = Counter(
    "transcription_provider_attempts_total",
    "Provider invocations by outcome",
    ["provider", "outcome"],
)

SKIPS_TOTAL = Counter(
    "transcription_provider_skips_total",
    "Candidates skipped without invoking the provider",
    ["provider", "reason"],  # circuit_open / rate_limit_exceeded / no_operation
)

ATTEMPT_LATENCY = Histogram(
    "transcription_provider_attempt_seconds",
    "Provider attempt duration",
    ["provider"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 180.0),
)

BILLED_COST = Counter(
    "transcription_provider_cost_total",
    "Accumulated cost of successful provider calls",
    ["provider"],
)

# ── Provider state ───────────────────────────────────────────
CIRCUIT_STATE = Gauge(
    "transcription_provider_circuit_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["provider"],
)

HEALTH_SUCCESS_RATE = Gauge(
    "transcription_provider_success_rate",
    "Tracked success rate (0-100)",
    ["provider"],
)
