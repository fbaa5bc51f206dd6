"""Reachability probes for active health checks.

A probe only answers "is the endpoint reachable and answering sanely".
An unauthenticated 401 counts as reachable: the probe never carries real
credentials.
"""

from __future__ import annotations

from typing import Collection

import httpx
import structlog

from transcription_fallback.providers.health import ProbeFn

logger = structlog.get_logger(__name__)

OPENAI_MODELS_URL = "https://api.openai.com/v1/models"
ASSEMBLYAI_UPLOAD_URL = "https://api.assemblyai.com/v2/upload"

REACHABLE_STATUSES: frozenset[int] = frozenset({200, 401})


class ProbeFailedError(Exception):
    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"{url} unhealthy: HTTP {status_code}")


def http_probe(
    url: str,
    *,
    method: str = "GET",
    accepted_statuses: Collection[int] = REACHABLE_STATUSES,
    accept_success: bool = False,
    client: httpx.AsyncClient | None = None,
) -> ProbeFn:
    """Build a probe that issues one request and checks the status code.

    ``accept_success`` also accepts any 2xx. Pass ``client`` to share a
    connection pool (or a mock transport in tests); otherwise each probe run
    opens a short-lived client.
    """

    def _ok(status_code: int) -> bool:
        if status_code in accepted_statuses:
            return True
        return accept_success and 200 <= status_code < 300

    async def _probe() -> int:
        if client is not None:
            response = await client.request(method, url)
        else:
            async with httpx.AsyncClient() as owned:
                response = await owned.request(method, url)
        if not _ok(response.status_code):
            raise ProbeFailedError(url, response.status_code)
        logger.debug("http_probe_ok", url=url, status_code=response.status_code)
        return response.status_code

    return _probe


def default_probes(client: httpx.AsyncClient | None = None) -> dict[str, ProbeFn]:
    """Probes for the remote backends in the default catalog."""
    return {
        "openai-whisper": http_probe(OPENAI_MODELS_URL, client=client),
        "assemblyai": http_probe(
            ASSEMBLYAI_UPLOAD_URL,
            method="HEAD",
            accepted_statuses={401},
            accept_success=True,
            client=client,
        ),
    }
