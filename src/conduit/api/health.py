"""Health endpoints for container orchestrators.

``create_health_router()`` gives the app three K8s-style endpoints:

* ``GET /health``        — runs every dependency check; 503 if a required one fails.
* ``GET /health/ready``  — readiness; 503 unless every check is healthy.
* ``GET /health/live``   — liveness; always 200 while the process runs.

The database initialization service never blocks startup, so readiness is
where a missing or unreachable database shows up.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

_START_TIME = time.monotonic()

Status = Literal["healthy", "degraded", "unhealthy"]


class CheckResult(BaseModel):
    """Result of a single dependency health check."""

    status: Status
    latency_ms: float | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    """Health response envelope returned by ``/health`` and ``/health/ready``."""

    status: Status = "healthy"
    service: str = ""
    version: str = ""
    uptime_s: float = Field(default_factory=lambda: round(time.monotonic() - _START_TIME, 1))
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    checks: dict[str, CheckResult] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    status: str = "alive"


@dataclass
class HealthCheck:
    """One dependency check.

    ``check_fn`` should return truthy or raise.  A failing ``required`` check
    makes the service ``unhealthy``; an optional one only ``degraded``.
    """

    name: str
    check_fn: Callable[[], Awaitable[Any]]
    required: bool = True
    timeout_s: float = 5.0


async def run_checks(checks: list[HealthCheck]) -> dict[str, CheckResult]:
    """Execute all checks concurrently and return name → result."""

    async def _one(hc: HealthCheck) -> tuple[str, CheckResult]:
        start = time.monotonic()
        try:
            await asyncio.wait_for(hc.check_fn(), timeout=hc.timeout_s)
        except TimeoutError:
            return hc.name, CheckResult(status="unhealthy", error="timeout")
        except Exception as exc:  # noqa: BLE001
            elapsed = (time.monotonic() - start) * 1000
            return hc.name, CheckResult(
                status="unhealthy",
                latency_ms=round(elapsed, 2),
                error=str(exc)[:200],
            )
        elapsed = (time.monotonic() - start) * 1000
        return hc.name, CheckResult(status="healthy", latency_ms=round(elapsed, 2))

    pairs = await asyncio.gather(*[_one(hc) for hc in checks])
    return dict(pairs)


def compute_status(check_results: dict[str, CheckResult], checks: list[HealthCheck]) -> Status:
    """Derive aggregate status from individual check results."""
    required = {hc.name for hc in checks if hc.required}
    failing = {name for name, result in check_results.items() if result.status != "healthy"}
    if failing & required:
        return "unhealthy"
    if failing:
        return "degraded"
    return "healthy"


def create_health_router(
    service_name: str,
    version: str,
    checks: list[HealthCheck] | None = None,
    prefix: str = "/health",
) -> APIRouter:
    router = APIRouter(tags=["health"])
    _checks: list[HealthCheck] = checks or []

    async def _evaluate() -> HealthResponse:
        check_results = await run_checks(_checks)
        return HealthResponse(
            status=compute_status(check_results, _checks),
            service=service_name,
            version=version,
            checks=check_results,
        )

    @router.get(prefix, response_model=HealthResponse)
    async def health() -> JSONResponse:
        body = await _evaluate()
        code = 503 if body.status == "unhealthy" else 200
        return JSONResponse(content=body.model_dump(), status_code=code)

    @router.get(f"{prefix}/ready", response_model=HealthResponse)
    async def readiness() -> JSONResponse:
        body = await _evaluate()
        code = 503 if body.status != "healthy" else 200
        return JSONResponse(content=body.model_dump(), status_code=code)

    @router.get(f"{prefix}/live", response_model=LivenessResponse)
    async def liveness() -> LivenessResponse:
        return LivenessResponse()

    return router
