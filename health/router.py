# ============================================================================
# HEALTH CHECK ROUTER
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - FastAPI health check endpoints
# PURPOSE: Kubernetes probes and health monitoring endpoints
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Router

Endpoints:
    GET /livez   - Liveness probe: process alive, no external checks
    GET /readyz  - Readiness probe: required checks (database, orchestrator)
    GET /health  - Every registered check with details and version

Response Codes:
    200 - Healthy
    206 - Degraded (partial content)
    503 - Unhealthy (service unavailable)
"""

import logging
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from __version__ import BUILD_DATE, __version__
from health.core import HealthStatus, get_checks, run_checks

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["Health"])


def _status_to_http_code(status: HealthStatus) -> int:
    """Map health status to HTTP status code."""
    return {
        HealthStatus.HEALTHY: 200,
        HealthStatus.DEGRADED: 206,
        HealthStatus.UNHEALTHY: 503,
    }[status]


@health_router.get("/livez")
async def liveness_probe():
    """Returns 200 while the process is responsive."""
    return {"status": "alive", "version": __version__, "build_date": BUILD_DATE}


@health_router.get("/readyz")
async def readiness_probe():
    """Returns 200 when the database is reachable and the orchestrator runs."""
    results = await run_checks(get_checks(required_only=True))
    status = HealthStatus.aggregate([r.status for r in results.values()])

    if status == HealthStatus.UNHEALTHY:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "checks": {
                    name: result.to_dict()
                    for name, result in results.items()
                    if result.status == HealthStatus.UNHEALTHY
                },
            },
        )

    return {"status": "ready", "checks_passed": len(results)}


@health_router.get("/health")
async def full_health_check():
    """All registered checks with details."""
    results = await run_checks(get_checks())
    status = HealthStatus.aggregate([r.status for r in results.values()])

    return JSONResponse(
        status_code=_status_to_http_code(status),
        content={
            "status": status.value,
            "checks": {name: result.to_dict() for name, result in results.items()},
            "version": __version__,
            "build_date": BUILD_DATE,
            "checked_at": datetime.utcnow().isoformat() + "Z",
        },
    )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["health_router"]
