# ============================================================================
# HEALTH CHECK MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - Health check plugin system
# PURPOSE: Kubernetes probes and health monitoring
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Module

- /livez: process alive
- /readyz: database reachable and orchestrator running
- /health: every check with details

Usage:
    from health import health_router, configure_health

    configure_health(pool=pool, orchestrator=orchestrator)
    app.include_router(health_router)
"""

from health.core import (
    HealthStatus,
    HealthCheckResult,
    HealthCheckPlugin,
    register_check,
    get_checks,
    run_checks,
)
from health.checks import configure as configure_health
from health.router import health_router

__all__ = [
    "HealthStatus",
    "HealthCheckResult",
    "HealthCheckPlugin",
    "register_check",
    "get_checks",
    "run_checks",
    "configure_health",
    "health_router",
]
