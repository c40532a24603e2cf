# ============================================================================
# HEALTH CHECKS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - Concrete health checks
# PURPOSE: Database, schema, orchestrator and processor availability
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Checks

- database: pool can run SELECT 1 (required for /readyz)
- schema: packetproc tables exist (degraded when missing)
- orchestrator: loop runner started (required for /readyz)
- processors: at least one record processor registered

The main app hands over the pool and orchestrator with configure().
"""

import logging

from health.core import HealthCheckPlugin, HealthCheckResult, register_check

logger = logging.getLogger(__name__)

# Global references (set by main app)
_pool = None
_orchestrator = None


def configure(pool=None, orchestrator=None) -> None:
    """Set pool and orchestrator references for health checks."""
    global _pool, _orchestrator
    _pool = pool
    _orchestrator = orchestrator


@register_check
class DatabaseCheck(HealthCheckPlugin):
    """PostgreSQL connectivity through the shared pool."""

    name = "database"
    timeout_seconds = 5.0

    async def check(self) -> HealthCheckResult:
        if _pool is None:
            return HealthCheckResult.unhealthy("Connection pool not initialized")

        async with _pool.connection() as conn:
            cursor = await conn.execute("SELECT 1")
            row = await cursor.fetchone()

        stats = _pool.get_stats()
        if row is None:
            return HealthCheckResult.unhealthy("PostgreSQL query returned no row")
        return HealthCheckResult.healthy(
            "PostgreSQL connected",
            pool_size=stats.get("pool_size"),
            pool_available=stats.get("pool_available"),
        )


@register_check
class SchemaCheck(HealthCheckPlugin):
    """packetproc tables deployed."""

    name = "schema"
    timeout_seconds = 5.0
    required_for_ready = False

    async def check(self) -> HealthCheckResult:
        if _pool is None:
            return HealthCheckResult.unhealthy("Connection pool not initialized")

        from infrastructure.database_initializer import DatabaseInitializer

        initializer = DatabaseInitializer(_pool)
        existing = await initializer.get_tables()
        missing = [t for t in initializer.EXPECTED_TABLES if t not in existing]

        if missing:
            return HealthCheckResult.degraded(
                f"Missing tables: {', '.join(missing)}",
                hint="Set AUTO_BOOTSTRAP_SCHEMA=true or deploy the schema",
            )
        return HealthCheckResult.healthy(f"Schema {initializer.SCHEMA_NAME} present", tables=existing)


@register_check
class OrchestratorCheck(HealthCheckPlugin):
    """Packet orchestrator accepting sessions."""

    name = "orchestrator"
    timeout_seconds = 2.0

    async def check(self) -> HealthCheckResult:
        if _orchestrator is None:
            return HealthCheckResult.unhealthy("Orchestrator not initialized")

        if not _orchestrator.is_running:
            return HealthCheckResult.unhealthy("Orchestrator not running")

        stats = _orchestrator.stats
        return HealthCheckResult.healthy(
            f"{stats['running_loops']} session loops running",
            processor=stats["processor"],
            packets_processed=stats["packets_processed"],
            errors=stats["errors"],
        )


@register_check
class ProcessorsCheck(HealthCheckPlugin):
    """Record processor registry populated."""

    name = "processors"
    timeout_seconds = 2.0
    required_for_ready = False

    async def check(self) -> HealthCheckResult:
        from processors import list_processors

        processors = list_processors()
        if not processors:
            return HealthCheckResult.degraded("No record processors registered")
        return HealthCheckResult.healthy(
            f"{len(processors)} record processors registered",
            processors=[p["name"] for p in processors],
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DatabaseCheck",
    "SchemaCheck",
    "OrchestratorCheck",
    "ProcessorsCheck",
    "configure",
]
