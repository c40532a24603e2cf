# ============================================================================
# HEALTH CHECK TESTS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Tests - Probes and check execution
# PURPOSE: Verify liveness, readiness aggregation and check timeouts
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Tests

Run with:
    pytest tests/test_health.py -v
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from __version__ import __version__
from health import (
    HealthCheckPlugin,
    HealthCheckResult,
    HealthStatus,
    configure_health,
    health_router,
    run_checks,
)


class FakeCursor:
    async def fetchone(self):
        return (1,)


class FakeConnection:
    async def execute(self, query, params=None):
        return FakeCursor()


class FakePool:
    """Just enough of AsyncConnectionPool for the database check."""

    @asynccontextmanager
    async def connection(self):
        yield FakeConnection()

    def get_stats(self):
        return {"pool_size": 2, "pool_available": 1}


def _running_orchestrator():
    orchestrator = MagicMock()
    orchestrator.is_running = True
    orchestrator.stats = {
        "running_loops": 0,
        "processor": "accept",
        "packets_processed": 0,
        "errors": 0,
    }
    return orchestrator


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(health_router)
    yield TestClient(app)
    configure_health(pool=None, orchestrator=None)


class TestProbes:

    def test_livez(self, client):
        resp = client.get("/livez")
        assert resp.status_code == 200
        assert resp.json()["status"] == "alive"
        assert resp.json()["version"] == __version__

    def test_readyz_without_services(self, client):
        configure_health(pool=None, orchestrator=None)

        resp = client.get("/readyz")

        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "not_ready"
        assert set(data["checks"]) == {"database", "orchestrator"}

    def test_readyz_ready(self, client):
        configure_health(pool=FakePool(), orchestrator=_running_orchestrator())

        resp = client.get("/readyz")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ready", "checks_passed": 2}

    def test_readyz_orchestrator_stopped(self, client):
        orchestrator = _running_orchestrator()
        orchestrator.is_running = False
        configure_health(pool=FakePool(), orchestrator=orchestrator)

        resp = client.get("/readyz")

        assert resp.status_code == 503
        assert resp.json()["checks"]["orchestrator"]["message"] == "Orchestrator not running"

    def test_health_lists_every_check(self, client):
        configure_health(pool=None, orchestrator=None)

        resp = client.get("/health")

        assert resp.status_code == 503
        data = resp.json()
        assert {"database", "schema", "orchestrator", "processors"} <= set(data["checks"])
        assert data["checks"]["processors"]["status"] == "healthy"


class TestExecution:

    def test_aggregate_worst_wins(self):
        assert HealthStatus.aggregate([]) == HealthStatus.HEALTHY
        assert HealthStatus.aggregate([HealthStatus.HEALTHY, HealthStatus.DEGRADED]) == HealthStatus.DEGRADED
        assert HealthStatus.aggregate([HealthStatus.DEGRADED, HealthStatus.UNHEALTHY]) == HealthStatus.UNHEALTHY

    def test_timeout_is_unhealthy(self):
        class SlowCheck(HealthCheckPlugin):
            name = "slow"
            timeout_seconds = 0.01

            async def check(self):
                await asyncio.sleep(1)
                return HealthCheckResult.healthy()

        results = asyncio.run(run_checks([SlowCheck()]))

        assert results["slow"].status == HealthStatus.UNHEALTHY
        assert results["slow"].message.startswith("Timeout")

    def test_exception_is_unhealthy(self):
        class BrokenCheck(HealthCheckPlugin):
            name = "broken"

            async def check(self):
                raise RuntimeError("boom")

        results = asyncio.run(run_checks([BrokenCheck()]))

        assert results["broken"].status == HealthStatus.UNHEALTHY
        assert results["broken"].details == {"exception_type": "RuntimeError"}
