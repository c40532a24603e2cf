# ============================================================================
# HEALTH CHECK CORE TYPES
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - Health check plugins and registry
# PURPOSE: Health check plugin interface, result types and execution
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Core Types

Status hierarchy (worst wins):
- healthy: all systems operational
- degraded: operational with warnings
- unhealthy: critical failure

Checks register themselves with @register_check and are executed
concurrently, each under its own timeout.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status values."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return {
            HealthStatus.HEALTHY: 0,
            HealthStatus.DEGRADED: 1,
            HealthStatus.UNHEALTHY: 2,
        }[self]

    @classmethod
    def aggregate(cls, statuses: List["HealthStatus"]) -> "HealthStatus":
        """Aggregate multiple statuses (worst wins)."""
        if not statuses:
            return cls.HEALTHY
        return max(statuses, key=lambda s: s.severity)


@dataclass
class HealthCheckResult:
    """Result from a single health check."""
    status: HealthStatus
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    checked_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def healthy(cls, message: str = None, **details) -> "HealthCheckResult":
        return cls(status=HealthStatus.HEALTHY, message=message, details=details)

    @classmethod
    def degraded(cls, message: str, **details) -> "HealthCheckResult":
        return cls(status=HealthStatus.DEGRADED, message=message, details=details)

    @classmethod
    def unhealthy(cls, message: str, **details) -> "HealthCheckResult":
        return cls(status=HealthStatus.UNHEALTHY, message=message, details=details)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result = {
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.message:
            result["message"] = self.message
        if self.details:
            result["details"] = self.details
        return result


class HealthCheckPlugin(ABC):
    """
    Base class for health check plugins.

    Attributes:
        name: Unique identifier for the check
        timeout_seconds: Max execution time before the check counts as unhealthy
        required_for_ready: If True, failure blocks /readyz
    """

    name: str = "unnamed"
    timeout_seconds: float = 5.0
    required_for_ready: bool = True

    @abstractmethod
    async def check(self) -> HealthCheckResult:
        """Execute health check."""


# ============================================================================
# REGISTRY
# ============================================================================

_checks: Dict[str, HealthCheckPlugin] = {}


def register_check(cls: Type[HealthCheckPlugin]) -> Type[HealthCheckPlugin]:
    """
    Class decorator registering one instance of a health check.

    Example:
        @register_check
        class DatabaseCheck(HealthCheckPlugin):
            name = "database"

            async def check(self) -> HealthCheckResult:
                ...
    """
    instance = cls()
    if instance.name in _checks:
        logger.warning(f"Overwriting health check: {instance.name}")
    _checks[instance.name] = instance
    return cls


def get_checks(required_only: bool = False) -> List[HealthCheckPlugin]:
    return [c for c in _checks.values() if c.required_for_ready or not required_only]


# ============================================================================
# EXECUTION
# ============================================================================

async def _run_check(check: HealthCheckPlugin) -> HealthCheckResult:
    start_time = time.monotonic()
    try:
        result = await asyncio.wait_for(check.check(), timeout=check.timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Health check {check.name} timed out after {check.timeout_seconds}s")
        result = HealthCheckResult.unhealthy(f"Timeout after {check.timeout_seconds}s")
    except Exception as e:
        logger.error(f"Health check {check.name} failed: {e}")
        result = HealthCheckResult.unhealthy(str(e), exception_type=type(e).__name__)

    result.duration_ms = (time.monotonic() - start_time) * 1000
    return result


async def run_checks(checks: List[HealthCheckPlugin]) -> Dict[str, HealthCheckResult]:
    """Run checks concurrently; results keyed by check name."""
    results = await asyncio.gather(*(_run_check(check) for check in checks))
    return {check.name: result for check, result in zip(checks, results)}


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthStatus",
    "HealthCheckResult",
    "HealthCheckPlugin",
    "register_check",
    "get_checks",
    "run_checks",
]
