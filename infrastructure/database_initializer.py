# ============================================================================
# DATABASE INITIALIZER - INFRASTRUCTURE AS CODE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - Database initialization
# PURPOSE: Bootstrap packetproc schema from Pydantic models
# CREATED: 18 OCT 2026
# ============================================================================
"""
DatabaseInitializer - Infrastructure as Code for the packet processor.

Standardized workflow for initializing the packetproc schema:
1. Connection test
2. Schema, enum types, tables, indexes, updated_at triggers
   (generated from PacketSession / PacketRecord via PydanticToSQL)
3. Verification that the expected tables exist

Every statement is idempotent, so the workflow is safe to run on each
startup (AUTO_BOOTSTRAP_SCHEMA=true).

Usage:
    from infrastructure import DatabaseInitializer

    initializer = DatabaseInitializer(pool)
    result = await initializer.initialize_all()

    # Dry run (render SQL without executing)
    result = await initializer.initialize_all(dry_run=True)
"""

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.schema import PydanticToSQL
from repositories.database import SCHEMA

logger = logging.getLogger(__name__)


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class StepResult:
    """Result of a single initialization step."""
    name: str
    status: str  # 'success', 'failed', 'skipped'
    message: str = ""
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InitializationResult:
    """Complete result of database initialization."""
    schema: str
    timestamp: str
    dry_run: bool
    success: bool = False
    steps: List[StepResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "schema": self.schema,
            "timestamp": self.timestamp,
            "dry_run": self.dry_run,
            "success": self.success,
            "steps": [
                {
                    "name": s.name,
                    "status": s.status,
                    "message": s.message,
                    "error": s.error,
                    "details": s.details,
                }
                for s in self.steps
            ],
            "errors": self.errors,
            "warnings": self.warnings,
        }


# ============================================================================
# DATABASE INITIALIZER
# ============================================================================

class DatabaseInitializer:
    """Deploys and verifies the packetproc schema through the shared pool."""

    SCHEMA_NAME = SCHEMA
    EXPECTED_TABLES = ["packet_sessions", "packet_records"]

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    def generate_ddl(self) -> List[sql.Composed]:
        """DDL statements generated from the Pydantic models."""
        return PydanticToSQL(schema_name=self.SCHEMA_NAME).generate_all()

    async def initialize_all(self, dry_run: bool = False) -> InitializationResult:
        """
        Run connection test, schema deployment and verification.

        Args:
            dry_run: If True, render the DDL without executing it

        Returns:
            InitializationResult with per-step detail
        """
        result = InitializationResult(
            schema=self.SCHEMA_NAME,
            timestamp=datetime.now(timezone.utc).isoformat(),
            dry_run=dry_run,
        )

        logger.info(f"Database initialization: schema={self.SCHEMA_NAME} mode={'DRY RUN' if dry_run else 'EXECUTE'}")

        try:
            step = await self._test_connection()
            result.steps.append(step)
            if step.status == "failed":
                result.errors.append(f"Connection failed: {step.error}")
                return result

            step = await self._deploy_schema(dry_run=dry_run)
            result.steps.append(step)
            if step.status == "failed":
                result.errors.append(f"Schema deployment failed: {step.error}")

            if not dry_run:
                step = await self._verify_tables()
                result.steps.append(step)
                if step.status == "failed":
                    result.warnings.append(f"Verification issue: {step.error}")

            result.success = not [
                s for s in result.steps
                if s.status == "failed" and s.name != "verify_tables"
            ]

        except Exception as e:
            logger.error(f"Initialization failed: {e}")
            logger.error(traceback.format_exc())
            result.errors.append(str(e))
            result.success = False

        logger.info(f"Database initialization {'complete' if result.success else 'FAILED'}")
        return result

    async def _test_connection(self) -> StepResult:
        step = StepResult(name="test_connection", status="pending")

        try:
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                cursor = await conn.execute(
                    "SELECT version() AS version, current_database() AS db"
                )
                row = await cursor.fetchone()

            step.status = "success"
            step.message = f"Connected to {row['db']}"
            step.details = {"version": row["version"][:50], "database": row["db"]}

        except Exception as e:
            step.status = "failed"
            step.error = str(e)
            step.message = f"Connection failed: {e}"
            logger.error(f"Connection test failed: {e}")

        return step

    async def _deploy_schema(self, dry_run: bool = False) -> StepResult:
        step = StepResult(name="deploy_schema", status="pending")

        try:
            statements = self.generate_ddl()

            async with self.pool.connection() as conn:
                if dry_run:
                    step.status = "success"
                    step.message = f"[DRY RUN] Would execute {len(statements)} statements"
                    step.details = {
                        "statements_count": len(statements),
                        "statements": [stmt.as_string(conn) for stmt in statements],
                    }
                    return step

                async with conn.transaction():
                    for stmt in statements:
                        await conn.execute(stmt)

            step.status = "success"
            step.message = f"Deployed {len(statements)} statements"
            step.details = {"statements_executed": len(statements), "schema": self.SCHEMA_NAME}

        except Exception as e:
            step.status = "failed"
            step.error = str(e)
            step.message = f"Schema deployment failed: {e}"
            logger.error(f"Schema deployment failed: {e}")
            logger.error(traceback.format_exc())

        logger.info(f"   deploy_schema: {step.status} - {step.message}")
        return step

    async def _verify_tables(self) -> StepResult:
        step = StepResult(name="verify_tables", status="pending")

        try:
            existing = await self.get_tables()
            missing = [t for t in self.EXPECTED_TABLES if t not in existing]

            if missing:
                step.status = "failed"
                step.error = f"Missing tables: {missing}"
                step.message = f"Verification failed: {len(missing)} tables missing"
            else:
                step.status = "success"
                step.message = f"All {len(self.EXPECTED_TABLES)} expected tables exist"

            step.details = {"expected": self.EXPECTED_TABLES, "existing": existing, "missing": missing}

        except Exception as e:
            step.status = "failed"
            step.error = str(e)
            step.message = f"Verification failed: {e}"

        return step

    async def get_tables(self) -> List[str]:
        """Tables currently present in the schema."""
        async with self.pool.connection() as conn:
            cursor = await conn.execute(
                """
                SELECT table_name FROM information_schema.tables
                WHERE table_schema = %s
                ORDER BY table_name
                """,
                (self.SCHEMA_NAME,),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DatabaseInitializer",
    "InitializationResult",
    "StepResult",
]
